"""
Stage collaborators of the seeding pipeline.
"""

from .base import SeedStage, StageProgressCallback
from .dry_run import DryRunEntityStage, DryRunGroupingStage, DryRunOrderStage
from .entity_stage import DirectEntityStage, WebhookEntityStage
from .grouping_stage import GroupingStage
from .order_stage import RemoteOrderStage

__all__ = [
    "SeedStage",
    "StageProgressCallback",
    "RemoteOrderStage",
    "DirectEntityStage",
    "WebhookEntityStage",
    "GroupingStage",
    "DryRunOrderStage",
    "DryRunEntityStage",
    "DryRunGroupingStage",
]
