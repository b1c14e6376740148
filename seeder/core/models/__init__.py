"""
Core data models for the seeding orchestrator.

All models use Pydantic for runtime validation and type safety.
"""

from .checkpoint import CheckpointDocument, CheckpointSummary, EntityStageOptions, GroupingRecord
from .polling import (
    DEFAULT_POLL_INTERVAL_SECONDS,
    DEFAULT_TIMEOUT_SECONDS,
    FoundOrder,
    PollingResult,
    PrepRef,
)
from .record_spec import Customer, GroupingConfig, LineItem, RecordSpec, SeedConfig
from .run_result import FailureEntry, SeedRunResult
from .stage_result import (
    CollaboratorFailure,
    CollaboratorSuccess,
    CreatedLineItem,
    EntitySubmission,
    StageFailure,
    StageReport,
    StageResult,
    StageSuccess,
)

__all__ = [
    "Customer",
    "LineItem",
    "RecordSpec",
    "GroupingConfig",
    "SeedConfig",
    "CreatedLineItem",
    "EntitySubmission",
    "CollaboratorSuccess",
    "CollaboratorFailure",
    "StageReport",
    "StageSuccess",
    "StageFailure",
    "StageResult",
    "GroupingRecord",
    "CheckpointDocument",
    "CheckpointSummary",
    "EntityStageOptions",
    "FoundOrder",
    "PrepRef",
    "PollingResult",
    "DEFAULT_TIMEOUT_SECONDS",
    "DEFAULT_POLL_INTERVAL_SECONDS",
    "FailureEntry",
    "SeedRunResult",
]
