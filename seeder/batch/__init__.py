"""
Batch orchestration: index reconciliation, ingestion polling and the engine.
"""

from .engine import Confirmer, OrchestrationEngine, new_batch_id
from .failures import FailureCollector
from .index_mapper import build_submission_set, merge_stage_results, reconcile_results
from .poller import IngestionPoller, OrderLookup

__all__ = [
    "OrchestrationEngine",
    "Confirmer",
    "new_batch_id",
    "FailureCollector",
    "build_submission_set",
    "reconcile_results",
    "merge_stage_results",
    "IngestionPoller",
    "OrderLookup",
]
