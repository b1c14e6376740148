"""
CheckpointDocument model: the persisted resume point of a seeding batch.
"""

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .polling import DEFAULT_POLL_INTERVAL_SECONDS, DEFAULT_TIMEOUT_SECONDS
from .record_spec import SeedConfig
from .stage_result import StageResult


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GroupingRecord(BaseModel):
    """Grouping record (collection prep) created for a batch."""

    id: str = Field(..., min_length=1)
    region: str


class EntityStageOptions(BaseModel):
    """
    How stage 2 obtains the WMS entities for a batch.

    Stored in the checkpoint so that resuming a batch keeps the mode it was
    started with unless the operator overrides it.

    Attributes:
        mode: "direct" (seeder writes the WMS rows) or "webhook" (the seeder
            waits for the ingester)
        timeout: Webhook ingestion timeout in seconds
        poll_interval: Webhook polling interval in seconds
        allow_partial: Accept partial ingestion at the deadline
    """

    model_config = ConfigDict(frozen=True)

    mode: Literal["direct", "webhook"] = "direct"
    timeout: float = Field(DEFAULT_TIMEOUT_SECONDS, gt=0)
    poll_interval: float = Field(DEFAULT_POLL_INTERVAL_SECONDS, gt=0)
    allow_partial: bool = False


class CheckpointDocument(BaseModel):
    """
    Per-stage success/failure state of a batch.

    Created at the end of stage 1, updated after stage 2 and after the grouping
    record, deleted only when a run finishes with no failures.

    Attributes:
        batch_id: Batch identifier (also the storage key)
        timestamp: Time of the last save
        stage1: Remote order creation results
        stage2: Downstream entity creation results
        grouping_record: Grouping record, once created
        seed_config: Configuration the batch was started with
        entity_options: Stage 2 mode and polling settings of the batch
    """

    batch_id: str = Field(..., min_length=1)
    timestamp: datetime = Field(default_factory=_utcnow)
    stage1: StageResult = Field(default_factory=StageResult)
    stage2: StageResult = Field(default_factory=StageResult)
    grouping_record: GroupingRecord | None = None
    seed_config: SeedConfig | None = None
    entity_options: EntityStageOptions | None = None

    @model_validator(mode="after")
    def check_indices_in_range(self) -> "CheckpointDocument":
        if self.seed_config is None:
            return self
        size = len(self.seed_config.orders)
        for stage_name in ("stage1", "stage2"):
            stage: StageResult = getattr(self, stage_name)
            out_of_range = sorted(i for i in stage.successful_indices if i >= size)
            if out_of_range:
                raise ValueError(
                    f"{stage_name} has successful indices {out_of_range} "
                    f"outside a configuration of {size} record(s)"
                )
        return self

    @property
    def has_failures(self) -> bool:
        return bool(self.stage1.failed or self.stage2.failed)

    def touch(self) -> "CheckpointDocument":
        """Return a copy stamped with the current time."""
        return self.model_copy(update={"timestamp": _utcnow()})


class CheckpointSummary(BaseModel):
    """Listing entry for operator tooling."""

    batch_id: str
    timestamp: datetime
