"""
SeedRunResult model: what one engine invocation reports back to its caller.
"""

from typing import Literal

from pydantic import BaseModel, Field

from .checkpoint import GroupingRecord
from .stage_result import StageResult

RunStatus = Literal["completed", "partial"]


class FailureEntry(BaseModel):
    """A failure enumerated in the run report."""

    stage: str
    original_index: int | None = None
    submission_index: int | None = None
    identifier: str
    error_message: str

    @property
    def position_label(self) -> str:
        if self.original_index is not None:
            return f"#{self.original_index + 1}"
        return f"submission #{(self.submission_index or 0) + 1}"


class SeedRunResult(BaseModel):
    """
    Outcome of one engine run.

    Attributes:
        batch_id: Batch identifier
        record_count: Number of records in the configuration
        status: "completed" (checkpoint deleted) or "partial" (checkpoint kept)
        stage1: Merged stage 1 results
        stage2: Merged stage 2 results
        grouping_record: Grouping record, if one exists for the batch
        failures: Failures collected during this run, in stage order
        new_successes: Records that succeeded in this run, per stage
        skipped: Records skipped because a previous run already seeded them
        dry_run: True when nothing was written and no checkpoint was kept
    """

    batch_id: str
    record_count: int = 0
    status: RunStatus
    stage1: StageResult
    stage2: StageResult
    grouping_record: GroupingRecord | None = None
    failures: list[FailureEntry] = Field(default_factory=list)
    new_successes: dict[str, int] = Field(default_factory=dict)
    skipped: dict[str, int] = Field(default_factory=dict)
    dry_run: bool = False

    @property
    def checkpoint_retained(self) -> bool:
        return self.status == "partial" and not self.dry_run
