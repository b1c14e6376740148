"""
Per-stage failure accumulation for one engine run.
"""

from seeder.core.models import FailureEntry, StageFailure


class FailureCollector:
    """
    Append-only list of failures, grouped by stage.

    Retries never happen here; a failed record is retried only by resuming
    the whole batch.
    """

    def __init__(self):
        self._entries: list[FailureEntry] = []

    def record(
        self,
        stage: str,
        identifier: str,
        error_message: str,
        original_index: int | None = None,
        submission_index: int | None = None,
    ) -> FailureEntry:
        entry = FailureEntry(
            stage=stage,
            original_index=original_index,
            submission_index=submission_index,
            identifier=identifier,
            error_message=error_message,
        )
        self._entries.append(entry)
        return entry

    def extend(self, stage: str, failures: list[StageFailure]) -> None:
        for failure in failures:
            self.record(
                stage,
                identifier=failure.identifier,
                error_message=failure.error_message,
                original_index=failure.original_index,
                submission_index=failure.submission_index,
            )

    def for_stage(self, stage: str) -> list[FailureEntry]:
        return [entry for entry in self._entries if entry.stage == stage]

    def has_failures(self, stage: str | None = None) -> bool:
        if stage is None:
            return bool(self._entries)
        return any(entry.stage == stage for entry in self._entries)

    def all_failed(self, stage: str, submitted_count: int) -> bool:
        """True when every record of a non-empty submission failed."""
        return submitted_count > 0 and len(self.for_stage(stage)) >= submitted_count

    def entries(self) -> list[FailureEntry]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)
