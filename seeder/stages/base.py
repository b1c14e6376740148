"""
Base class for pipeline stage collaborators.

A stage receives the filtered submission list and reports successes and
failures; it never sees the checkpoint and never raises for a single
record's failure.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Sequence

from seeder.core.errors import OrderApiError, RepositoryError
from seeder.core.models import (
    CollaboratorFailure,
    CollaboratorSuccess,
    EntityStageOptions,
    StageReport,
)
from seeder.observability.logger import get_logger

StageProgressCallback = Callable[[int, int, str], None]

logger = get_logger(__name__)


class SeedStage(ABC):
    """
    Abstract base class for stage collaborators.

    Subclasses implement execute(); the per-record loop in _run_per_record
    handles progress reporting and converts recoverable errors into
    CollaboratorFailure entries.
    """

    recoverable_errors: tuple[type[Exception], ...] = (OrderApiError, RepositoryError)

    @property
    @abstractmethod
    def stage_name(self) -> str:
        """Stage name used in checkpoints, logs and metrics."""

    @property
    def options(self) -> EntityStageOptions | None:
        """Settings recorded in the checkpoint so a resume runs the same way."""
        return None

    @abstractmethod
    def execute(
        self,
        submission: Sequence[Any],
        batch_id: str,
        region: str,
        on_progress: StageProgressCallback | None = None,
    ) -> StageReport:
        """
        Process a submission list.

        Args:
            submission: Items to process, in submission order
            batch_id: Batch identifier
            region: WMS region
            on_progress: Called after each item with (current, total, label)

        Returns:
            StageReport with successes and submission-indexed failures
        """

    def _run_per_record(
        self,
        submission: Sequence[Any],
        handle: Callable[[Any], CollaboratorSuccess],
        identify: Callable[[Any], str],
        on_progress: StageProgressCallback | None = None,
    ) -> StageReport:
        """
        Process items one at a time, continuing past recoverable errors.

        Args:
            submission: Items to process
            handle: Creates (or finds) one item and returns its success entry
            identify: Identifying field of an item for failure reports
            on_progress: Progress callback
        """
        report = StageReport()
        total = len(submission)

        for position, item in enumerate(submission):
            identifier = identify(item)
            try:
                report.successes.append(handle(item))
            except self.recoverable_errors as e:
                logger.warning(
                    "Record failed",
                    extra={
                        "stage": self.stage_name,
                        "submission_index": position,
                        "identifier": identifier,
                        "error": str(e),
                    },
                )
                report.failures.append(
                    CollaboratorFailure(
                        submission_index=position,
                        identifier=identifier,
                        error_message=str(e),
                        external_id=getattr(item, "external_id", None),
                    )
                )
            if on_progress is not None:
                on_progress(position + 1, total, identifier)

        return report
