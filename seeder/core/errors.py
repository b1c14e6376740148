"""
Exception hierarchy for the seeding orchestrator.

Per-record failures are never raised through the engine; they are recorded
as StageFailure entries. Everything in this module is either fatal for the
run or raised by a collaborator and converted into a per-record failure.
"""

RESUME_COMMAND_TEMPLATE = "python -m seeder.cli.seed_cli resume {batch_id}"


def resume_command(batch_id: str) -> str:
    """Return the exact CLI invocation that resumes a batch."""
    return RESUME_COMMAND_TEMPLATE.format(batch_id=batch_id)


class SeederError(Exception):
    """Base class for all seeder errors."""


class BatchError(SeederError):
    """
    A fatal error tied to a specific batch.

    Carries the batch id so the operator can resume once the cause is fixed.
    """

    def __init__(self, message: str, batch_id: str | None = None):
        super().__init__(message)
        self.batch_id = batch_id

    @property
    def resume_command(self) -> str | None:
        if not self.batch_id:
            return None
        return resume_command(self.batch_id)


class StagingGuardrailError(SeederError):
    """Target environment does not look like staging."""


class ConfigError(SeederError):
    """Seed configuration file is missing or invalid."""


class CorruptCheckpointError(SeederError):
    """A checkpoint exists but cannot be parsed."""

    def __init__(self, batch_id: str, reason: str):
        super().__init__(f"Checkpoint for batch {batch_id} is corrupt: {reason}")
        self.batch_id = batch_id
        self.reason = reason


class CheckpointNotFoundError(SeederError):
    """No checkpoint stored for the requested batch id."""

    def __init__(self, batch_id: str):
        super().__init__(f"No checkpoint found for batch {batch_id}")
        self.batch_id = batch_id


class StageFailedError(BatchError):
    """Every record submitted to a stage failed."""

    def __init__(self, stage: str, failed_count: int, batch_id: str | None = None):
        super().__init__(
            f"All {failed_count} record(s) submitted to stage '{stage}' failed",
            batch_id=batch_id,
        )
        self.stage = stage
        self.failed_count = failed_count


class RunAbortedError(BatchError):
    """The operator declined to continue after partial failures."""


class IngestionTimeoutError(BatchError):
    """
    Downstream records did not materialise before the polling deadline.

    Attributes:
        missing_ids: External ids still missing when the deadline elapsed
        elapsed_ms: Time spent polling in milliseconds
        found_count: Number of ids that were found
    """

    def __init__(
        self,
        message: str,
        missing_ids: list[str],
        elapsed_ms: int,
        found_count: int = 0,
        batch_id: str | None = None,
    ):
        super().__init__(message, batch_id=batch_id)
        self.missing_ids = list(missing_ids)
        self.elapsed_ms = elapsed_ms
        self.found_count = found_count


class OrderApiError(SeederError):
    """The order API rejected a request or could not be reached."""


class RepositoryError(SeederError):
    """A WMS database operation failed."""
