"""
Resumable orchestration of the seeding pipeline.

remote orders (stage 1) -> WMS entities (stage 2) -> optional grouping record

Every stage submits only the records its checkpoint does not already mark as
successful, reconciles the collaborator's output into original-index space,
merges it with the checkpoint and persists before moving on.
"""

import logging
import uuid
from typing import Callable, Protocol, Sequence

from pydantic import ValidationError as PydanticValidationError

from seeder.core.errors import (
    CheckpointNotFoundError,
    ConfigError,
    IngestionTimeoutError,
    RunAbortedError,
    StageFailedError,
)
from seeder.core.models import (
    CheckpointDocument,
    EntitySubmission,
    SeedConfig,
    SeedRunResult,
    StageReport,
    StageResult,
)
from seeder.observability import metrics
from seeder.observability.logger import get_logger
from seeder.stages.base import SeedStage
from seeder.stages.grouping_stage import GroupingStage
from seeder.storage.progress_store import ProgressStore
from seeder.utils.validation import validate_batch_id

from .failures import FailureCollector
from .index_mapper import build_submission_set, merge_stage_results, reconcile_results

RunProgressCallback = Callable[[str, int, int, str], None]

STAGE1 = "stage1"
STAGE2 = "stage2"


class Confirmer(Protocol):
    """Asks the operator whether to continue past partial failures."""

    def confirm(self, message: str) -> bool: ...


def new_batch_id() -> str:
    return str(uuid.uuid4())


class OrchestrationEngine:
    """
    Sequences the stages of one seeding batch.

    Per-record failures never abort the run. The run stops early only when
    every record submitted to a stage failed with nothing left for the next
    stage (StageFailedError), when the operator declines to continue
    (RunAbortedError), or when a collaborator raises a fatal error. In each
    case the checkpoint written so far is kept.

    With dry_run set, checkpoints are read but never written or deleted.
    """

    def __init__(
        self,
        order_stage: SeedStage,
        entity_stage: SeedStage,
        progress_store: ProgressStore,
        confirmer: Confirmer,
        grouping_stage: GroupingStage | None = None,
        logger: logging.Logger | None = None,
        dry_run: bool = False,
    ):
        """
        Initialize engine.

        Args:
            order_stage: Stage 1 collaborator (remote orders)
            entity_stage: Stage 2 collaborator (direct or webhook)
            progress_store: Checkpoint persistence
            confirmer: Consulted between stages when stage 1 has failures
            grouping_stage: Creates the grouping record when configured
            logger: Logger for run events
            dry_run: Leave the progress store untouched
        """
        self.order_stage = order_stage
        self.entity_stage = entity_stage
        self.progress_store = progress_store
        self.confirmer = confirmer
        self.grouping_stage = grouping_stage
        self.logger = logger or get_logger(__name__)
        self.dry_run = dry_run

    def resume(
        self,
        batch_id: str,
        config: SeedConfig | None = None,
        on_progress: RunProgressCallback | None = None,
    ) -> SeedRunResult:
        """
        Resume a batch from its checkpoint.

        Args:
            batch_id: Batch to resume
            config: Configuration to use when the checkpoint holds no snapshot
            on_progress: Progress callback (stage, current, total, label)

        Raises:
            CheckpointNotFoundError: No checkpoint stored for the batch
            CorruptCheckpointError: Checkpoint cannot be parsed
            ConfigError: No configuration available for the batch
        """
        batch_id = validate_batch_id(batch_id)
        checkpoint = self.progress_store.load(batch_id)
        if checkpoint is None:
            raise CheckpointNotFoundError(batch_id)

        config = config or checkpoint.seed_config
        if config is None:
            raise ConfigError(
                f"Checkpoint for batch {batch_id} has no configuration snapshot; "
                "pass the original configuration file"
            )
        return self.run(config, batch_id=batch_id, checkpoint=checkpoint, on_progress=on_progress)

    def run(
        self,
        config: SeedConfig,
        batch_id: str | None = None,
        checkpoint: CheckpointDocument | None = None,
        on_progress: RunProgressCallback | None = None,
    ) -> SeedRunResult:
        """
        Run (or continue) a batch.

        Args:
            config: Validated seed configuration
            batch_id: Batch id; generated when omitted
            checkpoint: Prior checkpoint of the same batch, if resuming
            on_progress: Progress callback (stage, current, total, label)

        Returns:
            SeedRunResult with status "completed" (checkpoint deleted) or
            "partial" (checkpoint kept)

        Raises:
            StageFailedError: Every record submitted to a stage failed
            RunAbortedError: Operator declined to continue
            IngestionTimeoutError: Webhook ingestion timed out
        """
        batch_id = validate_batch_id(batch_id or (checkpoint.batch_id if checkpoint else new_batch_id()))
        checkpoint = self._prepare_checkpoint(batch_id, config, checkpoint)
        region = config.effective_region
        failures = FailureCollector()
        new_successes: dict[str, int] = {}
        skipped: dict[str, int] = {}

        self.logger.info(
            "Starting seeding run",
            extra={
                "batch_id": batch_id,
                "record_count": len(config.orders),
                "resumed": bool(checkpoint.stage1.successful or checkpoint.stage1.failed),
                "entity_mode": checkpoint.entity_options.mode if checkpoint.entity_options else None,
                "dry_run": self.dry_run,
            },
        )

        try:
            # Stage 1: remote orders
            stage1_new, submitted, created = self._run_stage(
                self.order_stage, config.orders, checkpoint.stage1, batch_id, region, on_progress,
                skipped,
            )
            checkpoint = self._persist(checkpoint, stage1=merge_stage_results(checkpoint.stage1, stage1_new))
            new_successes[STAGE1] = created

            # Stage 2: WMS entities for every remote order created so far,
            # including orders from earlier runs still waiting for stage 2
            eligible = self._entity_submissions(config, checkpoint.stage1)
            pending = self._pending(eligible, checkpoint.stage2)
            self._after_stage(STAGE1, stage1_new, submitted, failures, batch_id, can_proceed=pending)
            if checkpoint.stage1.failed and pending:
                self._confirm_continue(batch_id, checkpoint)

            try:
                stage2_new, submitted, created = self._run_stage(
                    self.entity_stage, eligible, checkpoint.stage2, batch_id, region, on_progress,
                    skipped,
                )
            except IngestionTimeoutError as e:
                e.batch_id = batch_id
                raise
            checkpoint = self._persist(checkpoint, stage2=merge_stage_results(checkpoint.stage2, stage2_new))
            new_successes[STAGE2] = created
            self._after_stage(STAGE2, stage2_new, submitted, failures, batch_id)

            # Grouping record, once every record reached stage 2
            if config.grouping is not None and not checkpoint.has_failures:
                checkpoint = self._ensure_grouping(checkpoint, config, batch_id)
        except (StageFailedError, RunAbortedError) as e:
            outcome = "aborted" if isinstance(e, RunAbortedError) else "failed"
            metrics.increment_counter(metrics.runs_total, outcome=outcome)
            raise

        status = "partial" if checkpoint.has_failures else "completed"
        if self.dry_run:
            self.logger.info("Dry run finished, nothing written", extra={"batch_id": batch_id})
        elif status == "completed":
            self.progress_store.delete(batch_id)
            self.logger.info("Seeding run completed, checkpoint cleared", extra={"batch_id": batch_id})
        else:
            self.logger.warning(
                "Seeding run finished with failures, checkpoint kept",
                extra={
                    "batch_id": batch_id,
                    "stage1_failed": len(checkpoint.stage1.failed),
                    "stage2_failed": len(checkpoint.stage2.failed),
                },
            )
        metrics.increment_counter(metrics.runs_total, outcome=status)

        return SeedRunResult(
            batch_id=batch_id,
            record_count=len(config.orders),
            status=status,
            stage1=checkpoint.stage1,
            stage2=checkpoint.stage2,
            grouping_record=checkpoint.grouping_record,
            failures=failures.entries(),
            new_successes=new_successes,
            skipped=skipped,
            dry_run=self.dry_run,
        )

    def _prepare_checkpoint(
        self,
        batch_id: str,
        config: SeedConfig,
        checkpoint: CheckpointDocument | None,
    ) -> CheckpointDocument:
        options = self.entity_stage.options
        if checkpoint is None:
            return CheckpointDocument(batch_id=batch_id, seed_config=config, entity_options=options)
        if options is not None:
            checkpoint = checkpoint.model_copy(update={"entity_options": options})
        if checkpoint.batch_id != batch_id:
            raise ConfigError(
                f"Checkpoint belongs to batch {checkpoint.batch_id}, not {batch_id}"
            )
        try:
            return CheckpointDocument.model_validate(
                {**checkpoint.model_dump(), "seed_config": config.model_dump()}
            )
        except PydanticValidationError as e:
            raise ConfigError(
                f"Configuration does not match checkpoint for batch {batch_id}: {e}"
            ) from e

    def _run_stage(
        self,
        stage: SeedStage,
        items: Sequence[object],
        prior: StageResult,
        batch_id: str,
        region: str,
        on_progress: RunProgressCallback | None,
        skipped: dict[str, int],
    ) -> tuple[StageResult, int, int]:
        """
        Submit the pending items of a stage and reconcile the report.

        Returns:
            Tuple of (reconciled result, submitted count, newly created count)
        """
        name = stage.stage_name
        submission, filtered_to_original = build_submission_set(items, prior)
        already_done = len(items) - len(submission)
        skipped[name] = already_done

        if not submission:
            self.logger.info("Nothing to submit for stage", extra={"batch_id": batch_id, "stage": name})
            metrics.record_stage_outcome(name, 0, 0, 0, already_done)
            return StageResult(), 0, 0

        self.logger.info(
            "Submitting stage",
            extra={"batch_id": batch_id, "stage": name, "submitted": len(submission), "skipped": already_done},
        )

        def forward_progress(current: int, total: int, label: str) -> None:
            if on_progress is not None:
                on_progress(name, already_done + current, already_done + total, label)

        with metrics.track_duration(metrics.stage_duration_seconds, stage=name):
            report: StageReport = stage.execute(submission, batch_id, region, forward_progress)

        result = reconcile_results(
            submission, filtered_to_original, report.successes, report.failures, log=self.logger
        )
        found_ids = {s.external_id for s in report.successes if s.already_existed}
        existing = sum(1 for s in result.successful if s.external_id in found_ids)
        created = len(result.successful) - existing
        metrics.record_stage_outcome(
            name,
            created=created,
            existing=existing,
            failed=len(result.failed),
            skipped=already_done,
        )
        return result, len(submission), created

    def _after_stage(
        self,
        stage: str,
        result: StageResult,
        submitted: int,
        failures: FailureCollector,
        batch_id: str,
        can_proceed: bool = False,
    ) -> None:
        """
        Record the failures of a stage.

        Raises StageFailedError when every record submitted in this run failed
        and nothing from earlier runs is waiting for the next stage either.
        """
        failures.extend(stage, result.failed)
        for failure in result.failed:
            self.logger.warning(
                "Record failed",
                extra={
                    "batch_id": batch_id,
                    "stage": stage,
                    "original_index": failure.original_index,
                    "identifier": failure.identifier,
                    "error": failure.error_message,
                },
            )
        stage_failed = failures.all_failed(stage, submitted) or not result.successful
        if submitted > 0 and stage_failed and not can_proceed:
            self.logger.error(
                "Every submitted record failed",
                extra={"batch_id": batch_id, "stage": stage, "submitted": submitted},
            )
            raise StageFailedError(stage, submitted, batch_id=batch_id)

    def _persist(self, checkpoint: CheckpointDocument, **updates) -> CheckpointDocument:
        checkpoint = checkpoint.model_copy(update=updates).touch()
        if not self.dry_run:
            self.progress_store.save(checkpoint)
        return checkpoint

    @staticmethod
    def _entity_submissions(config: SeedConfig, stage1: StageResult) -> list[EntitySubmission]:
        return [
            EntitySubmission(
                original_index=success.original_index,
                external_id=success.external_id,
                display_number=success.display_number,
                customer=config.orders[success.original_index].customer,
                line_items=success.line_items,
            )
            for success in stage1.successful
        ]

    @staticmethod
    def _pending(items: Sequence[EntitySubmission], stage: StageResult) -> bool:
        done = stage.successful_indices
        return any(item.original_index not in done for item in items)

    def _confirm_continue(self, batch_id: str, checkpoint: CheckpointDocument) -> None:
        failed = len(checkpoint.stage1.failed)
        succeeded = len(checkpoint.stage1.successful)
        message = (
            f"{failed} record(s) failed in stage 1 and {succeeded} succeeded. "
            "Continue with the successful records?"
        )
        if not self.confirmer.confirm(message):
            self.logger.warning("Run aborted by operator", extra={"batch_id": batch_id})
            raise RunAbortedError(
                f"Run aborted after stage 1 with {failed} failure(s)", batch_id=batch_id
            )

    def _ensure_grouping(
        self,
        checkpoint: CheckpointDocument,
        config: SeedConfig,
        batch_id: str,
    ) -> CheckpointDocument:
        if checkpoint.grouping_record is not None:
            self.logger.info(
                "Reusing grouping record from checkpoint",
                extra={"batch_id": batch_id, "grouping_id": checkpoint.grouping_record.id},
            )
            return checkpoint
        if self.grouping_stage is None:
            self.logger.warning(
                "Grouping configured but no grouping stage available; skipping",
                extra={"batch_id": batch_id},
            )
            return checkpoint
        if not checkpoint.stage2.successful:
            return checkpoint

        record = self.grouping_stage.create(batch_id, config.grouping, checkpoint.stage2)
        return self._persist(checkpoint, grouping_record=record)
