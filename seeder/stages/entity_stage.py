"""
Stage 2: make sure every remote order has its downstream WMS entities.

Two modes:
    direct  - the seeder writes the WMS order and preps itself
    webhook - an external ingester writes them; the seeder polls until they exist
"""

from typing import Sequence

from seeder.batch.poller import IngestionPoller
from seeder.core.models import (
    DEFAULT_POLL_INTERVAL_SECONDS,
    DEFAULT_TIMEOUT_SECONDS,
    CollaboratorFailure,
    CollaboratorSuccess,
    EntityStageOptions,
    EntitySubmission,
    StageReport,
)
from seeder.observability.logger import get_logger
from seeder.utils.validation import validate_positive_seconds
from seeder.warehouse.repository import WmsRepository

from .base import SeedStage, StageProgressCallback

logger = get_logger(__name__)


class DirectEntityStage(SeedStage):
    """Creates WMS orders and preps directly, keyed by external id."""

    def __init__(self, repository: WmsRepository):
        self.repository = repository

    @property
    def stage_name(self) -> str:
        return "stage2"

    @property
    def options(self) -> EntityStageOptions:
        return EntityStageOptions(mode="direct")

    def execute(
        self,
        submission: Sequence[EntitySubmission],
        batch_id: str,
        region: str,
        on_progress: StageProgressCallback | None = None,
    ) -> StageReport:
        def handle(item: EntitySubmission) -> CollaboratorSuccess:
            existing = self.repository.find_order_by_external_id(item.external_id)
            if existing is not None:
                preps = self.repository.find_preps_by_order_ids([item.external_id], existing["region"])
                if preps:
                    logger.info(
                        "WMS order already exists",
                        extra={"batch_id": batch_id, "original_index": item.original_index,
                               "external_id": item.external_id},
                    )
                    return self._success(item, str(existing["id"]), [str(p["prep_id"]) for p in preps], True)

            entity_id, prep_ids = self.repository.create_order_with_preps(
                external_id=item.external_id,
                display_number=item.display_number,
                customer=item.customer,
                line_items=item.line_items,
                region=region,
            )
            return self._success(item, str(entity_id), [str(p) for p in prep_ids], False)

        return self._run_per_record(
            submission,
            handle=handle,
            identify=lambda item: item.customer.email,
            on_progress=on_progress,
        )

    @staticmethod
    def _success(
        item: EntitySubmission, entity_id: str, prep_ids: list[str], already_existed: bool
    ) -> CollaboratorSuccess:
        return CollaboratorSuccess(
            external_id=item.external_id,
            original_index=item.original_index,
            display_number=item.display_number,
            customer_email=item.customer.email,
            entity_id=entity_id,
            sub_record_ids=prep_ids,
            already_existed=already_existed,
        )


class WebhookEntityStage(SeedStage):
    """
    Waits for an external ingester to create the WMS entities.

    Found orders become successes. With partial success allowed, orders still
    missing at the deadline become failures so the batch stays resumable;
    IngestionTimeoutError from the poller propagates unchanged.

    Durations are checked on construction so a bad timeout is reported
    before any remote order is created.
    """

    def __init__(
        self,
        poller: IngestionPoller,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        allow_partial_success: bool = False,
    ):
        self.poller = poller
        self.timeout = validate_positive_seconds(timeout, "timeout")
        self.poll_interval = validate_positive_seconds(poll_interval, "poll_interval")
        self.allow_partial_success = allow_partial_success

    @property
    def stage_name(self) -> str:
        return "stage2"

    @property
    def options(self) -> EntityStageOptions:
        return EntityStageOptions(
            mode="webhook",
            timeout=self.timeout,
            poll_interval=self.poll_interval,
            allow_partial=self.allow_partial_success,
        )

    def execute(
        self,
        submission: Sequence[EntitySubmission],
        batch_id: str,
        region: str,
        on_progress: StageProgressCallback | None = None,
    ) -> StageReport:
        if not submission:
            return StageReport()

        def forward_progress(found: int, total: int, elapsed_ms: int) -> None:
            if on_progress is not None:
                on_progress(found, total, f"{elapsed_ms / 1000:.1f}s elapsed")

        result = self.poller.poll(
            [item.external_id for item in submission],
            timeout=self.timeout,
            poll_interval=self.poll_interval,
            allow_partial_success=self.allow_partial_success,
            on_progress=forward_progress,
        )

        by_external_id = {item.external_id: item for item in submission}
        report = StageReport()
        for found in result.found_orders:
            item = by_external_id[found.external_id]
            report.successes.append(
                CollaboratorSuccess(
                    external_id=found.external_id,
                    original_index=item.original_index,
                    display_number=item.display_number,
                    customer_email=item.customer.email,
                    entity_id=found.entity_id,
                    sub_record_ids=[prep.prep_id for prep in found.preps],
                )
            )

        positions = {item.external_id: position for position, item in enumerate(submission)}
        for external_id in result.missing_orders:
            item = by_external_id[external_id]
            report.failures.append(
                CollaboratorFailure(
                    submission_index=positions[external_id],
                    identifier=item.customer.email,
                    error_message=f"Order not ingested within {self.timeout:g}s",
                    external_id=external_id,
                )
            )

        logger.info(
            "Webhook ingestion finished",
            extra={
                "batch_id": batch_id,
                "found_count": len(report.successes),
                "missing_count": len(report.failures),
                "elapsed_ms": result.elapsed_ms,
            },
        )
        return report
