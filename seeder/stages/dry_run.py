"""
Stand-in collaborators for --dry-run.

They walk the same submission lists as the real stages and log what would be
created, without calling the order API or touching the WMS database.
"""

from typing import Sequence

from seeder.core.models import (
    CollaboratorSuccess,
    CreatedLineItem,
    EntitySubmission,
    GroupingConfig,
    GroupingRecord,
    RecordSpec,
    StageReport,
    StageResult,
)
from seeder.observability.logger import get_logger

from .base import SeedStage, StageProgressCallback
from .grouping_stage import GroupingStage, grouping_name

logger = get_logger(__name__)

DRY_RUN_PREFIX = "dry-run"


def simulated_order_id(original_index: int) -> str:
    return f"{DRY_RUN_PREFIX}-order-{original_index}"


class DryRunOrderStage(SeedStage):
    """Reports a simulated remote order for every record."""

    @property
    def stage_name(self) -> str:
        return "stage1"

    def execute(
        self,
        submission: Sequence[RecordSpec],
        batch_id: str,
        region: str,
        on_progress: StageProgressCallback | None = None,
    ) -> StageReport:
        def handle(spec: RecordSpec) -> CollaboratorSuccess:
            external_id = simulated_order_id(spec.original_index)
            logger.info(
                "DRY RUN: would create remote order",
                extra={
                    "batch_id": batch_id,
                    "original_index": spec.original_index,
                    "customer_email": spec.customer.email,
                    "skus": [item.sku for item in spec.line_items],
                },
            )
            return CollaboratorSuccess(
                external_id=external_id,
                original_index=spec.original_index,
                display_number=f"DRY-{spec.original_index + 1}",
                customer_email=spec.customer.email,
                line_items=[
                    CreatedLineItem(
                        line_item_id=f"{external_id}-li-{position}",
                        sku=item.sku,
                        quantity=item.quantity,
                    )
                    for position, item in enumerate(spec.line_items)
                ],
            )

        return self._run_per_record(
            submission,
            handle=handle,
            identify=lambda spec: spec.identifier,
            on_progress=on_progress,
        )


class DryRunEntityStage(SeedStage):
    """Reports a simulated WMS order with one prep per line item."""

    @property
    def stage_name(self) -> str:
        return "stage2"

    def execute(
        self,
        submission: Sequence[EntitySubmission],
        batch_id: str,
        region: str,
        on_progress: StageProgressCallback | None = None,
    ) -> StageReport:
        def handle(item: EntitySubmission) -> CollaboratorSuccess:
            prep_ids = [f"{DRY_RUN_PREFIX}-prep-{li.line_item_id}" for li in item.line_items]
            logger.info(
                "DRY RUN: would create WMS order with preps",
                extra={
                    "batch_id": batch_id,
                    "original_index": item.original_index,
                    "external_id": item.external_id,
                    "region": region,
                    "prep_count": len(prep_ids),
                },
            )
            return CollaboratorSuccess(
                external_id=item.external_id,
                original_index=item.original_index,
                display_number=item.display_number,
                customer_email=item.customer.email,
                entity_id=f"{DRY_RUN_PREFIX}-wms-{item.original_index}",
                sub_record_ids=prep_ids,
            )

        return self._run_per_record(
            submission,
            handle=handle,
            identify=lambda item: item.customer.email,
            on_progress=on_progress,
        )


class DryRunGroupingStage(GroupingStage):
    """Reports the grouping record that would link the batch."""

    def __init__(self):
        super().__init__(repository=None)

    def create(self, batch_id: str, grouping: GroupingConfig, stage2: StageResult) -> GroupingRecord:
        name = grouping_name(batch_id, grouping)
        logger.info(
            "DRY RUN: would create grouping record",
            extra={
                "batch_id": batch_id,
                "name": name,
                "region": grouping.region,
                "order_count": len(stage2.successful),
            },
        )
        return GroupingRecord(id=f"{DRY_RUN_PREFIX}-{name}", region=grouping.region)
