"""
Stage 1: create remote orders through the order API.
"""

from typing import Sequence

from seeder.clients.order_api import OrderApiClient, RemoteOrder, format_batch_tag
from seeder.core.models import CollaboratorSuccess, RecordSpec, StageReport
from seeder.observability.logger import get_logger

from .base import SeedStage, StageProgressCallback

logger = get_logger(__name__)


class RemoteOrderStage(SeedStage):
    """
    Creates one remote order per RecordSpec, echoing its original index.

    Before creating anything, orders already tagged with the batch are
    fetched; a record whose index tag is present is reported as an existing
    success instead of being created again.
    """

    def __init__(self, client: OrderApiClient):
        self.client = client

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
        existing = self._existing_orders(batch_id)

        def handle(spec: RecordSpec) -> CollaboratorSuccess:
            order = existing.get(spec.original_index)
            already_existed = order is not None
            if order is None:
                order = self.client.create_order(spec, batch_id)
                logger.info(
                    "Remote order created",
                    extra={
                        "batch_id": batch_id,
                        "original_index": spec.original_index,
                        "external_id": order.order_id,
                    },
                )
            else:
                logger.info(
                    "Remote order already exists",
                    extra={
                        "batch_id": batch_id,
                        "original_index": spec.original_index,
                        "external_id": order.order_id,
                    },
                )
            return CollaboratorSuccess(
                external_id=order.order_id,
                original_index=spec.original_index,
                display_number=order.order_number,
                customer_email=spec.customer.email,
                line_items=order.line_items,
                already_existed=already_existed,
            )

        return self._run_per_record(
            submission,
            handle=handle,
            identify=lambda spec: spec.identifier,
            on_progress=on_progress,
        )

    def _existing_orders(self, batch_id: str) -> dict[int, RemoteOrder]:
        batch_tag = format_batch_tag(batch_id)
        by_index: dict[int, RemoteOrder] = {}
        for order in self.client.query_orders_by_tag(batch_tag):
            if batch_tag not in order.tags or order.original_index is None:
                continue
            by_index.setdefault(order.original_index, order)
        if by_index:
            logger.info(
                "Found remote orders from an earlier attempt",
                extra={"batch_id": batch_id, "count": len(by_index)},
            )
        return by_index
