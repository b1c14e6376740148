"""
Polling for webhook-driven ingestion of remote orders into the WMS.

After orders are created remotely, an external ingester creates the WMS order
and its preps asynchronously. IngestionPoller waits, under a deadline, until
both exist for every watched order.
"""

import time
from typing import Any, Callable, Protocol

from seeder.core.errors import IngestionTimeoutError
from seeder.core.models import (
    DEFAULT_POLL_INTERVAL_SECONDS,
    DEFAULT_TIMEOUT_SECONDS,
    FoundOrder,
    PollingResult,
    PrepRef,
)
from seeder.observability import metrics
from seeder.observability.logger import get_logger
from seeder.utils.validation import validate_positive_seconds

logger = get_logger(__name__)

PollProgressCallback = Callable[[int, int, int], None]


class OrderLookup(Protocol):
    """Read side of the WMS repository used while polling."""

    def find_order_by_external_id(self, external_id: str) -> dict[str, Any] | None: ...

    def find_preps_by_order_ids(self, external_ids: list[str], region: str) -> list[dict[str, Any]]: ...


class IngestionPoller:
    """
    Bounded polling loop over the WMS database.

    An order counts as found only once its WMS order row AND at least one prep
    exist; the order row alone means ingestion is still in progress.

    Terminal states:
        all found       -> PollingResult(partial_success=False)
        partial timeout -> PollingResult(partial_success=True) when partial
                           success is allowed, IngestionTimeoutError otherwise
        total timeout   -> IngestionTimeoutError with every id missing
    """

    def __init__(
        self,
        lookup: OrderLookup,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize poller.

        Args:
            lookup: WMS repository (or anything with the same read methods)
            clock: Monotonic clock in seconds
            sleep: Sleep function in seconds
        """
        self.lookup = lookup
        self.clock = clock
        self.sleep = sleep

    def poll(
        self,
        external_ids: list[str],
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        allow_partial_success: bool = False,
        on_progress: PollProgressCallback | None = None,
    ) -> PollingResult:
        """
        Poll until every external id is ingested or the deadline elapses.

        Args:
            external_ids: Remote order ids to wait for
            timeout: Deadline in seconds
            poll_interval: Pause between ticks in seconds
            allow_partial_success: Return a partial result instead of raising
                when some (but not all) ids were found by the deadline
            on_progress: Called once per tick with (found, total, elapsed_ms)

        Returns:
            PollingResult

        Raises:
            IngestionTimeoutError: Nothing found by the deadline, or some ids
                missing while partial success is not allowed
        """
        timeout = validate_positive_seconds(timeout, "timeout")
        poll_interval = validate_positive_seconds(poll_interval, "poll_interval")

        watched = list(dict.fromkeys(external_ids))
        total = len(watched)
        found: dict[str, FoundOrder] = {}
        start = self.clock()

        logger.info(
            "Starting ingestion polling",
            extra={
                "order_count": total,
                "timeout_seconds": timeout,
                "poll_interval_seconds": poll_interval,
            },
        )

        while True:
            for external_id in watched:
                if external_id not in found:
                    order = self._check_ingested(external_id)
                    if order is not None:
                        found[external_id] = order

            elapsed = self.clock() - start
            elapsed_ms = int(elapsed * 1000)
            metrics.increment_counter(metrics.poll_ticks_total)
            if on_progress is not None:
                on_progress(len(found), total, elapsed_ms)

            if len(found) == total:
                logger.info(
                    "All orders ingested",
                    extra={"order_count": total, "elapsed_ms": elapsed_ms},
                )
                metrics.increment_counter(metrics.poll_outcomes_total, outcome="all_found")
                metrics.observe_histogram(metrics.poll_duration_seconds, elapsed)
                return self._build_result(watched, found, [], False, elapsed_ms)

            remaining = timeout - elapsed
            if remaining <= 0:
                missing = [i for i in watched if i not in found]
                metrics.observe_histogram(metrics.poll_duration_seconds, elapsed)
                return self._on_deadline(
                    watched, found, missing, timeout, elapsed_ms, allow_partial_success
                )

            self.sleep(min(poll_interval, remaining))

    def _check_ingested(self, external_id: str) -> FoundOrder | None:
        order = self.lookup.find_order_by_external_id(external_id)
        if order is None:
            logger.debug("Order not yet in WMS", extra={"external_id": external_id})
            return None

        preps = self.lookup.find_preps_by_order_ids([external_id], order["region"])
        if not preps:
            logger.debug(
                "Order found but preps not yet created",
                extra={"external_id": external_id, "entity_id": order["id"]},
            )
            return None

        logger.info(
            "Order and preps found",
            extra={"external_id": external_id, "entity_id": order["id"], "prep_count": len(preps)},
        )
        return FoundOrder(
            external_id=external_id,
            entity_id=str(order["id"]),
            preps=[
                PrepRef(prep_id=str(prep["prep_id"]), line_item_id=prep.get("line_item_id"))
                for prep in preps
            ],
        )

    def _on_deadline(
        self,
        watched: list[str],
        found: dict[str, FoundOrder],
        missing: list[str],
        timeout: float,
        elapsed_ms: int,
        allow_partial_success: bool,
    ) -> PollingResult:
        if not found:
            logger.error(
                "Ingestion polling timeout - no orders found",
                extra={"timeout_seconds": timeout, "elapsed_ms": elapsed_ms, "missing_count": len(missing)},
            )
            metrics.increment_counter(metrics.poll_outcomes_total, outcome="total_timeout")
            raise IngestionTimeoutError(
                f"Ingestion timeout after {timeout:g}s. No orders found in WMS; "
                "the ingester may be down.",
                missing_ids=missing,
                elapsed_ms=elapsed_ms,
                found_count=0,
            )

        metrics.increment_counter(metrics.poll_outcomes_total, outcome="partial_timeout")
        if allow_partial_success:
            logger.warning(
                "Ingestion polling partial success",
                extra={"found_count": len(found), "missing_ids": missing, "elapsed_ms": elapsed_ms},
            )
            return self._build_result(watched, found, missing, True, elapsed_ms)

        logger.error(
            "Ingestion polling timeout - partial success not allowed",
            extra={"found_count": len(found), "missing_ids": missing, "elapsed_ms": elapsed_ms},
        )
        raise IngestionTimeoutError(
            f"Ingestion timeout after {timeout:g}s. Found {len(found)}/{len(watched)} orders.",
            missing_ids=missing,
            elapsed_ms=elapsed_ms,
            found_count=len(found),
        )

    @staticmethod
    def _build_result(
        watched: list[str],
        found: dict[str, FoundOrder],
        missing: list[str],
        partial_success: bool,
        elapsed_ms: int,
    ) -> PollingResult:
        return PollingResult(
            found_orders=[found[i] for i in watched if i in found],
            missing_orders=missing,
            partial_success=partial_success,
            elapsed_ms=elapsed_ms,
        )
