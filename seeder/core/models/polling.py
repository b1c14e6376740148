"""
Polling result models for webhook-driven ingestion.
"""

from pydantic import BaseModel, Field

DEFAULT_TIMEOUT_SECONDS = 180.0
DEFAULT_POLL_INTERVAL_SECONDS = 5.0


class PrepRef(BaseModel):
    """A prep (sub-record) created downstream for one line item."""

    prep_id: str
    line_item_id: str | None = None


class FoundOrder(BaseModel):
    """An order whose downstream order and preps both exist."""

    external_id: str
    entity_id: str
    preps: list[PrepRef] = Field(default_factory=list)


class PollingResult(BaseModel):
    """
    Terminal result of an ingestion poll.

    Attributes:
        found_orders: Orders fully materialised downstream
        missing_orders: External ids still missing at the deadline
        partial_success: True when the deadline elapsed with some ids missing
        elapsed_ms: Total time spent polling
    """

    found_orders: list[FoundOrder] = Field(default_factory=list)
    missing_orders: list[str] = Field(default_factory=list)
    partial_success: bool = False
    elapsed_ms: int = 0
