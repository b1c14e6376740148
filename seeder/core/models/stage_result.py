"""
Stage result models.

Two vocabularies live here:

* What a stage collaborator returns (StageReport): successes identified by
  external id (and the echoed original index when the collaborator knows it),
  failures identified by their position in the submission list.
* What the engine stores after reconciliation (StageResult): every entry keyed
  by its original index.
"""

from pydantic import BaseModel, Field, model_validator

from .record_spec import Customer


class CreatedLineItem(BaseModel):
    """A line item as created on the remote order."""

    line_item_id: str
    sku: str
    quantity: int = Field(1, gt=0)


class EntitySubmission(BaseModel):
    """
    One record submitted to the downstream stage.

    Built from a stage 1 success and its RecordSpec; the external id is known
    before submission and is the join key for reconciliation.
    """

    original_index: int = Field(..., ge=0)
    external_id: str = Field(..., min_length=1)
    display_number: str | None = None
    customer: Customer
    line_items: list[CreatedLineItem] = Field(default_factory=list)


class CollaboratorSuccess(BaseModel):
    """
    A success as reported by a stage collaborator.

    Attributes:
        external_id: Remote order id (join key)
        original_index: Echoed original index, when the collaborator has it
        display_number: Remote order number shown to humans
        customer_email: Identifying field carried for reports
        entity_id: Downstream (WMS) order id, stage 2 only
        line_items: Line items created on the remote order, stage 1 only
        sub_record_ids: Downstream sub-records owned by this record (preps)
        already_existed: True when the record was found rather than created
    """

    external_id: str = Field(..., min_length=1)
    original_index: int | None = Field(None, ge=0)
    display_number: str | None = None
    customer_email: str | None = None
    entity_id: str | None = None
    line_items: list[CreatedLineItem] = Field(default_factory=list)
    sub_record_ids: list[str] = Field(default_factory=list)
    already_existed: bool = False


class CollaboratorFailure(BaseModel):
    """A failure as reported by a stage collaborator, by submission position."""

    submission_index: int = Field(..., ge=0)
    identifier: str
    error_message: str
    external_id: str | None = None


class StageReport(BaseModel):
    """Raw output of one stage collaborator call."""

    successes: list[CollaboratorSuccess] = Field(default_factory=list)
    failures: list[CollaboratorFailure] = Field(default_factory=list)


class StageSuccess(BaseModel):
    """A reconciled success keyed by original index."""

    original_index: int = Field(..., ge=0)
    external_id: str = Field(..., min_length=1)
    display_number: str | None = None
    customer_email: str | None = None
    entity_id: str | None = None
    line_items: list[CreatedLineItem] = Field(default_factory=list)
    sub_record_ids: list[str] = Field(default_factory=list)


class StageFailure(BaseModel):
    """
    A reconciled failure.

    ``original_index`` is None only when the collaborator's submission index
    could not be mapped; ``submission_index`` is then the only position known.
    """

    original_index: int | None = Field(None, ge=0)
    submission_index: int | None = Field(None, ge=0)
    identifier: str
    error_message: str
    external_id: str | None = None

    @property
    def position_label(self) -> str:
        if self.original_index is not None:
            return f"#{self.original_index + 1}"
        return f"submission #{(self.submission_index or 0) + 1}"


class StageResult(BaseModel):
    """
    Per-stage success/failure sets in original-index space.

    Successful original indices are unique and disjoint from failed ones.
    """

    successful: list[StageSuccess] = Field(default_factory=list)
    failed: list[StageFailure] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_index_invariants(self) -> "StageResult":
        seen: set[int] = set()
        for entry in self.successful:
            if entry.original_index in seen:
                raise ValueError(
                    f"duplicate successful original_index {entry.original_index}"
                )
            seen.add(entry.original_index)
        overlap = sorted(
            f.original_index for f in self.failed
            if f.original_index is not None and f.original_index in seen
        )
        if overlap:
            raise ValueError(f"original indices both successful and failed: {overlap}")
        return self

    @property
    def successful_indices(self) -> set[int]:
        return {entry.original_index for entry in self.successful}

    def success_for(self, original_index: int) -> StageSuccess | None:
        for entry in self.successful:
            if entry.original_index == original_index:
                return entry
        return None
