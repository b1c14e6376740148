"""
Index reconciliation between original order, submission subsets and results.

Three coordinate spaces meet here:

1. original index - a record's position in the caller's configuration
2. submission index - its position in the subset submitted in this run
3. result order - whatever order a stage collaborator reports back in

Results are joined on the external id assigned before submission, or on the
original index echoed by the collaborator; never on list position.
Every function is pure apart from warning logs.
"""

import logging
from typing import Protocol, Sequence, TypeVar

from seeder.core.models import (
    CollaboratorFailure,
    CollaboratorSuccess,
    StageFailure,
    StageResult,
    StageSuccess,
)
from seeder.observability.logger import get_logger

logger = get_logger(__name__)


class Indexed(Protocol):
    original_index: int


T = TypeVar("T", bound=Indexed)


def build_submission_set(
    original_specs: Sequence[T],
    stage: StageResult | None,
) -> tuple[list[T], dict[int, int]]:
    """
    Remove already-successful records and map submission positions back.

    Args:
        original_specs: Items in original relative order, each carrying original_index
        stage: Checkpointed results for the stage, or None on a fresh run

    Returns:
        Tuple of (submission_list, filtered_to_original) where
        filtered_to_original maps a position in submission_list to its
        original index.
    """
    done = stage.successful_indices if stage is not None else set()
    submission_list = [spec for spec in original_specs if spec.original_index not in done]
    filtered_to_original = {
        position: spec.original_index for position, spec in enumerate(submission_list)
    }
    return submission_list, filtered_to_original


def reconcile_results(
    submission_list: Sequence[Indexed],
    filtered_to_original: dict[int, int],
    successes: Sequence[CollaboratorSuccess],
    failures: Sequence[CollaboratorFailure],
    log: logging.Logger | None = None,
) -> StageResult:
    """
    Map a collaborator's raw output into original-index space.

    A success is located by the external id its submission item carried
    before submission; when submission items carry no external id (remote
    order creation), the echoed original index is used and checked against
    the submitted set. Failures are mapped through filtered_to_original by
    their submission index.

    Unmappable or contradictory successes are dropped with a warning.
    Unmappable failures are kept with original_index=None so they still
    count as failures. A failure for an index that also succeeded is dropped.

    Returns:
        StageResult sorted by original index
    """
    log = log or logger
    position_by_external_id: dict[str, int] = {}
    for position, item in enumerate(submission_list):
        external_id = getattr(item, "external_id", None)
        if external_id:
            position_by_external_id[external_id] = position
    submitted_originals = set(filtered_to_original.values())

    successful: dict[int, StageSuccess] = {}
    for success in successes:
        original_index = _locate_success(
            success, position_by_external_id, filtered_to_original, submitted_originals, log
        )
        if original_index is None:
            continue
        if original_index in successful:
            log.warning(
                "Dropping duplicate success for original index",
                extra={"original_index": original_index, "external_id": success.external_id},
            )
            continue
        successful[original_index] = StageSuccess(
            original_index=original_index,
            **success.model_dump(exclude={"original_index", "already_existed"}),
        )

    failed: list[StageFailure] = []
    failed_indices: set[int] = set()
    for failure in failures:
        original_index = filtered_to_original.get(failure.submission_index)
        if original_index is None:
            log.warning(
                "Failure submission index could not be mapped to an original index",
                extra={"submission_index": failure.submission_index, "identifier": failure.identifier},
            )
        elif original_index in successful:
            log.warning(
                "Dropping failure for a record that also reported success",
                extra={"original_index": original_index},
            )
            continue
        elif original_index in failed_indices:
            continue
        else:
            failed_indices.add(original_index)
        failed.append(
            StageFailure(
                original_index=original_index,
                submission_index=failure.submission_index,
                identifier=failure.identifier,
                error_message=failure.error_message,
                external_id=failure.external_id,
            )
        )

    return StageResult(
        successful=[successful[i] for i in sorted(successful)],
        failed=sorted(failed, key=_failure_sort_key),
    )


def _locate_success(
    success: CollaboratorSuccess,
    position_by_external_id: dict[str, int],
    filtered_to_original: dict[int, int],
    submitted_originals: set[int],
    log: logging.Logger,
) -> int | None:
    position = position_by_external_id.get(success.external_id)
    if position is not None:
        original_index = filtered_to_original.get(position)
        if original_index is None:
            log.warning(
                "Submission position has no original index",
                extra={"external_id": success.external_id, "submission_index": position},
            )
            return None
        if success.original_index is not None and success.original_index != original_index:
            log.warning(
                "Echoed original index contradicts external id mapping",
                extra={
                    "external_id": success.external_id,
                    "echoed_index": success.original_index,
                    "mapped_index": original_index,
                },
            )
            return None
        return original_index

    if success.original_index is not None and success.original_index in submitted_originals:
        return success.original_index

    log.warning(
        "Success could not be mapped to a submitted record",
        extra={"external_id": success.external_id, "echoed_index": success.original_index},
    )
    return None


def merge_stage_results(prior: StageResult, new: StageResult) -> StageResult:
    """
    Merge a run's reconciled results into the checkpointed ones.

    New entries take precedence over prior entries for the same original
    index. Prior failures without an original index are stale and dropped.

    Args:
        prior: Results stored in the checkpoint
        new: Results reconciled from this run

    Returns:
        Union of both, sorted by original index, with disjoint sets
    """
    new_success_indices = new.successful_indices
    new_failed_indices = {f.original_index for f in new.failed if f.original_index is not None}
    replaced = new_success_indices | new_failed_indices

    successful = [s for s in prior.successful if s.original_index not in replaced]
    successful.extend(new.successful)
    successful.sort(key=lambda s: s.original_index)

    merged_success_indices = {s.original_index for s in successful}
    failed = [
        f for f in prior.failed
        if f.original_index is not None
        and f.original_index not in replaced
        and f.original_index not in merged_success_indices
    ]
    failed.extend(new.failed)
    failed.sort(key=_failure_sort_key)

    return StageResult(successful=successful, failed=failed)


def _failure_sort_key(failure: StageFailure) -> tuple[int, int]:
    if failure.original_index is not None:
        return (0, failure.original_index)
    return (1, failure.submission_index or 0)
