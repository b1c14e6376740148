"""
Plain-text report formatting for the seeding CLI.
"""

from seeder.core.errors import BatchError, resume_command
from seeder.core.models import CheckpointSummary, EntityStageOptions, SeedRunResult

RULE = "=" * 60
MAX_LISTED_ORDERS = 10


def format_summary(result: SeedRunResult) -> str:
    """Summarise a finished run."""
    total_records = result.record_count
    stage1_ok = len(result.stage1.successful)
    stage2_ok = len(result.stage2.successful)
    if result.dry_run:
        title = "DRY RUN COMPLETE: NOTHING WAS WRITTEN"
    elif result.status == "completed":
        title = "SEEDING COMPLETE"
    else:
        title = "SEEDING FINISHED WITH FAILURES"

    lines = [
        RULE,
        title,
        RULE,
        f"Batch ID: {result.batch_id}",
        f"Remote orders: {stage1_ok}/{total_records}",
        f"WMS orders: {stage2_ok}/{total_records}",
        f"Preps: {sum(len(s.sub_record_ids) for s in result.stage2.successful)}",
    ]
    skipped = sum(result.skipped.values())
    if skipped:
        lines.append(f"Skipped (already seeded): {skipped}")
    if result.grouping_record is not None:
        lines.append(
            f"Grouping record: {result.grouping_record.id} ({result.grouping_record.region})"
        )

    if 0 < stage1_ok <= MAX_LISTED_ORDERS:
        lines.append("")
        lines.append("Remote orders:")
        for success in result.stage1.successful:
            lines.append(
                f"  - #{success.original_index + 1} order {success.display_number or '?'} "
                f"(ID: {success.external_id})"
            )

    if result.status == "partial":
        lines.append("")
        lines.extend(format_failures(result))
    if result.checkpoint_retained:
        lines.append("")
        lines.append("Checkpoint kept. Resume with:")
        lines.append(f"  {resume_command(result.batch_id)}")
    lines.append(RULE)
    return "\n".join(lines)


def format_failures(result: SeedRunResult) -> list[str]:
    """Enumerate every failing record stored for the batch, by original position."""
    lines = []
    for stage_name, stage in (("stage1", result.stage1), ("stage2", result.stage2)):
        if not stage.failed:
            continue
        lines.append(f"Failures in {stage_name} ({len(stage.failed)}):")
        for failure in stage.failed:
            lines.append(
                f"  - {failure.position_label} {failure.identifier}: {failure.error_message}"
            )
    return lines


def format_fatal(
    error: Exception,
    batch_id: str | None = None,
    resumable: bool | None = None,
) -> str:
    """
    Describe a fatal error.

    Args:
        error: The error that stopped the run
        batch_id: Batch id, when one was assigned
        resumable: Whether a checkpoint exists for the batch. Defaults to
            True for batch errors, which are only raised after a save.
    """
    batch_id = getattr(error, "batch_id", None) or batch_id
    if resumable is None:
        resumable = isinstance(error, BatchError)
    lines = [f"ERROR: {error}"]
    missing = getattr(error, "missing_ids", None)
    if missing:
        lines.append(f"Missing orders ({len(missing)}): {', '.join(missing)}")
    if batch_id:
        lines.append(f"Batch ID: {batch_id}")
        if resumable:
            command = error.resume_command if isinstance(error, BatchError) else None
            lines.append(f"Resume with: {command or resume_command(batch_id)}")
    return "\n".join(lines)


def format_entity_options(options: EntityStageOptions) -> str:
    if options.mode == "direct":
        return "Stage 2: direct WMS writes"
    partial = ", partial ingestion allowed" if options.allow_partial else ""
    return (
        f"Stage 2: webhook ingestion (timeout {options.timeout:g}s, "
        f"poll every {options.poll_interval:g}s{partial})"
    )


def format_checkpoint_list(summaries: list[CheckpointSummary]) -> str:
    if not summaries:
        return "No checkpoints found."
    lines = [f"{'BATCH ID':<40} SAVED AT (UTC)"]
    for summary in summaries:
        lines.append(f"{summary.batch_id:<40} {summary.timestamp:%Y-%m-%d %H:%M:%S}")
    return "\n".join(lines)
