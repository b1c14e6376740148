"""
Command-line interface for seeding staging test data.

Usage:
    python -m seeder.cli.seed_cli run <config> [options]
    python -m seeder.cli.seed_cli resume <batch-id> [options]
    python -m seeder.cli.seed_cli list-checkpoints
    python -m seeder.cli.seed_cli delete-checkpoint <batch-id>

Exit codes: 0 complete, 2 finished with failures (checkpoint kept), 1 fatal.
"""

import argparse
import os
import sys
from contextlib import nullcontext

import psycopg

from seeder.batch.engine import OrchestrationEngine, new_batch_id
from seeder.batch.poller import IngestionPoller
from seeder.clients.order_api import OrderApiClient
from seeder.config.env import EnvConfig, get_env_config, load_env_files
from seeder.config.guardrails import assert_staging_environment, mask_url
from seeder.config.seed_config import SeedConfigLoader
from seeder.core.errors import SeederError
from seeder.core.models import (
    DEFAULT_POLL_INTERVAL_SECONDS,
    DEFAULT_TIMEOUT_SECONDS,
    CheckpointDocument,
    EntityStageOptions,
    SeedConfig,
)
from seeder.observability import metrics
from seeder.observability.logger import get_logger, log_operation, setup_logger
from seeder.stages import (
    DirectEntityStage,
    DryRunEntityStage,
    DryRunGroupingStage,
    DryRunOrderStage,
    GroupingStage,
    RemoteOrderStage,
    WebhookEntityStage,
)
from seeder.storage import FileProgressStore
from seeder.utils.validation import ValidationError, validate_batch_id, validate_positive_seconds
from seeder.warehouse.connection import DatabaseConnectionPool
from seeder.warehouse.repository import WmsRepository

from .output import format_checkpoint_list, format_entity_options, format_fatal, format_summary
from .prompts import AutoConfirm, ConsolePrompt

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_PARTIAL = 2


def print_progress(stage: str, current: int, total: int, label: str) -> None:
    """Single-line progress on stderr."""
    sys.stderr.write(f"\r[{stage}] {current}/{total} {label[:40]:<40}")
    if current >= total:
        sys.stderr.write("\n")
    sys.stderr.flush()


def positive_seconds(text: str) -> float:
    """argparse type for durations in seconds."""
    try:
        return validate_positive_seconds(float(text), "duration")
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def resolve_entity_options(args, checkpoint: CheckpointDocument | None = None) -> EntityStageOptions:
    """
    Stage 2 settings for a run.

    A resumed batch keeps the mode and polling settings stored in its
    checkpoint; options given explicitly on the command line take precedence.
    """
    stored = checkpoint.entity_options if checkpoint is not None else None
    options = stored or EntityStageOptions()
    updates = {}
    if args.webhook:
        updates["mode"] = "webhook"
    elif getattr(args, "direct", False):
        updates["mode"] = "direct"
    if args.timeout is not None:
        updates["timeout"] = args.timeout
    if args.poll_interval is not None:
        updates["poll_interval"] = args.poll_interval
    if args.allow_partial:
        updates["allow_partial"] = True
    return options.model_copy(update=updates)


def build_engine(
    env: EnvConfig,
    pool: DatabaseConnectionPool | None,
    args,
    options: EntityStageOptions,
    progress_store: FileProgressStore,
) -> OrchestrationEngine:
    """
    Wire the stages for one run.

    Args:
        env: Environment configuration
        pool: Open database pool (None for a dry run)
        args: Parsed execution options
        options: Stage 2 mode and polling settings
        progress_store: Checkpoint store of the environment
    """
    confirmer = AutoConfirm() if args.yes else ConsolePrompt()
    if args.dry_run:
        return OrchestrationEngine(
            order_stage=DryRunOrderStage(),
            entity_stage=DryRunEntityStage(),
            progress_store=progress_store,
            confirmer=confirmer,
            grouping_stage=DryRunGroupingStage(),
            logger=logger,
            dry_run=True,
        )

    repository = WmsRepository(pool)
    client = OrderApiClient(
        store_domain=env.shopify_store_domain,
        access_token=env.shopify_access_token,
        api_version=env.shopify_api_version,
    )

    if options.mode == "webhook":
        entity_stage = WebhookEntityStage(
            IngestionPoller(repository),
            timeout=options.timeout,
            poll_interval=options.poll_interval,
            allow_partial_success=options.allow_partial,
        )
    else:
        entity_stage = DirectEntityStage(repository)

    return OrchestrationEngine(
        order_stage=RemoteOrderStage(client),
        entity_stage=entity_stage,
        progress_store=progress_store,
        confirmer=confirmer,
        grouping_stage=GroupingStage(repository),
        logger=logger,
    )


def prepare_environment(args) -> EnvConfig:
    """Load environment settings, enforce guardrails and start the exporter."""
    env = get_env_config()
    assert_staging_environment(env, override=args.i_know_this_is_staging)
    print(f"Database: {mask_url(env.database_url)}")
    print(f"Shop: {env.shopify_store_domain}")
    if args.metrics_port:
        metrics.start_metrics_server(args.metrics_port)
    return env


def execute(args, config: SeedConfig | None, batch_id: str, resume: bool) -> int:
    """Run or resume a batch and report the outcome."""
    store = None
    try:
        env = prepare_environment(args)
        store = FileProgressStore(env.progress_dir, env.seed_environment)
        options = resolve_entity_options(args, store.load(batch_id) if resume else None)
        print(format_entity_options(options))
        if args.dry_run:
            print("DRY RUN: no orders, WMS rows or checkpoints will be written")
            pool_context = nullcontext()
        else:
            pool_context = DatabaseConnectionPool(
                conninfo=env.database_url,
                min_size=env.db_min_pool,
                max_size=env.db_max_pool,
            )
        with pool_context as pool:
            engine = build_engine(env, pool, args, options, store)
            with log_operation(
                "Seeding batch", logger=logger, batch_id=batch_id, resume=resume,
                entity_mode=options.mode, dry_run=args.dry_run,
            ):
                if resume:
                    result = engine.resume(batch_id, config=config, on_progress=print_progress)
                else:
                    result = engine.run(config, batch_id=batch_id, on_progress=print_progress)
    except (SeederError, ValidationError, psycopg.Error) as e:
        logger.error("Seeding failed", extra={"batch_id": batch_id, "error": str(e)})
        resumable = store is not None and store.path_for(batch_id).exists()
        print(format_fatal(e, batch_id, resumable=resumable), file=sys.stderr)
        return EXIT_FATAL

    print(format_summary(result))
    return EXIT_OK if result.status == "completed" else EXIT_PARTIAL


def run_command(args) -> int:
    """
    Execute the run command.

    Args:
        args: Command-line arguments
    """
    try:
        config = SeedConfigLoader(args.config).load()
    except SeederError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_FATAL

    if args.validate:
        print(f"Configuration valid: {len(config.orders)} order(s), region {config.effective_region}")
        if config.grouping is not None:
            print(f"Grouping record: carrier {config.grouping.carrier}, location {config.grouping.location_id}")
        return EXIT_OK

    return execute(args, config, new_batch_id(), resume=False)


def resume_command(args) -> int:
    """
    Execute the resume command.

    Args:
        args: Command-line arguments
    """
    try:
        batch_id = validate_batch_id(args.batch_id)
        config = SeedConfigLoader(args.config).load() if args.config else None
    except (ValidationError, SeederError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_FATAL

    return execute(args, config, batch_id, resume=True)


def _store_from_env(args) -> FileProgressStore:
    values = load_env_files()
    values.update(os.environ)
    return FileProgressStore(
        args.progress_dir or values.get("PROGRESS_DIR", ".progress"),
        args.environment or values.get("SEED_ENVIRONMENT", "staging"),
    )


def list_checkpoints_command(args) -> int:
    """List stored checkpoints, newest first."""
    print(format_checkpoint_list(_store_from_env(args).list()))
    return EXIT_OK


def delete_checkpoint_command(args) -> int:
    """Delete a stored checkpoint."""
    try:
        store = _store_from_env(args)
        path = store.path_for(args.batch_id)
    except ValidationError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_FATAL

    if not path.exists():
        print(f"No checkpoint found for batch {args.batch_id}")
        return EXIT_FATAL
    store.delete(args.batch_id)
    print(f"Deleted checkpoint for batch {args.batch_id}")
    return EXIT_OK


def add_execution_options(parser: argparse.ArgumentParser, resuming: bool = False) -> None:
    """
    Options shared by run and resume.

    On resume the stage 2 options default to None so that the values stored
    in the checkpoint apply unless given explicitly.
    """
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--webhook",
        action="store_true",
        help="Wait for the ingester to create WMS entities instead of creating them directly"
    )
    if resuming:
        mode.add_argument(
            "--direct",
            action="store_true",
            help="Create WMS entities directly even if the batch was started with --webhook"
        )
    timeout_default = "stored in the checkpoint" if resuming else f"{DEFAULT_TIMEOUT_SECONDS:g}"
    interval_default = "stored in the checkpoint" if resuming else f"{DEFAULT_POLL_INTERVAL_SECONDS:g}"
    parser.add_argument(
        "--timeout",
        type=positive_seconds,
        default=None if resuming else DEFAULT_TIMEOUT_SECONDS,
        help=f"Webhook ingestion timeout in seconds (default: {timeout_default})"
    )
    parser.add_argument(
        "--poll-interval",
        type=positive_seconds,
        default=None if resuming else DEFAULT_POLL_INTERVAL_SECONDS,
        help=f"Webhook polling interval in seconds (default: {interval_default})"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Simulate every stage without writing orders, WMS rows or checkpoints"
    )
    parser.add_argument(
        "--allow-partial",
        action="store_true",
        help="Continue when only some orders were ingested before the timeout"
    )
    parser.add_argument(
        "--yes", "-y",
        action="store_true",
        help="Continue past partial failures without asking"
    )
    parser.add_argument(
        "--i-know-this-is-staging",
        action="store_true",
        help="Skip the staging environment check (not recommended)"
    )
    parser.add_argument(
        "--metrics-port",
        type=int,
        default=None,
        help="Expose Prometheus metrics on this port"
    )


def add_store_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--progress-dir", default=None, help="Checkpoint root (default: $PROGRESS_DIR or .progress)")
    parser.add_argument("--environment", default=None, help="Environment (default: $SEED_ENVIRONMENT or staging)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="seeder",
        description="Seed linked test orders into the order API and the WMS",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Validate a configuration without touching anything
  python -m seeder.cli.seed_cli run config/orders.yaml --validate

  # Seed, creating WMS entities directly
  python -m seeder.cli.seed_cli run config/orders.yaml

  # Seed and wait for the webhook ingester, accepting partial ingestion
  python -m seeder.cli.seed_cli run config/orders.yaml --webhook --timeout 300 --allow-partial

  # Show what would be created without writing anything
  python -m seeder.cli.seed_cli run config/orders.yaml --dry-run

  # Resume a batch that finished with failures (keeps its --webhook settings)
  python -m seeder.cli.seed_cli resume 3f2a9c1e-...
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    run_parser = subparsers.add_parser("run", help="Seed a new batch from a configuration file")
    run_parser.add_argument("config", help="Path to a YAML or JSON seed configuration")
    run_parser.add_argument(
        "--validate",
        action="store_true",
        help="Only validate the configuration file"
    )
    add_execution_options(run_parser)

    resume_parser = subparsers.add_parser("resume", help="Resume a batch from its checkpoint")
    resume_parser.add_argument("batch_id", help="Batch id printed by the failed run")
    resume_parser.add_argument(
        "--config",
        default=None,
        help="Configuration file, only needed when the checkpoint holds no snapshot"
    )
    add_execution_options(resume_parser, resuming=True)

    list_parser = subparsers.add_parser("list-checkpoints", help="List stored checkpoints")
    add_store_options(list_parser)

    delete_parser = subparsers.add_parser("delete-checkpoint", help="Delete a stored checkpoint")
    delete_parser.add_argument("batch_id", help="Batch id")
    add_store_options(delete_parser)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return EXIT_FATAL
    if args.command == "run" and args.validate and args.dry_run:
        parser.error("--validate and --dry-run cannot be used together")

    setup_logger()

    commands = {
        "run": run_command,
        "resume": resume_command,
        "list-checkpoints": list_checkpoints_command,
        "delete-checkpoint": delete_checkpoint_command,
    }
    return commands[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
