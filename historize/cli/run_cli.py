"""
Command-line interface for incremental entity runs.

Usage:
    historize run --config <entities.yaml> [--entity NAME ...] [--input NAME=PATH ...] [options]
    historize init-db --config <entities.yaml> [--entity NAME ...]
    historize status --config <entities.yaml> [--entity NAME ...]
    historize validate-config --config <entities.yaml>
"""

import argparse
import sys
from datetime import datetime
from pathlib import Path

from pyspark.sql import SparkSession

from historize.batch import RunReport, SparkCSVReader, run_entities
from historize.core.config import EntityConfigLoader, Settings
from historize.core.errors import ConfigurationError, HistorizeError
from historize.core.models import EntityConfig
from historize.observability.logger import get_logger, setup_logger
from historize.observability.metrics import start_metrics_server
from historize.warehouse import InMemoryTableStore, TableStore
from historize.warehouse.connection import DatabaseConnectionPool
from historize.warehouse.postgres_store import PostgresTableStore

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_REJECTS = 2


def create_spark_session(app_name: str = "historize") -> SparkSession:
    """
    Create Spark session for reading staged files.

    Args:
        app_name: Application name

    Returns:
        SparkSession
    """
    spark = SparkSession.builder \
        .appName(app_name) \
        .master("local[*]") \
        .config("spark.sql.adaptive.enabled", "true") \
        .config("spark.sql.adaptive.coalescePartitions.enabled", "true") \
        .config("spark.ui.enabled", "false") \
        .getOrCreate()

    return spark


def format_timestamp(ts: datetime | None) -> str:
    """Format timestamp for display."""
    return ts.strftime("%Y-%m-%d %H:%M:%S") if ts else "N/A"


def parse_input_overrides(values: list[str] | None) -> dict[str, str]:
    """
    Parse ``NAME=PATH`` pairs given with ``--input``.

    Raises:
        ConfigurationError: If a value has no ``=`` or an empty side
    """
    overrides = {}
    for value in values or []:
        name, sep, path = value.partition("=")
        if not sep or not name or not path:
            raise ConfigurationError(None, f"--input expects NAME=PATH, got '{value}'")
        overrides[name] = path
    return overrides


def select_entities(loader: EntityConfigLoader, names: list[str] | None) -> list[EntityConfig]:
    """Load the declared entities, restricted to ``names`` when given."""
    entities = loader.load_entities()
    if not names:
        return entities

    declared = {entity.name: entity for entity in entities}
    unknown = [name for name in names if name not in declared]
    if unknown:
        raise ConfigurationError(None, f"Entities not declared in configuration: {unknown}")
    return [declared[name] for name in names]


def build_sources(entities: list[EntityConfig], overrides: dict[str, str], reader) -> dict:
    """
    Resolve each entity's staged file and bind it to the reader.

    Raises:
        ConfigurationError: If an entity has no path or the file is missing
    """
    sources = {}
    for entity in entities:
        path = overrides.get(entity.name) or entity.source.path
        if not path:
            raise ConfigurationError(entity.name, "No source path configured; pass --input NAME=PATH")
        if not Path(path).exists():
            raise ConfigurationError(entity.name, f"Input file not found: {path}")
        sources[entity.name] = (
            lambda path=path, entity=entity: reader.iter_rows(path, entity.source, entity.columns)
        )
    return sources


def open_store(args, settings: Settings) -> TableStore:
    """Open the table store selected on the command line."""
    if getattr(args, "store", "postgres") == "memory":
        return InMemoryTableStore()

    pool = DatabaseConnectionPool(
        host=args.db_host or settings.db_host,
        port=args.db_port or settings.db_port,
        database=args.db_name or settings.db_name,
        user=args.db_user or settings.db_user,
        password=args.db_password or settings.db_password,
        max_size=max(2, getattr(args, "parallel", 1)),
    )
    pool.open()
    return PostgresTableStore(pool)


def print_report(report: RunReport) -> None:
    """Print one line per entity run."""
    print(f"\n{'=' * 100}")
    print(
        f"{'ENTITY':<24} {'STATUS':<8} {'READ':>6} {'REJECT':>6} {'STALE':>6} "
        f"{'INS':>6} {'UPD':>6} {'OPEN':>6} {'CLOSE':>6}  WATERMARK"
    )
    print(f"{'-' * 100}")
    for s in report.summaries:
        watermark = s.watermark_after.isoformat() if s.watermark_after else "-"
        print(
            f"{s.entity:<24} {s.status:<8} {s.records_read:>6} {s.rejected:>6} {s.stale_records:>6} "
            f"{s.inserted:>6} {s.updated:>6} {s.versions_opened:>6} {s.versions_closed:>6}  {watermark}"
        )
    print(f"{'=' * 100}\n")
    for entity, error in report.errors.items():
        print(f"FAILED {entity}: {error}")


def run_command(args, settings: Settings) -> int:
    """
    Execute an incremental run.

    Args:
        args: Command-line arguments
        settings: Settings from the environment

    Returns:
        Process exit code
    """
    loader = EntityConfigLoader(args.config)
    entities = select_entities(loader, args.entity)
    overrides = parse_input_overrides(args.input)

    metrics_port = args.metrics_port or settings.metrics_port
    if metrics_port:
        start_metrics_server(metrics_port)
        logger.info(f"Metrics exposed on port {metrics_port}")

    if args.dry_run:
        logger.info("DRY RUN MODE: nothing will be committed")

    spark = create_spark_session()
    store = None
    try:
        sources = build_sources(entities, overrides, SparkCSVReader(spark))
        store = open_store(args, settings)
        for entity in entities:
            store.ensure_tables(entity)

        report = run_entities(
            entities,
            store,
            sources,
            max_workers=args.parallel,
            dry_run=args.dry_run,
        )
    finally:
        if store is not None:
            store.close()
        spark.stop()

    print_report(report)

    if report.failed:
        return EXIT_FATAL
    if args.fail_on_rejects and report.rejected:
        logger.warning(f"{report.rejected} records were rejected")
        return EXIT_REJECTS
    return EXIT_OK


def init_db_command(args, settings: Settings) -> int:
    """Provision the tables of the configured entities."""
    loader = EntityConfigLoader(args.config)
    entities = select_entities(loader, args.entity)

    store = open_store(args, settings)
    try:
        for entity in entities:
            store.ensure_tables(entity)
    finally:
        store.close()

    print(f"Provisioned tables for {len(entities)} entities")
    return EXIT_OK


def status_command(args, settings: Settings) -> int:
    """Show the committed watermark and stored rejections of each entity."""
    loader = EntityConfigLoader(args.config)
    entities = select_entities(loader, args.entity)

    store = open_store(args, settings)
    try:
        print(f"\n{'=' * 100}")
        print(f"{'ENTITY':<24} {'NAMESPACE':<12} {'WATERMARK':<27} {'UPDATED':<20} {'REJECTED':>8}")
        print(f"{'-' * 100}")
        for entity in entities:
            state = store.load_watermark_state(entity)
            rejected = len(store.load_rejections(entity))
            watermark = state.watermark.isoformat() if state else "-"
            updated = format_timestamp(state.updated_at) if state else "-"
            print(f"{entity.name:<24} {entity.namespace:<12} {watermark:<27} {updated:<20} {rejected:>8}")
        print(f"{'=' * 100}\n")
    finally:
        store.close()
    return EXIT_OK


def validate_config_command(args, settings: Settings) -> int:
    """Load and validate the configuration without touching the database."""
    loader = EntityConfigLoader(args.config)
    entities = loader.load_entities()

    print(f"\n{'=' * 80}")
    print(f"ENTITIES IN {args.config}")
    print(f"{'=' * 80}\n")
    for entity in entities:
        strategy = entity.strategy if entity.historized else "-"
        print(
            f"{entity.name:<24} {entity.kind:<14} strategy={strategy:<9} "
            f"key={','.join(entity.business_key)} changed_at={entity.change_timestamp} "
            f"derived={len(entity.derived_fields)} namespace={entity.namespace}"
        )
    print(f"\n{len(entities)} entities OK")
    return EXIT_OK


def add_db_arguments(parser: argparse.ArgumentParser) -> None:
    """Database connection arguments; unset values fall back to DB_* env vars."""
    parser.add_argument("--db-host", help="Database host (default: DB_HOST or localhost)")
    parser.add_argument("--db-port", type=int, help="Database port (default: DB_PORT or 5432)")
    parser.add_argument("--db-name", help="Database name (default: DB_NAME or datawarehouse)")
    parser.add_argument("--db-user", help="Database user (default: DB_USER or pipeline)")
    parser.add_argument("--db-password", help="Database password (default: DB_PASSWORD)")


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="historize",
        description="Incremental ingestion and historization engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run every configured entity
  historize run --config config/entities.yaml

  # Run two entities in parallel from explicit files
  historize run --config config/entities.yaml --parallel 2 \\
      --entity silver_bookings --input silver_bookings=data/bookings.csv \\
      --entity dim_listings --input dim_listings=data/listings.csv

  # Dry run (plan only, commit nothing)
  historize run --config config/entities.yaml --dry-run

  # Check configuration
  historize validate-config --config config/entities.yaml
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    run_parser = subparsers.add_parser("run", help="Run incremental passes")
    run_parser.add_argument("--config", default="config/entities.yaml", help="Entity configuration YAML")
    run_parser.add_argument("--entity", action="append", help="Entity to run (repeatable, default: all)")
    run_parser.add_argument("--input", action="append", help="Staged file for an entity as NAME=PATH (repeatable)")
    run_parser.add_argument("--dry-run", action="store_true", help="Plan and report without committing")
    run_parser.add_argument("--parallel", type=int, default=1, help="Entities to run concurrently (default: 1)")
    run_parser.add_argument("--metrics-port", type=int, help="Expose Prometheus metrics on this port")
    run_parser.add_argument(
        "--fail-on-rejects",
        action="store_true",
        help=f"Exit with status {EXIT_REJECTS} when any record was rejected",
    )
    run_parser.add_argument(
        "--store",
        choices=["postgres", "memory"],
        default="postgres",
        help="Table store (memory keeps nothing after the process exits)",
    )
    add_db_arguments(run_parser)

    init_parser = subparsers.add_parser("init-db", help="Provision entity tables")
    init_parser.add_argument("--config", default="config/entities.yaml", help="Entity configuration YAML")
    init_parser.add_argument("--entity", action="append", help="Entity to provision (repeatable, default: all)")
    add_db_arguments(init_parser)

    status_parser = subparsers.add_parser("status", help="Show watermarks and rejection counts")
    status_parser.add_argument("--config", default="config/entities.yaml", help="Entity configuration YAML")
    status_parser.add_argument("--entity", action="append", help="Entity to show (repeatable, default: all)")
    add_db_arguments(status_parser)

    validate_parser = subparsers.add_parser("validate-config", help="Validate entity configuration")
    validate_parser.add_argument("--config", default="config/entities.yaml", help="Entity configuration YAML")

    return parser


COMMANDS = {
    "run": run_command,
    "init-db": init_db_command,
    "status": status_command,
    "validate-config": validate_config_command,
}


def main(argv: list[str] | None = None) -> None:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(EXIT_FATAL)

    settings = Settings.from_env()
    setup_logger(level=settings.log_level, format_type=settings.log_format)

    try:
        exit_code = COMMANDS[args.command](args, settings)
    except HistorizeError as e:
        logger.error(
            f"{args.command} failed: {e}",
            extra={"entity": getattr(e, "entity", None), "failure_kind": getattr(e, "kind", type(e).__name__)},
        )
        sys.exit(EXIT_FATAL)
    except Exception as e:
        logger.error(f"Error during {args.command}: {e}", exc_info=True)
        sys.exit(EXIT_FATAL)

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
