"""
CLI main entry point.
"""

import argparse
import logging
import logging.handlers
import signal
import sys
import threading
from pathlib import Path

from .. import __version__
from ..config import Config, create_default_config, load_config
from ..schemas.report import ReportStatus
from ..services import (
    CleanupWorker,
    PatientSyncService,
    ReportPipeline,
    ReportQueue,
    build_integration,
)
from ..state_store import StateStore
from .daemon import PatientSyncWorker, ReportInboxWorker

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

# One file per level; error.log also takes CRITICAL
LEVEL_FILES = {
    "debug.log": (logging.DEBUG, logging.DEBUG),
    "info.log": (logging.INFO, logging.INFO),
    "warn.log": (logging.WARNING, logging.WARNING),
    "error.log": (logging.ERROR, logging.CRITICAL),
}


class LevelRangeFilter(logging.Filter):
    """Pass records whose level lies in [low, high]."""

    def __init__(self, low: int, high: int):
        super().__init__()
        self.low = low
        self.high = high

    def filter(self, record: logging.LogRecord) -> bool:
        return self.low <= record.levelno <= self.high


def setup_logging(verbose: bool = False, log_dir: Path | None = None) -> None:
    """Configure console logging and, with log_dir, one file per level."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt=LOG_DATEFMT)

    if log_dir is None:
        return

    log_dir.mkdir(parents=True, exist_ok=True)
    root = logging.getLogger()
    existing = {getattr(h, "baseFilename", None) for h in root.handlers}
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT)

    for file_name, (low, high) in LEVEL_FILES.items():
        path = log_dir / file_name
        if str(path.absolute()) in existing:
            continue
        handler = logging.handlers.TimedRotatingFileHandler(
            path, when="midnight", backupCount=30, encoding="utf-8"
        )
        handler.setFormatter(formatter)
        handler.addFilter(LevelRangeFilter(low, high))
        root.addHandler(handler)


def create_cli() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="pms-bridge",
        description="Sync patients from a dental PMS and import report files into it",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    init_parser = subparsers.add_parser("init-config", help="Write a default config file")
    init_parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite an existing config file",
    )

    subparsers.add_parser("sync", help="Run one patient sync cycle")
    subparsers.add_parser("import-reports", help="Scan the reports inbox once and import")
    subparsers.add_parser("run", help="Run sync and report workers until interrupted")
    subparsers.add_parser("status", help="Show store statistics")

    reports_parser = subparsers.add_parser("reports", help="List recent report records")
    reports_parser.add_argument(
        "--status",
        type=str.upper,
        choices=[s.value for s in ReportStatus],
        help="Only show reports with this status",
    )
    reports_parser.add_argument(
        "--limit",
        type=int,
        default=20,
        help="Maximum reports to show (default: 20)",
    )

    return parser


def _check_config(config: Config) -> bool:
    errors = config.validate()
    if errors:
        print("❌ Invalid configuration:")
        for error in errors:
            print(f"   - {error}")
        return False
    return True


def _build_queue(config: Config, store: StateStore, integration, stop_event=None) -> ReportQueue:
    pipeline = ReportPipeline(store, integration, config.reports.deletion_failure_policy)
    return ReportQueue(
        pipeline,
        cleanup=CleanupWorker(store),
        pause_seconds=config.reports.item_pause_seconds,
        stop_event=stop_event,
    )


def cmd_init_config(config_path: Path, force: bool = False) -> int:
    """Write the default config file."""
    if config_path.exists() and not force:
        print(f"⚠️  {config_path} already exists (use --force to overwrite)")
        return 1

    create_default_config(config_path)
    print(f"✓ Wrote default config to {config_path}")
    return 0


def cmd_sync(config: Config) -> int:
    """Run one patient sync cycle."""
    if not _check_config(config):
        return 1

    print(f"🔄 Syncing patients from {config.provider.value}...")
    store = StateStore(config.state_db_path)
    integration = build_integration(config)
    try:
        result = PatientSyncService(integration, store, config).run_cycle()
    finally:
        integration.close()

    if result.skipped:
        print("❌ PMS API is not available")
        return 1

    print(f"  Patients fetched:       {result.fetched}")
    print(f"  New patients:           {result.new_patients}")
    print(f"  Patients imported:      {result.patients_imported}")
    print(f"  Insurance imported:     {result.insurance_imported}")
    if result.insurance_failures:
        print(f"  Insurance failures:     {result.insurance_failures}")

    if result.errors:
        print("\n⚠️  Errors:")
        for error in result.errors:
            print(f"   - {error}")
        return 1

    print("\n✓ Sync complete")
    return 0


def cmd_import_reports(config: Config) -> int:
    """Scan the reports inbox once and process everything found."""
    if not _check_config(config):
        return 1

    store = StateStore(config.state_db_path)
    integration = build_integration(config)
    try:
        queue = _build_queue(config, store, integration)
        inbox = ReportInboxWorker(
            queue,
            config.reports.inbox_dir,
            file_pattern=config.reports.file_pattern,
            store=store,
        )
        queued = inbox.scan()
        print(f"📥 Found {queued} report(s) in {config.reports.inbox_dir}")
        processed = queue.drain_all()
    finally:
        integration.close()

    failed = [r for r in store.list_reports(limit=processed) if r.status == ReportStatus.FAILED]
    print(f"\n✓ Processed {processed} report(s), {len(failed)} failed")
    for record in failed:
        print(f"  ❌ [{record.id}] {record.file_name}: {record.error_message}")
    return 1 if failed else 0


def cmd_run(config: Config) -> int:
    """Run the sync and report workers until SIGINT/SIGTERM."""
    if not _check_config(config):
        return 1

    store = StateStore(config.state_db_path)
    store.record_startup(
        provider=config.provider.value,
        export_start_date=config.export_start_date.strftime("%Y-%m-%d %H:%M:%S"),
        version=__version__,
    )

    stop_event = threading.Event()
    integration = build_integration(config)

    sync_worker = PatientSyncWorker(
        PatientSyncService(integration, store, config),
        store,
        interval_seconds=config.sync.interval_minutes * 60,
        initial_delay_seconds=config.sync.initial_delay_seconds,
        stop_event=stop_event,
    )
    inbox_worker = ReportInboxWorker(
        _build_queue(config, store, integration, stop_event),
        config.reports.inbox_dir,
        file_pattern=config.reports.file_pattern,
        rescan_interval_seconds=config.reports.rescan_interval_seconds,
        file_ready_timeout_seconds=config.reports.file_ready_timeout_seconds,
        stop_event=stop_event,
        store=store,
    )

    def _handle_signal(signum, frame):
        logger.info("Received signal %d, shutting down", signum)
        inbox_worker.stop()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    print(f"🚀 PMS bridge {__version__} running ({config.provider.value}), Ctrl+C to stop")
    sync_worker.start()
    inbox_worker.start()

    try:
        while not stop_event.wait(1.0):
            pass
    finally:
        sync_worker.join()
        inbox_worker.join()
        integration.close()

    print("✓ Stopped")
    return 0


def cmd_status(config: Config) -> int:
    """Show store statistics."""
    store = StateStore(config.state_db_path)
    stats = store.get_stats()

    print("\n📊 Bridge Status")
    print("=" * 40)
    print(f"  Patients:               {stats['patients']}")
    print(f"  Insurance records:      {stats['insurance']}")
    print(f"  Last export date:       {stats['last_export_date'] or 'never'}")
    print(f"  Last sync time:         {stats['last_sync_time'] or 'never'}")
    print(f"  Reports total:          {stats['reports_total']}")
    print(f"  Reports succeeded:      {stats['reports_success']}")
    print(f"  Reports failed:         {stats['reports_failed']}")
    pending = stats["reports_total"] - stats["reports_success"] - stats["reports_failed"]
    print(f"  Reports in progress:    {pending}")
    print()

    return 0


def cmd_reports(config: Config, status: str | None, limit: int) -> int:
    """List recent report records."""
    store = StateStore(config.state_db_path)
    records = store.list_reports(ReportStatus(status) if status else None, limit=limit)

    if not records:
        print("No reports found")
        return 0

    for record in records:
        icon = {"SUCCESS": "✓", "FAILED": "❌"}.get(record.status.value, "⏳")
        line = f"  {icon} [{record.id}] {record.file_name} {record.status.value}"
        if record.patient_name:
            line += f" ({record.patient_name})"
        if record.error_message:
            line += f": {record.error_message}"
        print(line)

    print(f"\n✓ {len(records)} report(s)")
    return 0


def main(args: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_cli()
    parsed = parser.parse_args(args)

    if not parsed.command:
        setup_logging(parsed.verbose)
        parser.print_help()
        return 1

    if parsed.command == "init-config":
        setup_logging(parsed.verbose)
        return cmd_init_config(parsed.config, parsed.force)

    # Load config
    try:
        config = load_config(parsed.config)
    except Exception as e:
        setup_logging(parsed.verbose)
        print(f"❌ Failed to load config: {e}")
        return 1

    setup_logging(parsed.verbose, config.log_dir)

    # Route to command
    if parsed.command == "sync":
        return cmd_sync(config)
    elif parsed.command == "import-reports":
        return cmd_import_reports(config)
    elif parsed.command == "run":
        return cmd_run(config)
    elif parsed.command == "status":
        return cmd_status(config)
    elif parsed.command == "reports":
        return cmd_reports(config, parsed.status, parsed.limit)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
