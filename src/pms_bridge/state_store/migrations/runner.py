"""
Migration runner for versioned database schema changes.

Migration modules live next to this file and are named {version}_{name}.py,
e.g. 001_report_indexes.py. Each one defines:
- VERSION: int
- NAME: str
- upgrade(conn: Connection) -> None
"""

import importlib
import logging
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)

_PACKAGE = "pms_bridge.state_store.migrations"


@dataclass
class Migration:
    """A single schema migration."""

    version: int
    name: str
    upgrade: Callable[[sqlite3.Connection], None]


def get_all_migrations() -> list[Migration]:
    """Load every migration module, sorted by version."""
    migrations = []

    for py_file in sorted(Path(__file__).parent.glob("[0-9][0-9][0-9]_*.py")):
        module_name = py_file.stem
        try:
            module = importlib.import_module(f"{_PACKAGE}.{module_name}")
        except ImportError as e:
            logger.warning(f"Failed to load migration {module_name}: {e}")
            continue

        migrations.append(
            Migration(
                version=module.VERSION,
                name=module.NAME,
                upgrade=module.upgrade,
            )
        )

    return sorted(migrations, key=lambda m: m.version)


class MigrationRunner:
    """Applies pending migrations in version order on one connection."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS migrations (
                version INTEGER PRIMARY KEY,
                name TEXT NOT NULL,
                applied_at TEXT NOT NULL
            )
        """
        )
        self.conn.commit()

    def get_applied_versions(self) -> set[int]:
        rows = self.conn.execute("SELECT version FROM migrations").fetchall()
        return {row[0] for row in rows}

    def get_current_version(self) -> int:
        """Highest applied version, 0 when none."""
        result = self.conn.execute("SELECT MAX(version) FROM migrations").fetchone()[0]
        return result or 0

    def apply_migration(self, migration: Migration) -> None:
        """Apply one migration and record it, rolling back on failure."""
        logger.info(f"Applying migration {migration.version}: {migration.name}")
        try:
            migration.upgrade(self.conn)
            applied_at = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
            self.conn.execute(
                "INSERT INTO migrations (version, name, applied_at) VALUES (?, ?, ?)",
                (migration.version, migration.name, applied_at),
            )
            self.conn.commit()
        except Exception as e:
            self.conn.rollback()
            logger.error(f"Migration {migration.version} failed: {e}")
            raise

    def run_pending(self) -> list[int]:
        """
        Run all pending migrations.

        Returns:
            Versions applied by this call
        """
        applied = self.get_applied_versions()
        newly_applied = []
        for migration in get_all_migrations():
            if migration.version in applied:
                continue
            self.apply_migration(migration)
            newly_applied.append(migration.version)

        if newly_applied:
            logger.info(f"Applied {len(newly_applied)} migrations: {newly_applied}")
        else:
            logger.debug("No pending migrations")
        return newly_applied
