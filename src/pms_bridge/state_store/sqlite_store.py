"""
SQLite-based state store implementation.

Tables:
- patients: Patients imported from the PMS
- insurance: Insurance plans of imported patients
- reports: Audit trail of every report file that entered the pipeline
- config: Key/value settings and sync cursor
"""

import logging
import sqlite3
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime, timezone
from pathlib import Path

from ..schemas.patient import InsuranceRecord, PatientRecord
from ..schemas.report import ALLOWED_PREDECESSORS, ReportStatus

logger = logging.getLogger(__name__)

# Config keys owned by the sync engine and startup
LAST_EXPORT_DATE_KEY = "LastExportDate"
LAST_PATIENT_COUNT_KEY = "LastPatientCount"
LAST_SYNC_TIME_KEY = "LastSyncTime"

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def utc_timestamp(moment: datetime | None = None) -> str:
    """Format a UTC timestamp the way every table stores it."""
    moment = moment or datetime.now(timezone.utc)
    return moment.strftime(TIMESTAMP_FORMAT)


def parse_utc_timestamp(text: str) -> float:
    """Epoch seconds of a stored UTC timestamp."""
    return datetime.strptime(text, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc).timestamp()


@dataclass
class ReportRecord:
    """Record of a report file moving through the import pipeline."""

    id: int
    file_name: str
    original_path: str
    patient_name: str | None
    destination_path: str | None
    status: ReportStatus
    error_message: str | None
    created_at: str
    processed_at: str | None
    imported_at: str | None
    completed_at: str | None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ReportRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            file_name=row["file_name"],
            original_path=row["original_path"],
            patient_name=row["patient_name"],
            destination_path=row["destination_path"],
            status=ReportStatus(row["status"]),
            error_message=row["error_message"],
            created_at=row["created_at"],
            processed_at=row["processed_at"],
            imported_at=row["imported_at"],
            completed_at=row["completed_at"],
        )


def _patient_from_row(row: sqlite3.Row) -> PatientRecord:
    birth_date = row["birth_date"]
    return PatientRecord(
        id=row["id"],
        first_name=row["first_name"],
        last_name=row["last_name"],
        phone=row["phone"],
        email=row["email"] or "",
        address=row["address"],
        city=row["city"],
        state=row["state"],
        zip_code=row["zip_code"],
        birth_date=date.fromisoformat(birth_date) if birth_date else None,
        report_ready=bool(row["report_ready"]),
    )


def _insurance_from_row(row: sqlite3.Row) -> InsuranceRecord:
    return InsuranceRecord(
        patient_id=row["patient_id"],
        carrier_name=row["carrier_name"],
        policy_number=row["policy_number"],
        group_number=row["group_number"] or "",
        policyholder_name=row["policyholder_name"],
        relationship=row["relationship"],
        priority=row["priority"],
        is_active=bool(row["is_active"]),
    )


class StateStore:
    """
    SQLite-based state store.

    Provides persistent tracking of:
    - Imported patients and their insurance
    - Report pipeline records (never deleted)
    - Key/value config, including the sync cursor

    Every public method opens its own connection. Bulk inserts run in a
    single transaction and roll back entirely on the first failing row.
    """

    SCHEMA_VERSION = 1

    def __init__(self, db_path: Path | str, run_migrations: bool = True):
        """
        Initialize state store.

        Args:
            db_path: Path to SQLite database file
            run_migrations: Whether to run pending migrations (default True)
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()
        if run_migrations:
            self._run_migrations()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS patients (
                    id INTEGER PRIMARY KEY,
                    first_name TEXT NOT NULL,
                    last_name TEXT NOT NULL,
                    phone TEXT NOT NULL,
                    email TEXT,
                    address TEXT NOT NULL,
                    city TEXT NOT NULL,
                    state TEXT NOT NULL,
                    zip_code TEXT NOT NULL,
                    birth_date TEXT,
                    report_ready INTEGER NOT NULL DEFAULT 0
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS insurance (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    patient_id INTEGER NOT NULL,
                    carrier_name TEXT NOT NULL,
                    policy_number TEXT NOT NULL,
                    group_number TEXT,
                    policyholder_name TEXT NOT NULL,
                    relationship TEXT NOT NULL,
                    priority TEXT NOT NULL,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY (patient_id) REFERENCES patients(id),
                    UNIQUE (patient_id, carrier_name, policy_number)
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS reports (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    file_name TEXT NOT NULL,
                    original_path TEXT NOT NULL,
                    patient_name TEXT,
                    destination_path TEXT,
                    status TEXT NOT NULL,
                    error_message TEXT,
                    created_at TEXT NOT NULL,
                    processed_at TEXT,
                    imported_at TEXT,
                    completed_at TEXT
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS config (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
            """
            )

            conn.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)", (self.SCHEMA_VERSION,)
            )

    def _run_migrations(self) -> None:
        """Run pending database migrations."""
        from .migrations import MigrationRunner

        conn = self._get_connection()
        try:
            runner = MigrationRunner(conn)
            runner.run_pending()
        finally:
            conn.close()

    # Patient methods

    def get_all_patient_ids(self) -> set[int]:
        """Get the ids of every locally known patient."""
        with self._transaction() as conn:
            rows = conn.execute("SELECT id FROM patients").fetchall()
            return {row["id"] for row in rows}

    def bulk_insert_patients(self, patients: Iterable[PatientRecord]) -> int:
        """
        Insert patients in one transaction.

        Any failing row (e.g. duplicate id) rolls back the whole batch and
        the sqlite3 error propagates.

        Returns:
            Number of patients inserted
        """
        rows = [
            (
                p.id,
                p.first_name,
                p.last_name,
                p.phone,
                p.email,
                p.address,
                p.city,
                p.state,
                p.zip_code,
                p.birth_date.isoformat() if p.birth_date else None,
                int(p.report_ready),
            )
            for p in patients
        ]
        if not rows:
            return 0

        with self._transaction() as conn:
            conn.executemany(
                """
                INSERT INTO patients
                (id, first_name, last_name, phone, email, address, city, state,
                 zip_code, birth_date, report_ready)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
                rows,
            )

        logger.info("Saved %d patients", len(rows))
        return len(rows)

    def get_patient(self, patient_id: int) -> PatientRecord | None:
        """Get a patient by id."""
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM patients WHERE id = ?", (patient_id,)).fetchone()
            return _patient_from_row(row) if row else None

    def count_patients(self) -> int:
        with self._transaction() as conn:
            return conn.execute("SELECT COUNT(*) FROM patients").fetchone()[0]

    # Insurance methods

    def bulk_insert_insurance(self, plans: Iterable[InsuranceRecord]) -> int:
        """
        Insert insurance plans in one transaction.

        A plan with the same (patient_id, carrier_name, policy_number)
        replaces the existing row. Any other failure rolls back the batch.

        Returns:
            Number of plans written
        """
        now = utc_timestamp()
        rows = [
            (
                plan.patient_id,
                plan.carrier_name,
                plan.policy_number,
                plan.group_number,
                plan.policyholder_name,
                plan.relationship,
                plan.priority,
                int(plan.is_active),
                now,
            )
            for plan in plans
        ]
        if not rows:
            return 0

        with self._transaction() as conn:
            conn.executemany(
                """
                INSERT OR REPLACE INTO insurance
                (patient_id, carrier_name, policy_number, group_number,
                 policyholder_name, relationship, priority, is_active, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
                rows,
            )

        logger.info("Saved %d insurance records", len(rows))
        return len(rows)

    def get_insurance_for_patient(self, patient_id: int) -> list[InsuranceRecord]:
        """Get insurance plans for a patient, primary first."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM insurance WHERE patient_id = ? ORDER BY priority ASC, id ASC",
                (patient_id,),
            ).fetchall()
            return [_insurance_from_row(row) for row in rows]

    # Report methods

    def create_report(self, file_name: str, original_path: str) -> int:
        """Create an UPLOADED report record. Returns the report ID."""
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO reports (file_name, original_path, status, created_at)
                VALUES (?, ?, ?, ?)
            """,
                (file_name, original_path, ReportStatus.UPLOADED.value, utc_timestamp()),
            )
            return cursor.lastrowid or 0

    def _advance_report(
        self,
        report_id: int,
        status: ReportStatus,
        assignments: str,
        params: tuple,
    ) -> bool:
        """
        Move a report to `status` if its current status allows it.

        Returns True if the row changed. Out-of-order transitions and updates
        to terminal rows are refused.
        """
        allowed = [s.value for s in ALLOWED_PREDECESSORS[status]]
        placeholders = ", ".join("?" for _ in allowed)

        with self._transaction() as conn:
            cursor = conn.execute(
                f"UPDATE reports SET status = ?, {assignments} "
                f"WHERE id = ? AND status IN ({placeholders})",
                (status.value, *params, report_id, *allowed),
            )
            updated = cursor.rowcount > 0

        if not updated:
            logger.warning(f"Refused report {report_id} transition to {status.value}")
        return updated

    def mark_report_processed(self, report_id: int, patient_name: str) -> bool:
        """UPLOADED → PROCESSED, recording the extracted patient name."""
        return self._advance_report(
            report_id,
            ReportStatus.PROCESSED,
            "patient_name = ?, processed_at = ?",
            (patient_name, utc_timestamp()),
        )

    def mark_report_imported(self, report_id: int, destination_path: str) -> bool:
        """PROCESSED → IMPORTED, recording where the copy landed."""
        return self._advance_report(
            report_id,
            ReportStatus.IMPORTED,
            "destination_path = ?, imported_at = ?",
            (destination_path, utc_timestamp()),
        )

    def mark_report_success(self, report_id: int) -> bool:
        """IMPORTED → SUCCESS."""
        return self._advance_report(
            report_id,
            ReportStatus.SUCCESS,
            "completed_at = ?",
            (utc_timestamp(),),
        )

    def mark_report_failed(self, report_id: int, error_message: str) -> bool:
        """Any non-terminal status → FAILED."""
        return self._advance_report(
            report_id,
            ReportStatus.FAILED,
            "error_message = ?, completed_at = ?",
            (error_message, utc_timestamp()),
        )

    def get_report(self, report_id: int) -> ReportRecord | None:
        """Get a report record by ID."""
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM reports WHERE id = ?", (report_id,)).fetchone()
            return ReportRecord.from_row(row) if row else None

    def list_reports(
        self,
        status: ReportStatus | None = None,
        limit: int = 50,
    ) -> list[ReportRecord]:
        """List report records, newest first."""
        with self._transaction() as conn:
            if status is None:
                rows = conn.execute(
                    "SELECT * FROM reports ORDER BY id DESC LIMIT ?", (limit,)
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM reports WHERE status = ? ORDER BY id DESC LIMIT ?",
                    (status.value, limit),
                ).fetchall()
            return [ReportRecord.from_row(row) for row in rows]

    def get_successful_report_files(self) -> list[tuple[str, str]]:
        """
        Original path and latest completion time of every SUCCESS report.

        These are the cleanup candidates. A file at that path with a newer
        mtime is a different report.
        """
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT original_path, MAX(completed_at) AS completed_at FROM reports
                WHERE status = ? AND original_path IS NOT NULL AND completed_at IS NOT NULL
                GROUP BY original_path
                ORDER BY original_path
            """,
                (ReportStatus.SUCCESS.value,),
            ).fetchall()
            return [(row["original_path"], row["completed_at"]) for row in rows]

    def get_latest_report_for_path(self, original_path: str) -> ReportRecord | None:
        """Most recent report record created for a source path."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM reports WHERE original_path = ? ORDER BY id DESC LIMIT 1",
                (original_path,),
            ).fetchone()
            return ReportRecord.from_row(row) if row else None

    # Config methods

    def get_config(self, key: str, default: str | None = None) -> str | None:
        """Get a config value."""
        with self._transaction() as conn:
            row = conn.execute("SELECT value FROM config WHERE key = ?", (key,)).fetchone()
            return row["value"] if row else default

    def set_config(self, key: str, value: str) -> None:
        """Save or update a config value."""
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO config (key, value) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value
            """,
                (key, value),
            )

    def set_config_values(self, values: dict[str, str]) -> None:
        """Save several config values atomically."""
        with self._transaction() as conn:
            conn.executemany(
                """
                INSERT INTO config (key, value) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value
            """,
                list(values.items()),
            )

    def record_startup(self, provider: str, export_start_date: str, version: str) -> None:
        """Persist the effective startup configuration."""
        self.set_config_values(
            {
                "Provider": provider,
                "ExportStartDate": export_start_date,
                "LastInitialized": utc_timestamp(),
                "Version": version,
            }
        )

    # Statistics

    def get_stats(self) -> dict[str, int | str | None]:
        """Get store statistics."""
        with self._transaction() as conn:
            stats: dict[str, int | str | None] = {
                "patients": conn.execute("SELECT COUNT(*) FROM patients").fetchone()[0],
                "insurance": conn.execute("SELECT COUNT(*) FROM insurance").fetchone()[0],
                "reports_total": conn.execute("SELECT COUNT(*) FROM reports").fetchone()[0],
            }
            for status in ReportStatus:
                stats[f"reports_{status.value.lower()}"] = conn.execute(
                    "SELECT COUNT(*) FROM reports WHERE status = ?", (status.value,)
                ).fetchone()[0]

        stats["last_export_date"] = self.get_config(LAST_EXPORT_DATE_KEY)
        stats["last_sync_time"] = self.get_config(LAST_SYNC_TIME_KEY)
        return stats
