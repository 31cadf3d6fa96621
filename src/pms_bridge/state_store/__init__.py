"""
State Store (SQLite-based).

Local persistent DB for tracking:
- Patients and insurance imported from the PMS
- Report files moving through the import pipeline
- Sync cursor and startup settings

Report rows are an audit trail and are never deleted.
"""

from .sqlite_store import (
    LAST_EXPORT_DATE_KEY,
    LAST_PATIENT_COUNT_KEY,
    LAST_SYNC_TIME_KEY,
    TIMESTAMP_FORMAT,
    ReportRecord,
    StateStore,
    parse_utc_timestamp,
    utc_timestamp,
)

__all__ = [
    "LAST_EXPORT_DATE_KEY",
    "LAST_PATIENT_COUNT_KEY",
    "LAST_SYNC_TIME_KEY",
    "TIMESTAMP_FORMAT",
    "ReportRecord",
    "StateStore",
    "parse_utc_timestamp",
    "utc_timestamp",
]
