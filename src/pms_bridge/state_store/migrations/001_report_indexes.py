"""
Migration 001: Indexes for report status scans and insurance lookups.

The cleanup worker selects SUCCESS reports on every drain, and the status
command lists reports by status.
"""

import sqlite3

VERSION = 1
NAME = "report_indexes"


def upgrade(conn: sqlite3.Connection) -> None:
    conn.execute("CREATE INDEX IF NOT EXISTS idx_reports_status ON reports(status)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_insurance_patient ON insurance(patient_id)")
