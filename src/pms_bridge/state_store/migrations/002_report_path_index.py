"""
Migration 002: Index reports by original path.

Cleanup and the inbox re-scan look up the latest report of a file path.
"""

import sqlite3

VERSION = 2
NAME = "report_path_index"


def upgrade(conn: sqlite3.Connection) -> None:
    conn.execute("CREATE INDEX IF NOT EXISTS idx_reports_original_path ON reports(original_path)")
