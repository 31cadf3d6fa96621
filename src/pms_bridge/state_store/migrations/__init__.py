"""
Database migrations.

Versioned schema changes applied on top of the base schema created by
StateStore._init_db. Applied versions are tracked in the `migrations` table.
"""

from .runner import Migration, MigrationRunner, get_all_migrations

__all__ = ["Migration", "MigrationRunner", "get_all_migrations"]
