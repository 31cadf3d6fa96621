"""
CLI runner module.

Provides commands:
- init-config: Write a default config file
- sync: One patient sync cycle
- import-reports: Process the reports inbox once
- run: Sync and report workers until stopped
- status / reports: Inspect the state store
"""

from .main import create_cli, main

__all__ = [
    "create_cli",
    "main",
]
