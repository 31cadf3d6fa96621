"""
Cleanup of report files that were already imported.

Runs before each queue drain and deletes source files whose report reached
SUCCESS but are still on disk (e.g. the delete failed under the lenient
policy). Stored statuses are never changed here.

A file modified after its report completed is a new report dropped under
the same name and is kept, as is any path currently waiting in the queue.
"""

import logging
from collections.abc import Collection
from dataclasses import dataclass
from pathlib import Path

from pms_bridge.state_store.sqlite_store import StateStore, parse_utc_timestamp

logger = logging.getLogger(__name__)


def unchanged_since(path: Path, completed_at: str) -> bool:
    """
    True if the file was last modified no later than ``completed_at``.

    Stored timestamps have whole-second precision, so the mtime is compared
    at the same precision.
    """
    return int(path.stat().st_mtime) <= parse_utc_timestamp(completed_at)


@dataclass
class CleanupResult:
    deleted: int = 0
    missing: int = 0
    skipped: int = 0
    failed: int = 0


class CleanupWorker:
    """Deletes leftover source files of successful reports."""

    def __init__(self, store: StateStore):
        self.store = store

    def run(self, skip_paths: Collection[Path] = ()) -> CleanupResult:
        """
        Delete leftovers.

        Args:
            skip_paths: Absolute paths that must not be touched (queued files)
        """
        result = CleanupResult()
        skip = {Path(p).absolute() for p in skip_paths}

        for original_path, completed_at in self.store.get_successful_report_files():
            path = Path(original_path)
            if path.absolute() in skip:
                result.skipped += 1
                logger.debug("Keeping queued report %s", path)
                continue
            try:
                if not path.exists():
                    result.missing += 1
                    continue
                if not unchanged_since(path, completed_at):
                    result.skipped += 1
                    logger.debug("Keeping %s, modified after its import", path)
                    continue
                path.unlink()
                result.deleted += 1
                logger.info("Deleted processed report %s", path)
            except OSError as e:
                result.failed += 1
                logger.error("Failed to delete processed report %s: %s", path, e)

        if result.deleted or result.failed:
            logger.info(
                "Cleanup finished: %d deleted, %d failed", result.deleted, result.failed
            )
        return result
