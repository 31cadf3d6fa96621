"""
In-memory report queue.

Deduplicates paths across the pending and in-flight sets and drains them
one at a time through the pipeline. Only one drain runs at a time; a drain
requested while another is running returns immediately.
"""

import logging
import threading
from collections import deque
from pathlib import Path

from pms_bridge.services.cleanup import CleanupWorker
from pms_bridge.services.report_pipeline import ReportPipeline

logger = logging.getLogger(__name__)


class ReportQueue:
    """Deduplicating, single-flight FIFO of report paths."""

    def __init__(
        self,
        pipeline: ReportPipeline,
        cleanup: CleanupWorker | None = None,
        pause_seconds: float = 0.5,
        stop_event: threading.Event | None = None,
    ):
        self.pipeline = pipeline
        self.cleanup = cleanup
        self.pause_seconds = pause_seconds
        self.stop_event = stop_event or threading.Event()

        # Guards _pending, _pending_set and _in_flight
        self._lock = threading.Lock()
        self._drain_lock = threading.Lock()
        self._pending: deque[Path] = deque()
        self._pending_set: set[Path] = set()
        self._in_flight: set[Path] = set()

    @staticmethod
    def _key(path: Path | str) -> Path:
        return Path(path).absolute()

    def enqueue(self, path: Path | str) -> bool:
        """
        Add a path unless it is already pending or in flight.

        Returns:
            True if the path was newly queued
        """
        key = self._key(path)
        with self._lock:
            if key in self._pending_set or key in self._in_flight:
                logger.debug("Already queued: %s", key.name)
                return False
            self._pending.append(key)
            self._pending_set.add(key)
        logger.debug("Queued %s", key.name)
        return True

    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def is_in_flight(self, path: Path | str) -> bool:
        with self._lock:
            return self._key(path) in self._in_flight

    @property
    def is_draining(self) -> bool:
        return self._drain_lock.locked()

    def _pop(self) -> Path | None:
        with self._lock:
            if not self._pending:
                return None
            path = self._pending.popleft()
            self._pending_set.discard(path)
            self._in_flight.add(path)
            return path

    def drain_all(self) -> int:
        """
        Process every pending path.

        Runs the cleanup worker first, sparing paths that are queued.
        Stops early, leaving the rest pending, when the stop event is set.

        Returns:
            Number of paths handed to the pipeline (0 if a drain was
            already running)
        """
        if not self._drain_lock.acquire(blocking=False):
            logger.debug("Drain already running, skipping")
            return 0

        try:
            if self.cleanup is not None:
                with self._lock:
                    queued = set(self._pending_set)
                try:
                    self.cleanup.run(skip_paths=queued)
                except Exception as e:
                    logger.error("Cleanup before drain failed: %s", e)

            processed = 0
            while not self.stop_event.is_set():
                path = self._pop()
                if path is None:
                    break

                try:
                    if not path.exists():
                        logger.warning("Report file no longer exists, dropping: %s", path)
                        continue
                    status = self.pipeline.process(path)
                    processed += 1
                    logger.debug("Report %s finished as %s", path.name, status)
                finally:
                    with self._lock:
                        self._in_flight.discard(path)

                if self.pause_seconds > 0 and self.pending_count():
                    self.stop_event.wait(self.pause_seconds)

            if processed:
                logger.info("Drained %d reports", processed)
            return processed
        finally:
            self._drain_lock.release()
