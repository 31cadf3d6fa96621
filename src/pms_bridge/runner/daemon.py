"""
Long-running workers for the `run` command.

- PatientSyncWorker: runs a sync cycle after an initial delay, then on a
  fixed interval
- ReportInboxWorker: watches the reports inbox with watchdog, re-scans it
  periodically, and drains the report queue

Both stop when the shared stop event is set; a running sync cycle or
pipeline item is always finished first.
"""

import fnmatch
import logging
import sqlite3
import threading
from collections.abc import Callable
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from ..schemas.report import ReportStatus
from ..services.cleanup import unchanged_since
from ..services.patient_sync import PatientSyncService, SyncResult
from ..services.report_queue import ReportQueue
from ..state_store.sqlite_store import LAST_SYNC_TIME_KEY, StateStore, utc_timestamp

logger = logging.getLogger(__name__)


def wait_for_file_ready(
    path: Path,
    timeout: float = 10.0,
    poll_interval: float = 0.5,
    stop_event: threading.Event | None = None,
) -> bool:
    """
    Wait until a file exists and its size stops changing.

    Returns:
        True when the file looks complete, False on timeout, stop or if the
        file disappeared
    """
    stop_event = stop_event or threading.Event()
    waited = 0.0
    last_size = -1

    while waited <= timeout:
        try:
            size = path.stat().st_size
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.debug("Cannot stat %s yet: %s", path, e)
            size = -1

        if size >= 0 and size == last_size:
            return True
        last_size = size

        if stop_event.wait(poll_interval):
            return False
        waited += poll_interval

    logger.warning("Timed out waiting for %s to be ready", path.name)
    return False


class PatientSyncWorker(threading.Thread):
    """Runs patient sync cycles on a schedule."""

    def __init__(
        self,
        service: PatientSyncService,
        store: StateStore,
        interval_seconds: float,
        initial_delay_seconds: float,
        stop_event: threading.Event,
    ):
        super().__init__(name="patient-sync", daemon=True)
        self.service = service
        self.store = store
        self.interval_seconds = interval_seconds
        self.initial_delay_seconds = initial_delay_seconds
        self.stop_event = stop_event

    def run_once(self) -> SyncResult:
        """Run one cycle and record LastSyncTime."""
        result = self.service.run_cycle()
        try:
            self.store.set_config(LAST_SYNC_TIME_KEY, utc_timestamp())
        except sqlite3.Error as e:
            logger.error("Could not record %s: %s", LAST_SYNC_TIME_KEY, e)
        return result

    def run(self) -> None:
        logger.info(
            "Patient sync worker started (every %.0f min)", self.interval_seconds / 60
        )
        if self.stop_event.wait(self.initial_delay_seconds):
            return

        while not self.stop_event.is_set():
            self.run_once()
            if self.stop_event.wait(self.interval_seconds):
                break

        logger.info("Patient sync worker stopped")


class _ReportFileHandler(FileSystemEventHandler):
    """Forwards new files in the inbox to the worker."""

    def __init__(self, worker: "ReportInboxWorker"):
        super().__init__()
        self.worker = worker

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.worker.handle_new_file(Path(str(event.src_path)))

    def on_moved(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.worker.handle_new_file(Path(str(event.dest_path)))


class ReportInboxWorker(threading.Thread):
    """Feeds report files from the inbox into the queue and drains it."""

    def __init__(
        self,
        queue: ReportQueue,
        inbox_dir: Path,
        file_pattern: str = "*.pdf",
        rescan_interval_seconds: float = 30.0,
        file_ready_timeout_seconds: float = 10.0,
        stop_event: threading.Event | None = None,
        observer_factory: Callable[[], Observer] = Observer,
        store: StateStore | None = None,
    ):
        super().__init__(name="report-inbox", daemon=True)
        self.queue = queue
        self.inbox_dir = Path(inbox_dir)
        self.file_pattern = file_pattern
        self.rescan_interval_seconds = rescan_interval_seconds
        self.file_ready_timeout_seconds = file_ready_timeout_seconds
        self.stop_event = stop_event or queue.stop_event
        self._observer_factory = observer_factory
        self.store = store
        self._wake = threading.Event()

    def matches(self, path: Path) -> bool:
        return fnmatch.fnmatch(path.name.lower(), self.file_pattern.lower())

    def already_handled(self, path: Path) -> bool:
        """
        True if the file's latest report finished and the file has not
        changed since.

        FAILED files stay in the inbox for a human to look at, and SUCCESS
        leftovers belong to the cleanup worker.
        """
        if self.store is None:
            return False
        record = self.store.get_latest_report_for_path(str(path.absolute()))
        if record is None or record.completed_at is None:
            return False
        if record.status not in (ReportStatus.SUCCESS, ReportStatus.FAILED):
            return False
        return unchanged_since(path, record.completed_at)

    def scan(self) -> int:
        """
        Queue every matching file in the inbox, oldest first.

        Files whose last attempt already finished are skipped until they
        are modified.

        Returns:
            Number of newly queued files
        """
        if not self.inbox_dir.is_dir():
            logger.warning("Reports inbox does not exist: %s", self.inbox_dir)
            return 0

        files = []
        for entry in self.inbox_dir.iterdir():
            if not entry.is_file() or not self.matches(entry):
                continue
            try:
                if self.already_handled(entry):
                    continue
                files.append((entry.stat().st_mtime, entry))
            except OSError:
                continue  # removed since iterdir

        queued = 0
        for _, path in sorted(files, key=lambda item: (item[0], item[1].name)):
            if self.queue.enqueue(path):
                queued += 1

        if queued:
            logger.info("Queued %d reports from inbox scan", queued)
        return queued

    def handle_new_file(self, path: Path) -> bool:
        """Queue a file reported by the watcher once it is fully written."""
        if not self.matches(path):
            return False
        logger.debug("New report detected: %s", path.name)

        if not wait_for_file_ready(
            path, timeout=self.file_ready_timeout_seconds, stop_event=self.stop_event
        ):
            return False

        queued = self.queue.enqueue(path)
        if queued:
            self._wake.set()
        return queued

    def stop(self) -> None:
        self.stop_event.set()
        self._wake.set()

    def _drain(self) -> None:
        try:
            self.queue.drain_all()
        except Exception:
            logger.exception("Report queue drain failed")

    def run(self) -> None:
        self.inbox_dir.mkdir(parents=True, exist_ok=True)
        logger.info("Watching %s for %s", self.inbox_dir, self.file_pattern)

        self.scan()
        self._drain()

        observer = self._observer_factory()
        observer.schedule(_ReportFileHandler(self), str(self.inbox_dir), recursive=False)
        observer.start()

        try:
            while not self.stop_event.is_set():
                self._wake.wait(self.rescan_interval_seconds)
                self._wake.clear()
                if self.stop_event.is_set():
                    break
                self.scan()
                self._drain()
        finally:
            observer.stop()
            observer.join()
            logger.info("Report inbox worker stopped")
