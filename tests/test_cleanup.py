"""Tests for the cleanup worker."""

import os
import time
from pathlib import Path
from unittest.mock import patch

import pytest

from pms_bridge.services.cleanup import CleanupWorker
from pms_bridge.state_store import StateStore


def add_success(store, path):
    report_id = store.create_report(Path(path).name, str(path))
    store.mark_report_processed(report_id, "A B")
    store.mark_report_imported(report_id, "/dest/x.pdf")
    store.mark_report_success(report_id)
    return report_id


class TestCleanupWorker:
    @pytest.fixture
    def store(self, temp_db):
        return StateStore(temp_db)

    def test_deletes_leftover_success_files(self, store, inbox):
        leftover = inbox / "left.pdf"
        leftover.write_bytes(b"%PDF")
        add_success(store, leftover)

        result = CleanupWorker(store).run()

        assert result.deleted == 1
        assert not leftover.exists()

    def test_missing_file_is_not_an_error(self, store, inbox):
        add_success(store, inbox / "already_gone.pdf")

        result = CleanupWorker(store).run()

        assert result.missing == 1
        assert result.failed == 0

    def test_failed_reports_are_left_alone(self, store, inbox):
        failed = inbox / "Report_.pdf"
        failed.write_bytes(b"%PDF")
        report_id = store.create_report(failed.name, str(failed))
        store.mark_report_failed(report_id, "no name")

        result = CleanupWorker(store).run()

        assert result.deleted == 0
        assert failed.exists()

    def test_delete_failure_keeps_status(self, store, inbox):
        locked = inbox / "locked.pdf"
        locked.write_bytes(b"%PDF")
        report_id = add_success(store, locked)

        with patch.object(Path, "unlink", side_effect=PermissionError("in use")):
            result = CleanupWorker(store).run()

        assert result.failed == 1
        assert store.get_report(report_id).status.value == "SUCCESS"

    def test_newer_file_with_same_name_is_kept(self, store, inbox):
        report = inbox / "Report_Allen_Allowed.pdf"
        report.write_bytes(b"%PDF old")
        add_success(store, report)

        # A new scan lands under the same name after the import finished
        report.write_bytes(b"%PDF new")
        later = time.time() + 120
        os.utime(report, (later, later))

        result = CleanupWorker(store).run()

        assert result.skipped == 1
        assert result.deleted == 0
        assert report.read_bytes() == b"%PDF new"

    def test_queued_paths_are_skipped(self, store, inbox):
        queued = inbox / "queued.pdf"
        queued.write_bytes(b"%PDF")
        add_success(store, queued)

        result = CleanupWorker(store).run(skip_paths=[queued])

        assert result.skipped == 1
        assert queued.exists()
