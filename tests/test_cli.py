"""Tests for CLI commands."""

import logging
from unittest.mock import patch

import pytest

from conftest import make_patient
from pms_bridge.config import PmsProvider
from pms_bridge.runner.main import (
    LevelRangeFilter,
    cmd_import_reports,
    cmd_init_config,
    cmd_reports,
    cmd_status,
    cmd_sync,
    create_cli,
    main,
)
from pms_bridge.schemas.report import ReportStatus
from pms_bridge.services.patient_sync import SyncResult
from pms_bridge.state_store import StateStore


class TestCLICommandRegistry:
    """Tests for CLI command registration."""

    @pytest.mark.parametrize("command", ["init-config", "sync", "import-reports", "run", "status", "reports"])
    def test_command_registered(self, command):
        args = create_cli().parse_args([command])
        assert args.command == command

    def test_reports_options(self):
        args = create_cli().parse_args(["reports", "--status", "failed", "--limit", "5"])

        assert args.status == "FAILED"
        assert args.limit == 5

    def test_reports_rejects_unknown_status(self):
        with pytest.raises(SystemExit):
            create_cli().parse_args(["reports", "--status", "lost"])

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 1


class TestCommands:
    def test_init_config(self, tmp_path, capsys):
        path = tmp_path / "config.yaml"

        assert cmd_init_config(path) == 0
        assert path.exists()
        # Refuses to overwrite without --force
        assert cmd_init_config(path) == 1
        assert cmd_init_config(path, force=True) == 0

    def test_init_config_via_main(self, tmp_path):
        path = tmp_path / "config.yaml"

        assert main(["-c", str(path), "init-config"]) == 0
        assert path.exists()

    def test_status(self, config, capsys):
        StateStore(config.state_db_path).bulk_insert_patients([make_patient(1)])

        assert cmd_status(config) == 0
        out = capsys.readouterr().out
        assert "Patients:               1" in out
        assert "never" in out

    def test_reports_listing(self, config, capsys):
        store = StateStore(config.state_db_path)
        report_id = store.create_report("Report_.pdf", "/inbox/Report_.pdf")
        store.mark_report_failed(report_id, "Could not extract patient name from file name")

        assert cmd_reports(config, "FAILED", 10) == 0
        out = capsys.readouterr().out
        assert "Report_.pdf" in out
        assert "Could not extract" in out

        assert cmd_reports(config, "SUCCESS", 10) == 0
        assert "No reports found" in capsys.readouterr().out

    def test_sync_rejects_invalid_config(self, config, capsys):
        config.opendental.image_path = None

        assert cmd_sync(config) == 1
        assert "image_path is required" in capsys.readouterr().out

    def test_sync_reports_skip(self, config):
        with patch("pms_bridge.runner.main.PatientSyncService") as service_cls:
            service_cls.return_value.run_cycle.return_value = SyncResult(skipped=True)
            assert cmd_sync(config) == 1

    def test_sync_success(self, config, capsys):
        with patch("pms_bridge.runner.main.PatientSyncService") as service_cls:
            service_cls.return_value.run_cycle.return_value = SyncResult(
                fetched=3, new_patients=1, patients_imported=1, insurance_imported=2
            )
            assert cmd_sync(config) == 0
        assert "Sync complete" in capsys.readouterr().out

    def test_import_reports(self, config, image_root, capsys):
        (config.reports.inbox_dir / "DentalRay_Report_Allen_Allowed.pdf").write_bytes(b"%PDF")
        (config.reports.inbox_dir / "Report_.pdf").write_bytes(b"%PDF")

        assert cmd_import_reports(config) == 1

        store = StateStore(config.state_db_path)
        statuses = sorted(r.status.value for r in store.list_reports())
        assert statuses == [ReportStatus.FAILED.value, ReportStatus.SUCCESS.value]
        assert len(list((image_root / "A" / "AllenAllowed_01").iterdir())) == 1
        assert "1 failed" in capsys.readouterr().out

    def test_import_reports_does_not_retry_unchanged_failures(self, config):
        (config.reports.inbox_dir / "Report_.pdf").write_bytes(b"%PDF")

        assert cmd_import_reports(config) == 1
        assert cmd_import_reports(config) == 0

        store = StateStore(config.state_db_path)
        assert [r.status for r in store.list_reports()] == [ReportStatus.FAILED]

    def test_unsupported_provider_import_fails_cleanly(self, config):
        config.provider = PmsProvider.EAGLESOFT
        (config.reports.inbox_dir / "Report_Allen_Allowed.pdf").write_bytes(b"%PDF")

        assert cmd_import_reports(config) == 1
        assert (config.reports.inbox_dir / "Report_Allen_Allowed.pdf").exists()


class TestLogging:
    def test_level_range_filter(self):
        warn_only = LevelRangeFilter(logging.WARNING, logging.WARNING)
        errors = LevelRangeFilter(logging.ERROR, logging.CRITICAL)

        def record(level):
            return logging.LogRecord("t", level, __file__, 1, "msg", None, None)

        assert warn_only.filter(record(logging.WARNING))
        assert not warn_only.filter(record(logging.ERROR))
        assert errors.filter(record(logging.CRITICAL))
        assert not errors.filter(record(logging.INFO))
