"""Tests for the patient sync service."""

import sqlite3
from datetime import datetime
from unittest.mock import Mock

import pytest

from conftest import make_insurance, make_patient
from pms_bridge.opendental_client import OpenDentalConnectionError
from pms_bridge.services.patient_sync import PatientSyncService
from pms_bridge.state_store import (
    LAST_EXPORT_DATE_KEY,
    LAST_PATIENT_COUNT_KEY,
    StateStore,
)


@pytest.fixture
def store(temp_db):
    return StateStore(temp_db)


@pytest.fixture
def integration():
    mock = Mock()
    mock.is_api_available.return_value = True
    mock.fetch_patients.return_value = []
    mock.fetch_insurance.side_effect = lambda patient_id: [make_insurance(patient_id)]
    return mock


@pytest.fixture
def sleep():
    return Mock()


@pytest.fixture
def service(integration, store, config, sleep):
    return PatientSyncService(integration, store, config, sleep=sleep)


class TestCursor:
    def test_falls_back_to_export_start_date(self, service, config):
        assert service.read_cursor() == config.export_start_date

    def test_uses_stored_cursor(self, service, store):
        store.set_config(LAST_EXPORT_DATE_KEY, "2024-11-19 10:00:00")

        assert service.read_cursor() == datetime(2024, 11, 19, 10, 0, 0)

    def test_unparseable_cursor_ignored(self, service, store, config):
        store.set_config(LAST_EXPORT_DATE_KEY, "yesterday")

        assert service.read_cursor() == config.export_start_date

    def test_cursor_passed_to_fetch(self, service, store, integration):
        store.set_config(LAST_EXPORT_DATE_KEY, "2024-11-19 10:00:00")

        service.run_cycle()

        integration.fetch_patients.assert_called_once_with(datetime(2024, 11, 19, 10, 0, 0))


class TestRunCycle:
    def test_skipped_when_api_unavailable(self, service, integration):
        integration.is_api_available.return_value = False

        result = service.run_cycle()

        assert result.skipped is True
        integration.fetch_patients.assert_not_called()

    def test_only_new_patients_imported(self, service, store, integration):
        store.bulk_insert_patients([make_patient(1), make_patient(2)])
        integration.fetch_patients.return_value = [make_patient(1), make_patient(2), make_patient(3)]

        result = service.run_cycle()

        assert result.success
        assert result.fetched == 3
        assert result.patients_imported == 1
        assert store.get_all_patient_ids() == {1, 2, 3}
        integration.fetch_insurance.assert_called_once_with(3)
        assert result.insurance_imported == 1
        assert len(store.get_insurance_for_patient(3)) == 1

    def test_cursor_written_after_import(self, service, store, integration):
        integration.fetch_patients.return_value = [make_patient(5), make_patient(6)]

        result = service.run_cycle()

        assert result.cursor_advanced
        stamp = store.get_config(LAST_EXPORT_DATE_KEY)
        assert datetime.strptime(stamp, "%Y-%m-%d %H:%M:%S")
        assert store.get_config(LAST_PATIENT_COUNT_KEY) == "2"

    def test_duplicates_in_fetch_collapse(self, service, store, integration):
        first = make_patient(7, first="First")
        second = make_patient(7, first="Second")
        integration.fetch_patients.return_value = [first, second]

        result = service.run_cycle()

        assert result.patients_imported == 1
        assert store.get_patient(7).first_name == "First"

    def test_empty_fetch_keeps_cursor(self, service, store):
        result = service.run_cycle()

        assert result.fetched == 0
        assert result.cursor_advanced is False
        assert store.get_config(LAST_EXPORT_DATE_KEY) is None

    def test_nothing_new_keeps_cursor_by_default(self, service, store, integration):
        store.bulk_insert_patients([make_patient(1)])
        integration.fetch_patients.return_value = [make_patient(1)]

        result = service.run_cycle()

        assert result.new_patients == 0
        assert store.get_config(LAST_EXPORT_DATE_KEY) is None
        integration.fetch_insurance.assert_not_called()

    def test_nothing_new_advances_cursor_when_configured(self, service, store, integration, config):
        config.sync.advance_cursor_when_idle = True
        store.bulk_insert_patients([make_patient(1)])
        integration.fetch_patients.return_value = [make_patient(1)]

        result = service.run_cycle()

        assert result.cursor_advanced
        assert store.get_config(LAST_PATIENT_COUNT_KEY) == "0"

    def test_fetch_error_ends_cycle(self, service, store, integration):
        integration.fetch_patients.side_effect = OpenDentalConnectionError("timed out")

        result = service.run_cycle()

        assert not result.success
        assert "timed out" in result.errors[0]
        assert store.get_config(LAST_EXPORT_DATE_KEY) is None

    def test_patient_insert_failure_imports_nothing(self, service, integration):
        integration.fetch_patients.return_value = [make_patient(1)]
        service.store = Mock(wraps=service.store)
        service.store.bulk_insert_patients.side_effect = sqlite3.OperationalError("disk I/O error")

        result = service.run_cycle()

        assert result.patients_imported == 0
        assert not result.success
        integration.fetch_insurance.assert_not_called()
        service.store.set_config_values.assert_not_called()

    def test_insurance_insert_failure_reported_as_zero(self, service, store, integration):
        integration.fetch_patients.return_value = [make_patient(1)]
        # Insurance for an unknown patient violates the foreign key
        integration.fetch_insurance.side_effect = lambda pid: [make_insurance(pid), make_insurance(999)]

        result = service.run_cycle()

        assert result.patients_imported == 1
        assert result.insurance_imported == 0
        assert "Failed to save insurance" in result.errors[0]
        assert store.get_insurance_for_patient(1) == []
        assert result.cursor_advanced

    def test_insurance_fetch_failure_counted(self, service, store, integration):
        integration.fetch_patients.return_value = [make_patient(1), make_patient(2)]

        def fetch(pid):
            if pid == 1:
                raise OpenDentalConnectionError("reset")
            return [make_insurance(pid)]

        integration.fetch_insurance.side_effect = fetch

        result = service.run_cycle()

        assert result.insurance_failures == 1
        assert result.insurance_imported == 1
        assert result.success

    def test_unexpected_error_never_raises(self, service, integration):
        integration.is_api_available.side_effect = RuntimeError("bug")

        result = service.run_cycle()

        assert not result.success
        assert "bug" in result.errors[0]


class TestRateLimiting:
    def test_25_patients_two_delays(self, service, integration, sleep):
        integration.fetch_patients.return_value = [make_patient(i) for i in range(1, 26)]

        result = service.run_cycle()

        assert integration.fetch_insurance.call_count == 25
        assert result.insurance_imported == 25
        assert sleep.call_count == 2
        sleep.assert_called_with(0.5)

    def test_single_batch_no_delay(self, service, integration, sleep):
        integration.fetch_patients.return_value = [make_patient(i) for i in range(1, 11)]

        service.run_cycle()

        sleep.assert_not_called()
