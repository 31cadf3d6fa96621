"""Tests for domain schemas and normalization helpers."""

from datetime import date

import pytest

from pms_bridge.schemas import (
    ReportStatus,
    best_phone,
    can_transition,
    combine_address,
    is_active_from_pending,
    normalize_relationship,
    parse_birth_date,
    priority_from_ordinal,
)
from pms_bridge.schemas.patient import PatientRecord


class TestRelationship:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("Self", "Self"),
            ("SELF", "Self"),
            ("Spouse", "Spouse"),
            ("Child", "Child"),
            ("Dependent", "Child"),
            ("", "Self"),
            (None, "Self"),
            ("Employee", "Other"),
        ],
    )
    def test_keyword_mapping(self, raw, expected):
        assert normalize_relationship(raw) == expected


class TestPriority:
    def test_primary_and_secondary(self):
        assert priority_from_ordinal(1) == "Primary"
        assert priority_from_ordinal(2) == "Secondary"

    def test_other_ordinals_default_to_primary(self):
        assert priority_from_ordinal(3) == "Primary"
        assert priority_from_ordinal(None) == "Primary"
        assert priority_from_ordinal("x") == "Primary"

    def test_string_ordinal(self):
        assert priority_from_ordinal("2") == "Secondary"


class TestPendingFlag:
    def test_true_string_is_inactive(self):
        assert is_active_from_pending("true") is False
        assert is_active_from_pending("TRUE") is False

    def test_anything_else_is_active(self):
        assert is_active_from_pending("false") is True
        assert is_active_from_pending("") is True
        assert is_active_from_pending(None) is True

    def test_bool(self):
        assert is_active_from_pending(True) is False
        assert is_active_from_pending(False) is True


class TestBirthDate:
    def test_iso(self):
        assert parse_birth_date("1985-04-12") == date(1985, 4, 12)

    def test_iso_with_time(self):
        assert parse_birth_date("1985-04-12T00:00:00") == date(1985, 4, 12)

    def test_us_format(self):
        assert parse_birth_date("04/12/1985") == date(1985, 4, 12)

    def test_placeholder_is_none(self):
        assert parse_birth_date("0001-01-01") is None

    def test_unparseable(self):
        assert parse_birth_date("someday") is None
        assert parse_birth_date("") is None
        assert parse_birth_date(None) is None


class TestPatientHelpers:
    def test_best_phone_order(self):
        assert best_phone("", "555-1", "555-2") == "555-1"
        assert best_phone(None, None, None) == ""

    def test_combine_address(self):
        assert combine_address("12 Main St", "Apt 4") == "12 Main St, Apt 4"
        assert combine_address("12 Main St", "") == "12 Main St"
        assert combine_address(None, None) == ""

    def test_full_name(self):
        patient = PatientRecord(id=1, first_name="John", last_name="Smith")
        assert patient.full_name == "John Smith"


class TestReportStatus:
    def test_forward_transitions(self):
        assert can_transition(ReportStatus.UPLOADED, ReportStatus.PROCESSED)
        assert can_transition(ReportStatus.PROCESSED, ReportStatus.IMPORTED)
        assert can_transition(ReportStatus.IMPORTED, ReportStatus.SUCCESS)

    def test_skipping_steps_is_refused(self):
        assert not can_transition(ReportStatus.UPLOADED, ReportStatus.SUCCESS)
        assert not can_transition(ReportStatus.PROCESSED, ReportStatus.SUCCESS)

    def test_failed_from_any_non_terminal(self):
        for status in (ReportStatus.UPLOADED, ReportStatus.PROCESSED, ReportStatus.IMPORTED):
            assert can_transition(status, ReportStatus.FAILED)

    def test_terminal_states_never_move(self):
        for terminal in (ReportStatus.SUCCESS, ReportStatus.FAILED):
            assert terminal.is_terminal
            for target in ReportStatus:
                assert not can_transition(terminal, target)
