"""Test fixtures and utilities."""

from datetime import date
from pathlib import Path

import pytest

from pms_bridge.config import Config, OpenDentalConfig, ReportsConfig, SyncConfig
from pms_bridge.schemas.patient import InsuranceRecord, PatientRecord


@pytest.fixture
def temp_db(tmp_path) -> Path:
    """Temporary database path for testing."""
    return tmp_path / "test_state.db"


@pytest.fixture
def image_root(tmp_path) -> Path:
    """OpenDental-style image store with a few patient folders."""
    root = tmp_path / "OpenDentImages"
    (root / "A" / "AllenAllowed_01").mkdir(parents=True)
    (root / "S" / "SmithJohn_12").mkdir(parents=True)
    (root / "S" / "SmithJane_13").mkdir(parents=True)
    (root / "B").mkdir(parents=True)
    return root


@pytest.fixture
def inbox(tmp_path) -> Path:
    """Empty reports inbox."""
    path = tmp_path / "inbox"
    path.mkdir()
    return path


@pytest.fixture
def config(tmp_path, image_root, inbox) -> Config:
    """Config pointing at temporary directories, without pauses."""
    return Config(
        opendental=OpenDentalConfig(
            api_base_url="http://opendental.test:30222",
            auth_token="dev/cust",
            image_path=image_root,
        ),
        reports=ReportsConfig(inbox_dir=inbox, item_pause_seconds=0),
        sync=SyncConfig(insurance_batch_delay_seconds=0.5),
        state_db_path=tmp_path / "state.db",
    )


@pytest.fixture
def sample_patient_payload() -> dict:
    """Sample row from GET /api/v1/patients/Simple."""
    return {
        "PatNum": 3,
        "LName": "Allowed",
        "FName": "Allen",
        "Birthdate": "1985-04-12",
        "HmPhone": "",
        "WirelessPhone": "(503)555-0199",
        "WkPhone": "(503)555-0100",
        "Email": "allen@example.com",
        "Address": "12 Main St",
        "Address2": "Apt 4",
        "City": "Portland",
        "State": "OR",
        "Zip": "97201",
        "DateTStamp": "2024-11-19 10:00:00",
    }


@pytest.fixture
def sample_insurance_payload() -> dict:
    """Sample row from GET /api/v1/familymodules/{PatNum}/Insurance."""
    return {
        "PatNum": 3,
        "InsSubNum": 41,
        "PatPlanNum": 77,
        "CarrierName": "Delta Dental",
        "SubscriberID": "DD-100200",
        "PatID": "",
        "subscriber": "Allen Allowed",
        "Relationship": "Self",
        "GroupNum": "G-55",
        "Ordinal": 1,
        "IsPending": "false",
    }


def make_patient(patient_id: int, first: str = "Pat", last: str = "Ient") -> PatientRecord:
    """Build a minimal patient record."""
    return PatientRecord(
        id=patient_id,
        first_name=first,
        last_name=f"{last}{patient_id}",
        phone="555-0100",
        address="1 Road",
        city="Town",
        state="OR",
        zip_code="97000",
        birth_date=date(1990, 1, 1),
    )


def make_insurance(patient_id: int, carrier: str = "Delta Dental", policy: str = "P-1") -> InsuranceRecord:
    return InsuranceRecord(patient_id=patient_id, carrier_name=carrier, policy_number=policy)
