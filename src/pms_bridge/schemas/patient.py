"""
Patient and insurance domain records.

These are the provider-neutral shapes persisted by the state store. Provider
clients convert their own DTOs into these records; the normalization helpers
below are shared so every provider maps relationship/priority the same way.
"""

from dataclasses import dataclass
from datetime import date, datetime

# ============================================================================
# Insurance vocabulary
# ============================================================================

RELATIONSHIP_SELF = "Self"
RELATIONSHIP_SPOUSE = "Spouse"
RELATIONSHIP_CHILD = "Child"
RELATIONSHIP_OTHER = "Other"

PRIORITY_PRIMARY = "Primary"
PRIORITY_SECONDARY = "Secondary"

DEFAULT_CARRIER_NAME = "Unknown Carrier"
DEFAULT_POLICYHOLDER = "Self"

# Ordinal → priority; anything else is billed as primary
_PRIORITY_BY_ORDINAL = {
    1: PRIORITY_PRIMARY,
    2: PRIORITY_SECONDARY,
}

# Accepted birth date formats, tried after ISO parsing
BIRTH_DATE_FORMATS = (
    "%Y-%m-%d",
    "%m/%d/%Y",
    "%Y-%m-%d %H:%M:%S",
    "%m/%d/%y",
)


@dataclass
class PatientRecord:
    """A patient as stored locally."""

    id: int
    first_name: str
    last_name: str
    phone: str = ""
    email: str = ""
    address: str = ""
    city: str = ""
    state: str = ""
    zip_code: str = ""
    birth_date: date | None = None
    report_ready: bool = False
    # Remote last-modified stamp, informational only
    modified_at: str | None = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass
class InsuranceRecord:
    """Generic insurance coverage needed for billing.

    Unique per (patient_id, carrier_name, policy_number).
    """

    patient_id: int
    carrier_name: str
    policy_number: str
    group_number: str = ""
    policyholder_name: str = DEFAULT_POLICYHOLDER
    relationship: str = RELATIONSHIP_SELF
    priority: str = PRIORITY_PRIMARY
    is_active: bool = True

    @property
    def unique_key(self) -> tuple[int, str, str]:
        return (self.patient_id, self.carrier_name, self.policy_number)


def normalize_relationship(relationship: str | None) -> str:
    """
    Map free-text relationship to one of Self/Spouse/Child/Other.

    Keyword match, case-insensitive. Empty means the patient is the
    subscriber.
    """
    if not relationship:
        return RELATIONSHIP_SELF

    lower = relationship.lower()
    if "self" in lower:
        return RELATIONSHIP_SELF
    if "spouse" in lower:
        return RELATIONSHIP_SPOUSE
    if "child" in lower or "dependent" in lower:
        return RELATIONSHIP_CHILD
    return RELATIONSHIP_OTHER


def priority_from_ordinal(ordinal: int | str | None) -> str:
    """Map coverage ordinal (1/2) to Primary/Secondary."""
    try:
        return _PRIORITY_BY_ORDINAL.get(int(ordinal), PRIORITY_PRIMARY)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return PRIORITY_PRIMARY


def is_active_from_pending(is_pending: str | bool | None) -> bool:
    """Coverage is active unless the pending flag is "true"."""
    if isinstance(is_pending, bool):
        return not is_pending
    if is_pending is None:
        return True
    return str(is_pending).strip().lower() != "true"


def parse_birth_date(value: str | None) -> date | None:
    """
    Parse a birth date in any of the accepted formats.

    Returns None for empty or unparseable input, and for OpenDental's
    "0001-01-01" placeholder.
    """
    if not value:
        return None

    text = value.strip()
    parsed: date | None = None
    try:
        parsed = datetime.fromisoformat(text).date()
    except ValueError:
        for fmt in BIRTH_DATE_FORMATS:
            try:
                parsed = datetime.strptime(text, fmt).date()
                break
            except ValueError:
                continue

    if parsed is None or parsed.year <= 1:
        return None
    return parsed


def best_phone(*phones: str | None) -> str:
    """First non-empty phone number, in the order given."""
    for phone in phones:
        if phone:
            return phone
    return ""


def combine_address(*lines: str | None) -> str:
    """Join non-empty address lines with ', '."""
    return ", ".join(line for line in lines if line)
