"""
Domain schemas shared across the client, store and services.
"""

from .patient import (
    DEFAULT_CARRIER_NAME,
    DEFAULT_POLICYHOLDER,
    PRIORITY_PRIMARY,
    PRIORITY_SECONDARY,
    RELATIONSHIP_CHILD,
    RELATIONSHIP_OTHER,
    RELATIONSHIP_SELF,
    RELATIONSHIP_SPOUSE,
    InsuranceRecord,
    PatientRecord,
    best_phone,
    combine_address,
    is_active_from_pending,
    normalize_relationship,
    parse_birth_date,
    priority_from_ordinal,
)
from .report import ALLOWED_PREDECESSORS, ReportStatus, can_transition

__all__ = [
    "DEFAULT_CARRIER_NAME",
    "DEFAULT_POLICYHOLDER",
    "PRIORITY_PRIMARY",
    "PRIORITY_SECONDARY",
    "RELATIONSHIP_CHILD",
    "RELATIONSHIP_OTHER",
    "RELATIONSHIP_SELF",
    "RELATIONSHIP_SPOUSE",
    "InsuranceRecord",
    "PatientRecord",
    "best_phone",
    "combine_address",
    "is_active_from_pending",
    "normalize_relationship",
    "parse_birth_date",
    "priority_from_ordinal",
    "ALLOWED_PREDECESSORS",
    "ReportStatus",
    "can_transition",
]
