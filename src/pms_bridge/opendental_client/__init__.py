"""
OpenDental API Client.

Provides:
- Availability check
- Incremental patient export by DateTStamp
- Per-patient insurance export
- Retry/backoff for transient network failures
"""

from .client import (
    OpenDentalAPIError,
    OpenDentalClient,
    OpenDentalConnectionError,
    OpenDentalError,
    OpenDentalInsurance,
    OpenDentalPatient,
)

__all__ = [
    "OpenDentalAPIError",
    "OpenDentalClient",
    "OpenDentalConnectionError",
    "OpenDentalError",
    "OpenDentalInsurance",
    "OpenDentalPatient",
]
