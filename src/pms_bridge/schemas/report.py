"""
Report lifecycle states.

A report file moves forward through

    UPLOADED → PROCESSED → IMPORTED → SUCCESS

and may drop to FAILED from any non-terminal state. SUCCESS and FAILED are
terminal.
"""

from enum import Enum


class ReportStatus(str, Enum):
    """Status of an ingested report file."""

    UPLOADED = "UPLOADED"
    PROCESSED = "PROCESSED"
    IMPORTED = "IMPORTED"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (ReportStatus.SUCCESS, ReportStatus.FAILED)


# Allowed predecessor states for each target state
ALLOWED_PREDECESSORS: dict[ReportStatus, tuple[ReportStatus, ...]] = {
    ReportStatus.PROCESSED: (ReportStatus.UPLOADED,),
    ReportStatus.IMPORTED: (ReportStatus.PROCESSED,),
    ReportStatus.SUCCESS: (ReportStatus.IMPORTED,),
    ReportStatus.FAILED: (
        ReportStatus.UPLOADED,
        ReportStatus.PROCESSED,
        ReportStatus.IMPORTED,
    ),
}


def can_transition(current: ReportStatus, target: ReportStatus) -> bool:
    """Check whether current → target respects the lifecycle."""
    return current in ALLOWED_PREDECESSORS.get(target, ())
