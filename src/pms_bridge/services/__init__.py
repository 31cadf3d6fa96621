"""
Services for patient sync and report import.
"""

from .cleanup import CleanupResult, CleanupWorker
from .folder_resolver import FolderResolutionError, PatientFolderResolver
from .patient_sync import PatientSyncService, SyncResult
from .providers import (
    OpenDentalIntegration,
    PmsIntegration,
    UnsupportedIntegration,
    build_integration,
)
from .report_pipeline import ReportPipeline, extract_patient_name
from .report_queue import ReportQueue

__all__ = [
    "CleanupResult",
    "CleanupWorker",
    "FolderResolutionError",
    "PatientFolderResolver",
    "PatientSyncService",
    "SyncResult",
    "OpenDentalIntegration",
    "PmsIntegration",
    "UnsupportedIntegration",
    "build_integration",
    "ReportPipeline",
    "extract_patient_name",
    "ReportQueue",
]
