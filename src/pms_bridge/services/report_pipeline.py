"""
Report import pipeline.

Drives one report file through

    UPLOADED → PROCESSED → IMPORTED → SUCCESS

recording every step in the state store. Any failure after the record exists
ends the run in FAILED with the reason stored on the record.
"""

import logging
from pathlib import Path

from pms_bridge.config import DeletionFailurePolicy
from pms_bridge.schemas.report import ReportStatus
from pms_bridge.services.folder_resolver import FolderResolutionError
from pms_bridge.services.providers import PmsIntegration
from pms_bridge.state_store.sqlite_store import StateStore

logger = logging.getLogger(__name__)

# Stripped from the file stem in this order
NAME_PREFIXES = ("DentalRay_Report_", "DentalRay_", "Report_")

NAME_EXTRACTION_FAILED = "Could not extract patient name from file name"
IMPORT_FAILED = "Failed to import to PMS"


def extract_patient_name(file_name: str) -> str:
    """
    Derive the patient name from a report file name.

    "DentalRay_Report_John_Smith.pdf" → "John Smith". Returns "" when
    nothing is left after stripping prefixes.
    """
    name = Path(file_name).stem
    for prefix in NAME_PREFIXES:
        name = name.removeprefix(prefix)
    return name.replace("_", " ").strip()


class ReportPipeline:
    """Processes a single report file end to end."""

    def __init__(
        self,
        store: StateStore,
        integration: PmsIntegration,
        deletion_policy: DeletionFailurePolicy = DeletionFailurePolicy.LENIENT,
    ):
        self.store = store
        self.integration = integration
        self.deletion_policy = deletion_policy

    def process(self, path: Path) -> ReportStatus | None:
        """
        Run the pipeline for one file.

        Returns:
            Final status of the report record, or None when no record
            could be created
        """
        path = Path(path)
        try:
            report_id = self.store.create_report(path.name, str(path))
        except Exception as e:
            logger.error("Could not create report record for %s: %s", path.name, e)
            return None

        logger.info("Processing report #%d: %s", report_id, path.name)

        try:
            self._run(report_id, path)
        except Exception as e:
            logger.exception("Unexpected error processing report #%d", report_id)
            self.store.mark_report_failed(report_id, str(e) or type(e).__name__)

        record = self.store.get_report(report_id)
        return record.status if record else None

    def _run(self, report_id: int, path: Path) -> None:
        patient_name = extract_patient_name(path.name)
        if not patient_name:
            logger.warning("No patient name in %s", path.name)
            self.store.mark_report_failed(report_id, NAME_EXTRACTION_FAILED)
            return
        self.store.mark_report_processed(report_id, patient_name)

        try:
            destination = self.integration.import_report(path, patient_name)
        except (FolderResolutionError, OSError, ValueError) as e:
            logger.error("Import of %s for %s failed: %s", path.name, patient_name, e)
            self.store.mark_report_failed(report_id, f"{IMPORT_FAILED}: {e}")
            return

        if destination is None:
            logger.error("Import of %s for %s failed", path.name, patient_name)
            self.store.mark_report_failed(report_id, IMPORT_FAILED)
            return
        self.store.mark_report_imported(report_id, str(destination))

        try:
            path.unlink()
        except OSError as e:
            if self.deletion_policy == DeletionFailurePolicy.STRICT:
                logger.error("Could not delete %s: %s", path, e)
                self.store.mark_report_failed(report_id, f"Could not delete source file: {e}")
                return
            # Cleanup worker retries the delete on the next drain
            logger.warning("Could not delete %s, leaving it for cleanup: %s", path, e)

        self.store.mark_report_success(report_id)
        logger.info("Report #%d imported for %s", report_id, patient_name)
