"""
PMS provider integrations.

The provider set is closed: OpenDental, Dentrix and EagleSoft. Only
OpenDental talks to a real system; the other two are placeholders that log
and return no data so the rest of the bridge runs unchanged.
"""

import logging
import shutil
from datetime import datetime
from pathlib import Path

from pms_bridge.config import Config, PmsProvider
from pms_bridge.opendental_client import OpenDentalClient
from pms_bridge.schemas.patient import InsuranceRecord, PatientRecord
from pms_bridge.services.folder_resolver import FolderResolutionError, PatientFolderResolver

logger = logging.getLogger(__name__)

REPORT_NAME_FORMAT = "Report_%Y%m%d_%H%M%S"


class PmsIntegration:
    """Base class for provider integrations."""

    provider: PmsProvider

    def is_api_available(self) -> bool:
        raise NotImplementedError

    def fetch_patients(self, since: datetime | None) -> list[PatientRecord]:
        """Patients modified at or after `since`."""
        raise NotImplementedError

    def fetch_insurance(self, patient_id: int) -> list[InsuranceRecord]:
        raise NotImplementedError

    def import_report(self, source: Path, patient_name: str) -> Path | None:
        """
        Copy a report into the PMS for the named patient.

        Returns:
            Destination path, or None when the provider cannot import
        """
        raise NotImplementedError

    def close(self) -> None:
        pass


def unique_destination(folder: Path, stem: str, suffix: str) -> Path:
    """`folder/stem+suffix`, or `stem_N+suffix` for the first free N."""
    candidate = folder / f"{stem}{suffix}"
    counter = 1
    while candidate.exists():
        candidate = folder / f"{stem}_{counter}{suffix}"
        counter += 1
    return candidate


class OpenDentalIntegration(PmsIntegration):
    """OpenDental over its REST API plus the A-Z image folders."""

    provider = PmsProvider.OPENDENTAL

    def __init__(self, client: OpenDentalClient, image_root: Path | None):
        self.client = client
        self.image_root = image_root

    def is_api_available(self) -> bool:
        return self.client.is_api_available()

    def fetch_patients(self, since: datetime | None) -> list[PatientRecord]:
        return self.client.list_patients(since)

    def fetch_insurance(self, patient_id: int) -> list[InsuranceRecord]:
        return [plan.to_record() for plan in self.client.get_patient_insurance(patient_id)]

    def import_report(self, source: Path, patient_name: str) -> Path | None:
        """
        Copy the report into the patient's image folder.

        The folder is created when the patient has none yet. The copy is
        named Report_<timestamp> and keeps the source extension.

        Raises:
            FolderResolutionError: No image root configured or folder unusable
            OSError: Copy failed
        """
        if self.image_root is None:
            raise FolderResolutionError("opendental.image_path is not configured")

        resolver = PatientFolderResolver(self.image_root)
        folder = resolver.resolve_or_create(patient_name)

        destination = unique_destination(
            folder,
            datetime.now().strftime(REPORT_NAME_FORMAT),
            source.suffix or ".pdf",
        )
        shutil.copy2(source, destination)
        logger.info("Copied %s to %s", source.name, destination)
        return destination

    def close(self) -> None:
        self.client.close()


class UnsupportedIntegration(PmsIntegration):
    """Placeholder for providers without an integration yet."""

    def __init__(self, provider: PmsProvider):
        self.provider = provider

    def is_api_available(self) -> bool:
        logger.warning("%s integration is not implemented", self.provider.value)
        return False

    def fetch_patients(self, since: datetime | None) -> list[PatientRecord]:
        logger.warning("%s patient export is not implemented", self.provider.value)
        return []

    def fetch_insurance(self, patient_id: int) -> list[InsuranceRecord]:
        return []

    def import_report(self, source: Path, patient_name: str) -> Path | None:
        logger.warning("%s report import is not implemented", self.provider.value)
        return None


def build_integration(config: Config) -> PmsIntegration:
    """Create the integration selected by `config.provider`."""
    if config.provider == PmsProvider.OPENDENTAL:
        od = config.opendental
        client = OpenDentalClient(
            base_url=od.api_base_url,
            auth_token=od.auth_token,
            auth_scheme=od.auth_scheme,
            timeout=od.timeout_seconds,
            max_retries=od.max_retries,
        )
        return OpenDentalIntegration(client, od.image_path)

    return UnsupportedIntegration(config.provider)
