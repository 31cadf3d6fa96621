"""
Patient sync service.

One cycle:
1. Probe the PMS API (skip the cycle when it is down)
2. Fetch patients modified since the LastExportDate cursor
3. Diff against locally known patient ids
4. Bulk insert new patients
5. Fetch their insurance in rate-limited batches and bulk insert it
6. Advance the cursor

Existing patients are never updated; insurance is only imported for
patients inserted in the same cycle.
"""

import logging
import sqlite3
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone

from pms_bridge.config import Config
from pms_bridge.opendental_client import OpenDentalError
from pms_bridge.schemas.patient import InsuranceRecord, PatientRecord
from pms_bridge.services.providers import PmsIntegration
from pms_bridge.state_store.sqlite_store import (
    LAST_EXPORT_DATE_KEY,
    LAST_PATIENT_COUNT_KEY,
    TIMESTAMP_FORMAT,
    StateStore,
    utc_timestamp,
)

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    """Outcome of one sync cycle."""

    skipped: bool = False
    fetched: int = 0
    new_patients: int = 0
    patients_imported: int = 0
    insurance_imported: int = 0
    insurance_failures: int = 0
    cursor_advanced: bool = False
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors


class PatientSyncService:
    """Incremental patient and insurance import from the configured PMS."""

    def __init__(
        self,
        integration: PmsIntegration,
        store: StateStore,
        config: Config,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            integration: Provider integration to pull from
            store: Local state store
            config: Application configuration
            sleep: Used for the pause between insurance batches
        """
        self.integration = integration
        self.store = store
        self.config = config
        self._sleep = sleep

    def read_cursor(self) -> datetime:
        """LastExportDate from the store, or the configured start date."""
        stored = self.store.get_config(LAST_EXPORT_DATE_KEY)
        if stored:
            try:
                return datetime.strptime(stored, TIMESTAMP_FORMAT)
            except ValueError:
                logger.warning("Ignoring unparseable %s: %r", LAST_EXPORT_DATE_KEY, stored)
        return self.config.export_start_date

    def _advance_cursor(self, imported: int, result: SyncResult) -> None:
        self.store.set_config_values(
            {
                LAST_EXPORT_DATE_KEY: utc_timestamp(datetime.now(timezone.utc)),
                LAST_PATIENT_COUNT_KEY: str(imported),
            }
        )
        result.cursor_advanced = True

    def run_cycle(self) -> SyncResult:
        """
        Run one sync cycle. Never raises; problems end up in result.errors.
        """
        result = SyncResult()
        try:
            self._run_cycle(result)
        except Exception as e:
            logger.exception("Patient sync cycle failed")
            result.errors.append(f"Unexpected error: {e}")
        return result

    def _run_cycle(self, result: SyncResult) -> None:
        if not self.integration.is_api_available():
            logger.warning("PMS API is not available, skipping sync cycle")
            result.skipped = True
            return

        since = self.read_cursor()
        logger.info("Starting patient sync since %s", since.strftime(TIMESTAMP_FORMAT))

        try:
            fetched = self.integration.fetch_patients(since)
        except OpenDentalError as e:
            logger.error("Patient export failed: %s", e)
            result.errors.append(f"Patient export failed: {e}")
            return

        result.fetched = len(fetched)
        if not fetched:
            logger.info("No patients modified since last sync")
            return

        new_patients = self._diff(fetched)
        result.new_patients = len(new_patients)
        if not new_patients:
            logger.info("No new patients among %d fetched", len(fetched))
            if self.config.sync.advance_cursor_when_idle:
                self._advance_cursor(0, result)
            return

        try:
            inserted = self.store.bulk_insert_patients(new_patients)
        except sqlite3.Error as e:
            logger.error("Failed to save %d new patients: %s", len(new_patients), e)
            result.errors.append(f"Failed to save patients: {e}")
            return
        result.patients_imported = inserted

        plans = self._fetch_insurance([p.id for p in new_patients], result)
        if plans:
            try:
                result.insurance_imported = self.store.bulk_insert_insurance(plans)
            except sqlite3.Error as e:
                logger.error("Failed to save %d insurance records: %s", len(plans), e)
                result.errors.append(f"Failed to save insurance: {e}")

        self._advance_cursor(inserted, result)
        logger.info(
            "Patient sync complete: %d patients, %d insurance records imported",
            result.patients_imported,
            result.insurance_imported,
        )

    def _diff(self, fetched: list[PatientRecord]) -> list[PatientRecord]:
        """Fetched patients whose id is not known yet, first occurrence wins."""
        known = self.store.get_all_patient_ids()
        new_patients = []
        for patient in fetched:
            if patient.id in known:
                continue
            known.add(patient.id)
            new_patients.append(patient)
        return new_patients

    def _fetch_insurance(self, patient_ids: list[int], result: SyncResult) -> list[InsuranceRecord]:
        batch_size = self.config.sync.insurance_batch_size
        delay = self.config.sync.insurance_batch_delay_seconds
        batches = [patient_ids[i:i + batch_size] for i in range(0, len(patient_ids), batch_size)]

        plans: list[InsuranceRecord] = []
        for index, batch in enumerate(batches):
            for patient_id in batch:
                try:
                    plans.extend(self.integration.fetch_insurance(patient_id))
                except Exception as e:
                    result.insurance_failures += 1
                    logger.error("Insurance export failed for patient %d: %s", patient_id, e)

            if index < len(batches) - 1 and delay > 0:
                self._sleep(delay)

        logger.info(
            "Fetched %d insurance records for %d patients (%d failures)",
            len(plans),
            len(patient_ids),
            result.insurance_failures,
        )
        return plans
