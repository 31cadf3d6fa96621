"""
Configuration management.

All configuration for the PMS bridge is defined here; no other module should
invent config keys.

Key invariants:
- The provider switch selects exactly one PMS integration
- export_start_date is only used until the first successful sync cycle
  stores a LastExportDate cursor in the state database
"""

import os
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path

import yaml


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    pass


class PmsProvider(str, Enum):
    """Supported practice management systems."""

    OPENDENTAL = "opendental"
    DENTRIX = "dentrix"
    EAGLESOFT = "eaglesoft"


class DeletionFailurePolicy(str, Enum):
    """What to do when a report was imported but the source file can't be deleted."""

    # Mark SUCCESS anyway; the cleanup worker retries the delete later
    LENIENT = "lenient"
    # Mark FAILED with the delete error
    STRICT = "strict"


@dataclass
class OpenDentalConfig:
    """OpenDental API and image store configuration.

    auth_scheme/auth_token form the Authorization header, e.g.
    "ODFHIR <developer_key>/<customer_key>".
    """

    api_base_url: str = "http://localhost:30222"
    auth_scheme: str = "ODFHIR"
    auth_token: str = ""
    timeout_seconds: int = 30
    max_retries: int = 3
    # Root of the OpenDental A-Z image folders
    image_path: Path | None = None


@dataclass
class ReportsConfig:
    """Report inbox settings."""

    inbox_dir: Path = field(default_factory=lambda: Path("data/reports"))
    file_pattern: str = "*.pdf"
    # Re-scan the inbox for files the watcher missed
    rescan_interval_seconds: float = 30.0
    # Pause between two queued files
    item_pause_seconds: float = 0.5
    # Max wait for a file that is still being written
    file_ready_timeout_seconds: float = 10.0
    deletion_failure_policy: DeletionFailurePolicy = DeletionFailurePolicy.LENIENT


@dataclass
class SyncConfig:
    """Patient sync schedule and rate limiting."""

    interval_minutes: int = 60
    initial_delay_seconds: float = 10.0
    insurance_batch_size: int = 10
    insurance_batch_delay_seconds: float = 0.5
    # Advance LastExportDate even when the fetch found no new patients
    advance_cursor_when_idle: bool = False


@dataclass
class Config:
    """Application configuration."""

    provider: PmsProvider = PmsProvider.OPENDENTAL
    export_start_date: datetime = field(default_factory=lambda: datetime(2000, 1, 1))
    opendental: OpenDentalConfig = field(default_factory=OpenDentalConfig)
    reports: ReportsConfig = field(default_factory=ReportsConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    state_db_path: Path = field(default_factory=lambda: Path("data/state.db"))
    log_dir: Path | None = None

    def validate(self) -> list[str]:
        """Validate configuration completeness and consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []

        if self.provider == PmsProvider.OPENDENTAL:
            if not self.opendental.api_base_url:
                errors.append("opendental.api_base_url is required")
            if not self.opendental.image_path:
                errors.append("opendental.image_path is required")
            if self.opendental.timeout_seconds <= 0:
                errors.append("opendental.timeout_seconds must be positive")

        if self.sync.interval_minutes <= 0:
            errors.append("sync.interval_minutes must be positive")
        if self.sync.insurance_batch_size <= 0:
            errors.append("sync.insurance_batch_size must be positive")
        if self.reports.item_pause_seconds < 0:
            errors.append("reports.item_pause_seconds must not be negative")

        return errors

    def ensure_valid(self) -> None:
        """Raise ConfigValidationError if validate() reports anything."""
        errors = self.validate()
        if errors:
            raise ConfigValidationError("; ".join(errors))


def parse_start_date(value: str | datetime) -> datetime:
    """Parse the configured export start date (date or date-time)."""
    if isinstance(value, datetime):
        return value
    text = str(value).strip()
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        raise ConfigValidationError(f"Invalid export_start_date: {value!r}")


def _parse_bool(value: object, key: str) -> bool:
    """YAML booleans pass through; quoted "true"/"false" style strings are accepted too."""
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("true", "yes", "on", "1"):
        return True
    if text in ("false", "no", "off", "0", ""):
        return False
    raise ConfigValidationError(f"Invalid {key}: {value!r}")


def load_config(config_path: Path) -> Config:
    """
    Load configuration from YAML file.

    Environment variables can override config values:
    - PMS_PROVIDER
    - OPENDENTAL_URL
    - OPENDENTAL_AUTH_SCHEME
    - OPENDENTAL_TOKEN
    - OPENDENTAL_IMAGE_PATH
    - PMS_REPORTS_DIR
    - PMS_SYNC_INTERVAL_MINUTES
    - PMS_STATE_DB
    - PMS_LOG_DIR
    """
    if config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    provider_name = os.environ.get("PMS_PROVIDER", data.get("provider", "opendental"))
    try:
        provider = PmsProvider(str(provider_name).lower())
    except ValueError:
        raise ConfigValidationError(f"Unknown provider: {provider_name}")

    # OpenDental config
    od_data = data.get("opendental", {})
    image_path = os.environ.get("OPENDENTAL_IMAGE_PATH", od_data.get("image_path"))
    opendental = OpenDentalConfig(
        api_base_url=os.environ.get(
            "OPENDENTAL_URL", od_data.get("api_base_url", "http://localhost:30222")
        ),
        auth_scheme=os.environ.get("OPENDENTAL_AUTH_SCHEME", od_data.get("auth_scheme", "ODFHIR")),
        auth_token=os.environ.get("OPENDENTAL_TOKEN", od_data.get("auth_token", "")),
        timeout_seconds=int(od_data.get("timeout_seconds", 30)),
        max_retries=int(od_data.get("max_retries", 3)),
        image_path=Path(image_path) if image_path else None,
    )

    # Reports config
    reports_data = data.get("reports", {})
    policy_name = reports_data.get("deletion_failure_policy", "lenient")
    try:
        policy = DeletionFailurePolicy(str(policy_name).lower())
    except ValueError:
        raise ConfigValidationError(f"Unknown deletion_failure_policy: {policy_name}")

    reports = ReportsConfig(
        inbox_dir=Path(
            os.environ.get("PMS_REPORTS_DIR", reports_data.get("inbox_dir", "data/reports"))
        ),
        file_pattern=reports_data.get("file_pattern", "*.pdf"),
        rescan_interval_seconds=float(reports_data.get("rescan_interval_seconds", 30)),
        item_pause_seconds=float(reports_data.get("item_pause_seconds", 0.5)),
        file_ready_timeout_seconds=float(reports_data.get("file_ready_timeout_seconds", 10)),
        deletion_failure_policy=policy,
    )

    # Sync config
    sync_data = data.get("sync", {})
    interval_env = os.environ.get("PMS_SYNC_INTERVAL_MINUTES", "")
    interval_minutes = sync_data.get("interval_minutes", 60)
    if interval_env:
        try:
            interval_minutes = int(interval_env)
        except ValueError:
            pass  # Keep file value

    sync = SyncConfig(
        interval_minutes=int(interval_minutes),
        initial_delay_seconds=float(sync_data.get("initial_delay_seconds", 10)),
        insurance_batch_size=int(sync_data.get("insurance_batch_size", 10)),
        insurance_batch_delay_seconds=float(sync_data.get("insurance_batch_delay_seconds", 0.5)),
        advance_cursor_when_idle=_parse_bool(
            sync_data.get("advance_cursor_when_idle", False), "advance_cursor_when_idle"
        ),
    )

    log_dir = os.environ.get("PMS_LOG_DIR", data.get("log_dir"))

    return Config(
        provider=provider,
        export_start_date=parse_start_date(data.get("export_start_date", "2000-01-01")),
        opendental=opendental,
        reports=reports,
        sync=sync,
        state_db_path=Path(os.environ.get("PMS_STATE_DB", data.get("state_db_path", "data/state.db"))),
        log_dir=Path(log_dir) if log_dir else None,
    )


def create_default_config(config_path: Path) -> None:
    """Create a default configuration file."""
    default_config = """# PMS Bridge configuration
#
# provider: opendental | dentrix | eaglesoft
# Only OpenDental is implemented; the others run as no-ops.

provider: opendental

# First sync fetches patients modified since this date.
# Later cycles continue from the LastExportDate stored in the state db.
export_start_date: "2024-01-01"

opendental:
  api_base_url: "http://localhost:30222"
  auth_scheme: "ODFHIR"
  auth_token: "DEVELOPER_KEY/CUSTOMER_KEY"
  timeout_seconds: 30
  max_retries: 3
  image_path: "C:/OpenDentImages"          # Root of the A-Z patient folders

reports:
  inbox_dir: "data/reports"                 # Drop report PDFs here
  file_pattern: "*.pdf"
  rescan_interval_seconds: 30
  item_pause_seconds: 0.5
  file_ready_timeout_seconds: 10
  deletion_failure_policy: lenient          # lenient | strict

sync:
  interval_minutes: 60
  initial_delay_seconds: 10
  insurance_batch_size: 10                  # Patients per insurance batch
  insurance_batch_delay_seconds: 0.5        # Pause between batches
  advance_cursor_when_idle: false           # Move LastExportDate when nothing new

state_db_path: "data/state.db"
log_dir: "logs"
"""

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        f.write(default_config)
