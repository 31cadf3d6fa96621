"""
OpenDental API client implementation.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..schemas.patient import (
    DEFAULT_CARRIER_NAME,
    DEFAULT_POLICYHOLDER,
    InsuranceRecord,
    PatientRecord,
    best_phone,
    combine_address,
    is_active_from_pending,
    normalize_relationship,
    parse_birth_date,
    priority_from_ordinal,
)

logger = logging.getLogger(__name__)

# OpenDental compares DateTStamp as a plain local date-time string
DATE_STAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


class OpenDentalError(Exception):
    """Base exception for OpenDental client errors."""
    pass


class OpenDentalAPIError(OpenDentalError):
    """API returned an error response."""
    def __init__(self, status_code: int, message: str, response_body: Optional[str] = None):
        self.status_code = status_code
        self.message = message
        self.response_body = response_body
        super().__init__(f"OpenDental API error {status_code}: {message}")


class OpenDentalConnectionError(OpenDentalError):
    """Failed to connect to OpenDental (refused, DNS, timeout)."""
    pass


@dataclass
class OpenDentalPatient:
    """Patient row from the patients/Simple endpoint."""
    pat_num: int
    last_name: str = ""
    first_name: str = ""
    birthdate: Optional[str] = None
    home_phone: Optional[str] = None
    wireless_phone: Optional[str] = None
    work_phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    address2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    date_stamp: Optional[str] = None

    @classmethod
    def from_api_response(cls, data: dict) -> "OpenDentalPatient":
        """Create from OpenDental API response."""
        return cls(
            pat_num=int(data["PatNum"]),
            last_name=data.get("LName") or "",
            first_name=data.get("FName") or "",
            birthdate=data.get("Birthdate"),
            home_phone=data.get("HmPhone"),
            wireless_phone=data.get("WirelessPhone"),
            work_phone=data.get("WkPhone"),
            email=data.get("Email"),
            address=data.get("Address"),
            address2=data.get("Address2"),
            city=data.get("City"),
            state=data.get("State"),
            zip_code=data.get("Zip"),
            date_stamp=data.get("DateTStamp"),
        )

    def to_record(self) -> PatientRecord:
        """Convert to the provider-neutral patient record."""
        return PatientRecord(
            id=self.pat_num,
            first_name=self.first_name,
            last_name=self.last_name,
            phone=best_phone(self.home_phone, self.wireless_phone, self.work_phone),
            email=self.email or "",
            address=combine_address(self.address, self.address2),
            city=self.city or "",
            state=self.state or "",
            zip_code=self.zip_code or "",
            birth_date=parse_birth_date(self.birthdate),
            report_ready=False,
            modified_at=self.date_stamp,
        )


@dataclass
class OpenDentalInsurance:
    """Insurance row from the familymodules/{PatNum}/Insurance endpoint."""
    pat_num: int
    ins_sub_num: int = 0
    pat_plan_num: int = 0
    carrier_name: Optional[str] = None
    subscriber_id: Optional[str] = None
    pat_id: Optional[str] = None
    subscriber_name: Optional[str] = None
    relationship: Optional[str] = None
    group_num: Optional[str] = None
    ordinal: int = 1
    is_pending: Optional[str] = None

    @classmethod
    def from_api_response(cls, data: dict) -> "OpenDentalInsurance":
        """Create from OpenDental API response."""
        return cls(
            pat_num=int(data.get("PatNum", 0)),
            ins_sub_num=int(data.get("InsSubNum") or 0),
            pat_plan_num=int(data.get("PatPlanNum") or 0),
            carrier_name=data.get("CarrierName"),
            subscriber_id=data.get("SubscriberID"),
            pat_id=data.get("PatID"),
            subscriber_name=data.get("subscriber"),
            relationship=data.get("Relationship"),
            group_num=data.get("GroupNum"),
            ordinal=data.get("Ordinal", 1),
            is_pending=data.get("IsPending"),
        )

    def to_record(self) -> InsuranceRecord:
        """Convert to the generic billing insurance record."""
        return InsuranceRecord(
            patient_id=self.pat_num,
            carrier_name=self.carrier_name or DEFAULT_CARRIER_NAME,
            policy_number=self.subscriber_id or self.pat_id or "",
            group_number=self.group_num or "",
            policyholder_name=self.subscriber_name or DEFAULT_POLICYHOLDER,
            relationship=normalize_relationship(self.relationship),
            priority=priority_from_ordinal(self.ordinal),
            is_active=is_active_from_pending(self.is_pending),
        )


class OpenDentalClient:
    """
    Client for the OpenDental REST API.

    Features:
    - Availability check
    - Incremental patient export (DateTStamp filter)
    - Per-patient insurance export
    - Automatic retry with backoff
    """

    DEFAULT_TIMEOUT = 30

    def __init__(
        self,
        base_url: str,
        auth_token: str,
        auth_scheme: str = "ODFHIR",
        timeout: int = DEFAULT_TIMEOUT,
        max_retries: int = 3,
        backoff_factor: float = 0.5,
    ):
        """
        Initialize OpenDental client.

        Args:
            base_url: OpenDental API URL (e.g., "http://localhost:30222")
            auth_token: Token part of the Authorization header
            auth_scheme: Scheme part of the Authorization header
            timeout: Request timeout in seconds
            max_retries: Maximum retry attempts for transient failures
            backoff_factor: Backoff factor for retries
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

        self.session = requests.Session()
        self.session.headers.update({
            "Authorization": f"{auth_scheme} {auth_token}".strip(),
            "Accept": "application/json",
        })

        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=backoff_factor,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET"],
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> "OpenDentalClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[dict] = None,
    ) -> requests.Response:
        """Make an API request with error handling."""
        url = f"{self.base_url}{endpoint}"

        try:
            response = self.session.request(
                method=method,
                url=url,
                params=params,
                timeout=self.timeout,
            )
        except requests.exceptions.ConnectionError as e:
            raise OpenDentalConnectionError(f"Failed to connect to OpenDental at {self.base_url}: {e}")
        except requests.exceptions.Timeout as e:
            raise OpenDentalConnectionError(f"Request to OpenDental timed out after {self.timeout}s: {e}")
        except requests.exceptions.RequestException as e:
            raise OpenDentalError(f"Request failed: {e}")

        if not response.ok:
            try:
                error_body = response.text
            except Exception:
                error_body = None
            raise OpenDentalAPIError(
                status_code=response.status_code,
                message=response.reason,
                response_body=error_body,
            )

        return response

    def _get_json_list(self, endpoint: str, params: Optional[dict] = None) -> list[dict[str, Any]]:
        response = self._request("GET", endpoint, params=params)
        try:
            data = response.json()
        except ValueError as e:
            raise OpenDentalError(f"Invalid JSON from {endpoint}: {e}")
        if not isinstance(data, list):
            raise OpenDentalError(f"Expected a JSON list from {endpoint}, got {type(data).__name__}")
        return data

    def test_connection(self) -> bool:
        """Test connection by fetching a single patient."""
        try:
            self._request("GET", "/api/v1/patients/Simple", params={"limit": 1})
            return True
        except OpenDentalAPIError as e:
            if e.status_code == 401:
                logger.error("OpenDental API authentication failed. Check auth_token in configuration.")
            else:
                logger.warning(f"OpenDental API returned status: {e.status_code}")
            return False
        except OpenDentalError as e:
            logger.error(f"Cannot connect to OpenDental API. Is OpenDental running? {e}")
            return False

    def is_api_available(self) -> bool:
        """Alias of test_connection() used by the sync engine."""
        available = self.test_connection()
        if available:
            logger.info("OpenDental API is available and responding")
        return available

    def list_patients(self, since: Optional[datetime] = None) -> list[PatientRecord]:
        """
        Export patients modified at or after `since`.

        Rows that cannot be converted are logged and skipped.

        Args:
            since: Lower bound for DateTStamp (None = all patients)

        Returns:
            PatientRecord list in API order
        """
        params: dict[str, Any] = {}
        if since is not None:
            params["DateTStamp"] = since.strftime(DATE_STAMP_FORMAT)

        logger.info(f"Exporting patients from OpenDental with DateTStamp >= {params.get('DateTStamp', '*')}")
        rows = self._get_json_list("/api/v1/patients/Simple", params=params)

        patients = []
        for row in rows:
            try:
                patients.append(OpenDentalPatient.from_api_response(row).to_record())
            except (KeyError, TypeError, ValueError) as e:
                logger.error(f"Error converting patient {row.get('PatNum')} to domain model: {e}")

        logger.info(f"Exported {len(patients)} patients from OpenDental")
        return patients

    def get_patient(self, pat_num: int) -> Optional[PatientRecord]:
        """Fetch a single patient by PatNum. Returns None when not found."""
        try:
            response = self._request("GET", f"/api/v1/patients/{pat_num}")
        except OpenDentalAPIError as e:
            if e.status_code == 404:
                logger.debug(f"Patient {pat_num} not found")
                return None
            raise
        return OpenDentalPatient.from_api_response(response.json()).to_record()

    def get_patient_insurance(self, pat_num: int) -> list[OpenDentalInsurance]:
        """
        Export insurance plans for one patient.

        A 404 means the patient has no insurance and yields an empty list.
        """
        try:
            rows = self._get_json_list(f"/api/v1/familymodules/{pat_num}/Insurance")
        except OpenDentalAPIError as e:
            if e.status_code == 404:
                logger.debug(f"No insurance found for patient {pat_num}")
                return []
            raise

        plans = []
        for row in rows:
            # The plan belongs to the patient asked for; rows may omit PatNum
            # or carry the subscriber's PatNum instead
            row["PatNum"] = pat_num
            plans.append(OpenDentalInsurance.from_api_response(row))

        if plans:
            logger.debug(f"Exported {len(plans)} insurance plans for patient {pat_num}")
        return plans
