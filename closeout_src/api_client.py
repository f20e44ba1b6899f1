"""REST adapters for the clinic API.

Implements the collaborator contracts over HTTP. Documents use the API's
schema (camelCase keys, `_id`), converted with the models' from_dict.
Retries are not attempted; each request carries a timeout.
"""

import logging
from typing import Any

import requests

from .collaborators import EncounterStore, RegimenCatalog, ResultStore
from .config import config
from .errors import (
    InvalidTransitionError,
    NotFoundError,
    PersistenceError,
    RegimenValidationError,
)
from .models import ClinicalResult, EncounterStatus, TreatmentRegimen

logger = logging.getLogger(__name__)

REGIMENS_PATH = "arvrregimens"
RESULTS_PATH = "results"
BOOKINGS_PATH = "bookings"


class ClinicApiClient:
    """Thin JSON client for the clinic REST API (bearer token auth)."""

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        timeout: float | None = None,
        session: requests.Session | None = None,
    ):
        self.base_url = (base_url or config.API_BASE_URL or "").rstrip("/")
        if not self.base_url:
            raise ValueError("API base URL not configured (set API_BASE_URL)")
        self.timeout = timeout if timeout is not None else config.API_TIMEOUT_SECONDS

        self.session = session or requests.Session()
        self.session.headers.update({
            "Accept": "application/json",
            "Content-Type": "application/json",
        })
        token = token or config.API_TOKEN
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"

    def request(
        self,
        method: str,
        path: str,
        body: dict | None = None,
    ) -> Any:
        """Send a request and return the decoded JSON body.

        Raises:
            requests.HTTPError: For non-2xx responses.
            requests.RequestException: For transport failures and timeouts.
        """
        url = f"{self.base_url}/{path.lstrip('/')}"
        logger.debug(f"{method} {url}")
        response = self.session.request(method, url, json=body, timeout=self.timeout)
        response.raise_for_status()
        if not response.content:
            return None
        return response.json()

    def get(self, path: str) -> Any:
        return self.request("GET", path)

    def post(self, path: str, body: dict) -> Any:
        return self.request("POST", path, body)

    def put(self, path: str, body: dict) -> Any:
        return self.request("PUT", path, body)


def _status_code(error: requests.RequestException) -> int | None:
    response = getattr(error, "response", None)
    return response.status_code if response is not None else None


def _describe(error: requests.RequestException) -> str:
    response = getattr(error, "response", None)
    if response is not None:
        try:
            body = response.json()
        except ValueError:
            body = None
        message = body.get("message") if isinstance(body, dict) else None
        if message:
            return f"{response.status_code}: {message}"
        return f"HTTP {response.status_code}"
    return str(error)


class ApiRegimenCatalog(RegimenCatalog):
    """Regimen catalog backed by the /arvrregimens endpoints."""

    def __init__(self, client: ClinicApiClient):
        self.client = client

    def create(self, fields: dict[str, Any]) -> TreatmentRegimen:
        try:
            data = self.client.post(REGIMENS_PATH, fields)
        except requests.RequestException as e:
            status = _status_code(e)
            if status is not None and 400 <= status < 500:
                raise RegimenValidationError(f"Regimen rejected: {_describe(e)}") from e
            raise PersistenceError(f"Regimen create failed: {_describe(e)}") from e
        return TreatmentRegimen.from_dict(data or {})

    def get_by_id(self, regimen_id: str) -> TreatmentRegimen:
        try:
            data = self.client.get(f"{REGIMENS_PATH}/{regimen_id}")
        except requests.RequestException as e:
            if _status_code(e) == 404:
                raise NotFoundError("regimen", regimen_id) from e
            raise PersistenceError(f"Regimen lookup failed: {_describe(e)}") from e
        return TreatmentRegimen.from_dict(data)


class ApiResultStore(ResultStore):
    """Result store backed by the /results endpoints."""

    def __init__(self, client: ClinicApiClient):
        self.client = client

    def create(self, payload: dict[str, Any]) -> ClinicalResult:
        try:
            data = self.client.post(RESULTS_PATH, payload)
        except requests.RequestException as e:
            raise PersistenceError(f"Result create failed: {_describe(e)}") from e
        return ClinicalResult.from_dict(data or {})

    def update(self, result_id: str, fields: dict[str, Any]) -> ClinicalResult:
        try:
            data = self.client.put(f"{RESULTS_PATH}/{result_id}", fields)
        except requests.RequestException as e:
            if _status_code(e) == 404:
                raise NotFoundError("result", result_id) from e
            raise PersistenceError(f"Result update failed: {_describe(e)}") from e
        return ClinicalResult.from_dict(data or {})

    def find_by_encounter_id(self, encounter_id: str) -> ClinicalResult | None:
        try:
            data = self.client.get(f"{RESULTS_PATH}/booking/{encounter_id}")
        except requests.RequestException as e:
            if _status_code(e) == 404:
                return None
            raise PersistenceError(f"Result lookup failed: {_describe(e)}") from e

        # The endpoint answers with either a single document or a list
        if isinstance(data, list):
            data = data[0] if data else None
        if not data:
            return None
        return ClinicalResult.from_dict(data)


class ApiEncounterStore(EncounterStore):
    """Encounter status updates through PUT /bookings/{id}."""

    def __init__(self, client: ClinicApiClient):
        self.client = client

    def set_status(self, encounter_id: str, status: EncounterStatus) -> None:
        try:
            self.client.put(f"{BOOKINGS_PATH}/{encounter_id}", {"status": status.value})
        except requests.RequestException as e:
            code = _status_code(e)
            if code == 404:
                raise NotFoundError("encounter", encounter_id) from e
            if code in (400, 409, 422):
                raise InvalidTransitionError(encounter_id, None, status.value) from e
            raise PersistenceError(f"Status update failed: {_describe(e)}") from e


def get_api_stores(
    client: ClinicApiClient | None = None,
) -> tuple[ApiRegimenCatalog, ApiResultStore, ApiEncounterStore]:
    """Factory function - the three REST collaborators sharing one client."""
    client = client or ClinicApiClient()
    logger.info(f"Using clinic API at {client.base_url}")
    return ApiRegimenCatalog(client), ApiResultStore(client), ApiEncounterStore(client)
