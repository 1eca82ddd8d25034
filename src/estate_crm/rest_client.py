"""Client for the CRM REST backend.

Every call returns an :class:`ApiResponse`; nothing here raises for HTTP or
network trouble. Timeouts are reported separately from other network errors
so callers can decide whether to retry. The client itself never retries.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Literal, Optional

import requests

from estate_crm.model import EntityType, Record

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "http://localhost:5000/api"
DEFAULT_TIMEOUT = 30.0  # Seconds
TIMEOUT_MESSAGE = "Request timeout - the server took too long to respond"

ErrorKind = Literal["timeout", "network", "server"]

# URL segment per collection
ENTITY_PATHS: Dict[str, str] = {
    EntityType.CUSTOMERS.value: "customers",
    EntityType.BROKERS.value: "brokers",
    EntityType.PROJECTS.value: "projects",
    EntityType.RECEIPTS.value: "receipts",
    EntityType.INTERACTIONS.value: "interactions",
    EntityType.INVENTORY.value: "inventory",
    EntityType.MASTER_PROJECTS.value: "master-projects",
    EntityType.COMMISSION_PAYMENTS.value: "commission-payments",
    "companyReps": "company-reps",
}


@dataclass(slots=True)
class ApiResponse:
    success: bool
    data: Any = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    status_code: Optional[int] = None


def health_url(api_url: str) -> str:
    """Health check URL: the API root without its ``/api`` segment."""
    base = api_url.rstrip("/")
    if base.endswith("/api"):
        base = base[: -len("/api")]
    return f"{base}/health"


class RestClient:
    """Thin wrapper over :class:`requests.Session` for the backend routes."""

    def __init__(
        self,
        api_url: str = DEFAULT_API_URL,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def request(self, method: str, endpoint: str, payload: Any = None) -> ApiResponse:
        url = f"{self.api_url}/{endpoint.lstrip('/')}"
        return self._send(method, url, payload)

    def _send(self, method: str, url: str, payload: Any = None) -> ApiResponse:
        logger.debug("API request: %s %s", method, url)
        try:
            response = self.session.request(method, url, json=payload, timeout=self.timeout)
        except requests.Timeout:
            logger.error("API timeout [%s %s]", method, url)
            return ApiResponse(False, error=TIMEOUT_MESSAGE, error_kind="timeout")
        except requests.RequestException as exc:
            logger.error("API network error [%s %s]: %s", method, url, exc)
            return ApiResponse(False, error=str(exc) or "Network error", error_kind="network")

        try:
            body = response.json()
        except ValueError:
            body = None

        if not response.ok:
            message = body.get("error") if isinstance(body, dict) else None
            message = message or response.reason or "Request failed"
            logger.error("API error [%s %s]: %s", method, url, message)
            return ApiResponse(
                False, error=message, error_kind="server", status_code=response.status_code
            )
        if body is None:
            return ApiResponse(
                False,
                error="Response is not valid JSON",
                error_kind="server",
                status_code=response.status_code,
            )

        data = body.get("data", body) if isinstance(body, dict) else body
        return ApiResponse(True, data=data, status_code=response.status_code)

    # ------------------------------------------------------------------
    # Per-entity CRUD
    # ------------------------------------------------------------------

    @staticmethod
    def _path(entity: EntityType | str) -> str:
        key = entity.value if isinstance(entity, EntityType) else entity
        try:
            return ENTITY_PATHS[key]
        except KeyError:
            raise ValueError(f"Unknown entity collection: {key}") from None

    def list(self, entity: EntityType | str) -> ApiResponse:
        return self.request("GET", self._path(entity))

    def get(self, entity: EntityType | str, record_id: str) -> ApiResponse:
        return self.request("GET", f"{self._path(entity)}/{record_id}")

    def create(self, entity: EntityType | str, record: Record) -> ApiResponse:
        return self.request("POST", self._path(entity), record)

    def update(self, entity: EntityType | str, record_id: str, record: Record) -> ApiResponse:
        return self.request("PUT", f"{self._path(entity)}/{record_id}", record)

    def delete(self, entity: EntityType | str, record_id: str) -> ApiResponse:
        return self.request("DELETE", f"{self._path(entity)}/{record_id}")

    def bulk_create(self, entity: EntityType | str, records: Iterable[Record]) -> ApiResponse:
        """POST ``records`` to ``/{entity}/bulk`` wrapped as ``{entity: [...]}``."""
        key = entity.value if isinstance(entity, EntityType) else entity
        return self.request("POST", f"{self._path(entity)}/bulk", {key: list(records)})

    # ------------------------------------------------------------------
    # Settings, backups and health
    # ------------------------------------------------------------------

    def get_settings(self) -> ApiResponse:
        return self.request("GET", "settings")

    def update_settings(self, settings: Dict[str, Any]) -> ApiResponse:
        return self.request("PUT", "settings", settings)

    def export_backup(self) -> ApiResponse:
        return self.request("GET", "backup/export")

    def import_backup(self, backup: Dict[str, Any]) -> ApiResponse:
        return self.request("POST", "backup/import", backup)

    def clear_backup(self) -> ApiResponse:
        return self.request("DELETE", "backup/clear")

    def health(self) -> ApiResponse:
        return self._send("GET", health_url(self.api_url))


__all__ = [
    "ApiResponse",
    "DEFAULT_API_URL",
    "DEFAULT_TIMEOUT",
    "ENTITY_PATHS",
    "RestClient",
    "TIMEOUT_MESSAGE",
    "health_url",
]
