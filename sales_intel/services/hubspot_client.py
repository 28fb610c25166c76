"""HTTP client for the HubSpot CRM v3/v4 REST API with retry logic and
timeout handling.

Used for two things:
  * resolving the point-in-time entity snapshot a job analyses, and
  * backing the static fallback CRM tools when MCP tool discovery fails.

HubSpot API docs: https://developers.hubspot.com/docs/api/crm
All requests use a private-app access token passed as a Bearer token.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any

import httpx

from sales_intel.config import HUBSPOT_ACCESS_TOKEN, HUBSPOT_BASE_URL
from sales_intel.services.metrics import metrics

logger = logging.getLogger(__name__)

# ── Retry configuration ─────────────────────────────────────────────
MAX_RETRIES = 3
INITIAL_BACKOFF_SECONDS = 1.0
REQUEST_TIMEOUT_SECONDS = 15.0

OBJECT_TYPES = ("deals", "companies", "contacts")


class HubSpotAPIError(Exception):
    """Raised when a HubSpot API call fails after all retries."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class HubSpotClient:
    """Thin wrapper around the HubSpot CRM REST API with automatic retries.

    Timeouts, connection errors and 5xx responses are retried with
    exponential backoff; 4xx responses fail immediately.
    """

    def __init__(self, token: str | None = None, base_url: str | None = None):
        self._token = token or HUBSPOT_ACCESS_TOKEN
        self._base_url = base_url or HUBSPOT_BASE_URL
        self._client = httpx.Client(
            base_url=self._base_url,
            headers={
                "Authorization": f"Bearer {self._token}",
                "Content-Type": "application/json",
            },
            timeout=REQUEST_TIMEOUT_SECONDS,
        )

    # ── Internal helpers ─────────────────────────────────────────────

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Execute an HTTP request with exponential-backoff retries."""
        operation = f"{method} {path}"
        last_error: Exception | None = None
        for attempt in range(1, MAX_RETRIES + 1):
            t0 = time.perf_counter()
            try:
                response = self._client.request(method, path, params=params, json=json_body)
                if response.status_code >= 500:
                    raise HubSpotAPIError(
                        f"Server error {response.status_code}: {response.text}",
                        status_code=response.status_code,
                    )
                if response.status_code >= 400:
                    raise HubSpotAPIError(
                        f"Client error {response.status_code}: {response.text}",
                        status_code=response.status_code,
                    )
                metrics.record_success(
                    "hubspot", operation, latency_ms=(time.perf_counter() - t0) * 1000,
                )
                return response.json()

            except (httpx.TimeoutException, httpx.ConnectError) as exc:
                last_error = exc
                metrics.record_failure("hubspot", operation, error_type=type(exc).__name__)
                logger.warning(
                    "HubSpot API attempt %d/%d failed (%s). Retrying in %.1fs…",
                    attempt,
                    MAX_RETRIES,
                    type(exc).__name__,
                    INITIAL_BACKOFF_SECONDS * (2 ** (attempt - 1)),
                )
            except HubSpotAPIError as exc:
                metrics.record_failure("hubspot", operation, error_type=f"{exc.status_code}")
                if exc.status_code and exc.status_code >= 500:
                    last_error = exc
                    logger.warning(
                        "HubSpot API server error on attempt %d/%d. Retrying…",
                        attempt,
                        MAX_RETRIES,
                    )
                else:
                    raise

            backoff = INITIAL_BACKOFF_SECONDS * (2 ** (attempt - 1))
            time.sleep(backoff)

        raise HubSpotAPIError(
            f"HubSpot API request failed after {MAX_RETRIES} retries: {last_error}"
        )

    @staticmethod
    def _check_object_type(object_type: str) -> str:
        normalized = object_type.lower().strip()
        if normalized in ("deal", "company", "contact"):
            normalized = "companies" if normalized == "company" else f"{normalized}s"
        if normalized not in OBJECT_TYPES:
            raise HubSpotAPIError(
                f"Unsupported object type {object_type!r}; expected one of {', '.join(OBJECT_TYPES)}",
            )
        return normalized

    # ── Public API methods ───────────────────────────────────────────

    def get_object(
        self,
        object_type: str,
        object_id: str,
        *,
        associations: list[str] | None = None,
    ) -> dict[str, Any]:
        """Fetch a single CRM object (``properties`` plus any requested associations)."""
        object_type = self._check_object_type(object_type)
        params = {"associations": ",".join(associations)} if associations else None
        return self._request("GET", f"/crm/v3/objects/{object_type}/{object_id}", params=params)

    def get_pipeline(self, pipeline_id: str) -> dict[str, Any]:
        """Return a deal pipeline definition including its stage labels."""
        return self._request("GET", f"/crm/v3/pipelines/deals/{pipeline_id}")

    def search_objects(
        self,
        object_type: str,
        *,
        query: str | None = None,
        filter_groups: list[dict[str, Any]] | None = None,
        properties: list[str] | None = None,
        limit: int = 10,
    ) -> dict[str, Any]:
        """Full-text / filtered search over deals, companies or contacts."""
        object_type = self._check_object_type(object_type)
        body: dict[str, Any] = {"limit": max(1, min(int(limit), 100))}
        if query:
            body["query"] = query
        if filter_groups:
            body["filterGroups"] = filter_groups
        if properties:
            body["properties"] = properties
        return self._request("POST", f"/crm/v3/objects/{object_type}/search", json_body=body)

    def list_associations(
        self,
        object_type: str,
        object_id: str,
        to_object_type: str,
    ) -> list[dict[str, Any]]:
        """List objects of ``to_object_type`` associated with the given object."""
        object_type = self._check_object_type(object_type)
        to_object_type = self._check_object_type(to_object_type)
        data = self._request(
            "GET", f"/crm/v4/objects/{object_type}/{object_id}/associations/{to_object_type}",
        )
        return data.get("results", [])


# ── Module-level singleton (thread-safe) ────────────────────────────
_client: HubSpotClient | None = None
_client_lock = threading.Lock()


def get_hubspot_client() -> HubSpotClient:
    """Return a module-level HubSpotClient singleton (double-checked locking)."""
    global _client
    if _client is None:
        with _client_lock:
            if _client is None:
                _client = HubSpotClient()
    return _client
