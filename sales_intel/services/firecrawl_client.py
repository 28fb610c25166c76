"""HTTP client for the Firecrawl web scraping / search API.

Optional integration: when no API key is configured, or the availability
check does not answer within ``AVAILABILITY_TIMEOUT_SECONDS``, the tool registry
drops the web tools instead of letting them fail at call time.
"""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from sales_intel.config import FIRECRAWL_API_KEY, FIRECRAWL_BASE_URL
from sales_intel.services.metrics import metrics

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 60.0
AVAILABILITY_TIMEOUT_SECONDS = 5.0


class FirecrawlError(Exception):
    """Raised when a Firecrawl call fails."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class FirecrawlClient:
    """Scrape single pages and run web searches through Firecrawl."""

    def __init__(self, api_key: str | None = None, base_url: str | None = None):
        self._api_key = api_key if api_key is not None else FIRECRAWL_API_KEY
        self._base_url = base_url or FIRECRAWL_BASE_URL
        self._client = httpx.Client(
            base_url=self._base_url,
            headers={
                "Authorization": f"Bearer {self._api_key or ''}",
                "Content-Type": "application/json",
            },
            timeout=REQUEST_TIMEOUT_SECONDS,
        )

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    def _post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        if not self.configured:
            raise FirecrawlError("Firecrawl API key not configured")
        t0 = time.perf_counter()
        try:
            response = self._client.post(path, json=body)
        except httpx.HTTPError as exc:
            metrics.record_failure("firecrawl", path, error_type=type(exc).__name__)
            raise FirecrawlError(f"Firecrawl request to {path} failed: {exc}") from exc
        latency_ms = (time.perf_counter() - t0) * 1000
        if response.status_code >= 400:
            metrics.record_failure(
                "firecrawl", path, error_type=str(response.status_code), latency_ms=latency_ms,
            )
            raise FirecrawlError(
                f"Firecrawl {path} failed: {response.status_code} - {response.text}",
                status_code=response.status_code,
            )
        metrics.record_success("firecrawl", path, latency_ms=latency_ms)
        return response.json()

    # ── Public API ───────────────────────────────────────────────────

    def is_available(self) -> bool:
        """Cheap reachability check bounded by ``AVAILABILITY_TIMEOUT_SECONDS``."""
        if not self.configured:
            return False
        try:
            response = self._client.get("/", timeout=AVAILABILITY_TIMEOUT_SECONDS)
        except httpx.HTTPError as exc:
            logger.warning("Firecrawl availability check failed: %s", exc)
            return False
        # Any HTTP answer below 500 means the service is up (the root path may 404).
        return response.status_code < 500

    def scrape(self, url: str, *, only_main_content: bool = True) -> dict[str, Any]:
        """Scrape one URL and return its markdown content and metadata."""
        data = self._post(
            "/scrape",
            {"url": url, "formats": ["markdown"], "onlyMainContent": only_main_content},
        )
        return data.get("data", data)

    def search(self, query: str, *, limit: int = 5) -> list[dict[str, Any]]:
        """Search the web; returns the result records."""
        data = self._post("/search", {"query": query, "limit": max(1, min(int(limit), 20))})
        results = data.get("data", [])
        return results if isinstance(results, list) else [results]
