"""Shared test fixtures for the sales intelligence test suite."""

from __future__ import annotations

import os
from unittest.mock import MagicMock

import pytest


def pytest_configure(config):
    """Set test environment variables BEFORE collection starts.

    This runs before any imports, so config.py won't fail on module load.
    """
    os.environ.setdefault("ANTHROPIC_API_KEY", "test-anthropic-key-123")
    os.environ.setdefault("HUBSPOT_ACCESS_TOKEN", "test-hubspot-token-456")
    os.environ.setdefault("METRICS_ENABLED", "false")
    os.environ.pop("FIRECRAWL_API_KEY", None)


@pytest.fixture
def mock_http_response():
    """Factory fixture for creating mock httpx responses."""

    def _make(data, status_code: int = 200):
        mock = MagicMock()
        mock.status_code = status_code
        mock.json.return_value = data
        mock.text = str(data)
        return mock

    return _make


@pytest.fixture
def store(tmp_path):
    """A JobStore backed by a fresh SQLite file."""
    from sales_intel.jobs.models import init_db, make_engine, make_session_factory
    from sales_intel.jobs.store import JobStore

    engine = make_engine(f"sqlite:///{tmp_path / 'jobs.db'}")
    init_db(engine)
    yield JobStore(make_session_factory(engine))
    engine.dispose()


@pytest.fixture
def progress_events():
    """A progress callback that records every event it receives."""
    events = []

    def _callback(event):
        events.append(event)

    _callback.events = events
    return _callback
