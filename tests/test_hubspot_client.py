"""Tests for the HubSpotClient service."""

from __future__ import annotations

from unittest.mock import patch

import httpx
import pytest

from sales_intel.services.hubspot_client import (
    INITIAL_BACKOFF_SECONDS,
    MAX_RETRIES,
    HubSpotAPIError,
    HubSpotClient,
)


class TestGetObject:
    def test_fetches_object_with_associations(self, mock_http_response):
        client = HubSpotClient(token="test-token")
        payload = {"id": "123", "properties": {"dealname": "Acme Renewal"}}

        with patch.object(client._client, "request", return_value=mock_http_response(payload)) as req:
            data = client.get_object("deal", "123", associations=["companies"])

        assert data == payload
        method, path = req.call_args.args
        assert (method, path) == ("GET", "/crm/v3/objects/deals/123")
        assert req.call_args.kwargs["params"] == {"associations": "companies"}

    def test_unsupported_object_type_rejected(self):
        client = HubSpotClient(token="test-token")
        with pytest.raises(HubSpotAPIError, match="Unsupported object type"):
            client.get_object("tickets", "1")


class TestSearchObjects:
    def test_builds_search_body_and_clamps_limit(self, mock_http_response):
        client = HubSpotClient(token="test-token")
        with patch.object(client._client, "request", return_value=mock_http_response({"results": []})) as req:
            client.search_objects("companies", query="acme", properties=["name"], limit=500)

        assert req.call_args.args == ("POST", "/crm/v3/objects/companies/search")
        assert req.call_args.kwargs["json"] == {"limit": 100, "query": "acme", "properties": ["name"]}


class TestListAssociations:
    def test_returns_results_list(self, mock_http_response):
        client = HubSpotClient(token="test-token")
        payload = {"results": [{"toObjectId": 7}, {"toObjectId": 8}]}
        with patch.object(client._client, "request", return_value=mock_http_response(payload)) as req:
            results = client.list_associations("deals", "123", "contacts")

        assert results == payload["results"]
        assert req.call_args.args[1] == "/crm/v4/objects/deals/123/associations/contacts"


class TestRetryBehaviour:
    @patch("sales_intel.services.hubspot_client.time.sleep")
    def test_retries_on_timeout_then_succeeds(self, mock_sleep, mock_http_response):
        client = HubSpotClient(token="test-token")
        with patch.object(
            client._client, "request",
            side_effect=[httpx.TimeoutException("timeout"), mock_http_response({"id": "1"})],
        ) as req:
            assert client.get_object("contacts", "1") == {"id": "1"}

        assert req.call_count == 2
        mock_sleep.assert_called_once_with(INITIAL_BACKOFF_SECONDS)

    @patch("sales_intel.services.hubspot_client.time.sleep")
    def test_retries_server_errors_until_exhausted(self, mock_sleep, mock_http_response):
        client = HubSpotClient(token="test-token")
        with patch.object(
            client._client, "request", return_value=mock_http_response({}, status_code=503),
        ) as req:
            with pytest.raises(HubSpotAPIError, match=f"after {MAX_RETRIES} retries"):
                client.get_pipeline("default")

        assert req.call_count == MAX_RETRIES

    @patch("sales_intel.services.hubspot_client.time.sleep")
    def test_client_errors_not_retried(self, mock_sleep, mock_http_response):
        client = HubSpotClient(token="test-token")
        with patch.object(
            client._client, "request", return_value=mock_http_response({}, status_code=404),
        ) as req:
            with pytest.raises(HubSpotAPIError) as exc_info:
                client.get_object("deals", "missing")

        assert exc_info.value.status_code == 404
        assert req.call_count == 1
        mock_sleep.assert_not_called()
