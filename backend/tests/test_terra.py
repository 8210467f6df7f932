"""
Tests for Terra Service
=======================
Covers:
- extract_records: direct envelope, doubly nested envelope, malformed
- TerraClient.fetch_category: headers + query params, non-2xx → [], network error → []
- TerraClient.fetch_all: partial failure tolerated, missing credentials fail fast
- TerraClient.generate_widget_session: success, provider failure

Run: pytest tests/test_terra.py -v
"""

from __future__ import annotations

import json
from datetime import date

import httpx
import pytest
import respx
from httpx import Response

from app.config import Settings
from app.errors import ConfigurationError, ProviderError
from app.models.terra import TerraHealthData
from app.services.terra import TerraClient, extract_records

# ---------------------------------------------------------------------------
# Fixtures / constants
# ---------------------------------------------------------------------------

_BASE = "https://api.tryterra.co/v2"
_USER_ID = "terra-user-123"
_START = date(2026, 2, 1)
_END = date(2026, 3, 1)


def _settings(**overrides) -> Settings:
    values = {"terra_dev_id": "dev-id", "terra_api_key": "api-key"}
    values.update(overrides)
    return Settings(_env_file=None, **values)


def _client(**overrides) -> TerraClient:
    return TerraClient(settings=_settings(**overrides))


# ---------------------------------------------------------------------------
# TestEnvelope
# ---------------------------------------------------------------------------

class TestEnvelope:

    def test_direct_data_array(self):
        assert extract_records({"data": [{"a": 1}]}) == [{"a": 1}]

    def test_doubly_nested_data_array(self):
        assert extract_records({"data": {"data": [{"a": 1}]}}) == [{"a": 1}]

    def test_malformed_payload(self):
        assert extract_records({"foo": 1}) is None

    def test_nested_without_list(self):
        assert extract_records({"data": {"data": "nope"}}) is None

    def test_non_dict_payload(self):
        assert extract_records([{"a": 1}]) is None


# ---------------------------------------------------------------------------
# TestFetchCategory
# ---------------------------------------------------------------------------

class TestFetchCategory:

    @pytest.mark.asyncio
    @respx.mock
    async def test_direct_envelope(self):
        respx.get(f"{_BASE}/daily").mock(return_value=Response(200, json={"data": [{"a": 1}]}))
        result = await _client().fetch_category("daily", _USER_ID, _START, _END)
        assert result == [{"a": 1}]

    @pytest.mark.asyncio
    @respx.mock
    async def test_nested_envelope(self):
        respx.get(f"{_BASE}/sleep").mock(
            return_value=Response(200, json={"data": {"data": [{"a": 1}]}})
        )
        result = await _client().fetch_category("sleep", _USER_ID, _START, _END)
        assert result == [{"a": 1}]

    @pytest.mark.asyncio
    @respx.mock
    async def test_malformed_envelope_returns_empty(self):
        respx.get(f"{_BASE}/body").mock(return_value=Response(200, json={"foo": 1}))
        result = await _client().fetch_category("body", _USER_ID, _START, _END)
        assert result == []

    @pytest.mark.asyncio
    @respx.mock
    async def test_sends_credentials_and_window(self):
        route = respx.get(f"{_BASE}/activity").mock(return_value=Response(200, json={"data": []}))
        await _client().fetch_category("activity", _USER_ID, _START, _END)

        assert route.called
        request = route.calls[0].request
        assert request.headers["dev-id"] == "dev-id"
        assert request.headers["x-api-key"] == "api-key"
        params = request.url.params
        assert params["user_id"] == _USER_ID
        assert params["start_date"] == "2026-02-01"
        assert params["end_date"] == "2026-03-01"
        assert params["to_webhook"] == "false"
        assert params["with_samples"] == "false"

    @pytest.mark.asyncio
    @respx.mock
    async def test_non_2xx_returns_empty(self):
        respx.get(f"{_BASE}/daily").mock(return_value=Response(500, text="boom"))
        result = await _client().fetch_category("daily", _USER_ID, _START, _END)
        assert result == []

    @pytest.mark.asyncio
    @respx.mock
    async def test_network_error_returns_empty(self):
        respx.get(f"{_BASE}/daily").mock(side_effect=httpx.ConnectError("refused"))
        result = await _client().fetch_category("daily", _USER_ID, _START, _END)
        assert result == []

    @pytest.mark.asyncio
    @respx.mock
    async def test_invalid_json_returns_empty(self):
        respx.get(f"{_BASE}/daily").mock(return_value=Response(200, text="not json"))
        result = await _client().fetch_category("daily", _USER_ID, _START, _END)
        assert result == []


# ---------------------------------------------------------------------------
# TestFetchAll
# ---------------------------------------------------------------------------

class TestFetchAll:

    @pytest.mark.asyncio
    @respx.mock
    async def test_one_failed_category_is_empty_others_populated(self):
        respx.get(f"{_BASE}/daily").mock(return_value=Response(200, json={"data": [{"d": 1}]}))
        respx.get(f"{_BASE}/sleep").mock(return_value=Response(503, text="unavailable"))
        respx.get(f"{_BASE}/activity").mock(
            return_value=Response(200, json={"data": {"data": [{"act": 1}]}})
        )
        respx.get(f"{_BASE}/body").mock(return_value=Response(200, json={"data": [{"b": 1}]}))

        result = await _client().fetch_all(_USER_ID, _START, _END)

        assert isinstance(result, TerraHealthData)
        assert result.daily == [{"d": 1}]
        assert result.sleep == []
        assert result.activity == [{"act": 1}]
        assert result.body == [{"b": 1}]

    @pytest.mark.asyncio
    @respx.mock
    async def test_issues_one_request_per_category(self):
        routes = {
            c: respx.get(f"{_BASE}/{c}").mock(return_value=Response(200, json={"data": []}))
            for c in ("daily", "sleep", "activity", "body")
        }
        await _client().fetch_all(_USER_ID, _START, _END)
        assert all(route.call_count == 1 for route in routes.values())

    @pytest.mark.asyncio
    @respx.mock(assert_all_called=False)
    async def test_missing_credentials_raise_before_any_request(self):
        route = respx.get(url__startswith=_BASE).mock(return_value=Response(200, json={"data": []}))
        with pytest.raises(ConfigurationError):
            await _client(terra_api_key="").fetch_all(_USER_ID, _START, _END)
        assert not route.called


# ---------------------------------------------------------------------------
# TestWidgetSession
# ---------------------------------------------------------------------------

class TestWidgetSession:

    @pytest.mark.asyncio
    @respx.mock
    async def test_returns_widget_url(self):
        route = respx.post(f"{_BASE}/auth/generateWidgetSession").mock(
            return_value=Response(200, json={"status": "success", "url": "https://widget.tryterra.co/abc"})
        )
        url = await _client().generate_widget_session(
            "session-1", "http://front/flow?sessionId=session-1", "http://front/?error=auth_failed"
        )

        assert url == "https://widget.tryterra.co/abc"
        sent = json.loads(route.calls[0].request.content)
        assert sent["reference_id"] == "session-1"
        assert sent["language"] == "en"
        assert sent["auth_success_redirect_url"] == "http://front/flow?sessionId=session-1"
        assert sent["auth_failure_redirect_url"] == "http://front/?error=auth_failed"

    @pytest.mark.asyncio
    @respx.mock
    async def test_error_status_raises_provider_error(self):
        respx.post(f"{_BASE}/auth/generateWidgetSession").mock(
            return_value=Response(200, json={"status": "error", "message": "bad dev id"})
        )
        with pytest.raises(ProviderError) as exc_info:
            await _client().generate_widget_session("s", "ok", "fail")
        assert exc_info.value.body == "bad dev id"

    @pytest.mark.asyncio
    @respx.mock
    async def test_non_2xx_raises_provider_error(self):
        respx.post(f"{_BASE}/auth/generateWidgetSession").mock(
            return_value=Response(401, json={"status": "error", "message": "unauthorized"})
        )
        with pytest.raises(ProviderError) as exc_info:
            await _client().generate_widget_session("s", "ok", "fail")
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_missing_credentials(self):
        with pytest.raises(ConfigurationError):
            await _client(terra_dev_id="").generate_widget_session("s", "ok", "fail")
