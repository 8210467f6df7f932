"""
Tests for /api/archetype
========================
Covers:
- generate: happy path (no imageDataUrl in response), missing sessionId, no body
  and wrong type 400, unknown session 404, config error 500, provider error 502,
  contract error 502
- generate-image: happy path, empty prompt, missing prompt, no body and
  non-string prompt 400, provider error 502, config error 500

Run: pytest tests/test_archetype_routes.py -v
"""

from __future__ import annotations

from typing import Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from app.config import Settings, get_settings
from app.dependencies import get_archetype_generator, get_session_registry, get_terra_client
from app.errors import (
    ConfigurationError,
    InputValidationError,
    ProviderError,
    ResponseContractError,
)
from app.main import app
from app.models.archetype import ArchetypeResult, SliderValues
from app.models.terra import TerraHealthData
from app.services.sessions import SessionRegistry

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

_SETTINGS = Settings(_env_file=None, data_window_days=28)

_RESULT = ArchetypeResult(
    archetype_name="The Still Grove",
    archetype_description="Rooted, calm, and quietly powerful.",
    image_prompt="A serene figure in moss-coloured robes on a glowing stone.",
    slider_values=SliderValues(
        recovery_readiness=82,
        activity_load=34,
        sleep_stability=91,
        heart_rhythm_balance=78,
        consistency=85,
    ),
)


def _mock_terra() -> MagicMock:
    terra = MagicMock()
    terra.fetch_all = AsyncMock(
        return_value=TerraHealthData(daily=[{"d": 1}], sleep=[], activity=[], body=[])
    )
    return terra


def _mock_generator() -> MagicMock:
    generator = MagicMock()
    generator.generate_archetype = AsyncMock(return_value=_RESULT)
    generator.generate_image = AsyncMock(return_value="data:image/png;base64,aGVsbG8=")
    return generator


def _make_client(
    registry: Optional[SessionRegistry] = None,
    terra: Optional[MagicMock] = None,
    generator: Optional[MagicMock] = None,
) -> TestClient:
    registry = registry if registry is not None else SessionRegistry()
    terra = terra if terra is not None else _mock_terra()
    generator = generator if generator is not None else _mock_generator()
    app.dependency_overrides[get_settings] = lambda: _SETTINGS
    app.dependency_overrides[get_session_registry] = lambda: registry
    app.dependency_overrides[get_terra_client] = lambda: terra
    app.dependency_overrides[get_archetype_generator] = lambda: generator
    return TestClient(app)


def _confirmed_registry() -> SessionRegistry:
    registry = SessionRegistry()
    registry.store("s1", "terra-user-1")
    return registry


@pytest.fixture(autouse=True)
def _clear_overrides():
    yield
    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------

class TestGenerate:

    def test_happy_path(self):
        generator = _mock_generator()
        client = _make_client(_confirmed_registry(), generator=generator)

        resp = client.post("/api/archetype/generate", json={"sessionId": "s1"})

        assert resp.status_code == 200
        data = resp.json()
        assert data["archetypeName"] == "The Still Grove"
        assert data["imagePrompt"].startswith("A serene figure")
        assert data["sliderValues"]["sleepStability"] == 91
        assert "imageDataUrl" not in data

        report = generator.generate_archetype.await_args.args[0]
        assert report.time_period_days == 28
        assert report.health_data.daily == [{"d": 1}]

    def test_missing_session_id_is_400(self):
        client = _make_client()
        resp = client.post("/api/archetype/generate", json={})
        assert resp.status_code == 400
        assert "sessionId" in resp.json()["detail"]["message"]

    def test_no_body_is_400_naming_session_id(self):
        client = _make_client()
        resp = client.post("/api/archetype/generate")
        assert resp.status_code == 400
        assert resp.json()["detail"] == {"message": "sessionId is required.", "code": "missing_field"}

    def test_non_string_session_id_is_400(self):
        client = _make_client()
        resp = client.post("/api/archetype/generate", json={"sessionId": 42})
        assert resp.status_code == 400
        detail = resp.json()["detail"]
        assert detail["code"] == "invalid_field"
        assert detail["message"].startswith("sessionId")

    def test_unknown_session_is_404(self):
        generator = _mock_generator()
        client = _make_client(generator=generator)

        resp = client.post("/api/archetype/generate", json={"sessionId": "nope"})

        assert resp.status_code == 404
        assert "restart" in resp.json()["detail"]["message"].lower()
        generator.generate_archetype.assert_not_awaited()

    def test_config_error_is_500(self):
        generator = _mock_generator()
        generator.generate_archetype.side_effect = ConfigurationError("OpenAI API key is not configured.")
        client = _make_client(_confirmed_registry(), generator=generator)

        resp = client.post("/api/archetype/generate", json={"sessionId": "s1"})

        assert resp.status_code == 500
        assert resp.json()["detail"]["message"] == "Server configuration error."

    def test_terra_config_error_is_500(self):
        terra = _mock_terra()
        terra.fetch_all.side_effect = ConfigurationError("Terra API credentials are not configured.")
        client = _make_client(_confirmed_registry(), terra=terra)

        resp = client.post("/api/archetype/generate", json={"sessionId": "s1"})

        assert resp.status_code == 500

    def test_provider_error_is_502(self):
        generator = _mock_generator()
        generator.generate_archetype.side_effect = ProviderError("OpenAI", 503, "overloaded")
        client = _make_client(_confirmed_registry(), generator=generator)

        resp = client.post("/api/archetype/generate", json={"sessionId": "s1"})

        assert resp.status_code == 502
        detail = resp.json()["detail"]
        assert detail["code"] == "provider_error"
        assert detail["provider_status"] == 503

    def test_contract_error_is_502_with_raw_content(self):
        generator = _mock_generator()
        generator.generate_archetype.side_effect = ResponseContractError(
            "Parsed JSON from OpenAI is missing required fields: sliderValues.",
            '{"archetypeName": "X"}',
        )
        client = _make_client(_confirmed_registry(), generator=generator)

        resp = client.post("/api/archetype/generate", json={"sessionId": "s1"})

        assert resp.status_code == 502
        detail = resp.json()["detail"]
        assert detail["code"] == "invalid_provider_response"
        assert detail["raw_content"] == '{"archetypeName": "X"}'


class TestGenerateImage:

    def test_happy_path(self):
        generator = _mock_generator()
        client = _make_client(generator=generator)

        resp = client.post("/api/archetype/generate-image", json={"imagePrompt": "a glowing hourglass"})

        assert resp.status_code == 200
        assert resp.json() == {"imageUrl": "data:image/png;base64,aGVsbG8="}
        generator.generate_image.assert_awaited_once_with("a glowing hourglass")

    def test_missing_prompt_is_400(self):
        generator = _mock_generator()
        generator.generate_image.side_effect = InputValidationError(
            "imagePrompt", "Image prompt must be a non-empty string."
        )
        client = _make_client(generator=generator)

        resp = client.post("/api/archetype/generate-image", json={})

        assert resp.status_code == 400
        assert resp.json()["detail"]["code"] == "invalid_prompt"
        generator.generate_image.assert_awaited_once_with("")

    def test_no_body_is_400(self):
        generator = _mock_generator()
        generator.generate_image.side_effect = InputValidationError(
            "imagePrompt", "Image prompt must be a non-empty string."
        )
        client = _make_client(generator=generator)

        resp = client.post("/api/archetype/generate-image")

        assert resp.status_code == 400
        assert resp.json()["detail"]["code"] == "invalid_prompt"
        generator.generate_image.assert_awaited_once_with("")

    def test_non_string_prompt_is_400(self):
        generator = _mock_generator()
        client = _make_client(generator=generator)

        resp = client.post("/api/archetype/generate-image", json={"imagePrompt": 123})

        assert resp.status_code == 400
        assert resp.json()["detail"]["message"].startswith("imagePrompt")
        generator.generate_image.assert_not_awaited()

    def test_provider_error_is_502(self):
        generator = _mock_generator()
        generator.generate_image.side_effect = ProviderError("OpenAI", 500, "oops")
        client = _make_client(generator=generator)

        resp = client.post("/api/archetype/generate-image", json={"imagePrompt": "x"})

        assert resp.status_code == 502

    def test_config_error_is_500(self):
        generator = _mock_generator()
        generator.generate_image.side_effect = ConfigurationError("OpenAI API key is not configured.")
        client = _make_client(generator=generator)

        resp = client.post("/api/archetype/generate-image", json={"imagePrompt": "x"})

        assert resp.status_code == 500


class TestHealth:

    def test_health_check(self):
        client = TestClient(app)
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"
