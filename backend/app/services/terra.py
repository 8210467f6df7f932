"""
Terra Service
=============
Thin HTTP wrapper around the Terra REST API v2.

Responsibilities:
- generate_widget_session(): start the hosted auth widget for a session
- fetch_category(): one time-windowed GET against /daily, /sleep, /activity
  or /body; failures are logged and come back as ``[]``
- fetch_all(): the four category fetches concurrently, fan-out/fan-in

Terra records are returned untouched. The only shaping done here is
unwrapping the response envelope, which comes in two flavours:
``{"data": [...]}`` and ``{"data": {"data": [...]}}``.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date
from typing import Any, Optional

import httpx

from app.config import Settings, get_settings
from app.errors import ConfigurationError, ProviderError
from app.models.terra import TerraHealthData, TerraRecord

logger = logging.getLogger(__name__)

CATEGORIES = ("daily", "sleep", "activity", "body")


# ---------------------------------------------------------------------------
# Envelope normalisation
# ---------------------------------------------------------------------------


def extract_records(payload: Any) -> Optional[list[TerraRecord]]:
    """Find the record list in a Terra response body.

    Returns None when neither known envelope shape matches.
    """
    if not isinstance(payload, dict):
        return None
    outer = payload.get("data")
    if isinstance(outer, list):
        return outer
    if isinstance(outer, dict) and isinstance(outer.get("data"), list):
        return outer["data"]
    return None


# ---------------------------------------------------------------------------
# TerraClient
# ---------------------------------------------------------------------------


class TerraClient:
    """Makes authenticated requests to the Terra REST API v2."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()

    @property
    def base_url(self) -> str:
        return self._settings.terra_base_url.rstrip("/")

    def require_credentials(self) -> None:
        """Raise ConfigurationError unless both dev id and API key are set."""
        if not self._settings.terra_dev_id or not self._settings.terra_api_key:
            logger.error("Terra API credentials (TERRA_DEV_ID / TERRA_API_KEY) are not configured")
            raise ConfigurationError("Terra API credentials are not configured.")

    def _headers(self) -> dict[str, str]:
        return {
            "dev-id": self._settings.terra_dev_id,
            "x-api-key": self._settings.terra_api_key,
        }

    # ---- Auth widget -------------------------------------------------------

    async def generate_widget_session(
        self,
        reference_id: str,
        success_redirect_url: str,
        failure_redirect_url: str,
    ) -> str:
        """POST /auth/generateWidgetSession and return the hosted widget URL.

        Raises ProviderError on a non-2xx reply, a non-success status, or a
        reply without a URL.
        """
        self.require_credentials()

        body = {
            "reference_id": reference_id,
            "language": "en",
            "auth_success_redirect_url": success_redirect_url,
            "auth_failure_redirect_url": failure_redirect_url,
        }
        logger.info("Requesting Terra widget session for reference %s", reference_id)

        try:
            async with httpx.AsyncClient(timeout=self._settings.terra_timeout_seconds) as client:
                response = await client.post(
                    f"{self.base_url}/auth/generateWidgetSession",
                    json=body,
                    headers=self._headers(),
                )
        except httpx.HTTPError as exc:
            raise ProviderError("Terra", None, str(exc)) from exc

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        if not response.is_success or data.get("status") != "success" or not data.get("url"):
            message = data.get("message")
            logger.error(
                "Terra generateWidgetSession failed (%s): %s",
                response.status_code,
                response.text,
            )
            raise ProviderError("Terra", response.status_code, message or "Unknown API error")

        return data["url"]

    # ---- Data ----------------------------------------------------------------

    async def fetch_category(
        self,
        category: str,
        user_id: str,
        start_date: date,
        end_date: date,
    ) -> list[TerraRecord]:
        """GET /<category> for the date range. Never raises: errors yield ``[]``."""
        params = {
            "user_id": user_id,
            "start_date": start_date.isoformat(),
            "end_date": end_date.isoformat(),
            "to_webhook": "false",
            "with_samples": "false",
        }
        try:
            async with httpx.AsyncClient(timeout=self._settings.terra_timeout_seconds) as client:
                response = await client.get(
                    f"{self.base_url}/{category}",
                    params=params,
                    headers=self._headers(),
                )
            if not response.is_success:
                logger.error(
                    "Terra API error (/%s, %s): %s",
                    category,
                    response.status_code,
                    response.text,
                )
                return []
            payload = response.json()
        except (httpx.HTTPError, ValueError):
            logger.exception("Error calling Terra API for /%s", category)
            return []

        records = extract_records(payload)
        if records is None:
            logger.warning(
                "Unexpected Terra response structure for /%s, no data array found: %.200s",
                category,
                payload,
            )
            return []
        return records

    async def fetch_all(self, user_id: str, start_date: date, end_date: date) -> TerraHealthData:
        """Fetch all four categories concurrently and wait for every one.

        Raises ConfigurationError before any request if credentials are unset.
        """
        self.require_credentials()

        daily, sleep, activity, body = await asyncio.gather(
            *(self.fetch_category(c, user_id, start_date, end_date) for c in CATEGORIES)
        )
        return TerraHealthData(daily=daily, sleep=sleep, activity=activity, body=body)
