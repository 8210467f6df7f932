"""
OpenAI Transport
================
Authenticated JSON POSTs to the OpenAI REST API with the retry policy
shared by text and image generation:

- 429, any 5xx, timeouts and connection resets are retryable
- retry at most ``generation_max_retries`` times (1) after a fixed
  ``generation_retry_delay_seconds`` (1.0s), no exponential backoff
- everything else propagates on the first failure
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from app.config import Settings, get_settings
from app.errors import ConfigurationError, ProviderError, ResponseContractError

logger = logging.getLogger(__name__)

_PROVIDER = "OpenAI"


class OpenAIClient:
    """POSTs JSON to OpenAI and returns the decoded body."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()

    def require_credentials(self) -> None:
        if not self._settings.openai_api_key:
            logger.error("OpenAI API key (OPENAI_API_KEY) is not configured")
            raise ConfigurationError("OpenAI API key is not configured.")

    async def post_json(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        """POST with retry. Raises ProviderError once retries are exhausted."""
        self.require_credentials()

        max_retries = self._settings.generation_max_retries
        attempt = 0
        while True:
            attempt += 1
            logger.info("OpenAI %s attempt %d", path, attempt)
            try:
                return await self._post_once(path, payload)
            except ProviderError as exc:
                if not exc.retryable or attempt > max_retries:
                    raise
                logger.warning(
                    "OpenAI %s failed (%s), retrying in %.1fs",
                    path,
                    exc.status_code if exc.status_code is not None else "network error",
                    self._settings.generation_retry_delay_seconds,
                )
                await asyncio.sleep(self._settings.generation_retry_delay_seconds)

    async def _post_once(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self._settings.openai_api_key}",
            "Content-Type": "application/json",
        }
        url = f"{self._settings.openai_base_url.rstrip('/')}{path}"

        try:
            async with httpx.AsyncClient(timeout=self._settings.openai_timeout_seconds) as client:
                response = await client.post(url, headers=headers, json=payload)
        except (httpx.TimeoutException, httpx.NetworkError) as exc:
            logger.warning("Network error calling OpenAI %s: %r", path, exc)
            raise ProviderError(_PROVIDER, None, str(exc) or type(exc).__name__, transient=True) from exc
        except httpx.HTTPError as exc:
            logger.error("Error calling OpenAI %s: %r", path, exc)
            raise ProviderError(_PROVIDER, None, str(exc) or type(exc).__name__) from exc

        if not response.is_success:
            logger.error("OpenAI API error (%s, %s): %s", path, response.status_code, response.text)
            raise ProviderError(_PROVIDER, response.status_code, response.text)

        try:
            data = response.json()
        except ValueError as exc:
            raise ResponseContractError("OpenAI returned a non-JSON body.", response.text) from exc
        if not isinstance(data, dict):
            raise ResponseContractError("OpenAI returned an unexpected body.", response.text)
        return data
