"""
Error Taxonomy
==============
Exceptions shared by the provider clients and the routers.

    ConfigurationError     → 500, never retried, no credential details leak
    SessionError           → 404, user restarts the flow
    InputValidationError   → 400, names the missing/invalid field
    ProviderError          → 502 on generation endpoints; 429/5xx retryable
    ResponseContractError  → 502, never retried, carries the raw content
"""

from __future__ import annotations

from typing import Optional


class ArchetypeAPIError(Exception):
    """Base class for every error this service raises on purpose."""


class ConfigurationError(ArchetypeAPIError):
    """A required provider credential is not configured."""


class SessionError(ArchetypeAPIError):
    """Unknown or expired session, or no provider user associated yet."""


class InputValidationError(ArchetypeAPIError):
    """A required request field is missing or malformed."""

    def __init__(self, field: str, message: str | None = None) -> None:
        self.field = field
        super().__init__(message or f"{field} is required.")


class ProviderError(ArchetypeAPIError):
    """Upstream provider returned a non-success status or could not be reached.

    ``status_code`` is None when the provider could not be reached;
    ``transient`` marks timeouts and connection resets.
    """

    def __init__(
        self,
        provider: str,
        status_code: Optional[int],
        body: str,
        transient: bool = False,
    ) -> None:
        self.provider = provider
        self.status_code = status_code
        self.body = body
        self.transient = transient
        status = status_code if status_code is not None else "network"
        super().__init__(f"{provider} API error {status}: {body}")

    @property
    def retryable(self) -> bool:
        if self.status_code is None:
            return self.transient
        return self.status_code == 429 or self.status_code >= 500


class ResponseContractError(ArchetypeAPIError):
    """Provider call succeeded but the payload broke the expected JSON shape."""

    def __init__(self, message: str, raw_content: str | None = None) -> None:
        self.raw_content = raw_content
        super().__init__(message)
