"""
Terra Schemas
=============
Pydantic shapes for the wearable connection flow and the packaged
health data report. Python attributes are snake_case; the wire format
is camelCase to match what the browser client sends and reads.

Terra records are kept as opaque dicts; this service never interprets
the per-category schema, it only forwards it to the archetype model.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import Field

from app.models.base import CamelModel

TerraRecord = dict[str, Any]


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class ConfirmAuthRequest(CamelModel):
    """Sent by the browser after Terra redirects back to the flow page.

    Both fields are optional at the schema level so the router can answer
    a missing field with 400 naming it. Wrong types reach the app-wide
    validation handler, which also answers 400.
    """

    session_id: Optional[str] = None
    terra_user_id_from_url: Optional[str] = None


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

class WidgetSessionResponse(CamelModel):
    widget_url: str
    session_id: str


class MessageResponse(CamelModel):
    message: str


class TerraHealthData(CamelModel):
    """The four Terra summary collections, as returned by the provider."""

    daily: list[TerraRecord] = Field(default_factory=list)
    sleep: list[TerraRecord] = Field(default_factory=list)
    activity: list[TerraRecord] = Field(default_factory=list)
    body: list[TerraRecord] = Field(default_factory=list)


class HealthDataReport(CamelModel):
    """What the archetype model receives: raw collections plus coverage notes."""

    time_period_days: int = Field(..., ge=1)
    health_data: TerraHealthData
    data_availability_notes: list[str]
