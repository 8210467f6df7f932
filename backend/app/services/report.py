"""
Health Report Packaging
=======================
Turns the four raw Terra collections into the report the archetype
model reads. Terra already summarises per day, so packaging is just
structure plus notes on which categories came back empty.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Optional, Union

from app.models.terra import HealthDataReport, TerraHealthData
from app.services.terra import TerraClient

logger = logging.getLogger(__name__)

_MISSING_NOTES = {
    "daily": "Daily summary data not available or empty for the period.",
    "sleep": "Sleep summary data not available or empty for the period.",
    "activity": "Activity summary data not available or empty for the period.",
    "body": "Body composition data not available or empty for the period.",
}
_ALL_PRESENT_NOTE = (
    "Data from all expected categories (daily, sleep, activity, body) "
    "appears to be present for the period."
)

_SECONDS_PER_DAY = 24 * 60 * 60


def package_health_report(
    raw: TerraHealthData,
    start: Union[date, datetime],
    end: Union[date, datetime],
) -> HealthDataReport:
    """Wrap raw collections with the window length and availability notes."""
    elapsed = (end - start).total_seconds()
    time_period_days = max(1, round(elapsed / _SECONDS_PER_DAY))

    notes = [note for category, note in _MISSING_NOTES.items() if not getattr(raw, category)]
    if not notes:
        notes.append(_ALL_PRESENT_NOTE)

    return HealthDataReport(
        time_period_days=time_period_days,
        health_data=raw,
        data_availability_notes=notes,
    )


def trailing_window(days: int, now: Optional[datetime] = None) -> tuple[datetime, datetime]:
    """(start, end) covering the last *days* days, ending now (UTC)."""
    end = now or datetime.now(timezone.utc)
    return end - timedelta(days=days), end


async def fetch_health_report(
    terra: TerraClient,
    terra_user_id: str,
    days: int,
    now: Optional[datetime] = None,
) -> HealthDataReport:
    """Fetch the trailing window from Terra and package it.

    Raises ConfigurationError if Terra credentials are missing; per-category
    failures surface only as availability notes.
    """
    start, end = trailing_window(days, now)
    logger.info(
        "Fetching health data for Terra user %s, range %s to %s",
        terra_user_id,
        start.date().isoformat(),
        end.date().isoformat(),
    )
    raw = await terra.fetch_all(terra_user_id, start.date(), end.date())
    return package_health_report(raw, start, end)
