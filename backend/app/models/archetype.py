"""
Archetype Schemas
=================
Pydantic models for archetype text and image generation.

The five slider keys are fixed. Values are integers in [0, 100]; the
generation service rounds and clamps whatever the model returns before
building these objects.
"""

from __future__ import annotations

from typing import Optional

from pydantic import Field

from app.models.base import CamelModel

SLIDER_KEYS = (
    "recoveryReadiness",
    "activityLoad",
    "sleepStability",
    "heartRhythmBalance",
    "consistency",
)

REQUIRED_ARCHETYPE_FIELDS = (
    "archetypeName",
    "archetypeDescription",
    "imagePrompt",
    "sliderValues",
)


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class GenerateArchetypeRequest(CamelModel):
    session_id: Optional[str] = None


class GenerateImageRequest(CamelModel):
    image_prompt: Optional[str] = None


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

class SliderValues(CamelModel):
    recovery_readiness: int = Field(..., ge=0, le=100)
    activity_load: int = Field(..., ge=0, le=100)
    sleep_stability: int = Field(..., ge=0, le=100)
    heart_rhythm_balance: int = Field(..., ge=0, le=100)
    consistency: int = Field(..., ge=0, le=100)


class ArchetypeResult(CamelModel):
    """The generated persona. ``image_data_url`` is filled by a later step."""

    archetype_name: str
    archetype_description: str
    image_prompt: str
    slider_values: SliderValues
    image_data_url: Optional[str] = None


class GenerateImageResponse(CamelModel):
    image_url: str = Field(..., description="data:image/png;base64,... payload")
