"""
Archetype Generator
===================
Turns a packaged health report into a stylised "health archetype" via
OpenAI chat completions, then renders its avatar via image generation.

Text flow:
    1. Serialise the HealthDataReport (camelCase JSON, pretty-printed)
    2. Send the fixed system prompt + a user prompt embedding the report
       and its window, with ``response_format=json_object``
    3. Parse the message content as JSON, enforce the four required
       fields, normalise slider values → ArchetypeResult

Image flow:
    1. Forward ``imagePrompt`` verbatim to the image endpoint
    2. Request ``b64_json`` so no second download is needed
    3. Wrap as ``data:image/png;base64,...`` for direct display/export

Both calls go through OpenAIClient, which owns the single-retry policy.
"""

from __future__ import annotations

import json
import logging
import math
from typing import Any

from app.config import Settings, get_settings
from app.errors import InputValidationError, ResponseContractError
from app.models.archetype import (
    REQUIRED_ARCHETYPE_FIELDS,
    SLIDER_KEYS,
    ArchetypeResult,
    SliderValues,
)
from app.models.terra import HealthDataReport
from app.services.openai_client import OpenAIClient

logger = logging.getLogger(__name__)

_SYSTEM_PROMPT = """\
You are a personality designer creating imaginative, expressive health \
archetypes from biometric and lifestyle data. These are not clinical \
summaries: they are symbolic digital personas that reflect each user's \
health rhythms and patterns, like characters from a spiritual video game, \
a digital tarot deck, or a sci-fantasy wellness comic.

Each archetype must feel emotionally expressive and metaphorically tied to \
how the person moves, rests, recovers, and flows through life. It should \
feel personal, mythical, and a little larger-than-life.

Return a single JSON object with the following structure. Strictly return \
JSON only: no extra text, no markdown.

- "archetypeName" (string, max 3 words, title case): a poetic, symbolic \
name that feels like a legendary role or wellness companion. Avoid anything \
clinical or robotic.
- "archetypeDescription" (1-2 sentences): a short, emotionally engaging \
description of the archetype's personality, strengths, and journey. Use \
metaphor and myth, not medical terms.
- "imagePrompt" (string): a highly specific visual description of the \
character as a stylised digital avatar. Include the avatar's pose, \
expression and outfit; at least one symbolic prop related to health \
(e.g. flickering lantern, cracked compass, glowing hourglass); and a \
symbolic, emotionally charged environment (e.g. cosmic forest, underwater \
meditation cave, ritual canyon). Softly lit, textured, visually poetic. \
Style: low-poly fantasy, painted animation, stylised spiritual sci-fi. \
Avoid photorealism and generic neon tech.
- "sliderValues": object with these keys, each an integer from 0 to 100: \
"recoveryReadiness", "activityLoad", "sleepStability", \
"heartRhythmBalance", "consistency".

Expected format (only the JSON):

{
  "archetypeName": "Example Name",
  "archetypeDescription": "An emotionally rich description of the user's symbolic wellness persona.",
  "imagePrompt": "A detailed, stylised scene describing posture, mood, symbolic props, and setting.",
  "sliderValues": {
    "recoveryReadiness": 70,
    "activityLoad": 60,
    "sleepStability": 80,
    "heartRhythmBalance": 75,
    "consistency": 65
  }
}
"""


def build_user_prompt(report: HealthDataReport) -> str:
    report_json = json.dumps(report.model_dump(by_alias=True), indent=2)
    return (
        f"Here is the user's health data report for the last {report.time_period_days} days:\n\n"
        f"```json\n{report_json}\n```\n\n"
        "Please generate the health archetype based on this data, "
        "following the JSON format instructions precisely."
    )


class ArchetypeGenerator:
    """Generates archetype text and avatar images through OpenAI."""

    def __init__(
        self,
        settings: Settings | None = None,
        client: OpenAIClient | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._client = client or OpenAIClient(self._settings)

    async def generate_archetype(self, report: HealthDataReport) -> ArchetypeResult:
        """Generate name, description, image prompt and sliders for *report*.

        Raises ConfigurationError, ProviderError or ResponseContractError.
        """
        payload = {
            "model": self._settings.openai_text_model,
            "messages": [
                {"role": "system", "content": _SYSTEM_PROMPT},
                {"role": "user", "content": build_user_prompt(report)},
            ],
            "temperature": self._settings.openai_text_temperature,
            "response_format": {"type": "json_object"},
        }
        data = await self._client.post_json("/chat/completions", payload)

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            content = None
        if not content:
            logger.error("OpenAI completion is missing message content: %.500s", data)
            raise ResponseContractError(
                "Invalid response structure from OpenAI: missing content.",
                json.dumps(data),
            )

        result = parse_archetype(content)
        logger.info("Generated archetype %r", result.archetype_name)
        return result

    async def generate_image(self, prompt: str) -> str:
        """Render *prompt* and return it as a ``data:image/png;base64`` URL."""
        if not prompt or not prompt.strip():
            raise InputValidationError("imagePrompt", "Image prompt must be a non-empty string.")

        payload = {
            "model": self._settings.openai_image_model,
            "prompt": prompt,
            "n": 1,
            "size": self._settings.openai_image_size,
            "quality": self._settings.openai_image_quality,
            "style": self._settings.openai_image_style,
            "response_format": "b64_json",
        }
        data = await self._client.post_json("/images/generations", payload)

        try:
            b64 = data["data"][0]["b64_json"]
        except (KeyError, IndexError, TypeError):
            b64 = None
        if not b64 or not isinstance(b64, str):
            logger.error("OpenAI image response has no b64_json payload")
            raise ResponseContractError(
                "Image data not found in OpenAI response.",
                json.dumps(data)[:1000],
            )

        logger.info("Generated archetype image (%d base64 chars)", len(b64))
        return f"data:image/png;base64,{b64}"


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def parse_archetype(content: str) -> ArchetypeResult:
    """Parse the model's JSON reply. Raises ResponseContractError on any violation."""
    try:
        parsed = json.loads(content)
    except ValueError as exc:
        logger.error("Failed to parse JSON from OpenAI content: %.500s", content)
        raise ResponseContractError(
            "Failed to parse valid JSON from OpenAI response.", content
        ) from exc

    if not isinstance(parsed, dict):
        raise ResponseContractError("OpenAI response JSON is not an object.", content)

    missing = [field for field in REQUIRED_ARCHETYPE_FIELDS if not parsed.get(field)]
    if missing:
        logger.error("OpenAI archetype is missing fields %s: %.500s", missing, content)
        raise ResponseContractError(
            f"Parsed JSON from OpenAI is missing required fields: {', '.join(missing)}.",
            content,
        )

    for field in ("archetypeName", "archetypeDescription", "imagePrompt"):
        if not isinstance(parsed[field], str):
            raise ResponseContractError(f"{field} must be a string.", content)

    return ArchetypeResult(
        archetype_name=parsed["archetypeName"].strip(),
        archetype_description=parsed["archetypeDescription"].strip(),
        image_prompt=parsed["imagePrompt"].strip(),
        slider_values=_normalise_sliders(parsed["sliderValues"], content),
    )


def _normalise_sliders(raw: Any, content: str) -> SliderValues:
    """Round and clamp each slider into [0, 100]; every key must be numeric."""
    if not isinstance(raw, dict):
        raise ResponseContractError("sliderValues must be an object.", content)

    values: dict[str, int] = {}
    for key in SLIDER_KEYS:
        value = raw.get(key)
        if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
            raise ResponseContractError(f"sliderValues.{key} must be a number.", content)
        values[key] = min(100, max(0, round(value)))
    return SliderValues.model_validate(values)
