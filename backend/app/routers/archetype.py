"""
Archetype Router
================
POST /api/archetype/generate        archetype text for a confirmed session
POST /api/archetype/generate-image  avatar image for an archetype's prompt

Status mapping:
    400  missing/empty request field
    404  unknown or expired session
    500  our configuration (credentials unset)
    502  OpenAI failed or replied outside the JSON contract
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status

from app.config import Settings, get_settings
from app.dependencies import get_archetype_generator, get_session_registry, get_terra_client
from app.errors import (
    ConfigurationError,
    InputValidationError,
    ProviderError,
    ResponseContractError,
    SessionError,
)
from app.models.archetype import (
    ArchetypeResult,
    GenerateArchetypeRequest,
    GenerateImageRequest,
    GenerateImageResponse,
)
from app.services.archetype import ArchetypeGenerator
from app.services.report import fetch_health_report
from app.services.sessions import SessionRegistry
from app.services.terra import TerraClient

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/archetype", tags=["archetype"])


def _generation_http_error(exc: Exception, what: str) -> HTTPException:
    """Translate a generation failure into the HTTP error the client sees."""
    if isinstance(exc, ConfigurationError):
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"message": "Server configuration error.", "code": "config_error"},
        )
    if isinstance(exc, ResponseContractError):
        return HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={
                "message": f"Failed to {what}: {exc}",
                "code": "invalid_provider_response",
                "raw_content": exc.raw_content,
            },
        )
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail={
            "message": f"Failed to {what}: generation provider error.",
            "code": "provider_error",
            "provider_status": getattr(exc, "status_code", None),
        },
    )


@router.post(
    "/generate",
    response_model=ArchetypeResult,
    response_model_exclude={"image_data_url"},
    summary="Generate an archetype from the session's recent health data",
    responses={
        400: {"description": "sessionId missing"},
        404: {"description": "Session unknown or expired"},
        500: {"description": "Server configuration error"},
        502: {"description": "Generation provider failed or returned invalid JSON"},
    },
)
async def generate_archetype(
    body: Optional[GenerateArchetypeRequest] = None,
    settings: Settings = Depends(get_settings),
    sessions: SessionRegistry = Depends(get_session_registry),
    terra: TerraClient = Depends(get_terra_client),
    generator: ArchetypeGenerator = Depends(get_archetype_generator),
) -> ArchetypeResult:
    body = body or GenerateArchetypeRequest()
    if not body.session_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": "sessionId is required.", "code": "missing_field"},
        )

    try:
        terra_user_id = sessions.require(body.session_id)
    except SessionError as exc:
        logger.warning("Archetype generation: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={
                "message": "Session not found or expired. Please restart the flow and connect your wearable.",
                "code": "session_not_found",
            },
        ) from exc

    try:
        report = await fetch_health_report(terra, terra_user_id, settings.data_window_days)
        return await generator.generate_archetype(report)
    except (ConfigurationError, ProviderError, ResponseContractError) as exc:
        logger.error("Archetype generation failed for session %s: %s", body.session_id, exc)
        raise _generation_http_error(exc, "generate archetype") from exc


@router.post(
    "/generate-image",
    response_model=GenerateImageResponse,
    summary="Render the archetype avatar as a data URL",
    responses={
        400: {"description": "imagePrompt missing or empty"},
        500: {"description": "Server configuration error"},
        502: {"description": "Image provider failed"},
    },
)
async def generate_image(
    body: Optional[GenerateImageRequest] = None,
    generator: ArchetypeGenerator = Depends(get_archetype_generator),
) -> GenerateImageResponse:
    body = body or GenerateImageRequest()
    try:
        image_url = await generator.generate_image(body.image_prompt or "")
    except InputValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": str(exc), "code": "invalid_prompt"},
        ) from exc
    except (ConfigurationError, ProviderError, ResponseContractError) as exc:
        logger.error("Archetype image generation failed: %s", exc)
        raise _generation_http_error(exc, "generate archetype image") from exc

    return GenerateImageResponse(image_url=image_url)
