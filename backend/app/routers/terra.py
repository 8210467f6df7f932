"""
Terra Router
============
Wearable connection flow and the health data report.

    POST   /api/terra/initiate-widget            new session + Terra widget URL
    POST   /api/terra/confirm-auth               bind Terra user id to session
    GET    /api/terra/callback                   widget redirect acknowledgement
    GET    /api/terra/data-report/{session_id}   trailing 28-day HealthDataReport
    DELETE /api/terra/session/{session_id}       forget the session

The session id is generated here and handed to Terra as ``reference_id``;
Terra sends the browser back to ``<frontend>/flow?sessionId=<id>`` with a
``user_id`` query param, which the browser posts to confirm-auth.
"""

from __future__ import annotations

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import PlainTextResponse

from app.config import Settings, get_settings
from app.dependencies import get_session_registry, get_terra_client
from app.errors import ConfigurationError, ProviderError, SessionError
from app.models.terra import (
    ConfirmAuthRequest,
    HealthDataReport,
    MessageResponse,
    WidgetSessionResponse,
)
from app.services.report import fetch_health_report
from app.services.sessions import SessionRegistry
from app.services.terra import TerraClient

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/terra", tags=["terra"])


# ---------------------------------------------------------------------------
# Connect
# ---------------------------------------------------------------------------

@router.post(
    "/initiate-widget",
    response_model=WidgetSessionResponse,
    summary="Start a Terra widget session",
    responses={500: {"description": "Terra credentials missing or Terra call failed"}},
)
async def initiate_widget(
    settings: Settings = Depends(get_settings),
    sessions: SessionRegistry = Depends(get_session_registry),
    terra: TerraClient = Depends(get_terra_client),
) -> WidgetSessionResponse:
    try:
        terra.require_credentials()
    except ConfigurationError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"message": "Server configuration error for Terra connection.", "code": "config_error"},
        ) from exc

    session_id = str(uuid.uuid4())
    sessions.initialize(session_id)

    frontend = settings.frontend_url.rstrip("/")
    try:
        widget_url = await terra.generate_widget_session(
            reference_id=session_id,
            success_redirect_url=f"{frontend}/flow?sessionId={session_id}",
            failure_redirect_url=f"{frontend}/?error=auth_failed",
        )
    except ProviderError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "message": "Failed to initiate Terra widget session.",
                "code": "provider_error",
                "details": exc.body,
            },
        ) from exc

    return WidgetSessionResponse(widget_url=widget_url, session_id=session_id)


@router.post(
    "/confirm-auth",
    response_model=MessageResponse,
    summary="Confirm the Terra user returned by the widget redirect",
    responses={400: {"description": "sessionId or terraUserIdFromUrl missing"}},
)
async def confirm_auth(
    body: Optional[ConfirmAuthRequest] = None,
    sessions: SessionRegistry = Depends(get_session_registry),
) -> MessageResponse:
    body = body or ConfirmAuthRequest()
    if not body.session_id or not body.terra_user_id_from_url:
        missing = [
            name
            for name, value in (
                ("sessionId", body.session_id),
                ("terraUserIdFromUrl", body.terra_user_id_from_url),
            )
            if not value
        ]
        logger.error("Confirm auth: missing %s", ", ".join(missing))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "message": f"Session ID and Terra User ID are required (missing: {', '.join(missing)}).",
                "code": "missing_field",
            },
        )

    if sessions.get(body.session_id) == body.terra_user_id_from_url:
        logger.info("Confirm auth: session %s already confirmed", body.session_id)
        return MessageResponse(message="Authentication already confirmed for this session.")

    sessions.store(body.session_id, body.terra_user_id_from_url)
    return MessageResponse(message="Authentication confirmed and Terra User ID stored.")


@router.get(
    "/callback",
    response_class=PlainTextResponse,
    summary="Terra widget redirect acknowledgement",
)
async def widget_callback(
    user_id: Optional[str] = None,
    reference_id: Optional[str] = None,
    resource: Optional[str] = None,
    error: Optional[str] = None,
    reason: Optional[str] = None,
) -> str:
    # The browser redirect already carries success/failure to the frontend;
    # this endpoint only logs.
    if error:
        logger.error("Terra widget authentication failed: %s (%s)", error, reason)
        return f"Widget authentication callback processed with error: {error}. Check the frontend page."

    logger.info(
        "Terra widget callback: user %s, reference %s, resource %s",
        user_id,
        reference_id,
        resource,
    )
    return "Widget authentication callback successfully processed. Check the frontend page."


# ---------------------------------------------------------------------------
# Data
# ---------------------------------------------------------------------------

@router.get(
    "/data-report/{session_id}",
    response_model=HealthDataReport,
    summary="Fetch and package recent Terra data for a session",
    responses={
        404: {"description": "Session unknown, expired, or not yet confirmed"},
        500: {"description": "Terra misconfigured or report generation failed"},
    },
)
async def data_report(
    session_id: str,
    settings: Settings = Depends(get_settings),
    sessions: SessionRegistry = Depends(get_session_registry),
    terra: TerraClient = Depends(get_terra_client),
) -> HealthDataReport:
    try:
        terra_user_id = sessions.require(session_id)
    except SessionError as exc:
        logger.warning("Data report: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={
                "message": (
                    "Session not found or Terra User ID not associated. "
                    "Please connect your wearable first."
                ),
                "code": "session_not_found",
            },
        ) from exc

    try:
        return await fetch_health_report(terra, terra_user_id, settings.data_window_days)
    except ConfigurationError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"message": "Server configuration error.", "code": "config_error"},
        ) from exc
    except Exception as exc:
        logger.exception("Error fetching data report for session %s", session_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"message": "Failed to generate data report.", "code": "report_error"},
        ) from exc


@router.delete(
    "/session/{session_id}",
    response_model=MessageResponse,
    summary="Forget a session and its Terra user association",
)
async def clear_session(
    session_id: str,
    sessions: SessionRegistry = Depends(get_session_registry),
) -> MessageResponse:
    if sessions.discard(session_id):
        return MessageResponse(message="Session data cleared.")
    return MessageResponse(message="No session data to clear.")
