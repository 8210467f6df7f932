"""
Health Archetypes API
=====================
FastAPI application entry point. Mount routers here.

The session registry is created once in the lifespan, stored on
``app.state`` and swept for expired entries in a background task.
"""

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from app.config import get_settings
from app.routers import archetype, terra
from app.services.sessions import SessionRegistry

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    sessions = SessionRegistry(max_age=timedelta(hours=settings.session_max_age_hours))
    app.state.sessions = sessions
    sweeper = asyncio.create_task(sessions.run_sweeper(settings.session_sweep_interval_seconds))
    app.state.session_sweeper = sweeper
    logger.info("Session registry ready (max age %dh)", settings.session_max_age_hours)
    try:
        yield
    finally:
        sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweeper


app = FastAPI(
    title="Health Archetypes API",
    description="Wearable data → AI-generated health archetype",
    version="0.1.0",
    docs_url="/api/docs" if settings.environment != "production" else None,
    redoc_url="/api/redoc" if settings.environment != "production" else None,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Answer a missing or malformed request field with 400, naming the field."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    loc = [str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path")]
    field = ".".join(loc) or "Request body"
    if first.get("type") == "missing":
        detail = {"message": f"{field} is required.", "code": "missing_field"}
    else:
        detail = {"message": f"{field} is invalid: {first.get('msg', 'bad value')}.", "code": "invalid_field"}
    logger.warning("Rejected %s %s: %s", request.method, request.url.path, detail["message"])
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": detail})


app.include_router(terra.router)
app.include_router(archetype.router)


@app.get("/", response_class=PlainTextResponse)
async def root() -> str:
    return "Health Archetypes API is running!"


@app.get("/api/health")
async def health_check() -> dict:
    return {"status": "ok", "service": "health-archetypes-api"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host="0.0.0.0", port=settings.port)
