"""
FastAPI dependency providers.

The session registry lives on ``app.state`` (created in the lifespan);
provider clients are cached singletons built from settings. Tests swap
any of them through ``app.dependency_overrides``.
"""

from __future__ import annotations

from functools import lru_cache

from fastapi import Request

from app.services.archetype import ArchetypeGenerator
from app.services.sessions import SessionRegistry
from app.services.terra import TerraClient


def get_session_registry(request: Request) -> SessionRegistry:
    return request.app.state.sessions


@lru_cache
def get_terra_client() -> TerraClient:
    return TerraClient()


@lru_cache
def get_archetype_generator() -> ArchetypeGenerator:
    return ArchetypeGenerator()
