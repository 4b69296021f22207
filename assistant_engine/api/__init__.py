"""API router for v1 endpoints."""

from fastapi import APIRouter

from assistant_engine.api import assistant

router = APIRouter()

router.include_router(assistant.router, tags=["assistant"])
