"""API routes."""

from fastapi import APIRouter

from ergcoach.api import sessions

api_router = APIRouter()

api_router.include_router(sessions.router, prefix="/sessions", tags=["Sessions"])
