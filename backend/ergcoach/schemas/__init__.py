"""Pydantic schemas for API request/response models."""

from ergcoach.schemas.session import (
    SessionCreate,
    SessionResponse,
    FrameSubmit,
    FrameResultResponse,
    CheckerStatusResponse,
    OverlayLineResponse,
    CheckerReport,
    SessionReport,
)

__all__ = [
    "SessionCreate",
    "SessionResponse",
    "FrameSubmit",
    "FrameResultResponse",
    "CheckerStatusResponse",
    "OverlayLineResponse",
    "CheckerReport",
    "SessionReport",
]
