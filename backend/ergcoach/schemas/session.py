"""Rowing session schemas."""

import math
from datetime import datetime
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field, field_validator


class SessionCreate(BaseModel):
    """Schema for starting a coaching session."""
    name: Optional[str] = Field(None, max_length=100, description="Optional label for the session")


class SessionResponse(BaseModel):
    """Live state of a coaching session."""
    id: str
    name: Optional[str] = None
    created_at: datetime

    phase: str
    catch_finish_pct: int
    stroke_pct: int
    is_rowing: bool

    stroke_count: int
    error_stroke_count: int
    stroke_rate: Optional[int] = None
    average_stroke_rate: int
    slide_ratio: Optional[float] = None

    start_time: Optional[int] = None
    end_time: Optional[int] = None
    duration_ms: int
    frames_submitted: int


class FrameSubmit(BaseModel):
    """
    One pose detection.

    ``keypoints`` maps body part names (``left_wrist``, ``left_hip``...) to
    ``[x, y]`` image coordinates. Unknown names are ignored.
    """
    timestamp: int = Field(..., ge=0, description="Capture time in milliseconds")
    keypoints: Dict[str, List[float]]

    @field_validator("keypoints")
    @classmethod
    def validate_keypoints(cls, v: Dict[str, List[float]]) -> Dict[str, List[float]]:
        for name, coords in v.items():
            if len(coords) != 2:
                raise ValueError(f"keypoint '{name}' must be [x, y]")
            if not all(math.isfinite(c) for c in coords):
                raise ValueError(f"keypoint '{name}' must have finite coordinates")
        return v


class FrameResultResponse(BaseModel):
    """Outcome of submitting one frame."""
    accepted: bool
    reason: Optional[str] = None
    phase: str
    catch_finish_pct: int
    stroke_count: int
    is_rowing: bool
    events: List[str] = []
    messages: List[str] = []  # Coaching messages produced by this frame


class CheckerStatusResponse(BaseModel):
    """Escalation state and running mark of one fault checker."""
    title: str
    description: str
    status: str
    mark_percent: int
    good_strokes: int
    total_strokes: int
    bad_consecutive_strokes: int
    last_value: Optional[float] = None
    unit: str


class OverlayLineResponse(BaseModel):
    """A guide line to draw over the current frame, in image pixels."""
    checker: str
    x1: float
    y1: float
    x2: float
    y2: float
    color: str


class CheckerReport(BaseModel):
    """Per-checker row of a session report."""
    title: str
    description: str
    percent_good: int
    good_strokes: int
    bad_strokes: int
    faulty_strokes: int
    average_value: Optional[float] = None
    unit: str
    fault_value_by_stroke: Dict[int, float] = {}
    fault_fragments: List[Dict[str, Any]] = []


class SessionReport(BaseModel):
    """Summary of a finished rowing session."""
    session_id: Optional[str] = None
    generated_at: datetime
    start_time: int
    end_time: int
    duration_ms: int
    stroke_count: int
    error_stroke_count: int
    average_stroke_rate: int
    technical_score: int
    checkers: List[CheckerReport]
