"""Live rowing session API endpoints."""

import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from ergcoach.analysis.coach import MessageQueueNotifier
from ergcoach.analysis.stroke_analyzer import StrokeAnalyzer
from ergcoach.config import get_settings
from ergcoach.schemas.session import (
    CheckerStatusResponse,
    FrameResultResponse,
    FrameSubmit,
    OverlayLineResponse,
    SessionCreate,
    SessionReport,
    SessionResponse,
)

router = APIRouter()
settings = get_settings()
logger = logging.getLogger(__name__)


@dataclass
class SessionEntry:
    """A live session and the lock serialising its frames."""
    id: str
    name: Optional[str]
    created_at: datetime
    analyzer: StrokeAnalyzer
    notifier: MessageQueueNotifier
    lock: threading.Lock = field(default_factory=threading.Lock)


_sessions: Dict[str, SessionEntry] = {}
_registry_lock = threading.Lock()


def active_session_count() -> int:
    with _registry_lock:
        return len(_sessions)


def dispatch_report(report: SessionReport) -> None:
    """Hand a finished session report to the worker."""
    from ergcoach.worker import dispatch_session_report
    dispatch_session_report(report)


def get_session_entry(session_id: str) -> SessionEntry:
    """Look up a live session or fail with 404."""
    with _registry_lock:
        entry = _sessions.get(session_id)
    if entry is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Session not found"
        )
    return entry


def session_response(entry: SessionEntry) -> SessionResponse:
    analyzer = entry.analyzer
    rower = analyzer.rower
    return SessionResponse(
        id=entry.id,
        name=entry.name,
        created_at=entry.created_at,
        phase=rower.phase.value,
        catch_finish_pct=rower.catch_finish_pct,
        stroke_pct=rower.stroke_pct,
        is_rowing=rower.is_rowing,
        stroke_count=rower.stroke_count,
        error_stroke_count=rower.error_stroke_count,
        stroke_rate=rower.stroke_rate,
        average_stroke_rate=rower.average_stroke_rate,
        slide_ratio=round(rower.slide_ratio, 2) if rower.slide_ratio is not None else None,
        start_time=rower.start_time,
        end_time=rower.end_time,
        duration_ms=analyzer.session_duration(),
        frames_submitted=analyzer.frames_received,
    )


@router.post("", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
async def create_session(session_data: SessionCreate):
    """Start a new coaching session."""
    session_id = str(uuid.uuid4())
    notifier = MessageQueueNotifier()
    analyzer = StrokeAnalyzer(
        settings=settings,
        notifier=notifier,
        report_sink=dispatch_report,
        session_id=session_id,
    )
    entry = SessionEntry(
        id=session_id,
        name=session_data.name,
        created_at=datetime.utcnow(),
        analyzer=analyzer,
        notifier=notifier,
    )
    with _registry_lock:
        _sessions[session_id] = entry

    logger.info(f"Created session {session_id}")
    return session_response(entry)


@router.post("/{session_id}/frames", response_model=FrameResultResponse)
def submit_frame(
    frame: FrameSubmit,
    entry: SessionEntry = Depends(get_session_entry)
):
    """
    Submit one pose detection.

    Frames must be sent in capture order. A rejected frame is not an error:
    the response carries the reason and the session state is unchanged.
    """
    with entry.lock:
        result = entry.analyzer.submit_frame(frame.timestamp, frame.keypoints)
        messages = entry.notifier.drain()
        rower = entry.analyzer.rower
        return FrameResultResponse(
            accepted=result.accepted,
            reason=result.reason,
            phase=result.phase.value,
            catch_finish_pct=result.catch_finish_pct,
            stroke_count=rower.stroke_count,
            is_rowing=rower.is_rowing,
            events=[event.value for event in result.events],
            messages=messages,
        )


@router.get("/{session_id}", response_model=SessionResponse)
def get_session(entry: SessionEntry = Depends(get_session_entry)):
    """Get the live state of a session."""
    with entry.lock:
        return session_response(entry)


@router.get("/{session_id}/checkers", response_model=List[CheckerStatusResponse])
def get_checkers(entry: SessionEntry = Depends(get_session_entry)):
    """Per fault checker escalation status and running mark, in priority order."""
    with entry.lock:
        responses = []
        for checker in entry.analyzer.coach.checkers:
            mark = checker.get_total_mark()
            responses.append(CheckerStatusResponse(
                title=checker.title,
                description=checker.description,
                status=checker.status.value,
                mark_percent=mark.percent,
                good_strokes=mark.good_strokes,
                total_strokes=mark.total_strokes,
                bad_consecutive_strokes=checker.bad_consecutive_strokes,
                last_value=checker.last_value,
                unit=checker.unit,
            ))
        return responses


@router.get("/{session_id}/overlay", response_model=List[OverlayLineResponse])
def get_overlay(entry: SessionEntry = Depends(get_session_entry)):
    """Guide lines for the latest frame from the checkers that are coaching."""
    with entry.lock:
        overlay = entry.analyzer.live_overlay()
    return [
        OverlayLineResponse(checker=title, **line.to_dict())
        for title, lines in overlay.items()
        for line in lines
    ]


@router.post("/{session_id}/reset", response_model=SessionResponse)
def reset_session(entry: SessionEntry = Depends(get_session_entry)):
    """Save the report of the current session and start over."""
    with entry.lock:
        entry.analyzer.reset_session()
        entry.notifier.drain()
        return session_response(entry)


@router.get("/{session_id}/report", response_model=SessionReport)
def get_report(entry: SessionEntry = Depends(get_session_entry)):
    """
    Build the report for the session so far.

    Sessions shorter than the minimum report duration have no report.
    """
    with entry.lock:
        report = entry.analyzer.generate_report()
    if report is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Session too short for a report"
        )
    return report


@router.delete("/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_session(entry: SessionEntry = Depends(get_session_entry)):
    """Stop a session. Its report is saved when it is long enough."""
    with entry.lock:
        entry.analyzer.stop()
    with _registry_lock:
        _sessions.pop(entry.id, None)
    logger.info(f"Deleted session {entry.id}")
