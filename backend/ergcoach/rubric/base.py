"""
Shared fault checker machinery.

Each fault checker scores one scalar per stroke (a body angle, a slide
ratio, a hand height excursion...) and keeps its own escalation state. The
Coach reads that state to decide when to speak; checkers never talk to the
notifier directly.

Checkers are driven by ``on_event(event, rower, now)`` where ``rower`` is a
read-only ``RowerView``. Bad detections are skipped silently: a value outside
a checker's plausible range is not scored at all.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

import logging

from ergcoach.analysis.events import CoachEvent
from ergcoach.analysis.frames import Frame, FrameBuffer
from ergcoach.analysis.keypoints import round_half_up
from ergcoach.config import Settings, get_settings

logger = logging.getLogger(__name__)


class Status(str, Enum):
    """Escalation status of a checker for the current session."""
    GOOD = "good"
    FAULT_MESSAGE_SENT = "fault_message_sent"
    IGNORE_AND_MOVE_ON = "ignore_and_move_on"


FAULT_STATES = (Status.FAULT_MESSAGE_SENT, Status.IGNORE_AND_MOVE_ON)


@dataclass
class Mark:
    """Good strokes out of strokes scored by one checker."""
    good_strokes: int
    total_strokes: int

    @property
    def percent(self) -> int:
        if self.total_strokes == 0:
            return 100
        # Half up, so 2 of 8 is 25 and 1 of 8 (12.5) is 13
        return round_half_up(100 * self.good_strokes / self.total_strokes)


@dataclass
class AnnotationLine:
    """A line segment drawn over a frame, in image pixels."""
    x1: float
    y1: float
    x2: float
    y2: float
    color: str = "green"

    def to_dict(self) -> Dict:
        return {
            "x1": self.x1, "y1": self.y1,
            "x2": self.x2, "y2": self.y2,
            "color": self.color,
        }


@dataclass
class FaultIllustration:
    """One annotated frame in a fault fragment."""
    frame: Frame
    label: str = ""
    lines: List[AnnotationLine] = field(default_factory=list)
    text: str = ""

    def to_dict(self) -> Dict:
        return {
            "time": self.frame.time,
            "stroke_count": self.frame.stroke_count,
            "phase": self.frame.phase,
            "stroke_pos_pct": self.frame.stroke_pos_pct,
            "body_angle": round(self.frame.body_angle, 1),
            "label": self.label,
            "lines": [line.to_dict() for line in self.lines],
            "text": self.text,
        }


@dataclass
class FaultFragment:
    """Report section illustrating one faulty stroke."""
    checker: str
    heading: str
    description: str
    caption: str
    stroke_count: int
    illustrations: List[FaultIllustration] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            "checker": self.checker,
            "heading": self.heading,
            "description": self.description,
            "caption": self.caption,
            "stroke_count": self.stroke_count,
            "illustrations": [i.to_dict() for i in self.illustrations],
        }


def elapsed_label(time_ms: int, start_time: Optional[int]) -> str:
    """Session clock as ``M:SS``."""
    start = time_ms if start_time is None else start_time
    seconds = max(0, (time_ms - start) // 1000)
    return f"{seconds // 60}:{seconds % 60:02d}"


class FaultChecker:
    """Base class for stroke fault checkers."""

    title: str = "base_checker"
    description: str = ""
    unit: str = ""

    # Report section shown above the first illustrated stroke
    report_heading: str = ""
    report_description: str = ""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.clear()

    def on_event(self, event: CoachEvent, rower, now: int) -> None:
        """
        Ingest a stroke event.

        Args:
            event: Event published by the coach
            rower: Read-only rower state
            now: Analyzer clock in ms
        """
        raise NotImplementedError

    def initial_message(self) -> str:
        raise NotImplementedError

    def reminder_message(self) -> str:
        raise NotImplementedError

    def fixed_message(self) -> str:
        return ""

    def good_stroke(self) -> None:
        self.total_good_strokes += 1
        self.good_consecutive_strokes += 1
        self.bad_consecutive_strokes = 0

    def bad_stroke(self) -> None:
        self.bad_consecutive_strokes += 1
        self.good_consecutive_strokes = 0
        if self.bad_consecutive_strokes > self.settings.bad_strokes_before_message:
            self.number_of_faulty_strokes += 1

    def get_total_mark(self) -> Mark:
        return Mark(self.total_good_strokes, len(self.stroke_history))

    @property
    def last_value(self) -> Optional[float]:
        return self.stroke_history[-1] if self.stroke_history else None

    @property
    def is_faulty(self) -> bool:
        return self.status in FAULT_STATES

    @property
    def needs_guidance(self) -> bool:
        """Show the live overlay while the fault is active or recently seen."""
        return self.status == Status.FAULT_MESSAGE_SENT or self.good_consecutive_strokes < 3

    def live_overlay(self, rower) -> List[AnnotationLine]:
        """Target lines to draw over the live image for the current frame."""
        return []

    def fault_fragment(self, frames: FrameBuffer, rower) -> Optional[FaultFragment]:
        """Illustrate the latest bad stroke, or None when its frames are gone."""
        return None

    def record_fault(self, stroke_count: int, frames: FrameBuffer, rower) -> None:
        """Keep the value of a faulty stroke for the session report."""
        value = self.last_value
        self.fault_value_by_stroke[stroke_count] = value if value is not None else 0.0
        self.update_fault_report(frames, rower)

    def update_fault_report(self, frames: FrameBuffer, rower) -> None:
        """Add a fault fragment for the latest bad stroke, up to the session limit."""
        if not self.report_heading:
            return
        if self.number_of_strokes_reported >= self.settings.max_fault_fragments_per_checker:
            return
        fragment = self.fault_fragment(frames, rower)
        if fragment is None:
            return
        logger.info(f"Adding {self.title} fault fragment for stroke {fragment.stroke_count}")
        self.fault_fragments.append(fragment)
        self.number_of_strokes_reported += 1

    def clear(self) -> None:
        """Reset all state for a new session."""
        self.status = Status.GOOD
        self.stroke_history: List[float] = []
        self.initial_message_sent = False
        self.fault_value_by_stroke: Dict[int, float] = {}
        self.total_good_strokes = 0
        self.good_consecutive_strokes = 3
        self.bad_consecutive_strokes = 0
        self.number_of_faulty_strokes = 0
        self.time_of_last_message: Optional[int] = None
        self.fault_fragments: List[FaultFragment] = []
        self.number_of_strokes_reported = 0

    def _fragment(
        self,
        rower,
        illustrations: List[FaultIllustration],
        extra: str = "",
        caption_frame: Optional[Frame] = None
    ) -> FaultFragment:
        first = caption_frame or illustrations[0].frame
        caption = f"{elapsed_label(first.time, rower.start_time)} stroke # {first.stroke_count}"
        if extra:
            caption = f"{caption} {extra}"
        return FaultFragment(
            checker=self.title,
            heading=self.report_heading,
            description=self.report_description,
            caption=caption,
            stroke_count=first.stroke_count,
            illustrations=illustrations,
        )

    def _find_frame(self, frames: FrameBuffer, time: Optional[int]) -> Optional[Frame]:
        frame = frames.find(time)
        if frame is None:
            logger.warning(f"{self.title}: frame with time {time} not found")
        return frame

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} status={self.status.value} bad={self.bad_consecutive_strokes}>"
