"""Short-lived frame history used to illustrate faults."""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional

import logging

from ergcoach.analysis.keypoints import BodyPart, Point

logger = logging.getLogger(__name__)


@dataclass
class Frame:
    """An analyzed video frame and the rower metadata at that moment."""
    time: int
    image: Any = None  # Opaque handle owned by the capture collaborator
    time_since_catch_ms: int = 0
    stroke_count: int = 0
    stroke_rate: int = 0
    points: Dict[BodyPart, Point] = field(default_factory=dict)
    phase: str = "drive"
    stroke_pos_pct: int = 0
    body_angle: float = 0.0


class FrameBuffer:
    """Frames ordered by time, expired after ``shelf_life_ms``."""

    def __init__(self, shelf_life_ms: int = 10_000):
        self.shelf_life_ms = shelf_life_ms
        self._frames: List[Frame] = []

    def add(self, frame: Frame, now: int) -> bool:
        """
        Append a frame and expire old ones.

        Returns:
            False when the frame repeats the previous image handle
        """
        last = self._frames[-1] if self._frames else None
        if last is not None and frame.image is not None and frame.image is last.image:
            logger.warning(f"Duplicate image at {frame.time}, frame skipped")
            return False

        self._frames.append(frame)

        expired = [f for f in self._frames if now - f.time > self.shelf_life_ms]
        if expired:
            logger.debug(
                f"Removing {len(expired)} expired frames "
                f"from {expired[0].time} to {expired[-1].time}"
            )
            self._frames = [f for f in self._frames if now - f.time <= self.shelf_life_ms]
        return True

    def find(self, time: Optional[int]) -> Optional[Frame]:
        if time is None:
            return None
        for frame in self._frames:
            if frame.time == time:
                return frame
        return None

    def with_times(self, times) -> List[Frame]:
        """Frames whose time is in ``times``, in chronological order."""
        wanted = set(times)
        return [f for f in self._frames if f.time in wanted]

    def last(self) -> Optional[Frame]:
        return self._frames[-1] if self._frames else None

    def clear(self) -> None:
        self._frames.clear()

    def __iter__(self) -> Iterator[Frame]:
        return iter(list(self._frames))

    def __len__(self) -> int:
        return len(self._frames)
