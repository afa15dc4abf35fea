"""
State of the rower for one session.

The state is updated in realtime by the StrokeAnalyzer, which is its only
writer. Pose estimations are just estimations: any anomaly can be a detection
error (which happens a lot) or a genuinely bad stroke, so most derived values
are optional and consumers must check for None before using them.
"""

from enum import Enum
from types import MappingProxyType
from typing import Dict, Optional, Set

import logging

from ergcoach.analysis.bounded_average import BoundedRollingAverage
from ergcoach.analysis.frames import FrameBuffer
from ergcoach.analysis.keypoints import BodyPart, Point, TRACKED_PARTS, distance
from ergcoach.analysis.rolling_stats import RollingPointStats
from ergcoach.config import Settings, get_settings

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    """Phase of the stroke."""
    CATCH = "catch"
    DRIVE = "drive"
    FINISH = "finish"
    RECOVERY = "recovery"


class RowerState:
    """
    Mutable per-session snapshot of the rower.

    "current" values reflect the most recent accepted frame; "catch" and
    "finish" values change only at confirmed phase transitions.
    """

    # Stroke rates outside this range are not averaged
    AVERAGE_RATE_RANGE = (12, 40)

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.fixed_ankle = Point(self.settings.fixed_ankle_x, self.settings.fixed_ankle_y, 0)

        self.stats_map: Dict[BodyPart, RollingPointStats] = {
            part: RollingPointStats(
                shelf_life_ms=self.settings.point_shelf_life_ms,
                debounce_ms=self.settings.extremum_debounce_ms,
                history_size=self.settings.extremum_history_size,
            )
            for part in TRACKED_PARTS
        }
        self.frames = FrameBuffer(self.settings.frame_shelf_life_ms)
        self.hip_heights = BoundedRollingAverage(30, 10)
        self.finish_knee_heights = BoundedRollingAverage(10, 6)
        self.current_points: Dict[BodyPart, Point] = {}
        self.catch_times: Dict[int, int] = {}
        self.stroke_faults: Set[str] = set()
        self._init_values()

    def _init_values(self) -> None:
        self.is_rowing = False
        self.start_time: Optional[int] = None
        self.end_time: Optional[int] = None
        self.stroke_count = 0
        self.error_stroke_count = 0

        self.catch_wrist: Optional[Point] = None
        self.catch_elbow: Optional[Point] = None
        self.catch_hip: Optional[Point] = None
        self.catch_ear: Optional[Point] = None
        self.catch_knee: Optional[Point] = None
        self.catch_shoulder: Optional[Point] = None
        self.finish_wrist: Optional[Point] = None
        self.finish_elbow: Optional[Point] = None
        self.finish_hip: Optional[Point] = None
        self.finish_knee: Optional[Point] = None
        self.finish_shoulder: Optional[Point] = None

        self.current_image = None

        self._stroke_rate: Optional[int] = None
        self._stroke_rate_total = 0
        self._stroke_rate_count = 0
        self.slide_ratio: Optional[float] = None
        self.phase = Phase.DRIVE
        self.catch_finish_pct = 0

        # Angles in degrees: 90 is vertical, < 90 leans towards the flywheel
        self.current_body_angle: Optional[float] = None
        self.current_shin_angle: Optional[float] = None
        self.catch_body_angle: Optional[float] = None
        self.finish_body_angle: Optional[float] = None
        self.catch_shin_angle: Optional[float] = None

        # Limb lengths in pixels
        self.average_shin_length: Optional[float] = None
        self.average_thigh_length: Optional[float] = None
        self.average_body_length: Optional[float] = None
        self.average_upper_arm_length: Optional[float] = None
        self.average_forearm_length: Optional[float] = None
        self.current_shin_length: Optional[float] = None
        self.current_thigh_length: Optional[float] = None
        self.current_body_length: Optional[float] = None
        self.current_upper_arm_length: Optional[float] = None
        self.current_forearm_length: Optional[float] = None

        self.drive_ms = 0
        self.time_of_latest_finish = 0
        self.catch_time_previous_to_finish = 0
        self.arm_deviation_percent = 0
        self.leg_deviation_percent = 0
        self.last_stroke_valid = False

    # Current body part positions from the last detection
    @property
    def current_wrist(self) -> Optional[Point]:
        return self.current_points.get(BodyPart.LEFT_WRIST)

    @property
    def current_elbow(self) -> Optional[Point]:
        return self.current_points.get(BodyPart.LEFT_ELBOW)

    @property
    def current_shoulder(self) -> Optional[Point]:
        return self.current_points.get(BodyPart.LEFT_SHOULDER)

    @property
    def current_hip(self) -> Optional[Point]:
        return self.current_points.get(BodyPart.LEFT_HIP)

    @property
    def current_knee(self) -> Optional[Point]:
        return self.current_points.get(BodyPart.LEFT_KNEE)

    @property
    def current_ankle(self) -> Optional[Point]:
        return self.current_points.get(BodyPart.LEFT_ANKLE)

    @property
    def current_ear(self) -> Optional[Point]:
        return self.current_points.get(BodyPart.LEFT_EAR)

    @property
    def stroke_rate(self) -> Optional[int]:
        return self._stroke_rate

    @stroke_rate.setter
    def stroke_rate(self, value: Optional[int]) -> None:
        self._stroke_rate = value
        low, high = self.AVERAGE_RATE_RANGE
        if value is not None and low <= value <= high:
            self._stroke_rate_total += value
            self._stroke_rate_count += 1

    @property
    def average_stroke_rate(self) -> int:
        if self._stroke_rate_count == 0:
            return 0
        return self._stroke_rate_total // self._stroke_rate_count

    @property
    def stroke_pct(self) -> int:
        """0 at the catch, 50 at the finish, approaching 100 before the next catch."""
        if self.phase == Phase.CATCH:
            return 0
        if self.phase == Phase.DRIVE:
            return self.catch_finish_pct // 2
        if self.phase == Phase.FINISH:
            return 50
        return 50 + (100 - self.catch_finish_pct) // 2

    def duration(self, now: int) -> int:
        """Session duration in ms, 0 before the session has started."""
        if self.start_time is None:
            return 0
        end = self.end_time if self.end_time is not None else now
        return end - self.start_time

    def current_distance(self, part1: BodyPart, part2: BodyPart) -> Optional[float]:
        return distance(self.current_points.get(part1), self.current_points.get(part2))

    def reset(self) -> None:
        """Clear all values for a new session."""
        logger.info("Resetting rower")
        for stats in self.stats_map.values():
            stats.clear()
        self.frames.clear()
        self.hip_heights.clear()
        self.finish_knee_heights.clear()
        self.current_points.clear()
        self.catch_times.clear()
        self.stroke_faults.clear()
        self._init_values()


# Methods that change state; views refuse them
MUTATING_METHODS = frozenset(("add", "add_sample", "clear", "clear_minima", "clear_maxima", "reset"))

READ_ONLY_COLLABORATORS = (FrameBuffer, BoundedRollingAverage, RollingPointStats)


class ReadOnlyProxy:
    """Read access to a frame buffer, rolling average or point stats."""

    __slots__ = ("_target",)

    def __init__(self, target):
        object.__setattr__(self, "_target", target)

    def __getattr__(self, name: str):
        if name in MUTATING_METHODS:
            raise AttributeError(f"{type(self._target).__name__}.{name} is not available through a read-only view")
        return getattr(self._target, name)

    def __setattr__(self, name: str, value) -> None:
        raise AttributeError(f"{type(self._target).__name__} is read-only, cannot set '{name}'")

    def __iter__(self):
        return iter(self._target)

    def __len__(self) -> int:
        return len(self._target)


def read_only(value):
    """Wrap ``value`` so that a reader cannot change the rower state through it."""
    if isinstance(value, READ_ONLY_COLLABORATORS):
        return ReadOnlyProxy(value)
    if isinstance(value, dict):
        return MappingProxyType({k: read_only(v) for k, v in value.items()})
    if isinstance(value, set):
        return frozenset(value)
    return value


class RowerView:
    """
    Read-only access to a RowerState.

    Fault checkers and the coach receive this view; only the StrokeAnalyzer
    holds the writable state. Collections come back as mapping proxies and
    frozensets, and the frame buffer, rolling averages and point stats as
    proxies without their mutating methods.
    """

    __slots__ = ("_rower",)

    def __init__(self, rower: RowerState):
        object.__setattr__(self, "_rower", rower)

    def __getattr__(self, name: str):
        if name in MUTATING_METHODS:
            raise AttributeError(f"RowerView is read-only, cannot call '{name}'")
        return read_only(getattr(self._rower, name))

    def __setattr__(self, name: str, value) -> None:
        raise AttributeError(f"RowerView is read-only, cannot set '{name}'")
