"""
Keypoint primitives shared by the analysis pipeline.

Coordinates are image pixels with the origin at the top-left corner
(y grows downwards). Timestamps are milliseconds.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Mapping, Optional, Union

import numpy as np


class BodyPart(str, Enum):
    """MoveNet / PoseNet keypoint names."""
    NOSE = "nose"
    LEFT_EYE = "left_eye"
    RIGHT_EYE = "right_eye"
    LEFT_EAR = "left_ear"
    RIGHT_EAR = "right_ear"
    LEFT_SHOULDER = "left_shoulder"
    RIGHT_SHOULDER = "right_shoulder"
    LEFT_ELBOW = "left_elbow"
    RIGHT_ELBOW = "right_elbow"
    LEFT_WRIST = "left_wrist"
    RIGHT_WRIST = "right_wrist"
    LEFT_HIP = "left_hip"
    RIGHT_HIP = "right_hip"
    LEFT_KNEE = "left_knee"
    RIGHT_KNEE = "right_knee"
    LEFT_ANKLE = "left_ankle"
    RIGHT_ANKLE = "right_ankle"


# Body parts followed by the stroke analyzer (camera on the rower's left side)
TRACKED_PARTS = (
    BodyPart.LEFT_WRIST,
    BodyPart.LEFT_ELBOW,
    BodyPart.LEFT_SHOULDER,
    BodyPart.LEFT_HIP,
    BodyPart.LEFT_KNEE,
    BodyPart.LEFT_ANKLE,
    BodyPart.LEFT_EAR,
)


@dataclass(frozen=True)
class Point:
    """A keypoint position at a point in time."""
    x: int
    y: int
    t: int


KeypointMap = Dict[BodyPart, Point]
RawKeypoint = Union[Point, tuple]


def round_half_up(value: float) -> int:
    """Round to the nearest integer, ties towards positive infinity."""
    return int(math.floor(value + 0.5))


def to_keypoint_map(
    keypoints: Mapping[Union[BodyPart, str], RawKeypoint],
    timestamp: int
) -> KeypointMap:
    """
    Normalize a detection to ``BodyPart -> Point`` stamped with ``timestamp``.

    Values may be ``Point`` instances or ``(x, y)`` tuples. Unknown body part
    names are ignored, as are coordinates that are not finite numbers, so a
    bad detection reads as a missing keypoint.
    """
    result: KeypointMap = {}
    for key, value in keypoints.items():
        try:
            part = BodyPart(key)
        except ValueError:
            continue
        if value is None:
            continue
        if isinstance(value, Point):
            x, y = value.x, value.y
        else:
            x, y = value[0], value[1]
        if not (math.isfinite(x) and math.isfinite(y)):
            continue
        result[part] = Point(round_half_up(x), round_half_up(y), timestamp)
    return result


def angle(p1: Optional[Point], p2: Optional[Point]) -> Optional[float]:
    """
    Angle in degrees of the line from ``p2`` to ``p1``, normalized to [0, 360).

    With ``p1`` the lower joint (hip, ankle) this is 90° for a vertical
    segment, below 90° leaning towards the flywheel and above 90° leaning
    away from it.
    """
    if p1 is None or p2 is None:
        return None
    degrees = float(np.degrees(np.arctan2(p1.y - p2.y, p1.x - p2.x)))
    if degrees < 0:
        degrees += 360.0
    return degrees


def distance(p1: Optional[Point], p2: Optional[Point]) -> Optional[float]:
    """Euclidean distance in pixels."""
    if p1 is None or p2 is None:
        return None
    return float(np.hypot(p2.x - p1.x, p2.y - p1.y))
