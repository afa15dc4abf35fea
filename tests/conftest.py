"""Shared fixtures: a synthetic rower seen from the left side.

The pose is parameterised by the slide position ``s`` (0 at the catch, 1 at
the finish). The knee turns around the fixed ankle, the hip slides on a
horizontal line at a constant thigh length from the knee and the body swings
from the catch angle to 115° of layback.
"""

import math
from typing import Dict, Iterator, List, Tuple

import pytest

from ergcoach.config import Settings

FRAME_MS = 100
ANKLE = (82.0, 167.0)
SHIN = 50.0
THIGH = 45.0
BODY = 60.0
HIP_Y = 152.0


def pose(s: float, catch_angle: float = 60.0, hand_raised: bool = False) -> Dict[str, List[float]]:
    shin_angle = math.radians(105 + 55 * s)
    knee = (ANKLE[0] - SHIN * math.cos(shin_angle), ANKLE[1] - SHIN * math.sin(shin_angle))
    rise = HIP_Y - knee[1]
    hip = (knee[0] + math.sqrt(THIGH ** 2 - rise ** 2), HIP_Y)

    body_angle = math.radians(catch_angle + (115 - catch_angle) * s)
    shoulder = (hip[0] - BODY * math.cos(body_angle), hip[1] - BODY * math.sin(body_angle))
    ear = (hip[0] - 75 * math.cos(body_angle), hip[1] - 75 * math.sin(body_angle))
    if hand_raised:
        elbow = (shoulder[0] - 25, shoulder[1] - 12)
        wrist = (elbow[0] - 25, elbow[1] - 3)
    else:
        elbow = (shoulder[0] - 25, shoulder[1] + 12)
        wrist = (elbow[0] - 25, elbow[1] + 3)

    return {
        "left_ear": list(ear),
        "left_shoulder": list(shoulder),
        "left_elbow": list(elbow),
        "left_wrist": list(wrist),
        "left_hip": list(hip),
        "left_knee": list(knee),
        "left_ankle": list(ANKLE),
    }


def stroke_positions(frames_per_stroke: int = 24, drive_frames: int = 8) -> List[float]:
    """Slide positions of one stroke starting at the catch; recovery takes the rest."""
    recovery_frames = frames_per_stroke - drive_frames
    positions = []
    for m in range(frames_per_stroke):
        if m <= drive_frames:
            positions.append(m / drive_frames)
        else:
            positions.append(1 - (m - drive_frames) / recovery_frames)
    return positions


def rowing_frames(
    count: int,
    frames_per_stroke: int = 24,
    drive_frames: int = 8,
    start_ms: int = 0,
    **pose_kwargs
) -> Iterator[Tuple[int, Dict[str, List[float]]]]:
    """``count`` frames of steady rowing, starting at the catch."""
    positions = stroke_positions(frames_per_stroke, drive_frames)
    for k in range(count):
        yield start_ms + k * FRAME_MS, pose(positions[k % frames_per_stroke], **pose_kwargs)


# 24 frame strokes at 100 ms are 25 strokes per minute. Catches are seen one
# frame after the slide turns, so the n-th catch lands on frame 24 * n + 1.
def frames_through_catch(n: int) -> int:
    return 24 * n + 2


@pytest.fixture
def settings():
    return Settings()
