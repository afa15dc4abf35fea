"""Stroke fault checkers."""

from typing import List, Optional

from ergcoach.config import Settings
from ergcoach.rubric.angle_stability import (
    AngleStabilityChecker,
    EarlyDriveBodyAngle,
    LungingAtCatch,
)
from ergcoach.rubric.base import (
    FAULT_STATES,
    AnnotationLine,
    FaultChecker,
    FaultFragment,
    FaultIllustration,
    Mark,
    Status,
)
from ergcoach.rubric.body_angles import CatchAngle, Layback, ShinAngle
from ergcoach.rubric.hands import HandLevels, HandsOut
from ergcoach.rubric.slide_ratio import RushingTheSlide


def build_fault_checkers(settings: Optional[Settings] = None) -> List[FaultChecker]:
    """All checkers in coaching priority order; earlier faults are reported first."""
    return [
        HandLevels(settings),
        HandsOut(settings),
        RushingTheSlide(settings),
        Layback(settings),
        CatchAngle(settings),
        ShinAngle(settings),
        EarlyDriveBodyAngle(settings),
        LungingAtCatch(settings),
    ]


__all__ = [
    "FAULT_STATES",
    "AngleStabilityChecker",
    "AnnotationLine",
    "CatchAngle",
    "EarlyDriveBodyAngle",
    "FaultChecker",
    "FaultFragment",
    "FaultIllustration",
    "HandLevels",
    "HandsOut",
    "Layback",
    "LungingAtCatch",
    "Mark",
    "RushingTheSlide",
    "ShinAngle",
    "Status",
    "build_fault_checkers",
]
