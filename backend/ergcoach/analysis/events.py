"""Events published by the stroke analyzer to the coach and fault checkers."""

from enum import Enum


class CoachEvent(str, Enum):
    """Stroke cycle events."""
    CATCH = "catch"
    DRIVE_UPDATE = "drive_update"
    FINISH = "finish"
    RECOVERY_UPDATE = "recovery_update"
    END_OF_STROKE = "end_of_stroke"
    SESSION_RESET = "session_reset"
