"""Body and shin angle checks at the catch and finish."""

import math
from typing import List, Optional

import logging

from ergcoach.analysis.events import CoachEvent
from ergcoach.analysis.frames import FrameBuffer
from ergcoach.analysis.keypoints import BodyPart, Point
from ergcoach.rubric.base import (
    AnnotationLine,
    FaultChecker,
    FaultFragment,
    FaultIllustration,
)

logger = logging.getLogger(__name__)


def body_target_line(hip: Point, body_length: float, target_angle: float) -> AnnotationLine:
    """Line of ``body_length`` from the hip at ``target_angle`` degrees."""
    dx = body_length * math.cos(math.radians(target_angle))
    return AnnotationLine(hip.x, hip.y, hip.x - dx, hip.y - body_length)


class CatchAngle(FaultChecker):
    """Checks for proper forward body angle at the catch."""

    title = "Catch Angle"
    description = "Checks for proper forward body angle at the catch."
    unit = "°"
    report_heading = "Improper Catch Angle"
    report_description = (
        "You should have a forward leaning body angle at the catch. "
        "Bend just at the hips and not with the back."
    )

    # Catch angles outside of this range are probably detection errors
    PLAUSIBLE_RANGE = (30.0, 150.0)
    TARGET_ANGLE = 70.0

    def clear(self) -> None:
        super().clear()
        self.catch_time_of_bad_stroke: Optional[int] = None

    def initial_message(self) -> str:
        return (
            f"Your catch angle is {int(self.last_value)}. Bend at the hips during the "
            "recovery and make sure your shoulders are in front of the hips at the catch."
        )

    def reminder_message(self) -> str:
        return "Focus on bending at the hips and maximizing stroke length at the catch."

    def on_event(self, event: CoachEvent, rower, now: int) -> None:
        if event != CoachEvent.CATCH:
            return
        value = rower.catch_body_angle
        low, high = self.PLAUSIBLE_RANGE
        if value is None or not low < value < high:
            return

        self.stroke_history.append(value)
        if value <= self.settings.catch_angle_max:
            self.good_stroke()
        else:
            self.bad_stroke()
            self.catch_time_of_bad_stroke = rower.catch_shoulder.t if rower.catch_shoulder else None

    def live_overlay(self, rower) -> List[AnnotationLine]:
        if not self.needs_guidance:
            return []
        hip = rower.current_hip
        if hip is None or rower.average_body_length is None:
            return []
        return [body_target_line(hip, rower.average_body_length, self.TARGET_ANGLE)]

    def fault_fragment(self, frames: FrameBuffer, rower) -> Optional[FaultFragment]:
        frame = self._find_frame(frames, self.catch_time_of_bad_stroke)
        if frame is None:
            return None
        lines = []
        hip = frame.points.get(BodyPart.LEFT_HIP)
        if hip is not None:
            lines.append(body_target_line(hip, rower.average_body_length or 0.0, self.TARGET_ANGLE))
        return self._fragment(rower, [FaultIllustration(frame, "catch", lines)])


class Layback(FaultChecker):
    """Checks for proper layback position at the finish."""

    title = "Layback Position"
    description = "Checks for proper layback position at the finish."
    unit = "°"
    report_heading = "Improper Layback Position"
    report_description = (
        "Ideal finish body angle is around 110 degrees. You want to maximize stroke length at "
        "the finish with a good layback position and bending at the hips without slouching. "
        "Too much layback will fatigue your abs and not help with performance."
    )

    PLAUSIBLE_RANGE = (30.0, 160.0)

    def clear(self) -> None:
        super().clear()
        self.current_fault_type = ""
        self.finish_time_of_bad_stroke: Optional[int] = None
        self.bad_body_angle = 0.0

    def initial_message(self) -> str:
        return (
            f"{self.current_fault_type}Ideal finish body angle is "
            f"{int(self.settings.layback_ideal_angle)} degrees. Yours is {int(self.last_value)}. "
            "Try to match the angle of the green line at the finish"
        )

    def reminder_message(self) -> str:
        return (
            f"{self.current_fault_type}Ideal finish body angle is "
            f"{int(self.settings.layback_ideal_angle)} degrees. Yours is {int(self.last_value)}"
        )

    def on_event(self, event: CoachEvent, rower, now: int) -> None:
        if event != CoachEvent.FINISH:
            return
        value = rower.finish_body_angle
        low, high = self.PLAUSIBLE_RANGE
        if value is None or not low < value < high:
            return

        self.stroke_history.append(value)
        if self.settings.layback_min_angle <= value <= self.settings.layback_max_angle:
            self.good_stroke()
        else:
            self.bad_stroke()
            self.finish_time_of_bad_stroke = rower.finish_wrist.t if rower.finish_wrist else None
            self.bad_body_angle = value

        if rower.leg_deviation_percent > self.settings.max_leg_deviation_pct:
            # Probably a bad hip detection, keep the previous fault type
            return
        if value < self.settings.layback_min_angle:
            self.current_fault_type = "Not enough layback at the finish. "
        elif value > self.settings.layback_max_angle:
            self.current_fault_type = "Too much layback at the finish. "

    def live_overlay(self, rower) -> List[AnnotationLine]:
        if not self.needs_guidance:
            return []
        hip = rower.current_hip
        if hip is None or rower.average_body_length is None:
            return []
        return [body_target_line(hip, rower.average_body_length, self.settings.layback_ideal_angle)]

    def fault_fragment(self, frames: FrameBuffer, rower) -> Optional[FaultFragment]:
        frame = self._find_frame(frames, self.finish_time_of_bad_stroke)
        if frame is None:
            return None
        lines = []
        hip = frame.points.get(BodyPart.LEFT_HIP)
        if hip is not None:
            lines.append(body_target_line(
                hip, rower.average_body_length or 0.0, self.settings.layback_ideal_angle
            ))
        ideal = int(self.settings.layback_ideal_angle)
        text = f"Ideal finish body angle is {ideal} degrees. Yours is {int(self.bad_body_angle)}"
        return self._fragment(rower, [FaultIllustration(frame, "finish", lines, text)], text)


class ShinAngle(FaultChecker):
    """Checks for proper forward shin angle at the catch."""

    title = "Shin Angle"
    description = "Checks for proper forward shin angle at the catch."
    unit = "°"
    report_heading = "Improper Shin Angle at the Catch"
    report_description = "Ideally, the shins should be vertical at the catch."

    PLAUSIBLE_RANGE = (30.0, 130.0)

    def clear(self) -> None:
        super().clear()
        self.previous_angle = 0
        self.catch_time_of_bad_stroke: Optional[int] = None

    def initial_message(self) -> str:
        return (
            f"Your shin angle at the catch is {self.previous_angle}. "
            "Ideally the shins should be vertical at the catch."
        )

    def reminder_message(self) -> str:
        return "Focus on getting your shins as close as possible to vertical at the catch"

    def on_event(self, event: CoachEvent, rower, now: int) -> None:
        if event != CoachEvent.CATCH:
            return
        value = rower.catch_shin_angle
        low, high = self.PLAUSIBLE_RANGE
        if value is None or not low < value < high:
            return

        self.stroke_history.append(value)
        if value <= self.settings.shin_angle_max:
            self.good_stroke()
        else:
            self.bad_stroke()
            self.catch_time_of_bad_stroke = rower.catch_shoulder.t if rower.catch_shoulder else None
        self.previous_angle = int(value)

    def live_overlay(self, rower) -> List[AnnotationLine]:
        knee = rower.current_knee
        if not self.needs_guidance or knee is None:
            return []
        ankle = rower.fixed_ankle
        return [AnnotationLine(ankle.x, ankle.y, ankle.x, knee.y)]

    def fault_fragment(self, frames: FrameBuffer, rower) -> Optional[FaultFragment]:
        frame = self._find_frame(frames, self.catch_time_of_bad_stroke)
        if frame is None:
            return None
        ankle = frame.points.get(BodyPart.LEFT_ANKLE)
        knee = frame.points.get(BodyPart.LEFT_KNEE)
        if ankle is None or knee is None:
            return None
        line = AnnotationLine(ankle.x, ankle.y, ankle.x, knee.y)
        return self._fragment(rower, [FaultIllustration(frame, "catch", [line])])
