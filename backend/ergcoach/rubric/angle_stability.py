"""
Body angle stability checks around the catch.

The body angle should be set during the recovery and held through the catch
and the first part of the drive. Both checkers sample the body angle at a
reference point in the stroke and score its change from the catch angle.
"""

from typing import List, Optional, Tuple

import logging

from ergcoach.analysis.events import CoachEvent
from ergcoach.analysis.frames import Frame, FrameBuffer
from ergcoach.analysis.keypoints import BodyPart, Point, angle
from ergcoach.analysis.rower import Phase
from ergcoach.rubric.base import (
    AnnotationLine,
    FaultChecker,
    FaultFragment,
    FaultIllustration,
)

logger = logging.getLogger(__name__)


class AngleStabilityChecker(FaultChecker):
    """Scores ``reference body angle - catch body angle`` once per stroke."""

    unit = "Δ°"

    def acceptable_range(self) -> Tuple[float, float]:
        raise NotImplementedError

    def in_range(self, delta: float) -> bool:
        low, high = self.acceptable_range()
        return low <= delta <= high

    def clear(self) -> None:
        super().clear()
        self.reference_angle: Optional[float] = None
        self.reference_hip: Optional[Point] = None
        self.reference_shoulder: Optional[Point] = None
        self.catch_time_of_bad_stroke: Optional[int] = None
        self.reference_time_of_bad_stroke: Optional[int] = None
        # Catch geometry of the last bad stroke, for the illustration
        self.bad_catch_angle = 0.0
        self.bad_catch_hip: Optional[Point] = None
        self.bad_catch_shoulder: Optional[Point] = None

    def score(self, delta: float, rower) -> None:
        self.stroke_history.append(delta)
        if self.in_range(delta):
            self.good_stroke()
            return
        self.bad_stroke()
        self.catch_time_of_bad_stroke = rower.catch_shoulder.t if rower.catch_shoulder else None
        self.reference_time_of_bad_stroke = (
            self.reference_shoulder.t if self.reference_shoulder else None
        )
        self.bad_catch_angle = rower.catch_body_angle or 0.0
        self.bad_catch_hip = rower.catch_hip
        self.bad_catch_shoulder = rower.catch_shoulder

    def guide_line(
        self,
        hip: Point,
        shoulder: Point,
        catch_hip: Point,
        catch_shoulder: Point
    ) -> AnnotationLine:
        """Catch body line moved with the seat."""
        dx = hip.x - catch_hip.x
        return AnnotationLine(catch_shoulder.x + dx, shoulder.y, hip.x, hip.y)

    def shows_guide(self, phase: Phase, stroke_pct: int) -> bool:
        raise NotImplementedError

    def live_overlay(self, rower) -> List[AnnotationLine]:
        if not self.needs_guidance:
            return []
        if not self.shows_guide(rower.phase, rower.catch_finish_pct):
            return []
        points = (rower.current_hip, rower.current_shoulder, rower.catch_hip, rower.catch_shoulder)
        if any(p is None for p in points):
            return []
        return [self.guide_line(*points)]

    def _illustrate(self, frame: Frame, label: str) -> Optional[FaultIllustration]:
        hip = frame.points.get(BodyPart.LEFT_HIP)
        shoulder = frame.points.get(BodyPart.LEFT_SHOULDER)
        if hip is None or shoulder is None:
            return None
        delta = int(frame.body_angle - self.bad_catch_angle)
        lines = []
        phase = Phase(frame.phase)
        if (
            self.bad_catch_hip is not None
            and self.bad_catch_shoulder is not None
            and self.shows_guide(phase, frame.stroke_pos_pct)
        ):
            lines.append(self.guide_line(hip, shoulder, self.bad_catch_hip, self.bad_catch_shoulder))
        return FaultIllustration(frame, label, lines, f"{int(frame.body_angle)}° {delta}Δ")

    def fault_fragment(self, frames: FrameBuffer, rower) -> Optional[FaultFragment]:
        catch = self._find_frame(frames, self.catch_time_of_bad_stroke)
        reference = self._find_frame(frames, self.reference_time_of_bad_stroke)
        if catch is None or reference is None:
            return None
        illustrations = [self._illustrate(f, label) for f, label in self.illustration_order(catch, reference)]
        if any(i is None for i in illustrations):
            return None
        return self._fragment(rower, illustrations)

    def illustration_order(self, catch: Frame, reference: Frame):
        raise NotImplementedError


class EarlyDriveBodyAngle(AngleStabilityChecker):
    """
    Looks for opening up too early (or shooting the slide) by measuring the
    change in body angle during the early drive.
    """

    title = "Early Drive"
    description = (
        "Looks for opening up too early or shooting the slide faults by "
        "measuring the change in body angle during the early drive."
    )
    report_heading = "Not Maintaining Body Angle During the Initial Drive"
    report_description = (
        "You should use only the legs during the early part of the drive. "
        "Your forward body angle should not change until your hands pass your shins."
    )

    # Drive percentage before which the body angle should not change
    EARLY_DRIVE_PCT = 30

    def acceptable_range(self) -> Tuple[float, float]:
        return self.settings.early_drive_min_delta, self.settings.early_drive_max_delta

    def initial_message(self) -> str:
        return (
            "You are opening up too early. Push with the legs at the catch don't pull with "
            "the arms. Maintain your catch angle until your hands pass your shins"
        )

    def reminder_message(self) -> str:
        return (
            "Focus on maintaining your catch angle during the early drive. Hands and seat "
            "should move in unison until hands pass the shins"
        )

    def on_event(self, event: CoachEvent, rower, now: int) -> None:
        if event == CoachEvent.DRIVE_UPDATE:
            if rower.current_body_angle is not None and rower.catch_finish_pct < self.EARLY_DRIVE_PCT:
                self.reference_angle = rower.current_body_angle
                self.reference_hip = rower.current_hip
                self.reference_shoulder = rower.current_shoulder
                logger.debug(f"Pre-open body angle {self.reference_angle:.1f}")

        elif event == CoachEvent.FINISH:
            catch_angle = rower.catch_body_angle
            if catch_angle is None:
                return
            pre_open = self.reference_angle if self.reference_angle is not None else catch_angle
            delta = pre_open - catch_angle
            self.reference_angle = catch_angle
            if rower.stroke_count < 2:
                return
            logger.debug(f"Early drive delta {delta:.1f}")
            self.score(delta, rower)

    def shows_guide(self, phase: Phase, stroke_pct: int) -> bool:
        return stroke_pct < 40 and phase != Phase.RECOVERY

    def illustration_order(self, catch: Frame, reference: Frame):
        return [(catch, "catch"), (reference, "early drive")]


class LungingAtCatch(AngleStabilityChecker):
    """
    Measures the change in body angle during the recovery before the catch.
    Catch body angle should be established early in the recovery and should
    not change at the catch.
    """

    title = "Not Lunging at the Catch"
    description = (
        "Measures the change in body angle during the recovery before the catch. "
        "Catch body angle should be established early in the recovery and should "
        "not change at the catch."
    )
    report_heading = "Lunging at the Catch"
    report_description = (
        "Establish your catch body angle early in the recovery, then keep it "
        "until the catch. Reaching forward at the end of the slide shortens the drive."
    )

    # Recovery percentage after which the catch angle should be established
    RECOVERY_PCT = 20

    def acceptable_range(self) -> Tuple[float, float]:
        return self.settings.lunging_min_delta, self.settings.lunging_max_delta

    def clear(self) -> None:
        super().clear()
        self.reference_ear: Optional[Point] = None

    def initial_message(self) -> str:
        return (
            "You are lunging at the catch. Establish your catch angle early in the recovery "
            "and maintain it until the catch."
        )

    def reminder_message(self) -> str:
        return (
            "Focus on establishing your catch angle after the finish and maintaining it during "
            "the catch."
        )

    def on_event(self, event: CoachEvent, rower, now: int) -> None:
        if event == CoachEvent.RECOVERY_UPDATE:
            if rower.current_body_angle is not None and rower.catch_finish_pct > self.RECOVERY_PCT:
                self.reference_angle = rower.current_body_angle
                self.reference_hip = rower.current_hip
                self.reference_shoulder = rower.current_shoulder
                self.reference_ear = rower.current_ear

        elif event == CoachEvent.FINISH:
            catch_angle = rower.catch_body_angle
            if catch_angle is None:
                return
            pre_lunge = self.reference_angle if self.reference_angle is not None else catch_angle
            delta = pre_lunge - catch_angle

            if not self.in_range(delta):
                # Often a shoulder detection error, try the hip to ear line instead
                ear_delta = self._ear_delta(rower)
                if ear_delta is not None and abs(ear_delta) < abs(delta):
                    delta = ear_delta

            logger.debug(f"Lunging delta {delta:.1f}")
            self.score(delta, rower)

            self.reference_angle = None
            self.reference_hip = None
            self.reference_shoulder = None
            self.reference_ear = None

    def _ear_delta(self, rower) -> Optional[float]:
        before = angle(self.reference_hip, self.reference_ear)
        at_catch = angle(rower.catch_hip, rower.catch_ear)
        if before is None or at_catch is None:
            return None
        return before - at_catch

    def shows_guide(self, phase: Phase, stroke_pct: int) -> bool:
        return stroke_pct < 50 and phase in (Phase.RECOVERY, Phase.CATCH)

    def illustration_order(self, catch: Frame, reference: Frame):
        return [(reference, "recovery"), (catch, "catch")]
