"""Hand path checks: hand levels through the stroke and hands away before the knees rise."""

import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import logging

from ergcoach.analysis.events import CoachEvent
from ergcoach.analysis.frames import Frame, FrameBuffer
from ergcoach.analysis.keypoints import BodyPart, round_half_up
from ergcoach.analysis.rower import Phase
from ergcoach.rubric.base import (
    AnnotationLine,
    FaultChecker,
    FaultFragment,
    FaultIllustration,
)

logger = logging.getLogger(__name__)


@dataclass
class BadHandLevelFrame:
    time: Optional[int] = None
    delta: float = -1.0


# Stroke percentage buckets used to pick the illustrated frames
STROKE_PCT_BUCKETS: Tuple[Tuple[int, int], ...] = (
    (0, 16), (17, 32), (33, 48), (49, 64), (65, 80), (81, 100),
)


class HandLevels(FaultChecker):
    """
    Checks for consistent hand levels by measuring the difference between
    actual and expected hand heights.

    The expected band spans from the left edge to the finish wrist position,
    and vertically from chest height at layback down to a fixed floor.
    """

    title = "Hand levels"
    description = (
        "Checks for consistent hand levels by measuring difference in "
        "actual heights with expected heights"
    )
    unit = "Δ"
    report_heading = "Inconsistent Hand Levels"
    report_description = (
        "Hands should travel in a level path through the whole stroke. "
        "Hands out before the knees come up and don't dip at the catch or finish."
    )

    LEFT_X = 10.0
    # Chest height is about 80% of body length at a layback 20 degrees past vertical
    CHEST_RATIO = 0.8
    LAYBACK_RADIANS = 0.35

    def clear(self) -> None:
        super().clear()
        self.left_x: Optional[float] = None
        self.right_x: Optional[float] = None
        self.top_y: Optional[float] = None
        self.bottom_y: Optional[float] = None
        self.current_delta = 0.0
        self.catch_time_of_bad_stroke: Optional[int] = None
        self._reset_buckets()

    def _reset_buckets(self) -> None:
        self.worst_frame_buckets: Dict[Tuple[int, int], BadHandLevelFrame] = {
            bucket: BadHandLevelFrame() for bucket in STROKE_PCT_BUCKETS
        }

    def initial_message(self) -> str:
        return (
            "Try to maintain constant hand levels. Hands out before the knees come up and "
            "don't dip at the catch or finish. Keep your hands in the green rectangle."
        )

    def reminder_message(self) -> str:
        return "Focus on maintaining proper hand levels"

    def on_event(self, event: CoachEvent, rower, now: int) -> None:
        if event == CoachEvent.CATCH:
            self._on_catch(rower)
        else:
            self._track_hands(rower)

    def _on_catch(self, rower) -> None:
        self._reset_buckets()
        finish_wrist = rower.finish_wrist
        y_hip = rower.hip_heights.trimmed_average()
        body_length = rower.average_body_length
        if finish_wrist is None or y_hip is None or body_length is None:
            return

        self.left_x = self.LEFT_X
        self.right_x = float(finish_wrist.x)
        self.top_y = y_hip - self.CHEST_RATIO * body_length * math.cos(self.LAYBACK_RADIANS)
        self.bottom_y = self.settings.hand_level_bottom_y

        self.stroke_history.append(self.current_delta)
        if self.current_delta <= self.settings.hand_level_max_deviation:
            self.good_stroke()
        else:
            self.bad_stroke()
            self.catch_time_of_bad_stroke = rower.catch_shoulder.t if rower.catch_shoulder else None
        self.current_delta = 0.0

    def _track_hands(self, rower) -> None:
        if self.top_y is None or self.bottom_y is None:
            return
        wrist = rower.current_wrist
        if wrist is None:
            return

        # The hand is 5px lower than the wrist at the catch and level with it at the finish
        y = wrist.y + (5 - 0.05 * rower.catch_finish_pct)
        self.current_delta = max(self.top_y - y, y - self.bottom_y, self.current_delta)

        stroke_pct = rower.stroke_pct
        for bucket in STROKE_PCT_BUCKETS:
            low, high = bucket
            if low <= stroke_pct <= high:
                if self.worst_frame_buckets[bucket].delta <= self.current_delta:
                    self.worst_frame_buckets[bucket] = BadHandLevelFrame(wrist.t, self.current_delta)
                break

    def band(self) -> List[AnnotationLine]:
        if None in (self.left_x, self.right_x, self.top_y, self.bottom_y):
            return []
        left, right, top, bottom = self.left_x, self.right_x, self.top_y, self.bottom_y
        return [
            AnnotationLine(left, top, right, top),
            AnnotationLine(right, top, right, bottom),
            AnnotationLine(right, bottom, left, bottom),
            AnnotationLine(left, bottom, left, top),
        ]

    def live_overlay(self, rower) -> List[AnnotationLine]:
        return self.band() if self.needs_guidance else []

    def fault_fragment(self, frames: FrameBuffer, rower) -> Optional[FaultFragment]:
        first = self._find_frame(frames, self.catch_time_of_bad_stroke)
        if first is None:
            return None
        times = [b.time for b in self.worst_frame_buckets.values() if b.time is not None]
        samples = frames.with_times(times)
        logger.info(f"Hand level fault sample frames: {len(samples)}")
        if not samples:
            return None
        illustrations = [
            FaultIllustration(frame, f"{frame.stroke_pos_pct}%", self.band())
            for frame in samples
        ]
        return self._fragment(rower, illustrations, caption_frame=first)


class HandsOut(FaultChecker):
    """
    Checks that the knees stay down as the hands pass during the recovery.

    The measured value is the knee height at the finish minus the knee height
    when the hands pass mid thigh. Detection noise is filtered out by
    rejecting frames whose shin length deviates from the average.
    """

    title = "Hands Out"
    description = (
        "Check that knees stay down as hands pass during the recovery. The measured value "
        "is the difference in knee height at the finish compared to knee height when hands "
        "pass the thighs."
    )
    unit = "Δ"
    report_heading = "Knees up too early"

    # Mid thigh is this many shin lengths in front of the ankle
    MID_THIGH_SHIN_RATIO = 1.2
    INITIAL_MID_THIGH_X = 210
    CLEARED_MID_THIGH_X = 250

    def __init__(self, settings=None):
        super().__init__(settings)
        self.mid_thigh_x = self.INITIAL_MID_THIGH_X

    @property
    def report_description(self) -> str:
        return self.initial_message()

    def clear(self) -> None:
        super().clear()
        self.max_knee_delta = 25  # Set relative to body length at the first catch
        self.knee_delta_before_hands_pass: Optional[int] = None
        self.mid_thigh_x = self.CLEARED_MID_THIGH_X
        self.hands_mid_thigh_time: Optional[int] = None
        self.bad_hands_mid_thigh_time: Optional[int] = None
        self.bad_finish_time: Optional[int] = None

    def initial_message(self) -> str:
        return "Hands out at the finish and keep your knees down until your hands pass them."

    def reminder_message(self) -> str:
        return (
            "Focus on getting you hands out, rocking over at the hips, and keeping knees "
            "down until the hands pass."
        )

    def on_event(self, event: CoachEvent, rower, now: int) -> None:
        if event == CoachEvent.CATCH:
            self._on_catch(rower)
        elif event == CoachEvent.RECOVERY_UPDATE:
            self._on_recovery(rower)

    def _on_catch(self, rower) -> None:
        if rower.average_body_length is not None:
            self.max_knee_delta = round_half_up(
                rower.average_body_length * self.settings.hands_out_knee_delta_body_ratio
            )
        shin_length = rower.average_shin_length
        if shin_length is None:
            return
        self.mid_thigh_x = round_half_up(rower.fixed_ankle.x + shin_length * self.MID_THIGH_SHIN_RATIO)

        delta = self.knee_delta_before_hands_pass
        if delta is None:
            return
        self.stroke_history.append(delta)
        if delta <= self.max_knee_delta:
            self.good_stroke()
        else:
            self.bad_stroke()
            self.bad_hands_mid_thigh_time = self.hands_mid_thigh_time
            self.bad_finish_time = rower.time_of_latest_finish

    def _on_recovery(self, rower) -> None:
        wrist = rower.current_wrist
        knee = rower.current_knee
        if wrist is None or knee is None:
            return
        # Only interested in hands before they pass mid thigh
        if wrist.x <= self.mid_thigh_x:
            return
        current_shin = rower.current_shin_length
        average_shin = rower.average_shin_length
        if current_shin is None or average_shin is None:
            return
        if abs(average_shin - current_shin) > self.max_knee_delta / 2:
            return
        if rower.leg_deviation_percent > self.settings.max_leg_deviation_pct:
            return

        self.hands_mid_thigh_time = knee.t
        y_finish_knee = rower.finish_knee_heights.trimmed_average()
        if y_finish_knee is None:
            return
        self.knee_delta_before_hands_pass = int(y_finish_knee) - knee.y

    def live_overlay(self, rower) -> List[AnnotationLine]:
        wrist = rower.current_wrist
        knee = rower.current_knee
        if not self.needs_guidance or wrist is None or knee is None:
            return []
        if wrist.x <= self.mid_thigh_x or rower.phase == Phase.DRIVE:
            return []
        # Arrow pointing down from the knee
        bottom = knee.y + 15
        return [
            AnnotationLine(knee.x, bottom, knee.x, knee.y, "yellow"),
            AnnotationLine(knee.x, bottom, knee.x + 5, bottom - 5, "yellow"),
            AnnotationLine(knee.x, bottom, knee.x - 5, bottom - 5, "yellow"),
        ]

    def _knee_line(self, frame: Frame, rower) -> List[AnnotationLine]:
        wrist = frame.points.get(BodyPart.LEFT_WRIST)
        knee = frame.points.get(BodyPart.LEFT_KNEE)
        reference_y = rower.finish_knee_heights.trimmed_average()
        if wrist is None or knee is None or reference_y is None or wrist.x <= self.mid_thigh_x:
            return []
        return [AnnotationLine(knee.x, reference_y, knee.x, knee.y, "yellow")]

    def fault_fragment(self, frames: FrameBuffer, rower) -> Optional[FaultFragment]:
        finish = self._find_frame(frames, self.bad_finish_time)
        mid_thigh = self._find_frame(frames, self.bad_hands_mid_thigh_time)
        if finish is None or mid_thigh is None:
            return None
        illustrations = [
            FaultIllustration(finish, "finish", self._knee_line(finish, rower)),
            FaultIllustration(mid_thigh, "recovery", self._knee_line(mid_thigh, rower)),
        ]
        return self._fragment(rower, illustrations)
