"""
Stroke analyzer.

Receives pose detections in capture order, updates the RowerState and
notifies the Coach. The phase state machine is driven by the shoulder's
position between the catch and the finish (``catch_finish_pct``):

    RECOVERY --(pct rising below 20%)--> CATCH -> DRIVE
    DRIVE --(pct falling above 70%)--> FINISH -> RECOVERY

Catch and finish positions come from the rolling x minimum of the shoulder
and x maximum of the wrist. The analyzer clock is the frame timestamp, so a
recorded session can be replayed with identical results.
"""

import math
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional

import logging

from ergcoach.analysis.bounded_average import BoundedRollingAverage
from ergcoach.analysis.coach import Coach, Notifier, ReportSink
from ergcoach.analysis.events import CoachEvent
from ergcoach.analysis.frames import Frame
from ergcoach.analysis.keypoints import (
    BodyPart,
    KeypointMap,
    Point,
    angle,
    round_half_up,
    to_keypoint_map,
)
from ergcoach.analysis.rower import Phase, RowerState, RowerView
from ergcoach.config import Settings, get_settings
from ergcoach.rubric import (
    AnnotationLine,
    FaultChecker,
    FaultFragment,
    Mark,
    Status,
    build_fault_checkers,
)
from ergcoach.schemas.session import SessionReport

logger = logging.getLogger(__name__)


class FrameReason:
    """Why a frame was not accepted."""
    OUT_OF_ORDER = "out_of_order"
    MISSING_KEYPOINTS = "missing_keypoints"
    NEGATIVE_PROGRESS = "negative_progress"
    PAUSED = "paused"
    SESSION_RESET = "session_reset"
    CATCH_REJECTED = "catch_rejected"


@dataclass
class FrameResult:
    """Outcome of analyzing one frame."""
    accepted: bool
    phase: Phase
    catch_finish_pct: int
    reason: Optional[str] = None
    events: List[CoachEvent] = field(default_factory=list)


# Required catch, finish and current keypoints, checked in this order
REQUIRED_POINTS = (
    "catch_wrist", "catch_elbow", "catch_shoulder", "catch_knee", "catch_hip",
    "finish_wrist", "finish_elbow", "finish_hip", "finish_shoulder",
    "current_wrist", "current_elbow", "current_hip", "current_ankle",
    "current_knee", "current_shoulder",
)


class StrokeAnalyzer:
    """
    Per-session frame reducer.

    Owns the RowerState; the coach and fault checkers only see it through a
    read-only RowerView.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        notifier: Optional[Notifier] = None,
        report_sink: Optional[ReportSink] = None,
        checkers: Optional[List[FaultChecker]] = None,
        session_id: Optional[str] = None,
        listener: Optional[Callable[[CoachEvent], None]] = None
    ):
        """
        Args:
            settings: Thresholds and timings, defaults to get_settings()
            notifier: Receives coaching messages
            report_sink: Receives session reports when a session stops or resets
            checkers: Fault checkers in priority order, defaults to all of them
            session_id: Stamped on generated reports
            listener: Called with every event the analyzer emits
        """
        self.settings = settings or get_settings()
        self.rower = RowerState(self.settings)
        self.view = RowerView(self.rower)
        self.coach = Coach(
            self.view,
            checkers if checkers is not None else build_fault_checkers(self.settings),
            notifier=notifier,
            report_sink=report_sink,
            settings=self.settings,
            session_id=session_id,
        )
        self.listener = listener

        self._poses: Dict[int, KeypointMap] = {}
        self._last_timestamp: Optional[int] = None
        self.frames_received = 0
        self._new_catch: Optional[Point] = None
        self._new_finish: Optional[Point] = None
        self._init_counters()

    def _init_counters(self) -> None:
        size = self.settings.limb_average_max_size
        sample = self.settings.limb_average_sample_size
        self.frame_count = 0
        self.hand_up_frame_count = 0
        self.consecutive_valid_strokes = 0
        self.consecutive_invalid_strokes = 0
        self.shin_lengths = BoundedRollingAverage(size, sample)
        self.thigh_lengths = BoundedRollingAverage(size, sample)
        self.body_lengths = BoundedRollingAverage(size, sample)
        self.upper_arm_lengths = BoundedRollingAverage(size, sample)
        self.forearm_lengths = BoundedRollingAverage(size, sample)
        self.previous_wrist: Optional[Point] = None

    def reset(self) -> None:
        """Clear analyzer-local counters and limb averages."""
        self._init_counters()
        self._poses.clear()
        self._new_catch = None
        self._new_finish = None

    def reset_session(
        self,
        now: Optional[int] = None,
        events: Optional[List[CoachEvent]] = None
    ) -> None:
        """Save the report for the current session and start a new one."""
        now = now if now is not None else self.clock
        logger.warning("Resetting session")
        self.coach.save_stats(now)
        self.rower.reset()
        self.coach.reset()
        self.reset()
        self._emit(CoachEvent.SESSION_RESET, events)

    # ------------------------------------------------------------------
    # Frame input
    # ------------------------------------------------------------------

    def submit_frame(
        self,
        timestamp: int,
        keypoints: Mapping,
        image=None
    ) -> FrameResult:
        """
        Analyze one pose detection.

        Args:
            timestamp: Capture time in ms, must not go backwards
            keypoints: Body part (or its name) to ``Point`` or ``(x, y)``
            image: Opaque image handle kept for fault illustrations

        Returns:
            FrameResult; rejected frames leave the previous state in place
        """
        now = int(timestamp)
        if self._last_timestamp is not None and now < self._last_timestamp:
            logger.warning(f"Frame at {now} is older than {self._last_timestamp}, skipped")
            return self._result(False, FrameReason.OUT_OF_ORDER)
        self._last_timestamp = now
        self.frames_received += 1

        points = to_keypoint_map(keypoints, now)
        self.rower.current_image = image
        self._poses[now] = points
        for t in [t for t in self._poses if now - t > self.settings.point_shelf_life_ms]:
            del self._poses[t]

        self.rower.current_points.clear()
        for part, point in points.items():
            stats = self.rower.stats_map.get(part)
            if stats is not None:
                stats.add_sample(point)
            self.rower.current_points[part] = point

        events: List[CoachEvent] = []
        accepted, reason = self._analyze(now, events)
        self._add_frame(image, now)
        return self._result(accepted, reason, events)

    def _result(
        self,
        accepted: bool,
        reason: Optional[str],
        events: Optional[List[CoachEvent]] = None
    ) -> FrameResult:
        return FrameResult(
            accepted=accepted,
            phase=self.rower.phase,
            catch_finish_pct=self.rower.catch_finish_pct,
            reason=reason,
            events=events or [],
        )

    def _emit(self, event: CoachEvent, events: Optional[List[CoachEvent]] = None) -> None:
        if events is not None:
            events.append(event)
        if self.listener is not None:
            self.listener(event)

    # ------------------------------------------------------------------
    # Per-frame analysis
    # ------------------------------------------------------------------

    def _analyze(self, now: int, events: List[CoachEvent]):
        rower = self.rower
        self._update_catch_and_finish_values(now)

        missing = self._missing_points()
        if missing:
            logger.warning(f"Rower state missing {missing}")
            return False, FrameReason.MISSING_KEYPOINTS

        self.frame_count += 1
        rower.current_shin_angle = angle(rower.current_ankle, rower.current_knee)
        rower.current_body_angle = angle(rower.current_hip, rower.current_shoulder)
        drive_length = rower.finish_shoulder.x - rower.catch_shoulder.x
        if drive_length < 0:
            logger.warning(f"Invalid drive length {drive_length}")

        self._update_limb_lengths()
        self._fix_forearm()
        rower.hip_heights.add(rower.current_hip.y)
        rower.arm_deviation_percent = self._deviation_percent(
            (rower.average_forearm_length, rower.current_forearm_length),
            (rower.average_upper_arm_length, rower.current_upper_arm_length),
        )
        rower.leg_deviation_percent = self._deviation_percent(
            (rower.average_shin_length, rower.current_shin_length),
            (rower.average_thigh_length, rower.current_thigh_length),
        )
        if rower.arm_deviation_percent > 10:
            logger.debug(f"Arm length deviation is {rower.arm_deviation_percent}%")
        if rower.leg_deviation_percent > 10:
            logger.debug(f"Leg length deviation is {rower.leg_deviation_percent}%")

        # Hand raised above the head signals a pause, or a reset when held
        if rower.current_wrist.y < rower.current_shoulder.y - self.settings.hand_raise_margin_px:
            self.hand_up_frame_count += 1
            if rower.is_rowing:
                if self.hand_up_frame_count > self.settings.pause_hand_frames:
                    logger.warning("Pause")
                    rower.is_rowing = False
                    return False, FrameReason.PAUSED
            elif self.hand_up_frame_count > self.settings.reset_hand_frames:
                self.reset_session(now, events)
                return False, FrameReason.SESSION_RESET
        else:
            self.hand_up_frame_count = 0

        previous_pct = rower.catch_finish_pct
        if drive_length == 0:
            rower.catch_finish_pct = 0
        else:
            shoulder_travel = rower.current_shoulder.x - rower.catch_shoulder.x
            rower.catch_finish_pct = round_half_up(100.0 * shoulder_travel / drive_length)
        if rower.catch_finish_pct > 110:
            logger.debug(f"catch_finish_pct={rower.catch_finish_pct}")

        if previous_pct < 0:
            # Negative stroke position is likely a bad detection
            logger.info(f"Stroke position {previous_pct}% is likely a bad value")
            return False, FrameReason.NEGATIVE_PROGRESS

        if previous_pct < self.settings.catch_zone_pct and previous_pct < rower.catch_finish_pct:
            # Top of the slide and moving towards the finish
            if rower.phase == Phase.RECOVERY:
                if not self._catch(now, events):
                    logger.info("Unable to process catch")
                    return False, FrameReason.CATCH_REJECTED
            else:
                since_catch = now - rower.catch_time_previous_to_finish
                if rower.is_rowing and since_catch > self.settings.unnoticed_pause_ms:
                    logger.warning(f"Pause inferred, last catch before finish was {since_catch} ms ago")
                    rower.is_rowing = False
                rower.phase = Phase.DRIVE

        elif previous_pct > self.settings.finish_zone_pct and previous_pct > rower.catch_finish_pct:
            # End of the slide and moving back towards the catch
            if rower.phase == Phase.DRIVE:
                self._finish(now)
            else:
                rower.phase = Phase.RECOVERY

        elif rower.phase == Phase.CATCH:
            rower.phase = Phase.DRIVE
        elif rower.phase == Phase.FINISH:
            rower.phase = Phase.RECOVERY

        self.previous_wrist = rower.current_wrist
        if rower.is_rowing:
            update = self.coach.on_update(now)
            if update.fault is not None:
                rower.stroke_faults.add(update.fault)
            for event in update.events:
                self._emit(event, events)
        return True, None

    def _missing_points(self) -> List[str]:
        return [name for name in REQUIRED_POINTS if getattr(self.rower, name) is None]

    def _update_limb_lengths(self) -> None:
        rower = self.rower
        rower.current_shin_length = rower.current_distance(BodyPart.LEFT_ANKLE, BodyPart.LEFT_KNEE)
        rower.current_thigh_length = rower.current_distance(BodyPart.LEFT_KNEE, BodyPart.LEFT_HIP)
        rower.current_body_length = rower.current_distance(BodyPart.LEFT_HIP, BodyPart.LEFT_SHOULDER)
        rower.current_upper_arm_length = rower.current_distance(BodyPart.LEFT_ELBOW, BodyPart.LEFT_SHOULDER)
        rower.current_forearm_length = rower.current_distance(BodyPart.LEFT_WRIST, BodyPart.LEFT_ELBOW)
        self.shin_lengths.add(rower.current_shin_length)
        self.thigh_lengths.add(rower.current_thigh_length)
        self.body_lengths.add(rower.current_body_length)
        self.upper_arm_lengths.add(rower.current_upper_arm_length)
        self.forearm_lengths.add(rower.current_forearm_length)

    def _fix_forearm(self) -> None:
        """
        Wrist detection is often wrong near the catch. When the forearm length
        is off from its average, move the wrist to the previous wrist height
        at the average forearm length from the elbow.
        """
        rower = self.rower
        average = rower.average_forearm_length
        current = rower.current_forearm_length
        elbow = rower.current_elbow
        if average is None or current is None or elbow is None:
            return
        if abs(average - current) < self.settings.forearm_correction_ratio * average:
            return

        logger.warning(f"Fixing wrist position, average forearm {average:.1f} current {current:.1f}")
        y_previous = self.previous_wrist.y if self.previous_wrist else self.settings.default_wrist_height
        x_delta = math.sqrt(max(0.0, average ** 2 - (elbow.y - y_previous) ** 2))
        rower.current_points[BodyPart.LEFT_WRIST] = Point(int(elbow.x - x_delta), y_previous, elbow.t)
        rower.current_forearm_length = average

    def _deviation_percent(self, *limbs) -> int:
        """
        Largest relative deviation of the current limb lengths from their
        averages. Large deviations indicate a detection error.

        Returns:
            0 for the first strokes, 100 when a length is missing
        """
        if self.rower.stroke_count < self.settings.deviation_min_strokes:
            return 0
        deviations = []
        for average, current in limbs:
            if not average or current is None:
                return 100
            deviations.append(abs(average - current) / average)
        return int(max(deviations) * 100)

    # ------------------------------------------------------------------
    # Catch and finish candidates
    # ------------------------------------------------------------------

    def _update_catch_and_finish_values(self, now: int) -> None:
        rower = self.rower
        forced = rower.stroke_count == 0 or self.frame_count > self.settings.forced_adoption_frames

        if rower.phase == Phase.RECOVERY or not rower.is_rowing:
            shoulder = rower.stats_map[BodyPart.LEFT_SHOULDER]
            self._new_catch = shoulder.most_recent_min()
            if self._new_catch is not None and now - self._new_catch.t > self.settings.stale_candidate_ms:
                # Candidates stop updating after a pause
                logger.info(f"Stale catch candidate from {self._new_catch.t}, clearing")
                shoulder.clear_minima()
            if forced:
                self._new_catch_values()

        if rower.phase == Phase.DRIVE or not rower.is_rowing:
            wrist = rower.stats_map[BodyPart.LEFT_WRIST]
            self._new_finish = wrist.most_recent_max()
            if self._new_finish is not None and now - self._new_finish.t > self.settings.stale_candidate_ms:
                logger.info(f"Stale finish candidate from {self._new_finish.t}, clearing")
                wrist.clear_maxima()
            if forced:
                self._new_finish_values()

        # Ankle detection is unreliable and the ankle does not move on an erg
        rower.current_points[BodyPart.LEFT_ANKLE] = rower.fixed_ankle

    def _snapshot(self, pose: KeypointMap, part: BodyPart, t: int) -> Optional[Point]:
        point = pose.get(part)
        return Point(point.x, point.y, t) if point is not None else None

    def _new_catch_values(self) -> None:
        catch = self._new_catch
        if catch is None:
            return
        rower = self.rower
        rower.catch_times[rower.stroke_count] = catch.t
        pose = self._poses.get(catch.t)
        if pose is None:
            return

        for name, part in (
            ("catch_shoulder", BodyPart.LEFT_SHOULDER),
            ("catch_elbow", BodyPart.LEFT_ELBOW),
            ("catch_wrist", BodyPart.LEFT_WRIST),
            ("catch_knee", BodyPart.LEFT_KNEE),
            ("catch_hip", BodyPart.LEFT_HIP),
            ("catch_ear", BodyPart.LEFT_EAR),
        ):
            point = self._snapshot(pose, part, catch.t)
            if point is not None:
                setattr(rower, name, point)
        rower.catch_body_angle = angle(rower.catch_hip, rower.catch_shoulder)
        rower.catch_shin_angle = angle(rower.fixed_ankle, rower.catch_knee)

    def _new_finish_values(self) -> None:
        finish = self._new_finish
        if finish is None:
            return
        rower = self.rower
        pose = self._poses.get(finish.t)
        if pose is not None:
            for name, part in (
                ("finish_wrist", BodyPart.LEFT_WRIST),
                ("finish_shoulder", BodyPart.LEFT_SHOULDER),
                ("finish_elbow", BodyPart.LEFT_ELBOW),
                ("finish_knee", BodyPart.LEFT_KNEE),
                ("finish_hip", BodyPart.LEFT_HIP),
            ):
                point = self._snapshot(pose, part, finish.t)
                if point is not None:
                    setattr(rower, name, point)
        rower.finish_body_angle = angle(rower.finish_hip, rower.finish_shoulder)

    # ------------------------------------------------------------------
    # Phase transitions
    # ------------------------------------------------------------------

    def _catch(self, now: int, events: List[CoachEvent]) -> bool:
        rower = self.rower

        if rower.stroke_faults:
            rower.error_stroke_count += 1
        self.coach.on_end_of_stroke(now)
        rower.stroke_faults.clear()
        self._emit(CoachEvent.END_OF_STROKE, events)

        rower.phase = Phase.CATCH
        if rower.stroke_count > 0:
            # Fresh search for the next finish
            rower.stats_map[BodyPart.LEFT_SHOULDER].clear_maxima()
        self._new_catch_values()
        rower.stats_map[BodyPart.LEFT_WRIST].clear()

        catch_time = rower.catch_times.get(rower.stroke_count)
        if catch_time is None:
            return False
        if len(rower.catch_times) > 1:
            previous_catch_time = rower.catch_times.get(rower.stroke_count - 1)
            if previous_catch_time is None:
                return False
            stroke_ms = catch_time - previous_catch_time
            rower.stroke_rate = round_half_up(60.0 / (stroke_ms / 1000.0)) if stroke_ms > 0 else None
            logger.info(f"Stroke rate {rower.stroke_rate}, catch at {catch_time}, previous {previous_catch_time}")
            if rower.finish_wrist is not None:
                rower.drive_ms = rower.finish_wrist.t - previous_catch_time
                recovery_ms = stroke_ms - rower.drive_ms
                rower.slide_ratio = rower.drive_ms / recovery_ms if recovery_ms > 0 else None

        if (
            rower.stroke_rate is not None
            and rower.start_time is None
            and rower.stroke_rate > self.settings.session_start_stroke_rate
        ):
            rower.start_time = rower.catch_times.get(rower.stroke_count - 1, now)

        rower.stroke_count += 1
        rower.catch_finish_pct = 0
        logger.info(
            f"Catch! Stroke # {rower.stroke_count}, {self.frame_count} frames in the last stroke, "
            f"time since catch {now - catch_time} ms"
        )

        rower.last_stroke_valid = self._is_stroke_valid(now)
        if rower.last_stroke_valid:
            self.consecutive_valid_strokes += 1
            self.consecutive_invalid_strokes = 0
        else:
            self.consecutive_invalid_strokes += 1
            self.consecutive_valid_strokes = 0

        if rower.is_rowing:
            if self.consecutive_invalid_strokes > self.settings.invalid_strokes_to_stop:
                logger.warning(f"{self.consecutive_invalid_strokes} invalid strokes, stopping session")
                rower.is_rowing = False
                rower.end_time = now
                self.coach.save_stats(now)
        elif self.consecutive_valid_strokes > self.settings.valid_strokes_to_start:
            logger.info("Rowing started")
            rower.is_rowing = True
            rower.end_time = None

        self.frame_count = 0
        return True

    def _finish(self, now: int) -> None:
        rower = self.rower
        rower.phase = Phase.FINISH
        logger.info(f"Finish! {self.frame_count} frames since the catch")
        rower.catch_time_previous_to_finish = rower.catch_shoulder.t if rower.catch_shoulder else 0
        if rower.stroke_count > 0:
            # Fresh search for the next catch
            rower.stats_map[BodyPart.LEFT_SHOULDER].clear_minima()
        self._new_finish_values()
        rower.time_of_latest_finish = rower.finish_wrist.t if rower.finish_wrist else now
        if rower.finish_knee is not None:
            rower.finish_knee_heights.add(rower.finish_knee.y)

        rower.average_shin_length = self.shin_lengths.trimmed_average()
        rower.average_thigh_length = self.thigh_lengths.trimmed_average()
        rower.average_body_length = self.body_lengths.trimmed_average()
        rower.average_upper_arm_length = self.upper_arm_lengths.trimmed_average()
        rower.average_forearm_length = self.forearm_lengths.trimmed_average()

    def _is_stroke_valid(self, now: int) -> bool:
        """Pose estimations are not always right; check the stroke is physically possible."""
        rower = self.rower
        s = self.settings

        rate = rower.stroke_rate
        if rate is None or not s.min_stroke_rate <= rate <= s.max_stroke_rate:
            logger.warning(f"Invalid stroke rate {rate}")
            return False
        checks = (
            ("catch body angle", rower.catch_body_angle, s.min_catch_body_angle, s.max_catch_body_angle),
            ("catch shin angle", rower.catch_shin_angle, s.min_catch_shin_angle, s.max_catch_shin_angle),
            ("finish body angle", rower.finish_body_angle, s.min_finish_body_angle, s.max_finish_body_angle),
        )
        for name, value, low, high in checks:
            if value is None or not low < value <= high:
                logger.warning(f"Invalid {name} {value}")
                return False

        catch_time = rower.catch_shoulder.t if rower.catch_shoulder else now
        if now - catch_time > s.max_time_since_catch_ms:
            logger.warning(f"Invalid time since last catch {now - catch_time}")
            return False

        if rower.finish_wrist is None or rower.catch_wrist is None:
            return False
        wrist_travel = rower.finish_wrist.x - rower.catch_wrist.x
        if wrist_travel < s.min_wrist_travel_px:
            logger.warning(f"Invalid wrist travel {wrist_travel}")
            return False
        return True

    def _add_frame(self, image, now: int) -> None:
        rower = self.rower
        time_since_catch = 0
        if rower.phase != Phase.CATCH:
            catch_time = rower.catch_shoulder.t if rower.catch_shoulder else now
            time_since_catch = now - catch_time
        frame = Frame(
            time=now,
            image=image,
            time_since_catch_ms=time_since_catch,
            stroke_count=rower.stroke_count,
            stroke_rate=rower.stroke_rate or 0,
            points=dict(rower.current_points),
            phase=rower.phase.value,
            stroke_pos_pct=rower.catch_finish_pct,
            body_angle=rower.current_body_angle or 0.0,
        )
        rower.frames.add(frame, now)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def current_phase(self) -> Phase:
        return self.rower.phase

    def current_progress_percent(self) -> int:
        return self.rower.catch_finish_pct

    def per_checker_status(self) -> Dict[str, Status]:
        return self.coach.checker_statuses()

    def per_checker_mark(self) -> Dict[str, Mark]:
        return self.coach.checker_marks()

    def is_rowing(self) -> bool:
        return self.rower.is_rowing

    def session_duration(self) -> int:
        """Session duration in ms as of the latest frame."""
        return self.rower.duration(self.clock)

    @property
    def clock(self) -> int:
        """Timestamp of the latest frame."""
        return self._last_timestamp or 0

    def generate_report(self) -> Optional[SessionReport]:
        """Report for the session so far, None when it is too short."""
        return self.coach.report.generate(self.clock)

    def stop(self) -> Optional[SessionReport]:
        """End the session and hand its report to the report sink."""
        logger.info("Stopping session")
        if self.rower.is_rowing:
            self.rower.is_rowing = False
            self.rower.end_time = self.clock
        return self.coach.save_stats(self.clock)

    def live_overlay(self) -> Dict[str, List[AnnotationLine]]:
        """
        Guide lines for the current frame, by checker title.

        Checkers draw while their fault message is active or until they
        have seen three good strokes in a row.
        """
        overlay: Dict[str, List[AnnotationLine]] = {}
        for checker in self.coach.checkers:
            lines = checker.live_overlay(self.view)
            if lines:
                overlay[checker.title] = lines
        return overlay

    def generate_fault_fragment(self, checker: str) -> Optional[FaultFragment]:
        """Illustrate the latest bad stroke of a checker from the buffered frames."""
        found = self.coach.find_checker(checker)
        if found is None:
            raise KeyError(f"Unknown fault checker '{checker}'")
        return found.fault_fragment(self.rower.frames, self.view)
