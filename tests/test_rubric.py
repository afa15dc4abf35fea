"""Tests for the fault checkers, fed with hand-built rower snapshots."""

import math
from types import SimpleNamespace

import pytest

from ergcoach.analysis.bounded_average import BoundedRollingAverage
from ergcoach.analysis.events import CoachEvent
from ergcoach.analysis.frames import Frame, FrameBuffer
from ergcoach.analysis.keypoints import BodyPart, Point
from ergcoach.analysis.rower import Phase
from ergcoach.rubric import (
    AnnotationLine,
    CatchAngle,
    EarlyDriveBodyAngle,
    HandLevels,
    HandsOut,
    Layback,
    LungingAtCatch,
    Mark,
    RushingTheSlide,
    ShinAngle,
    Status,
    build_fault_checkers,
)


def _rower(**values):
    defaults = dict(
        stroke_count=5,
        start_time=0,
        phase=Phase.CATCH,
        catch_finish_pct=0,
        stroke_pct=0,
        leg_deviation_percent=0,
        catch_shoulder=Point(95, 100, 1000),
        catch_hip=None,
        catch_ear=None,
        finish_wrist=Point(160, 110, 1800),
        average_body_length=60.0,
        fixed_ankle=Point(82, 167, 0),
    )
    defaults.update(values)
    return SimpleNamespace(**defaults)


# ============================================================================
# Test: Mark
# ============================================================================

class TestMark:

    def test_no_strokes_is_perfect(self):
        assert Mark(0, 0).percent == 100

    def test_rounds_half_up(self):
        assert Mark(1, 8).percent == 13
        assert Mark(2, 8).percent == 25
        assert Mark(2, 3).percent == 67


# ============================================================================
# Test: Checker bank
# ============================================================================

class TestCheckerBank:

    def test_priority_order(self, settings):
        titles = [c.title for c in build_fault_checkers(settings)]
        assert titles == [
            "Hand levels",
            "Hands Out",
            "Slide Ratio",
            "Layback Position",
            "Catch Angle",
            "Shin Angle",
            "Early Drive",
            "Not Lunging at the Catch",
        ]

    def test_fresh_checkers(self, settings):
        for checker in build_fault_checkers(settings):
            assert checker.status == Status.GOOD
            assert checker.get_total_mark() == Mark(0, 0)
            assert checker.good_consecutive_strokes == 3

    def test_clear(self, settings):
        checker = CatchAngle(settings)
        for _ in range(5):
            checker.on_event(CoachEvent.CATCH, _rower(catch_body_angle=95.0), 0)
        checker.status = Status.FAULT_MESSAGE_SENT
        checker.clear()
        assert checker.stroke_history == []
        assert checker.bad_consecutive_strokes == 0
        assert checker.status == Status.GOOD
        assert checker.time_of_last_message is None


# ============================================================================
# Test: Body angles
# ============================================================================

class TestCatchAngle:

    def test_good_and_bad(self, settings):
        checker = CatchAngle(settings)
        checker.on_event(CoachEvent.CATCH, _rower(catch_body_angle=60.0), 0)
        assert checker.total_good_strokes == 1
        checker.on_event(CoachEvent.CATCH, _rower(catch_body_angle=95.0), 0)
        assert checker.bad_consecutive_strokes == 1
        assert checker.catch_time_of_bad_stroke == 1000
        assert checker.stroke_history == [60.0, 95.0]
        assert checker.initial_message().startswith("Your catch angle is 95.")

    def test_implausible_skipped(self, settings):
        checker = CatchAngle(settings)
        checker.on_event(CoachEvent.CATCH, _rower(catch_body_angle=20.0), 0)
        checker.on_event(CoachEvent.CATCH, _rower(catch_body_angle=None), 0)
        assert checker.stroke_history == []

    def test_other_events_ignored(self, settings):
        checker = CatchAngle(settings)
        checker.on_event(CoachEvent.FINISH, _rower(catch_body_angle=95.0), 0)
        assert checker.stroke_history == []

    def test_faulty_stroke_count(self, settings):
        checker = CatchAngle(settings)
        for _ in range(5):
            checker.on_event(CoachEvent.CATCH, _rower(catch_body_angle=95.0), 0)
        # Only strokes past the message threshold count as faulty
        assert checker.number_of_faulty_strokes == 2


class TestLayback:

    def test_not_enough_layback(self, settings):
        checker = Layback(settings)
        checker.on_event(CoachEvent.FINISH, _rower(finish_body_angle=95.0), 0)
        assert checker.bad_consecutive_strokes == 1
        assert checker.initial_message().startswith("Not enough layback at the finish. ")
        assert "Yours is 95" in checker.initial_message()

    def test_too_much_layback(self, settings):
        checker = Layback(settings)
        checker.on_event(CoachEvent.FINISH, _rower(finish_body_angle=145.0), 0)
        assert checker.reminder_message().startswith("Too much layback at the finish. ")

    def test_fault_type_kept_on_bad_leg_detection(self, settings):
        checker = Layback(settings)
        checker.on_event(CoachEvent.FINISH, _rower(finish_body_angle=95.0), 0)
        checker.on_event(CoachEvent.FINISH, _rower(finish_body_angle=145.0, leg_deviation_percent=20), 0)
        assert checker.bad_consecutive_strokes == 2
        assert checker.current_fault_type == "Not enough layback at the finish. "

    def test_good(self, settings):
        checker = Layback(settings)
        checker.on_event(CoachEvent.FINISH, _rower(finish_body_angle=115.0), 0)
        assert checker.get_total_mark() == Mark(1, 1)


class TestShinAngle:

    def test_bad_shin_angle(self, settings):
        checker = ShinAngle(settings)
        checker.on_event(CoachEvent.CATCH, _rower(catch_shin_angle=120.4), 0)
        assert checker.bad_consecutive_strokes == 1
        assert checker.initial_message().startswith("Your shin angle at the catch is 120.")

    def test_good_and_implausible(self, settings):
        checker = ShinAngle(settings)
        checker.on_event(CoachEvent.CATCH, _rower(catch_shin_angle=100.0), 0)
        checker.on_event(CoachEvent.CATCH, _rower(catch_shin_angle=140.0), 0)
        assert checker.get_total_mark() == Mark(1, 1)


class TestRushingTheSlide:

    def test_ratios(self, settings):
        checker = RushingTheSlide(settings)
        for ratio in (0.5, 1.5, 2.5, None, 0.1):
            checker.on_event(CoachEvent.CATCH, _rower(slide_ratio=ratio), 0)
        assert checker.stroke_history == [0.5, 1.5]
        assert checker.bad_consecutive_strokes == 1


# ============================================================================
# Test: Angle stability
# ============================================================================

class TestEarlyDriveBodyAngle:

    def _drive(self, checker, body_angle, pct):
        rower = _rower(
            current_body_angle=body_angle,
            catch_finish_pct=pct,
            current_hip=Point(140, 152, 0),
            current_shoulder=Point(123, 94, 0),
        )
        checker.on_event(CoachEvent.DRIVE_UPDATE, rower, 0)

    def test_opening_up_early(self, settings):
        checker = EarlyDriveBodyAngle(settings)
        self._drive(checker, 70.0, 10)
        self._drive(checker, 80.0, 25)
        self._drive(checker, 95.0, 45)
        checker.on_event(CoachEvent.FINISH, _rower(catch_body_angle=60.0), 0)
        assert checker.stroke_history == [pytest.approx(20.0)]
        assert checker.bad_consecutive_strokes == 1
        assert checker.reference_angle == 60.0

    def test_held_angle(self, settings):
        checker = EarlyDriveBodyAngle(settings)
        self._drive(checker, 65.0, 10)
        checker.on_event(CoachEvent.FINISH, _rower(catch_body_angle=60.0), 0)
        # No update in the next drive: the catch angle is the reference
        checker.on_event(CoachEvent.FINISH, _rower(catch_body_angle=62.0), 0)
        assert checker.stroke_history == [pytest.approx(5.0), pytest.approx(-2.0)]
        assert checker.get_total_mark() == Mark(2, 2)

    def test_first_strokes_not_scored(self, settings):
        checker = EarlyDriveBodyAngle(settings)
        self._drive(checker, 90.0, 10)
        checker.on_event(CoachEvent.FINISH, _rower(catch_body_angle=60.0, stroke_count=1), 0)
        assert checker.stroke_history == []


class TestLungingAtCatch:

    def _recovery(self, checker, ear):
        rower = _rower(
            current_body_angle=80.0,
            catch_finish_pct=50,
            current_hip=Point(150, 152, 500),
            current_shoulder=Point(140, 93, 500),
            current_ear=ear,
        )
        checker.on_event(CoachEvent.RECOVERY_UPDATE, rower, 500)

    def test_lunging(self, settings):
        checker = LungingAtCatch(settings)
        self._recovery(checker, None)
        checker.on_event(CoachEvent.FINISH, _rower(catch_body_angle=60.0), 1500)
        assert checker.stroke_history == [pytest.approx(20.0)]
        assert checker.bad_consecutive_strokes == 1
        assert checker.reference_angle is None

    def test_ear_line_overrides_shoulder_error(self, settings):
        checker = LungingAtCatch(settings)
        # Hip to ear is about 60 degrees both before and at the catch
        self._recovery(checker, Point(113, 87, 500))
        rower = _rower(
            catch_body_angle=60.0,
            catch_hip=Point(125, 152, 1000),
            catch_ear=Point(88, 87, 1000),
        )
        checker.on_event(CoachEvent.FINISH, rower, 1500)
        assert checker.stroke_history == [pytest.approx(0.0)]
        assert checker.get_total_mark() == Mark(1, 1)

    def test_no_reference_is_good(self, settings):
        checker = LungingAtCatch(settings)
        checker.on_event(CoachEvent.FINISH, _rower(catch_body_angle=60.0), 0)
        assert checker.stroke_history == [0.0]


# ============================================================================
# Test: Hands
# ============================================================================

class TestHandLevels:

    def _rower(self, **values):
        hips = BoundedRollingAverage(30, 10)
        hips.add(152)
        return _rower(hip_heights=hips, **values)

    def test_band_from_body_geometry(self, settings):
        checker = HandLevels(settings)
        checker.on_event(CoachEvent.CATCH, self._rower(), 0)
        assert checker.top_y == pytest.approx(152 - 48 * math.cos(0.35))
        assert checker.bottom_y == settings.hand_level_bottom_y
        assert checker.right_x == 160
        assert len(checker.band()) == 4
        assert checker.stroke_history == [0.0]

    def test_hands_too_high(self, settings):
        checker = HandLevels(settings)
        checker.on_event(CoachEvent.CATCH, self._rower(), 0)
        high = self._rower(current_wrist=Point(100, 80, 500), catch_finish_pct=50, stroke_pct=75)
        checker.on_event(CoachEvent.RECOVERY_UPDATE, high, 500)
        expected = 152 - 48 * math.cos(0.35) - 82.5
        assert checker.current_delta == pytest.approx(expected)
        assert checker.worst_frame_buckets[(65, 80)].time == 500

        checker.on_event(CoachEvent.CATCH, self._rower(), 1000)
        assert checker.stroke_history[-1] == pytest.approx(expected)
        assert checker.bad_consecutive_strokes == 1
        assert checker.current_delta == 0.0

    def test_no_band_before_first_catch(self, settings):
        checker = HandLevels(settings)
        checker.on_event(CoachEvent.DRIVE_UPDATE, self._rower(current_wrist=Point(100, 10, 0)), 0)
        assert checker.current_delta == 0.0


class TestHandsOut:

    def _recovery(self, checker, knee_y, wrist_x=150, shin=50.0):
        knees = BoundedRollingAverage(10, 6)
        knees.add(150)
        rower = _rower(
            current_wrist=Point(wrist_x, 110, 700),
            current_knee=Point(128, knee_y, 700),
            current_shin_length=shin,
            average_shin_length=50.0,
            finish_knee_heights=knees,
        )
        checker.on_event(CoachEvent.RECOVERY_UPDATE, rower, 700)

    def _catch(self, checker):
        rower = _rower(average_shin_length=50.0, time_of_latest_finish=400)
        checker.on_event(CoachEvent.CATCH, rower, 1000)

    def test_thresholds_from_body(self, settings):
        checker = HandsOut(settings)
        self._catch(checker)
        assert checker.max_knee_delta == 9
        assert checker.mid_thigh_x == 142
        assert checker.stroke_history == []

    def test_knees_up_early(self, settings):
        checker = HandsOut(settings)
        self._catch(checker)
        self._recovery(checker, knee_y=130)
        assert checker.knee_delta_before_hands_pass == 20
        self._catch(checker)
        assert checker.bad_consecutive_strokes == 1
        assert checker.bad_hands_mid_thigh_time == 700
        assert checker.bad_finish_time == 400

    def test_knees_down(self, settings):
        checker = HandsOut(settings)
        self._catch(checker)
        self._recovery(checker, knee_y=148)
        self._catch(checker)
        assert checker.get_total_mark() == Mark(1, 1)

    def test_filters(self, settings):
        checker = HandsOut(settings)
        self._catch(checker)
        # Hands already past mid thigh, then a bad shin detection
        self._recovery(checker, knee_y=130, wrist_x=140)
        self._recovery(checker, knee_y=130, shin=40.0)
        assert checker.knee_delta_before_hands_pass is None


# ============================================================================
# Test: Fault fragments
# ============================================================================

class TestFaultFragments:

    def test_catch_angle_fragment(self, settings):
        checker = CatchAngle(settings)
        frames = FrameBuffer(10_000)
        hip = Point(125, 152, 1000)
        frames.add(Frame(time=1000, stroke_count=7, phase="catch", points={BodyPart.LEFT_HIP: hip}), 1000)
        rower = _rower(catch_body_angle=95.0, start_time=0)
        checker.on_event(CoachEvent.CATCH, rower, 1000)

        checker.record_fault(7, frames, rower)
        assert checker.fault_value_by_stroke == {7: 95.0}
        assert len(checker.fault_fragments) == 1
        fragment = checker.fault_fragments[0]
        assert fragment.heading == "Improper Catch Angle"
        assert fragment.caption == "0:01 stroke # 7"
        assert fragment.to_dict()["illustrations"][0]["label"] == "catch"

    def test_missing_frame(self, settings):
        checker = CatchAngle(settings)
        rower = _rower(catch_body_angle=95.0)
        checker.on_event(CoachEvent.CATCH, rower, 1000)
        checker.record_fault(7, FrameBuffer(10_000), rower)
        assert checker.fault_value_by_stroke == {7: 95.0}
        assert checker.fault_fragments == []

    def test_fragment_limit(self, settings):
        settings.max_fault_fragments_per_checker = 1
        checker = CatchAngle(settings)
        frames = FrameBuffer(10_000)
        frames.add(Frame(time=1000, points={BodyPart.LEFT_HIP: Point(125, 152, 1000)}), 1000)
        rower = _rower(catch_body_angle=95.0)
        checker.on_event(CoachEvent.CATCH, rower, 1000)
        checker.record_fault(7, frames, rower)
        checker.record_fault(8, frames, rower)
        assert len(checker.fault_fragments) == 1


# ============================================================================
# Test: Live overlay
# ============================================================================

class TestLiveOverlay:

    def test_quiet_after_good_strokes(self, settings):
        for checker in build_fault_checkers(settings):
            rower = _rower(
                current_hip=Point(125, 152, 0),
                current_shoulder=Point(95, 100, 0),
                current_knee=Point(95, 119, 0),
                current_wrist=Point(150, 110, 0),
                catch_hip=Point(125, 152, 0),
                finish_hip=Point(172, 152, 0),
            )
            assert checker.live_overlay(rower) == []

    def test_catch_angle_target(self, settings):
        checker = CatchAngle(settings)
        checker.on_event(CoachEvent.CATCH, _rower(catch_body_angle=95.0), 0)
        assert checker.needs_guidance
        (line,) = checker.live_overlay(_rower(current_hip=Point(125, 152, 0)))
        assert (line.x1, line.y1) == (125, 152)
        assert line.x2 == pytest.approx(125 - 60 * math.cos(math.radians(70)))
        assert line.y2 == pytest.approx(92)

    def test_layback_target(self, settings):
        checker = Layback(settings)
        checker.status = Status.FAULT_MESSAGE_SENT
        (line,) = checker.live_overlay(_rower(current_hip=Point(125, 152, 0)))
        # Past vertical, so the target leans away from the flywheel
        assert line.x2 == pytest.approx(125 - 60 * math.cos(math.radians(110)))
        assert line.x2 > 125

    def test_shin_vertical(self, settings):
        checker = ShinAngle(settings)
        checker.status = Status.FAULT_MESSAGE_SENT
        lines = checker.live_overlay(_rower(current_knee=Point(95, 119, 0)))
        assert lines == [AnnotationLine(82, 167, 82, 119)]

    def test_slide_ticks_outside_drive(self, settings):
        checker = RushingTheSlide(settings)
        checker.status = Status.FAULT_MESSAGE_SENT
        hips = dict(catch_hip=Point(125, 152, 0), finish_hip=Point(172, 152, 0))
        lines = checker.live_overlay(_rower(phase=Phase.RECOVERY, **hips))
        assert [(line.x1, line.y1, line.x2, line.y2) for line in lines] == [
            (125, 142, 125, 162),
            (172, 142, 172, 162),
        ]
        assert checker.live_overlay(_rower(phase=Phase.DRIVE, **hips)) == []

    def test_hands_out_arrow(self, settings):
        checker = HandsOut(settings)
        checker.status = Status.FAULT_MESSAGE_SENT
        checker.mid_thigh_x = 142
        knee = Point(128, 140, 0)
        lines = checker.live_overlay(_rower(phase=Phase.RECOVERY, current_wrist=Point(150, 110, 0), current_knee=knee))
        assert len(lines) == 3
        assert (lines[0].x1, lines[0].y1, lines[0].x2, lines[0].y2) == (128, 155, 128, 140)
        assert all(line.color == "yellow" for line in lines)
        # Nothing once the hands are past the knees, or during the drive
        assert checker.live_overlay(_rower(phase=Phase.RECOVERY, current_wrist=Point(140, 110, 0), current_knee=knee)) == []
        assert checker.live_overlay(_rower(phase=Phase.DRIVE, current_wrist=Point(150, 110, 0), current_knee=knee)) == []

    def test_hand_level_band(self, settings):
        checker = HandLevels(settings)
        hips = BoundedRollingAverage(30, 10)
        hips.add(152)
        checker.on_event(CoachEvent.CATCH, _rower(hip_heights=hips), 0)
        checker.status = Status.FAULT_MESSAGE_SENT
        lines = checker.live_overlay(_rower())
        assert lines == checker.band()
        assert {line.x1 for line in lines} == {checker.left_x, checker.right_x}

    def test_early_drive_guide(self, settings):
        checker = EarlyDriveBodyAngle(settings)
        checker.status = Status.FAULT_MESSAGE_SENT
        points = dict(
            current_hip=Point(140, 152, 0),
            current_shoulder=Point(124, 94, 0),
            catch_hip=Point(125, 152, 0),
            catch_shoulder=Point(95, 100, 0),
        )
        # Catch body line moved with the seat
        lines = checker.live_overlay(_rower(phase=Phase.DRIVE, catch_finish_pct=20, **points))
        assert lines == [AnnotationLine(110, 94, 140, 152)]
        assert checker.live_overlay(_rower(phase=Phase.RECOVERY, catch_finish_pct=20, **points)) == []
        assert checker.live_overlay(_rower(phase=Phase.DRIVE, catch_finish_pct=60, **points)) == []

    def test_lunging_guide(self, settings):
        checker = LungingAtCatch(settings)
        checker.status = Status.FAULT_MESSAGE_SENT
        points = dict(
            current_hip=Point(137, 152, 0),
            current_shoulder=Point(117, 96, 0),
            catch_hip=Point(125, 152, 0),
            catch_shoulder=Point(95, 100, 0),
        )
        lines = checker.live_overlay(_rower(phase=Phase.RECOVERY, catch_finish_pct=30, **points))
        assert lines == [AnnotationLine(107, 96, 137, 152)]
        assert checker.live_overlay(_rower(phase=Phase.DRIVE, catch_finish_pct=30, **points)) == []
