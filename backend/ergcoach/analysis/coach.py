"""
Coach: turns stroke phases into checker events and fault messages.

The coach is driven once per accepted frame while the rower is rowing. It
publishes the matching event to every fault checker and, once per catch,
runs the escalation policy:

    silence -> initial message -> reminder -> ignore for a while -> silence

Messages go to a Notifier. Speech or display is the notifier's business; the
default one only logs.
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, List, Optional, Protocol

import logging

from ergcoach.analysis.events import CoachEvent
from ergcoach.analysis.keypoints import BodyPart, Point
from ergcoach.analysis.report import SessionReportBuilder
from ergcoach.analysis.rower import Phase
from ergcoach.config import Settings, get_settings
from ergcoach.rubric.base import FaultChecker, Mark, Status
from ergcoach.schemas.session import SessionReport

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    """Delivers coaching messages to the rower. Must not block."""

    def say(self, message: str) -> None:
        ...


class LoggingNotifier:
    """Notifier that writes messages to the log."""

    def say(self, message: str) -> None:
        logger.info(f"Coach says: {message}")


class MessageQueueNotifier:
    """Keeps messages until a consumer drains them."""

    def __init__(self, maxlen: int = 100):
        self._messages: Deque[str] = deque(maxlen=maxlen)

    def say(self, message: str) -> None:
        logger.info(f"Coach says: {message}")
        self._messages.append(message)

    def drain(self) -> List[str]:
        messages = list(self._messages)
        self._messages.clear()
        return messages


ReportSink = Callable[[SessionReport], None]


@dataclass
class CoachUpdate:
    """What the coach did for one frame."""
    events: List[CoachEvent] = field(default_factory=list)
    fault: Optional[str] = None  # Title of the fault raised at this catch


class Coach:
    """Dispatches stroke events to the fault checkers and escalates faults."""

    def __init__(
        self,
        rower,
        checkers: List[FaultChecker],
        notifier: Optional[Notifier] = None,
        report_sink: Optional[ReportSink] = None,
        settings: Optional[Settings] = None,
        session_id: Optional[str] = None
    ):
        """
        Args:
            rower: Read-only rower view
            checkers: Fault checkers in priority order
            notifier: Message consumer, logs by default
            report_sink: Called with each generated session report
            settings: Thresholds and timings
            session_id: Stamped on generated reports
        """
        self.rower = rower
        self.checkers = checkers
        self.notifier = notifier or LoggingNotifier()
        self.report_sink = report_sink
        self.settings = settings or get_settings()
        self.report = SessionReportBuilder(rower, checkers, self.settings, session_id)

        self.previous_drive_points: List[Dict[BodyPart, Point]] = []
        self.previous_recovery_points: List[Dict[BodyPart, Point]] = []
        self.time_of_last_catch: Optional[int] = None
        self.time_of_last_finish: Optional[int] = None

    def on_update(self, now: int) -> CoachUpdate:
        """Publish the event for the current phase."""
        update = CoachUpdate()
        phase = self.rower.phase

        if phase == Phase.CATCH:
            if self._debounced(self.time_of_last_catch, now):
                if self.rower.last_stroke_valid:
                    self._publish(CoachEvent.CATCH, now, update)
                update.fault = self.handle_faults(now)
                self.time_of_last_catch = now

        elif phase == Phase.DRIVE:
            self._publish(CoachEvent.DRIVE_UPDATE, now, update)
            self.previous_drive_points.append(dict(self.rower.current_points))

        elif phase == Phase.FINISH:
            if self._debounced(self.time_of_last_finish, now):
                self._publish(CoachEvent.FINISH, now, update)
                self.previous_recovery_points.append(dict(self.rower.current_points))
                self.time_of_last_finish = now

        elif phase == Phase.RECOVERY:
            self._publish(CoachEvent.RECOVERY_UPDATE, now, update)
            self.previous_recovery_points.append(dict(self.rower.current_points))

        return update

    def handle_faults(self, now: int) -> Optional[str]:
        """
        Apply the escalation policy once per catch.

        Returns:
            Title of the highest priority active fault, if any
        """
        if not self.rower.is_rowing:
            return None

        # Give ignored faults another chance after the cool-down
        for checker in self.checkers:
            if (
                checker.status == Status.IGNORE_AND_MOVE_ON
                and self._elapsed(checker.time_of_last_message, now) > self.settings.ignore_cooldown_ms
            ):
                logger.info(f"{checker.title}: cool-down over, back to GOOD")
                checker.status = Status.GOOD

        fault = None
        checker = next(
            (
                c for c in self.checkers
                if c.bad_consecutive_strokes > self.settings.bad_strokes_before_message
                and c.status != Status.IGNORE_AND_MOVE_ON
            ),
            None,
        )
        if checker is not None:
            fault = checker.title
            if self._elapsed(checker.time_of_last_message, now) >= self.settings.reminder_interval_ms:
                checker.time_of_last_message = now
                if checker.initial_message_sent:
                    self.say(checker.reminder_message())
                    checker.status = Status.IGNORE_AND_MOVE_ON
                else:
                    self.say(checker.initial_message())
                    checker.initial_message_sent = True
                    checker.status = Status.FAULT_MESSAGE_SENT
                logger.info(f"{checker.title}: status {checker.status.value}")

        # Fixed faults
        for c in self.checkers:
            if c.bad_consecutive_strokes == 0 and c.is_faulty:
                logger.info(f"{c.title}: fault fixed")
                c.status = Status.GOOD
                self.say(c.fixed_message())

        return fault

    def on_end_of_stroke(self, now: int) -> None:
        logger.debug(f"End of stroke {self.rower.stroke_count}")
        if self.rower.is_rowing:
            self.report.save_fault_images()
        self.clear_stroke_data()

    def clear_stroke_data(self) -> None:
        self.previous_drive_points.clear()
        self.previous_recovery_points.clear()

    def save_stats(self, now: int) -> Optional[SessionReport]:
        """Generate the session report and hand it to the report sink."""
        report = self.report.generate(now)
        if report is not None and self.report_sink is not None:
            self.report_sink(report)
        return report

    def reset(self) -> None:
        logger.info("Resetting coach")
        for checker in self.checkers:
            checker.clear()
        self.clear_stroke_data()
        self.time_of_last_catch = None
        self.time_of_last_finish = None

    def say(self, message: str) -> None:
        if not message:
            return
        self.notifier.say(message)

    def checker_statuses(self) -> Dict[str, Status]:
        return {c.title: c.status for c in self.checkers}

    def checker_marks(self) -> Dict[str, Mark]:
        return {c.title: c.get_total_mark() for c in self.checkers}

    def find_checker(self, title: str) -> Optional[FaultChecker]:
        for checker in self.checkers:
            if checker.title == title or checker.__class__.__name__ == title:
                return checker
        return None

    def _publish(self, event: CoachEvent, now: int, update: CoachUpdate) -> None:
        for checker in self.checkers:
            checker.on_event(event, self.rower, now)
        update.events.append(event)

    def _debounced(self, last: Optional[int], now: int) -> bool:
        return last is None or now - last > self.settings.coach_event_debounce_ms

    @staticmethod
    def _elapsed(since: Optional[int], now: int) -> float:
        """Time since ``since``; infinite when it never happened."""
        if since is None:
            return float("inf")
        return now - since
