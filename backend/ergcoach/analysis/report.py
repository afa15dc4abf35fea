"""
Session report generation.

Fault fragments are gathered at the end of every faulty stroke while the
frames are still in the frame buffer; the report itself is assembled when the
session stops or is reset.
"""

from datetime import datetime
from typing import List, Optional

import logging

import numpy as np

from ergcoach.config import Settings, get_settings
from ergcoach.rubric.base import FaultChecker, Mark
from ergcoach.schemas.session import CheckerReport, SessionReport

logger = logging.getLogger(__name__)


class SessionReportBuilder:
    """Builds a SessionReport from the rower state and fault checkers."""

    def __init__(
        self,
        rower,
        checkers: List[FaultChecker],
        settings: Optional[Settings] = None,
        session_id: Optional[str] = None
    ):
        self.rower = rower
        self.checkers = checkers
        self.settings = settings or get_settings()
        self.session_id = session_id

    def save_fault_images(self) -> None:
        """Record the outgoing stroke for every checker currently seeing a fault."""
        faults = [c for c in self.checkers if c.bad_consecutive_strokes > 0]
        if not faults or len(self.rower.frames) == 0:
            logger.debug("No fault images to save")
            return
        logger.info(f"{len(faults)} fault(s) found at stroke {self.rower.stroke_count}")
        for checker in faults:
            checker.record_fault(self.rower.stroke_count, self.rower.frames, self.rower)

    def overall_mark(self) -> Mark:
        good = sum(c.get_total_mark().good_strokes for c in self.checkers)
        total = sum(c.get_total_mark().total_strokes for c in self.checkers)
        return Mark(good, total)

    def checker_report(self, checker: FaultChecker) -> CheckerReport:
        mark = checker.get_total_mark()
        average = float(np.mean(checker.stroke_history)) if checker.stroke_history else None
        return CheckerReport(
            title=checker.title,
            description=checker.description,
            percent_good=mark.percent,
            good_strokes=mark.good_strokes,
            bad_strokes=mark.total_strokes - mark.good_strokes,
            faulty_strokes=checker.number_of_faulty_strokes,
            average_value=round(average, 1) if average is not None else None,
            unit=checker.unit,
            fault_value_by_stroke=dict(checker.fault_value_by_stroke),
            fault_fragments=[f.to_dict() for f in checker.fault_fragments],
        )

    def generate(self, now: int) -> Optional[SessionReport]:
        """
        Build the report for the current session.

        Returns:
            None when the session is too short to be worth reporting
        """
        duration = self.rower.duration(now)
        if duration < self.settings.min_report_duration_ms:
            logger.warning(f"Not generating report. Duration was only {duration} ms")
            return None

        start = self.rower.start_time
        end = self.rower.end_time if self.rower.end_time is not None else now
        report = SessionReport(
            session_id=self.session_id,
            generated_at=datetime.utcnow(),
            start_time=start,
            end_time=end,
            duration_ms=duration,
            stroke_count=self.rower.stroke_count,
            error_stroke_count=self.rower.error_stroke_count,
            average_stroke_rate=self.rower.average_stroke_rate,
            technical_score=self.overall_mark().percent,
            checkers=[self.checker_report(c) for c in self.checkers],
        )
        logger.info(
            f"Generated report: {report.stroke_count} strokes, "
            f"technical score {report.technical_score}%"
        )
        return report
