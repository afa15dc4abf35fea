"""Drive to recovery timing check."""

from typing import List

from ergcoach.analysis.events import CoachEvent
from ergcoach.analysis.rower import Phase
from ergcoach.rubric.base import AnnotationLine, FaultChecker, Status


class RushingTheSlide(FaultChecker):
    """Checks that recovery duration is longer than drive duration."""

    title = "Slide Ratio"
    description = "Checks that recovery duration is longer than drive duration."
    unit = " D/R"

    # Ratios outside this range are assumed to be detection errors
    PLAUSIBLE_RANGE = (0.2, 2.0)

    def initial_message(self) -> str:
        return "Slow down the slide. Recovery should take longer than the drive"

    def reminder_message(self) -> str:
        return "Keep working on slowing down the slide during the recovery."

    def on_event(self, event: CoachEvent, rower, now: int) -> None:
        if event != CoachEvent.CATCH:
            return
        ratio = rower.slide_ratio
        low, high = self.PLAUSIBLE_RANGE
        if ratio is None or not low < ratio < high:
            return

        self.stroke_history.append(ratio)
        if ratio <= self.settings.max_slide_ratio:
            self.good_stroke()
        else:
            self.bad_stroke()

    def live_overlay(self, rower) -> List[AnnotationLine]:
        # Catch and finish hip positions as a slide guide during the recovery
        if self.status != Status.FAULT_MESSAGE_SENT or rower.phase == Phase.DRIVE:
            return []
        if rower.catch_hip is None or rower.finish_hip is None:
            return []
        catch, finish = rower.catch_hip, rower.finish_hip
        return [
            AnnotationLine(catch.x, catch.y - 10, catch.x, catch.y + 10, "yellow"),
            AnnotationLine(finish.x, finish.y - 10, finish.x, finish.y + 10, "yellow"),
        ]
