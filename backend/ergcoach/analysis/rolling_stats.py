"""
Time-windowed extremum tracking for a single body part.

Raw per-frame x minima/maxima are far too noisy to use as catch and finish
positions. Each body part keeps a short "local run" of successively more
extreme samples; a run is confirmed once it has stopped being extended for
the debounce window, and confirmed extrema are kept in a small bounded
history.

All samples live in one time-ordered buffer. The local runs and confirmed
lists only hold sequence numbers into that buffer, so expiring a sample
removes it from every list at once.
"""

from collections import deque
from typing import Deque, List, Optional

import logging

from ergcoach.analysis.keypoints import Point

logger = logging.getLogger(__name__)


class RollingPointStats:
    """Rolling min/max-by-x tracker with debounce and expiry."""

    def __init__(
        self,
        shelf_life_ms: int = 5000,
        debounce_ms: int = 500,
        history_size: int = 7
    ):
        """
        Args:
            shelf_life_ms: Samples older than this are expired
            debounce_ms: A local run is confirmed once it has not been
                extended for longer than this
            history_size: Maximum number of confirmed extrema kept per side
        """
        self.shelf_life_ms = shelf_life_ms
        self.debounce_ms = debounce_ms
        self.history_size = history_size

        self._samples: Deque[Point] = deque()
        self._first_seq = 0  # Sequence number of self._samples[0]

        self._local_min: List[int] = []
        self._local_max: List[int] = []
        self._min_list: Deque[int] = deque(maxlen=history_size)
        self._max_list: Deque[int] = deque(maxlen=history_size)

    def add_sample(self, point: Point) -> None:
        """Add a sample and update local runs and confirmed extrema."""
        now = point.t
        self._expire(now)

        seq = self._first_seq + len(self._samples)
        self._samples.append(point)

        if not self._local_min or point.x < self._point(self._local_min[-1]).x:
            self._local_min.append(seq)
        if not self._local_max or point.x > self._point(self._local_max[-1]).x:
            self._local_max.append(seq)

        if self._is_settled(self._local_min, now):
            self._confirm(self._local_min[-1], self._min_list)
            self._local_min.clear()
        if self._is_settled(self._local_max, now):
            self._confirm(self._local_max[-1], self._max_list)
            self._local_max.clear()

    def most_recent_min(self) -> Optional[Point]:
        """Last confirmed minimum, else the end of the in-progress run."""
        if self._min_list:
            return self._point(self._min_list[-1])
        if self._local_min:
            return self._point(self._local_min[-1])
        return None

    def most_recent_max(self) -> Optional[Point]:
        """Last confirmed maximum, else the end of the in-progress run."""
        if self._max_list:
            return self._point(self._max_list[-1])
        if self._local_max:
            return self._point(self._local_max[-1])
        return None

    def clear_minima(self) -> None:
        self._local_min.clear()
        self._min_list.clear()

    def clear_maxima(self) -> None:
        self._local_max.clear()
        self._max_list.clear()

    def clear(self) -> None:
        self._samples.clear()
        self._first_seq = 0
        self.clear_minima()
        self.clear_maxima()

    @property
    def points(self) -> List[Point]:
        return list(self._samples)

    @property
    def minima(self) -> List[Point]:
        """Confirmed minima, oldest first."""
        return [self._point(seq) for seq in self._min_list]

    @property
    def maxima(self) -> List[Point]:
        """Confirmed maxima, oldest first."""
        return [self._point(seq) for seq in self._max_list]

    def __len__(self) -> int:
        return len(self._samples)

    def _point(self, seq: int) -> Point:
        return self._samples[seq - self._first_seq]

    def _expire(self, now: int) -> None:
        while self._samples and now - self._samples[0].t > self.shelf_life_ms:
            self._samples.popleft()
            self._first_seq += 1

        for seqs in (self._local_min, self._local_max, self._min_list, self._max_list):
            # Sequence numbers are appended in increasing order
            while seqs and seqs[0] < self._first_seq:
                if isinstance(seqs, deque):
                    seqs.popleft()
                else:
                    seqs.pop(0)

    def _is_settled(self, run: List[int], now: int) -> bool:
        return len(run) > 1 and now - self._point(run[-1]).t > self.debounce_ms

    def _confirm(self, seq: int, confirmed: Deque[int]) -> None:
        if seq in confirmed:
            return
        confirmed.append(seq)
        logger.debug(f"Confirmed extremum {self._point(seq)}")
