"""Fixed-capacity scalar buffer with an outlier-trimmed mean."""

import math
from collections import deque
from typing import Deque, Optional

import numpy as np


class BoundedRollingAverage:
    """
    FIFO of the most recent ``max_size`` samples.

    ``trimmed_average()`` sorts the samples and averages the middle
    ``sample_size`` of them so that single-frame detection spikes do not
    corrupt limb-length and height baselines.
    """

    def __init__(self, max_size: int, sample_size: int):
        if sample_size < 1 or max_size < sample_size:
            raise ValueError(
                f"Invalid bounds: max_size={max_size}, sample_size={sample_size}"
            )
        self.max_size = max_size
        self.sample_size = sample_size
        self._samples: Deque[float] = deque(maxlen=max_size)

    def add(self, value: Optional[float]) -> None:
        """Append a sample, dropping the oldest on overflow. None is ignored."""
        if value is None:
            return
        self._samples.append(float(value))

    def trimmed_average(self) -> Optional[float]:
        """Mean of the middle ``sample_size`` samples, or None when empty."""
        count = len(self._samples)
        if count == 0:
            return None
        if count <= self.sample_size:
            return float(np.mean(self._samples))

        # Odd surplus trims one more from the low end
        low = math.ceil((count - self.sample_size) / 2)
        ordered = np.sort(np.fromiter(self._samples, dtype=float))
        return float(np.mean(ordered[low:low + self.sample_size]))

    def clear(self) -> None:
        self._samples.clear()

    @property
    def values(self) -> list:
        return list(self._samples)

    def __len__(self) -> int:
        return len(self._samples)
