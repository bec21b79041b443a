"""
Evidence accumulation primitives for the liveness challenges.

Detector output flickers from frame to frame, so challenge decisions are
never made on a single frame. These small stateful helpers aggregate
evidence over time:

- EvidenceCounter: bounded counter with a target, that either decays by one
  or resets when evidence is absent
- PositionHistory: fixed-capacity FIFO window of one landmark coordinate
- FrameThrottle: drops frames arriving faster than a fixed rate
"""

from collections import deque
from typing import List, Optional


class EvidenceCounter:
    """
    Counts frames that support a challenge, up to a target.

    The value never exceeds the target and never drops below zero.
    """

    def __init__(self, target: int):
        if target < 1:
            raise ValueError(f"target must be >= 1, got {target}")
        self.target = int(target)
        self.value = 0

    def increment(self) -> int:
        self.value = min(self.target, self.value + 1)
        return self.value

    def decay_or_reset(self, reset: bool = False) -> int:
        """
        Lower the counter when a frame carries no evidence.

        Args:
            reset: If True drop straight to zero, otherwise decrement by one.
        """
        if reset:
            self.value = 0
        else:
            self.value = max(0, self.value - 1)
        return self.value

    def reset(self) -> None:
        self.value = 0

    @property
    def reached(self) -> bool:
        return self.value >= self.target

    @property
    def progress(self) -> float:
        return self.value / self.target

    def __repr__(self) -> str:
        return f"EvidenceCounter({self.value}/{self.target})"


class PositionHistory:
    """Sliding window of a scalar landmark position; oldest values are evicted first."""

    def __init__(self, capacity: int = 15):
        self._values = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._values.maxlen

    def append(self, value: float) -> None:
        self._values.append(float(value))

    def recent(self, n: int) -> List[float]:
        """Return the last n values in time order (fewer if the window is shorter)."""
        if n <= 0:
            return []
        return list(self._values)[-n:]

    def clear(self) -> None:
        self._values.clear()

    def __len__(self) -> int:
        return len(self._values)


class FrameThrottle:
    """
    Admits at most max_fps frames per second.

    A frame arriving sooner than 1 / max_fps seconds after the last admitted
    frame is dropped. Dropped frames do not move the reference time.
    """

    def __init__(self, max_fps: float = 15.0):
        if max_fps <= 0:
            raise ValueError(f"max_fps must be positive, got {max_fps}")
        self.min_interval = 1.0 / max_fps
        self._last_admitted: Optional[float] = None

    def admit(self, timestamp: float) -> bool:
        if self._last_admitted is not None and timestamp - self._last_admitted < self.min_interval - 1e-6:
            return False
        self._last_admitted = timestamp
        return True

    def reset(self) -> None:
        self._last_admitted = None
