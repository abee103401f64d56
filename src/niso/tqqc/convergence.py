"""Step control and early-stopping rules for the delta search."""

from __future__ import annotations

import math
from collections import deque


def inner_count(gradient: float, tau: float, inner_max: int) -> int:
    """Repetitions for the next outer step.

    inner = clamp(1 + 2 * floor(|g| / tau), 1, inner_max)

    Larger observed signal buys more repeated measurement; near
    convergence a single repetition is spent.
    """
    if tau <= 0:
        raise ValueError("tau must be positive")
    count = 1 + 2 * math.floor(abs(gradient) / tau)
    return max(1, min(count, inner_max))


class ConvergenceWindow:
    """Sliding window over recent improvements plus a consecutive-tie count.

    Converged when the last ``size`` improvements span less than
    ``tolerance``, or when ``size`` consecutive iterations were ties.
    """

    def __init__(self, size: int, tolerance: float) -> None:
        if size < 1:
            raise ValueError("window size must be >= 1")
        self.size = size
        self.tolerance = tolerance
        self.improvements: deque[float] = deque(maxlen=size)
        self.consecutive_ties = 0

    def push(self, improvement: float, tie: bool) -> None:
        self.improvements.append(improvement)
        self.consecutive_ties = self.consecutive_ties + 1 if tie else 0

    def spread(self) -> float:
        if not self.improvements:
            return math.inf
        return max(self.improvements) - min(self.improvements)

    def stable(self) -> bool:
        return len(self.improvements) == self.size and self.spread() < self.tolerance

    def stalled(self) -> bool:
        return self.consecutive_ties >= self.size

    def converged(self) -> bool:
        return self.stable() or self.stalled()

    def reset(self) -> None:
        self.improvements.clear()
        self.consecutive_ties = 0
