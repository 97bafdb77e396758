from __future__ import annotations

import time
from typing import Callable, Optional

from ...utils.exceptions import StageTimeoutError


class Deadline:
    """Cooperative time budget for one assembly run.

    Callers poll :meth:`check` between stages and inside long loops. A budget of
    ``0`` (or ``None``) disables the limit.
    """

    def __init__(
        self,
        budget_ms: Optional[float],
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.budget_ms = float(budget_ms) if budget_ms else None
        self._clock = clock
        self._started = clock()
        self.stage: Optional[str] = None

    def elapsed_ms(self) -> float:
        return (self._clock() - self._started) * 1000.0

    def remaining_ms(self) -> Optional[float]:
        if self.budget_ms is None:
            return None
        return max(self.budget_ms - self.elapsed_ms(), 0.0)

    def expired(self) -> bool:
        return self.budget_ms is not None and self.elapsed_ms() > self.budget_ms

    def check(self) -> None:
        if self.expired():
            raise StageTimeoutError(self.stage, self.elapsed_ms(), self.budget_ms or 0.0)
