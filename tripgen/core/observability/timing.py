from __future__ import annotations

import time
from typing import Callable

Clock = Callable[[], float]


class Stopwatch:
    """
    Wall time of one unit of orchestration work (a run, a session init,
    a chunk with all of its attempts). Reported as `duration_ms` in logs.
    """

    __slots__ = ("_clock", "_started")

    def __init__(self, clock: Clock = time.perf_counter):
        self._clock = clock
        self._started = clock()

    @property
    def elapsed_ms(self) -> float:
        return round(max(0.0, self._clock() - self._started) * 1000, 2)
