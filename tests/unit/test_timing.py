from tripgen.core.observability.timing import Stopwatch


class _Clock:
    def __init__(self, *readings: float) -> None:
        self.readings = list(readings)

    def __call__(self) -> float:
        return self.readings.pop(0)


def test_stopwatch_reports_milliseconds_since_creation() -> None:
    stopwatch = Stopwatch(clock=_Clock(10.0, 10.25, 11.5))

    assert stopwatch.elapsed_ms == 250.0
    assert stopwatch.elapsed_ms == 1500.0


def test_stopwatch_never_reports_negative_durations() -> None:
    assert Stopwatch(clock=_Clock(5.0, 4.0)).elapsed_ms == 0.0
