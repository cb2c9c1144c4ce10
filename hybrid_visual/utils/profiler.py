"""Lightweight wall-clock timing for comparison stages.

Provides:
    - timer(): Context manager yielding a Stopwatch, with optional sink
    - TimerAccumulator: Aggregate repeated measurements (e.g. per-suite AI cost)

Used to measure:
    - Resampling + pixel differencing
    - Region detection and annotation
    - Perceptual preprocessing and forward pass
    - Whole hybrid decisions (HybridResult.elapsed_ms)

No heavy dependencies (no cProfile overhead inside comparisons).
"""

import logging
import threading
import time
from contextlib import contextmanager
from typing import Callable, Iterator, Optional

logger = logging.getLogger(__name__)


class Stopwatch:
    """Elapsed time holder filled in when the timer block exits."""

    __slots__ = ('name', 'start', 'elapsed')

    def __init__(self, name: str):
        self.name = name
        self.start = time.perf_counter()
        self.elapsed = 0.0

    @property
    def elapsed_ms(self) -> float:
        return self.elapsed * 1000.0


@contextmanager
def timer(name: str, sink: Optional[Callable[[str, float], None]] = None) -> Iterator[Stopwatch]:
    """Context manager for wall-clock timing.

    Parameters
    ----------
    name : str
        Timer name (for logging/display)
    sink : Optional[Callable[[str, float], None]]
        Optional callback(name, elapsed_seconds).
        If None, the measurement is logged at DEBUG level.

    Yields
    ------
    Stopwatch
        elapsed is populated once the block exits

    Examples
    --------
    >>> with timer("pixel_compare") as sw:
    ...     result = engine.compare(baseline, actual, 0.01)
    >>> sw.elapsed_ms
    12.7
    """
    sw = Stopwatch(name)
    try:
        yield sw
    finally:
        sw.elapsed = time.perf_counter() - sw.start
        if sink is not None:
            sink(name, sw.elapsed)
        else:
            logger.debug("%s: %.3f s", name, sw.elapsed)


class TimerAccumulator:
    """Accumulate multiple timing measurements for averaging.

    Safe to share between threads comparing different image pairs.

    Examples
    --------
    >>> ai_timer = TimerAccumulator("perceptual")
    >>> with ai_timer.measure():
    ...     engine.compare(baseline, actual)
    >>> ai_timer.mean()
    0.183
    """

    def __init__(self, name: str):
        self.name = name
        self.total_time = 0.0
        self.count = 0
        self._lock = threading.Lock()

    @contextmanager
    def measure(self) -> Iterator[None]:
        start = time.perf_counter()
        try:
            yield
        finally:
            self.add(time.perf_counter() - start)

    def add(self, elapsed: float) -> None:
        with self._lock:
            self.total_time += elapsed
            self.count += 1

    def mean(self) -> float:
        """Mean seconds per measurement, 0.0 before the first one."""
        with self._lock:
            return self.total_time / self.count if self.count > 0 else 0.0

    def reset(self) -> None:
        with self._lock:
            self.total_time = 0.0
            self.count = 0

    def __repr__(self) -> str:
        return f"TimerAccumulator({self.name}, mean={self.mean():.4f}s, count={self.count})"
