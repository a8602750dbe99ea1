"""Lightweight wall-clock profiling for synthesis stages.

Provides:
    - timer(): Context manager for wall-clock timing with optional sink
    - log_sink(): Sink that writes timings to a logger at DEBUG/INFO
    - TimerAccumulator: Mean time over repeated measurements

Used to measure:
    - Image decoding and preprocessing
    - Peg layout
    - Greedy sequencing (per-chord mean via TimerAccumulator)
    - Preview/PDF export

Timings are logged, never stored in SynthesisResult, so that results stay
byte-identical across runs.
"""

import logging
import time
from contextlib import contextmanager
from typing import Callable, Optional


@contextmanager
def timer(name: str, sink: Optional[Callable[[str, float], None]] = None):
    """Context manager for wall-clock timing.

    Parameters
    ----------
    name : str
        Timer name (for logging/display)
    sink : Optional[Callable[[str, float], None]]
        Optional callback(name, elapsed_seconds); prints to stdout if None

    Examples
    --------
    >>> with timer("preprocess", sink=log_sink(logger)):
    ...     prepared = preprocess(img, 500, "circle")
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed = time.perf_counter() - start
        if sink is not None:
            sink(name, elapsed)
        else:
            print(f"{name}: {elapsed:.3f} s")


def log_sink(logger: logging.Logger, level: int = logging.DEBUG) -> Callable[[str, float], None]:
    """Build a timer sink that logs "<name> took <t> s" on the given logger."""
    def _sink(name: str, elapsed: float) -> None:
        logger.log(level, f"{name} took {elapsed:.3f} s")
    return _sink


class TimerAccumulator:
    """Accumulate multiple timing measurements for averaging.

    Attributes
    ----------
    name : str
        Timer name
    total_time : float
        Accumulated time in seconds
    count : int
        Number of measurements
    """

    def __init__(self, name: str):
        self.name = name
        self.total_time = 0.0
        self.count = 0

    @contextmanager
    def measure(self):
        """Context manager to measure and accumulate time."""
        start = time.perf_counter()
        try:
            yield
        finally:
            self.total_time += time.perf_counter() - start
            self.count += 1

    def mean(self) -> float:
        """Mean time per measurement in seconds (0.0 if none)."""
        return self.total_time / self.count if self.count > 0 else 0.0

    def reset(self) -> None:
        self.total_time = 0.0
        self.count = 0

    def __repr__(self) -> str:
        return f"TimerAccumulator({self.name}, mean={self.mean():.4f}s, count={self.count})"
