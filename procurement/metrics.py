from __future__ import annotations

import threading
import time
from collections import deque
from contextlib import contextmanager
from typing import Any, Iterator

import numpy as np


class PerformanceTracker:
    """
    Rolling response-time window for one component.

    Keeps the last `window` samples for averages and p95/p99, plus lifetime
    totals. Safe to record from worker threads.
    """

    def __init__(self, name: str, *, window: int = 1000):
        self.name = name
        self._samples: deque[float] = deque(maxlen=int(window))
        self._lock = threading.Lock()
        self.total = 0
        self.errors = 0
        self.last_ms = 0.0

    def record(self, duration_ms: float, *, success: bool = True) -> None:
        with self._lock:
            self._samples.append(float(duration_ms))
            self.total += 1
            if not success:
                self.errors += 1
            self.last_ms = float(duration_ms)

    @contextmanager
    def track(self) -> Iterator[None]:
        start = time.perf_counter()
        try:
            yield
        except BaseException:
            self.record((time.perf_counter() - start) * 1000.0, success=False)
            raise
        self.record((time.perf_counter() - start) * 1000.0)

    @property
    def average_ms(self) -> float:
        with self._lock:
            if not self._samples:
                return 0.0
            return float(np.mean(self._samples))

    @property
    def error_rate(self) -> float:
        return float(self.errors / self.total) if self.total else 0.0

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            samples = np.fromiter(self._samples, dtype=float, count=len(self._samples))
            total, errors, last_ms = self.total, self.errors, self.last_ms
        if samples.size:
            avg = float(samples.mean())
            p95, p99 = (float(v) for v in np.percentile(samples, [95, 99]))
            max_ms = float(samples.max())
        else:
            avg = p95 = p99 = max_ms = 0.0
        return {
            "total": total,
            "errors": errors,
            "error_rate": float(errors / total) if total else 0.0,
            "average_ms": avg,
            "p95_ms": p95,
            "p99_ms": p99,
            "max_ms": max_ms,
            "last_ms": last_ms,
            "samples": int(samples.size),
        }

    def reset(self) -> None:
        with self._lock:
            self._samples.clear()
            self.total = 0
            self.errors = 0
            self.last_ms = 0.0
