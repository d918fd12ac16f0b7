"""In-process counters and timings for the image pipeline.

Keys are dotted: `versioned.*` for publishes, `uploads.*` for direct-upload
grants, `render.<derivative>.<stage>` for the crop/resize/encode steps of one
derivative. Tests read them back through `get` and `timing_summary`.
"""

from __future__ import annotations

import time
from collections import defaultdict
from contextlib import contextmanager
from threading import RLock
from typing import Any

RENDER_STAGES = ("crop", "resize", "encode")


class PipelineMetrics:
    def __init__(self) -> None:
        self._counters: dict[str, int] = defaultdict(int)
        self._timings: dict[str, list[float]] = defaultdict(list)
        self._lock = RLock()

    def inc(self, key: str, amount: int = 1) -> None:
        with self._lock:
            self._counters[key] += int(amount)

    def get(self, key: str) -> int:
        with self._lock:
            return int(self._counters.get(key, 0))

    @contextmanager
    def timed(self, key: str):
        """Record the block's wall time under `key`, also when it raises."""
        start = time.perf_counter()
        try:
            yield
        finally:
            elapsed = time.perf_counter() - start
            with self._lock:
                self._timings[key].append(elapsed)

    def render_stage(self, derivative: str, stage: str):
        if stage not in RENDER_STAGES:
            raise ValueError(f"unknown render stage {stage!r}")
        return self.timed(f"render.{derivative}.{stage}")

    def timing_summary(self, prefix: str = "") -> dict[str, dict[str, float]]:
        """Count, total and worst case (ms) per timing key starting with `prefix`."""
        with self._lock:
            samples = {k: list(v) for k, v in self._timings.items() if k.startswith(prefix) and v}
        return {
            key: {
                "count": len(values),
                "total_ms": round(sum(values) * 1000.0, 3),
                "max_ms": round(max(values) * 1000.0, 3),
            }
            for key, values in sorted(samples.items())
        }

    def render_stage_summary(self, derivative: str) -> dict[str, dict[str, float]]:
        """Per-stage timings of one derivative, keyed by stage name."""
        prefix = f"render.{derivative}."
        return {key[len(prefix) :]: stats for key, stats in self.timing_summary(prefix).items()}

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "counters": dict(self._counters),
                "timings": {k: list(v) for k, v in self._timings.items()},
            }

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._timings.clear()


metrics = PipelineMetrics()
