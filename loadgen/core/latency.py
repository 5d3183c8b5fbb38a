from __future__ import annotations

import bisect
import math
import random
import threading
from dataclasses import dataclass, field
from typing import Any

from loadgen.exceptions import ValidationError
from loadgen.logger import Logger, session_logger

# Histogram bucket upper bounds in milliseconds. Samples above the last bound
# land in the overflow bucket.
BUCKET_BOUNDS_MS: tuple[float, ...] = (
    1, 2, 5, 10, 20, 50, 100, 200, 500, 1000, 2000, 5000,
)

_BAR_WIDTH = 40


def _percentile(sorted_values: list[float], p: float) -> float | None:
    """Value at quantile ``p`` (0..1) of an ascending list, interpolating
    between the two nearest ranks. None for an empty label."""
    if not sorted_values:
        return None

    p = min(max(p, 0.0), 1.0)
    rank = (len(sorted_values) - 1) * p
    lower = math.floor(rank)
    upper = math.ceil(rank)
    weight = rank - lower
    return float(sorted_values[lower] + (sorted_values[upper] - sorted_values[lower]) * weight)


class _LatencySample:
    """Bounded uniform sample of one label's durations (Algorithm R).

    Counts, sums and buckets are exact; only percentiles come from here, so a
    long run holds at most ``capacity`` floats per label.
    """

    def __init__(self, capacity: int, *, seed: int | None = None) -> None:
        if capacity <= 0:
            raise ValidationError("sample capacity must be > 0", details={"capacity": capacity})
        self._capacity = capacity
        self._rng = random.Random(seed)
        self._offered = 0
        self._kept: list[float] = []

    def offer(self, duration_ms: float) -> None:
        self._offered += 1
        if len(self._kept) < self._capacity:
            self._kept.append(duration_ms)
            return
        slot = self._rng.randrange(self._offered)
        if slot < self._capacity:
            self._kept[slot] = duration_ms

    def sorted_values(self) -> list[float]:
        return sorted(self._kept)


@dataclass
class _LabelStats:
    sample: _LatencySample
    count: int = 0
    error_count: int = 0
    sum_ms: float = 0.0
    min_ms: float | None = None
    max_ms: float | None = None
    buckets: list[int] = field(default_factory=lambda: [0] * (len(BUCKET_BOUNDS_MS) + 1))
    error_types: dict[str, int] = field(default_factory=dict)


class LatencyRecorder:
    """Thread-safe per-label latency histograms.

    Labels identify the operation, e.g. ``"POST /acme/new-reg"`` or
    ``"HEAD /directory"``. Recording is append-only for the life of a run.
    """

    def __init__(self, *, sample_size: int = 5000, logger: Logger | None = None) -> None:
        self._logger = logger or session_logger
        self._sample_size = sample_size
        self._lock = threading.Lock()
        self._labels: dict[str, _LabelStats] = {}

    def record(
        self,
        label: str,
        duration_seconds: float,
        *,
        success: bool = True,
        error_type: str | None = None,
    ) -> None:
        duration_ms = max(0.0, duration_seconds * 1000.0)

        with self._lock:
            stats = self._labels.get(label)
            if stats is None:
                stats = _LabelStats(sample=_LatencySample(self._sample_size))
                self._labels[label] = stats

            stats.count += 1
            stats.sum_ms += duration_ms
            if stats.min_ms is None or duration_ms < stats.min_ms:
                stats.min_ms = duration_ms
            if stats.max_ms is None or duration_ms > stats.max_ms:
                stats.max_ms = duration_ms
            stats.buckets[bisect.bisect_left(BUCKET_BOUNDS_MS, duration_ms)] += 1
            stats.sample.offer(duration_ms)
            if not success:
                stats.error_count += 1
                et = error_type or "unknown"
                stats.error_types[et] = stats.error_types.get(et, 0) + 1

        if not success:
            self._logger.debug(
                "loadgen.latency_error_recorded",
                event="loadgen.latency_error_recorded",
                label=label,
                error_type=error_type or "unknown",
            )

    def labels(self) -> list[str]:
        with self._lock:
            return sorted(self._labels)

    def count(self, label: str | None = None) -> int:
        with self._lock:
            if label is not None:
                stats = self._labels.get(label)
                return stats.count if stats else 0
            return sum(s.count for s in self._labels.values())

    def report(self) -> dict[str, Any]:
        """Per-label statistics as a JSON-ready dict."""
        with self._lock:
            return {label: self._stats_to_report(stats) for label, stats in sorted(self._labels.items())}

    def render(self) -> str:
        """Human-readable histogram of every label."""
        with self._lock:
            snapshot = {
                label: (self._stats_to_report(stats), list(stats.buckets))
                for label, stats in sorted(self._labels.items())
            }

        if not snapshot:
            return "(no latency samples recorded)\n"

        lines: list[str] = []
        for label, (summary, buckets) in snapshot.items():
            lines.append(f"[{label}]")
            lines.append(
                "  count={count} errors={error_count} min={min_ms:.1f}ms mean={mean_ms:.1f}ms "
                "p50={p50_ms:.1f}ms p90={p90_ms:.1f}ms p99={p99_ms:.1f}ms max={max_ms:.1f}ms".format(**summary)
            )
            peak = max(buckets) or 1
            lower = 0.0
            for i, n in enumerate(buckets):
                if i < len(BUCKET_BOUNDS_MS):
                    bound = f"{lower:g}-{BUCKET_BOUNDS_MS[i]:g}ms"
                    lower = BUCKET_BOUNDS_MS[i]
                else:
                    bound = f">{lower:g}ms"
                if n == 0:
                    continue
                bar = "#" * max(1, round(n / peak * _BAR_WIDTH))
                lines.append(f"  {bound:>14} {n:>8} {bar}")
        return "\n".join(lines) + "\n"

    def __str__(self) -> str:
        return self.render()

    def _stats_to_report(self, stats: _LabelStats) -> dict[str, Any]:
        values = stats.sample.sorted_values()
        return {
            "count": stats.count,
            "error_count": stats.error_count,
            "error_types": dict(stats.error_types),
            "min_ms": stats.min_ms,
            "max_ms": stats.max_ms,
            "mean_ms": stats.sum_ms / stats.count,
            "p50_ms": _percentile(values, 0.50),
            "p90_ms": _percentile(values, 0.90),
            "p99_ms": _percentile(values, 0.99),
            "buckets_ms": {
                (f"le_{BUCKET_BOUNDS_MS[i]:g}" if i < len(BUCKET_BOUNDS_MS) else "overflow"): n
                for i, n in enumerate(stats.buckets)
            },
        }
