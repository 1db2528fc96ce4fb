"""Phase timing for CatMix simulations.

Wall-clock timing per named phase (build, query, record, demography),
safe to use from the query-phase worker threads.  When disabled every
call is a no-op.

Usage:
    perf = PerfMonitor(enabled=True)
    with perf.track("build"):
        env.update(persons)
    print(perf.report())
"""

import threading
import time
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Optional


@dataclass
class PhaseStats:
    """Timing statistics for a single phase."""
    total_time: float = 0.0
    call_count: int = 0
    min_time: float = float('inf')
    max_time: float = 0.0

    @property
    def mean_time(self) -> float:
        return self.total_time / self.call_count if self.call_count > 0 else 0.0

    def add(self, elapsed: float) -> None:
        self.total_time += elapsed
        self.call_count += 1
        self.min_time = min(self.min_time, elapsed)
        self.max_time = max(self.max_time, elapsed)


class PerfMonitor:
    """Lightweight, thread-safe phase monitor."""

    def __init__(self, enabled: bool = False):
        self.enabled = enabled
        self._stats: Dict[str, PhaseStats] = defaultdict(PhaseStats)
        self._lock = threading.Lock()
        self._start_time: Optional[float] = None
        self._total_time: float = 0.0

    def start(self) -> None:
        if self.enabled:
            self._start_time = time.perf_counter()

    def stop(self) -> None:
        if self.enabled and self._start_time is not None:
            self._total_time = time.perf_counter() - self._start_time

    @contextmanager
    def track(self, phase: str):
        """Context manager timing one execution of ``phase``."""
        if not self.enabled:
            yield
            return
        t0 = time.perf_counter()
        try:
            yield
        finally:
            self.record(phase, time.perf_counter() - t0)

    def record(self, phase: str, elapsed: float) -> None:
        if not self.enabled:
            return
        with self._lock:
            self._stats[phase].add(elapsed)

    def get_stats(self) -> Dict[str, PhaseStats]:
        with self._lock:
            return dict(self._stats)

    def _total(self) -> float:
        return self._total_time or sum(s.total_time for s in self._stats.values())

    def summary(self) -> dict:
        """Summary dict suitable for JSON serialization."""
        stats = self.get_stats()
        total = self._total()
        result = {}
        for name, s in sorted(stats.items(), key=lambda x: -x[1].total_time):
            result[name] = {
                'total_s': round(s.total_time, 4),
                'calls': s.call_count,
                'mean_ms': round(s.mean_time * 1000, 3),
                'pct': round(s.total_time / total * 100, 1) if total > 0 else 0.0,
            }
        result['_total_s'] = round(total, 4)
        return result

    def report(self, title: str = "Phase Timing") -> str:
        """Human-readable phase breakdown."""
        total = self._total()
        lines = [
            f"\n{'='*60}",
            f" {title}",
            f"{'='*60}",
            f"{'Phase':<20} {'Total (s)':>10} {'Calls':>8} {'Mean (ms)':>10} {'Max (ms)':>10}",
        ]
        for name, s in sorted(self.get_stats().items(), key=lambda x: -x[1].total_time):
            lines.append(
                f"{name:<20} {s.total_time:>10.4f} {s.call_count:>8} "
                f"{s.mean_time*1000:>10.3f} {s.max_time*1000:>10.3f}"
            )
        lines.append(f"{'TOTAL':<20} {total:>10.4f}")
        lines.append(f"{'='*60}\n")
        return '\n'.join(lines)

    def reset(self) -> None:
        with self._lock:
            self._stats.clear()
        self._start_time = None
        self._total_time = 0.0
