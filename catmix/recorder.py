"""Optional per-step recording of mixing diagnostics.

At the configured cadence, stores for each step:
  - observed: cumulative (own, partner) location counts so far
  - expected: mixing-table probabilities used during the step
  - eligible: eligible partners per location after the rebuild

Usage:
    recorder = MixingRecorder(enabled=True, interval=5)

    # In simulation loop, after the query phase:
    recorder.capture(step, year, env)

    # After simulation:
    recorder.save("results/mixing.npz")
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np


@dataclass
class MixingSnapshot:
    """Mixing diagnostics at the end of one step."""
    step: int
    year: int
    observed: np.ndarray   # (L, L) int64, cumulative counts
    expected: np.ndarray   # (L, L) float64, table probabilities
    eligible: np.ndarray   # (L,) int64


class MixingRecorder:
    """Records MixingSnapshots.  When enabled=False every call is a no-op."""

    def __init__(self, enabled: bool = False, interval: int = 1,
                 start_step: int = 0, end_step: Optional[int] = None):
        self.enabled = enabled and interval > 0
        self.interval = interval
        self.start_step = start_step
        self.end_step = end_step
        self.snapshots: Dict[int, MixingSnapshot] = {}

    def should_capture(self, step: int) -> bool:
        if not self.enabled:
            return False
        if step < self.start_step:
            return False
        if self.end_step is not None and step > self.end_step:
            return False
        return (step - self.start_step) % self.interval == 0

    def capture(self, step: int, year: int, env) -> None:
        """Capture the environment's diagnostics if the cadence says so.

        Args:
            step: 0-based step number.
            year: Calendar year of the step.
            env: CategoricalEnvironment updated for this step.
        """
        if not self.should_capture(step):
            return
        self.snapshots[step] = MixingSnapshot(
            step=step,
            year=year,
            observed=env.frequencies.counts(),
            expected=env.table.probabilities(),
            eligible=env.index.location_counts(),
        )

    def get_steps(self) -> List[int]:
        return sorted(self.snapshots)

    def get_snapshot(self, step: int) -> Optional[MixingSnapshot]:
        return self.snapshots.get(step)

    def observed_series(self) -> np.ndarray:
        """(n_snapshots, L, L) observed counts in step order."""
        return np.stack([self.snapshots[s].observed for s in self.get_steps()])

    def save(self, path: str) -> None:
        """Save all snapshots to a compressed npz file.

        Arrays are stacked in step order: steps, years, observed,
        expected, eligible.
        """
        if not self.snapshots:
            return
        steps = self.get_steps()
        snaps = [self.snapshots[s] for s in steps]
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        np.savez_compressed(
            path,
            steps=np.array(steps, dtype=np.int32),
            years=np.array([s.year for s in snaps], dtype=np.int32),
            observed=np.stack([s.observed for s in snaps]),
            expected=np.stack([s.expected for s in snaps]),
            eligible=np.stack([s.eligible for s in snaps]),
        )

    @classmethod
    def load(cls, path: str) -> 'MixingRecorder':
        """Load snapshots from an npz file written by save()."""
        recorder = cls(enabled=False)
        with np.load(path) as data:
            for i, step in enumerate(data['steps']):
                recorder.snapshots[int(step)] = MixingSnapshot(
                    step=int(step),
                    year=int(data['years'][i]),
                    observed=data['observed'][i],
                    expected=data['expected'][i],
                    eligible=data['eligible'][i],
                )
        return recorder
