"""Location mixing: where does an agent look for a partner?

Two L×L matrices, rows = the agent's own location, columns = candidate
partner location:

  - MixingTable: per-row cumulative distribution used for inverse-CDF
    sampling of the partner's location.  Derived every step from the
    static policy matrix and the current per-location eligible counts.
  - MixingFrequencies: counters of realised (own, partner) location pairs,
    accumulated across steps for comparison against the policy.

How current counts modify the policy is a pluggable redistribution rule:

  renormalize   zero out empty destinations, renormalise; a row with no
                remaining weight falls back to uniform over the viable
                destinations (default)
  static        the policy row as given, counts ignored
  proportional  policy weight × destination count (partner-weighted)

A row is degenerate when its weights sum to zero after redistribution.
With 'renormalize' and 'proportional' that only happens when no location
has a single eligible agent.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Union

import numpy as np

from catmix.errors import CompoundIndexError, DegenerateMixingRow, IndexNotBuilt


# ═══════════════════════════════════════════════════════════════════════
# POLICY MATRICES
# ═══════════════════════════════════════════════════════════════════════

def build_policy_matrix(n_locations: int, self_mixing: float = 0.8) -> np.ndarray:
    """Policy with weight ``self_mixing`` on the diagonal.

    The remaining 1 − self_mixing is spread evenly over the other
    locations.  A single location always mixes with itself.

    Args:
        n_locations: L.
        self_mixing: Diagonal weight in [0, 1].

    Returns:
        (L, L) row-stochastic float64 matrix.
    """
    if n_locations < 1:
        raise ValueError(f"n_locations must be >= 1, got {n_locations}")
    if not 0.0 <= self_mixing <= 1.0:
        raise ValueError(f"self_mixing must be in [0, 1], got {self_mixing}")
    if n_locations == 1:
        return np.ones((1, 1), dtype=np.float64)
    off = (1.0 - self_mixing) / (n_locations - 1)
    policy = np.full((n_locations, n_locations), off, dtype=np.float64)
    np.fill_diagonal(policy, self_mixing)
    return policy


def validate_policy(policy, n_locations: Optional[int] = None) -> np.ndarray:
    """Check a policy-weight matrix and return it as float64.

    Raises:
        ValueError: If the matrix is not square (or not L×L when
            n_locations is given), or has negative / non-finite weights.
    """
    arr = np.array(policy, dtype=np.float64)
    if arr.ndim != 2 or arr.shape[0] != arr.shape[1] or arr.shape[0] == 0:
        raise ValueError(f"Policy matrix must be square and non-empty, got shape {arr.shape}")
    if n_locations is not None and arr.shape[0] != n_locations:
        raise ValueError(
            f"Policy matrix is {arr.shape[0]}×{arr.shape[1]}, "
            f"expected {n_locations}×{n_locations}"
        )
    if not np.all(np.isfinite(arr)):
        raise ValueError("Policy matrix contains non-finite weights")
    if np.any(arr < 0):
        raise ValueError("Policy matrix contains negative weights")
    return arr


def load_policy(path: Union[str, Path]) -> np.ndarray:
    """Load a policy matrix from ``.npy`` or a text file (CSV / whitespace)."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Policy file not found: {path}")
    if path.suffix == '.npy':
        return validate_policy(np.load(path))
    delimiter = ',' if path.suffix == '.csv' else None
    return validate_policy(np.loadtxt(path, delimiter=delimiter, ndmin=2))


# ═══════════════════════════════════════════════════════════════════════
# REDISTRIBUTION RULES
# ═══════════════════════════════════════════════════════════════════════

RedistributionRule = Callable[[np.ndarray, np.ndarray], np.ndarray]


def renormalize_weights(policy: np.ndarray, counts: np.ndarray) -> np.ndarray:
    """Zero out empty destinations; fall back to uniform over viable ones."""
    viable = counts > 0
    weights = policy * viable[np.newaxis, :]
    if viable.any():
        empty_rows = weights.sum(axis=1) <= 0.0
        weights[empty_rows] = viable.astype(np.float64)
    return weights


def static_weights(policy: np.ndarray, counts: np.ndarray) -> np.ndarray:
    """Use the policy as given."""
    return policy.copy()


def proportional_weights(policy: np.ndarray, counts: np.ndarray) -> np.ndarray:
    """Weight each destination by policy × eligible count."""
    viable = counts > 0
    weights = policy * counts[np.newaxis, :].astype(np.float64)
    if viable.any():
        empty_rows = weights.sum(axis=1) <= 0.0
        weights[empty_rows] = viable.astype(np.float64)
    return weights


REDISTRIBUTION_RULES: Dict[str, RedistributionRule] = {
    'renormalize': renormalize_weights,
    'static': static_weights,
    'proportional': proportional_weights,
}


def cumulative_rows(weights: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Row-normalise weights and take running sums.

    The last positive-mass column of every viable row, and everything to
    its right, is pinned to exactly 1.0 so an inverse-CDF draw in [0, 1)
    always lands on a column.

    Returns:
        (cumulative, degenerate): (L, L) float64 and (L,) bool.
    """
    sums = weights.sum(axis=1)
    degenerate = ~(sums > 0.0)
    cumulative = np.zeros_like(weights, dtype=np.float64)
    ok = ~degenerate
    if ok.any():
        probs = weights[ok] / sums[ok, np.newaxis]
        cum = np.cumsum(probs, axis=1)
        n_cols = probs.shape[1]
        last = n_cols - 1 - np.argmax((probs > 0.0)[:, ::-1], axis=1)
        cum[np.arange(n_cols)[np.newaxis, :] >= last[:, np.newaxis]] = 1.0
        cumulative[ok] = cum
    return cumulative, degenerate


# ═══════════════════════════════════════════════════════════════════════
# MIXING TABLE
# ═══════════════════════════════════════════════════════════════════════

class MixingTable:
    """Cumulative partner-location distribution, one row per own location.

    Args:
        policy: (L, L) non-negative policy-weight matrix, fixed for the run.
        redistribution: Name in REDISTRIBUTION_RULES, or a callable
            ``rule(policy, counts) -> weights``.
    """

    def __init__(self, policy, redistribution: Union[str, RedistributionRule] = 'renormalize'):
        self._policy = validate_policy(policy)
        self._policy.flags.writeable = False
        if callable(redistribution):
            self._rule = redistribution
            self.redistribution = getattr(redistribution, '__name__', 'custom')
        else:
            if redistribution not in REDISTRIBUTION_RULES:
                raise ValueError(
                    f"redistribution must be one of {sorted(REDISTRIBUTION_RULES)}, "
                    f"got '{redistribution}'"
                )
            self._rule = REDISTRIBUTION_RULES[redistribution]
            self.redistribution = redistribution
        L = self._policy.shape[0]
        self._cumulative = np.zeros((L, L), dtype=np.float64)
        self._degenerate = np.ones(L, dtype=bool)
        self._no_eligible = True
        self._built = False

    @property
    def n_locations(self) -> int:
        return self._policy.shape[0]

    @property
    def policy(self) -> np.ndarray:
        return self._policy

    @property
    def degenerate_rows(self) -> np.ndarray:
        """Indices of rows with no viable destination."""
        return np.flatnonzero(self._degenerate)

    @property
    def is_built(self) -> bool:
        return self._built

    def clear(self) -> None:
        """Drop the transient per-step distribution."""
        self._cumulative[:] = 0.0
        self._degenerate[:] = True
        self._no_eligible = True
        self._built = False

    def rebuild(self, per_location_counts) -> int:
        """Recompute every row from the policy and current counts.

        Args:
            per_location_counts: (L,) eligible agents per location.

        Returns:
            Number of degenerate rows.
        """
        counts = np.asarray(per_location_counts)
        if counts.shape != (self.n_locations,):
            raise ValueError(
                f"per_location_counts must have shape ({self.n_locations},), "
                f"got {counts.shape}"
            )
        if np.any(counts < 0):
            raise ValueError("per_location_counts must be non-negative")
        weights = np.asarray(self._rule(self._policy, counts), dtype=np.float64)
        self._cumulative, self._degenerate = cumulative_rows(weights)
        self._no_eligible = not counts.any()
        self._built = True
        return int(self._degenerate.sum())

    def _require_built(self) -> None:
        if not self._built:
            raise IndexNotBuilt("MixingTable queried before rebuild()")

    def _check_location(self, loc: int) -> None:
        if not 0 <= loc < self.n_locations:
            raise CompoundIndexError(
                f"location {loc} out of range [0, {self.n_locations})")

    def is_degenerate(self, own_location: int) -> bool:
        self._check_location(own_location)
        return bool(self._degenerate[own_location])

    def distribution(self, own_location: int) -> np.ndarray:
        """Read-only cumulative row for one own location."""
        self._require_built()
        self._check_location(own_location)
        row = self._cumulative[own_location].copy()
        row.flags.writeable = False
        return row

    def cumulative(self) -> np.ndarray:
        self._require_built()
        return self._cumulative.copy()

    def probabilities(self) -> np.ndarray:
        """Per-destination probabilities (degenerate rows are all zero)."""
        self._require_built()
        return np.diff(self._cumulative, axis=1, prepend=0.0)

    def sample_location(self, own_location: int, uniform_draw: float) -> int:
        """Inverse-CDF draw of a partner location.

        Returns the smallest column j with cumulative[j] >= uniform_draw,
        skipping columns without probability mass (only reachable for a
        draw of exactly 0.0).

        Raises:
            DegenerateMixingRow: If the row has no viable destination.
            ValueError: If uniform_draw is outside [0, 1).
        """
        self._require_built()
        self._check_location(own_location)
        if not 0.0 <= uniform_draw < 1.0:
            raise ValueError(f"uniform_draw must be in [0, 1), got {uniform_draw}")
        if self._degenerate[own_location]:
            if self._no_eligible:
                raise DegenerateMixingRow(own_location, "no location has eligible agents")
            raise DegenerateMixingRow(own_location)
        row = self._cumulative[own_location]
        j = int(np.searchsorted(row, uniform_draw, side='left'))
        if row[j] <= 0.0:
            j = int(np.searchsorted(row, 0.0, side='right'))
        return j


# ═══════════════════════════════════════════════════════════════════════
# OBSERVED MIXING FREQUENCIES
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class MixingReport:
    """Observed mixing, raw and row-normalised, next to the policy.

    counts accumulate over every step since the last reset(), while
    policy is a single matrix (CategoricalEnvironment.report passes the
    latest table probabilities).  When the population shifts between
    steps the table changes too, and max_abs_deviation then mixes
    sampling noise with that drift.  Reset the frequencies each step, or
    pass the normalised static policy, for a like-for-like comparison.
    """
    counts: np.ndarray                    # (L, L) int64
    normalized: np.ndarray                # (L, L) float64, rows sum to 1 or 0
    policy: Optional[np.ndarray] = None   # (L, L) row probabilities
    total: int = 0

    @property
    def max_abs_deviation(self) -> float:
        """Largest |observed − policy| over rows with any observation."""
        if self.policy is None:
            return float('nan')
        observed_rows = self.counts.sum(axis=1) > 0
        if not observed_rows.any():
            return 0.0
        diff = np.abs(self.normalized[observed_rows] - self.policy[observed_rows])
        return float(diff.max())


class MixingFrequencies:
    """Striped (own location, partner location) selection counters.

    Each thread increments a private shard, so concurrent recording in
    the query phase needs no lock on the hot path.  Reads merge all
    shards; consolidate() folds them into the base matrix and must run
    outside the query phase.
    """

    def __init__(self, n_locations: int):
        if n_locations < 1:
            raise ValueError(f"n_locations must be >= 1, got {n_locations}")
        self._L = int(n_locations)
        self._base = np.zeros((self._L, self._L), dtype=np.int64)
        self._shards: List[np.ndarray] = []
        self._generation = 0
        self._lock = threading.Lock()
        self._local = threading.local()

    @property
    def n_locations(self) -> int:
        return self._L

    def _shard(self) -> np.ndarray:
        local = self._local
        if getattr(local, 'generation', None) != self._generation:
            shard = np.zeros((self._L, self._L), dtype=np.int64)
            with self._lock:
                self._shards.append(shard)
                local.generation = self._generation
            local.shard = shard
        return local.shard

    def record_selection(self, own_location: int, partner_location: int) -> None:
        """Count one realised pairing."""
        if not (0 <= own_location < self._L and 0 <= partner_location < self._L):
            raise CompoundIndexError(
                f"location pair ({own_location}, {partner_location}) "
                f"out of range [0, {self._L})"
            )
        self._shard()[own_location, partner_location] += 1

    def counts(self) -> np.ndarray:
        """Merged raw counts, shape (L, L)."""
        with self._lock:
            total = self._base.copy()
            for shard in self._shards:
                total += shard
        return total

    @property
    def total(self) -> int:
        return int(self.counts().sum())

    def consolidate(self) -> None:
        """Fold all thread shards into the base matrix."""
        with self._lock:
            for shard in self._shards:
                self._base += shard
            self._shards = []
            self._generation += 1

    def reset(self) -> None:
        """Zero every counter.  Never called implicitly."""
        with self._lock:
            self._base[:] = 0
            self._shards = []
            self._generation += 1

    def normalize(self) -> np.ndarray:
        """Row-stochastic copy of the counts; rows without data stay zero."""
        counts = self.counts().astype(np.float64)
        sums = counts.sum(axis=1)
        out = np.zeros_like(counts)
        nz = sums > 0
        out[nz] = counts[nz] / sums[nz, np.newaxis]
        return out

    def report(self, policy: Optional[np.ndarray] = None) -> MixingReport:
        counts = self.counts()
        return MixingReport(
            counts=counts,
            normalized=self.normalize(),
            policy=None if policy is None else np.array(policy, dtype=np.float64),
            total=int(counts.sum()),
        )

    def format_report(self, normalized: bool = True) -> str:
        """Text rendering of the observed mixing matrix."""
        matrix = self.normalize() if normalized else self.counts()
        title = "Mate location frequencies" + (" (row-normalised)" if normalized else "")
        corner = 'own/partner'
        header = f"{corner:>12} " + ' '.join(f"{j:>8}" for j in range(self._L))
        lines = [title, header]
        for i in range(self._L):
            if normalized:
                cells = ' '.join(f"{v:>8.3f}" for v in matrix[i])
            else:
                cells = ' '.join(f"{int(v):>8d}" for v in matrix[i])
            lines.append(f"{i:>12} {cells}")
        return '\n'.join(lines)
