"""Categorical population index for partner selection.

Partitions the eligible partner population by (location, age band,
socio-behavioural category).  Each category owns an AgentBucket; the
buckets live in one flat list addressed by the compound key

    key = age + A × location + (A × L) × sb

with A = n_age_categories, L = n_locations, S = n_sb_categories.

The index is an arena: buckets are allocated once at construction and
cleared in place by every rebuild(), so a simulation step never churns
per-agent allocations.  Buckets store row indices into the externally
owned PERSON_DTYPE array, never copies of the persons themselves.

Phase contract (enforced by the caller, see environment.py):
  - rebuild() / add_agent_to_index() / clear() run alone (build phase)
  - count_at() / sample_at() / bucket() may run concurrently (query phase)
"""

from __future__ import annotations

import operator
from typing import Iterator, List, Optional, Tuple

import numpy as np

from catmix.errors import CompoundIndexError, EmptyBucket, IndexNotBuilt
from catmix.types import (
    DEFAULT_MAX_AGE,
    DEFAULT_MIN_AGE,
    DEFAULT_N_AGE_CATEGORIES,
    DEFAULT_N_LOCATIONS,
    DEFAULT_N_SB_CATEGORIES,
    Sex,
)


# ═══════════════════════════════════════════════════════════════════════
# AGENT BUCKET
# ═══════════════════════════════════════════════════════════════════════

class AgentBucket:
    """Growable array of agent references sharing one category.

    Backed by an int64 buffer that only ever grows; clear() resets the
    length and keeps the capacity for the next step.
    """

    __slots__ = ('location', 'age', 'sb', '_refs', '_n')

    def __init__(self, location: int = 0, age: int = 0, sb: int = 0,
                 capacity: int = 0):
        self.location = location
        self.age = age
        self.sb = sb
        self._refs = np.empty(max(int(capacity), 0), dtype=np.int64)
        self._n = 0

    def __len__(self) -> int:
        return self._n

    def __contains__(self, ref) -> bool:
        return bool(np.any(self._refs[:self._n] == ref))

    def __iter__(self) -> Iterator[int]:
        return (int(r) for r in self._refs[:self._n])

    @property
    def key(self) -> Tuple[int, int, int]:
        return (self.location, self.age, self.sb)

    @property
    def capacity(self) -> int:
        return int(self._refs.size)

    @property
    def agents(self) -> np.ndarray:
        """Read-only view of the stored references."""
        view = self._refs[:self._n]
        view.flags.writeable = False
        return view

    def get_num_agents(self) -> int:
        return self._n

    def _reserve(self, n_total: int) -> None:
        if n_total <= self._refs.size:
            return
        new_cap = max(n_total, 2 * self._refs.size, 8)
        buf = np.empty(new_cap, dtype=np.int64)
        buf[:self._n] = self._refs[:self._n]
        self._refs = buf

    def append(self, ref: int) -> None:
        """Add a single agent reference."""
        self._reserve(self._n + 1)
        self._refs[self._n] = ref
        self._n += 1

    def extend(self, refs) -> None:
        """Add a batch of agent references, keeping their order."""
        refs = np.asarray(refs, dtype=np.int64).ravel()
        k = refs.size
        if k == 0:
            return
        self._reserve(self._n + k)
        self._refs[self._n:self._n + k] = refs
        self._n += k

    def clear(self) -> None:
        """Drop all references; capacity is kept."""
        self._n = 0

    def random_agent(self, rng: np.random.Generator) -> int:
        """Uniformly random reference from the bucket.

        Raises:
            EmptyBucket: If the bucket has no entries.
        """
        if self._n == 0:
            raise EmptyBucket(self.location, self.age, self.sb)
        return int(self._refs[rng.integers(self._n)])


# ═══════════════════════════════════════════════════════════════════════
# CATEGORICAL INDEX
# ═══════════════════════════════════════════════════════════════════════

class CategoricalIndex:
    """Flat array of AgentBuckets keyed by (location, age band, sb).

    Dimensions are fixed at construction.  The eligibility window
    [min_age, max_age] can be changed between steps; doing so marks the
    index stale until the next rebuild().

    Args:
        min_age: Youngest eligible age (inclusive, years).
        max_age: Oldest eligible age (inclusive, years).
        n_age_categories: Number of equal-width age bands over the window.
        n_locations: Number of categorical locations.
        n_sb_categories: Number of socio-behavioural categories.
        partner_sex: Sex of the indexed (partner) population.
    """

    def __init__(
        self,
        min_age: float = DEFAULT_MIN_AGE,
        max_age: float = DEFAULT_MAX_AGE,
        n_age_categories: int = DEFAULT_N_AGE_CATEGORIES,
        n_locations: int = DEFAULT_N_LOCATIONS,
        n_sb_categories: int = DEFAULT_N_SB_CATEGORIES,
        partner_sex: int = Sex.FEMALE,
    ):
        for name, value in (('n_age_categories', n_age_categories),
                            ('n_locations', n_locations),
                            ('n_sb_categories', n_sb_categories)):
            if int(value) != value or value < 1:
                raise ValueError(f"{name} must be a positive integer, got {value}")
        _check_window(min_age, max_age)

        self._A = int(n_age_categories)
        self._L = int(n_locations)
        self._S = int(n_sb_categories)
        self._min_age = float(min_age)
        self._max_age = float(max_age)
        self.partner_sex = int(partner_sex)

        n = self._A * self._L * self._S
        self._buckets: List[AgentBucket] = []
        for key in range(n):
            age = key % self._A
            location = (key // self._A) % self._L
            sb = key // (self._A * self._L)
            self._buckets.append(AgentBucket(location, age, sb))
        self._counts = np.zeros(n, dtype=np.int64)
        self._n_eligible = 0
        self._built = False

    # ── Dimensions & window ──────────────────────────────────────────

    @property
    def n_age_categories(self) -> int:
        return self._A

    @property
    def n_locations(self) -> int:
        return self._L

    @property
    def n_sb_categories(self) -> int:
        return self._S

    @property
    def n_buckets(self) -> int:
        return len(self._buckets)

    @property
    def shape(self) -> Tuple[int, int, int]:
        """(n_sb_categories, n_locations, n_age_categories), slowest first."""
        return (self._S, self._L, self._A)

    @property
    def min_age(self) -> float:
        return self._min_age

    @min_age.setter
    def min_age(self, value: float) -> None:
        _check_window(value, self._max_age)
        self._min_age = float(value)
        self._built = False

    @property
    def max_age(self) -> float:
        return self._max_age

    @max_age.setter
    def max_age(self, value: float) -> None:
        _check_window(self._min_age, value)
        self._max_age = float(value)
        self._built = False

    @property
    def is_built(self) -> bool:
        return self._built

    @property
    def n_eligible(self) -> int:
        return self._n_eligible

    # ── Keys ─────────────────────────────────────────────────────────

    def compute_compound_index(self, location: int, age: int, sb: int) -> int:
        """Map (location, age band, sb) to the flat bucket position.

        Components must be integers; floats are rejected rather than
        truncated.

        Raises:
            CompoundIndexError: If any component is non-integral or out
                of range.
        """
        location = _component('location', location)
        age = _component('age category', age)
        sb = _component('socio-behavioural category', sb)
        if not 0 <= location < self._L:
            raise CompoundIndexError(
                f"location {location} out of range [0, {self._L})")
        if not 0 <= age < self._A:
            raise CompoundIndexError(
                f"age category {age} out of range [0, {self._A})")
        if not 0 <= sb < self._S:
            raise CompoundIndexError(
                f"socio-behavioural category {sb} out of range [0, {self._S})")
        return int(age + self._A * location + (self._A * self._L) * sb)

    def age_band_of(self, age):
        """Age band for an age (scalar or array) inside the window.

        Equal-width bands over [min_age, max_age]; max_age itself falls in
        the last band.  Ages outside the window are clipped; callers pass
        eligible ages only.
        """
        width = (self._max_age - self._min_age) / self._A
        bands = np.floor((np.asarray(age, dtype=np.float64) - self._min_age) / width)
        bands = np.clip(bands, 0, self._A - 1).astype(np.int64)
        if bands.ndim == 0:
            return int(bands)
        return bands

    def eligible_mask(self, persons: np.ndarray) -> np.ndarray:
        """Boolean mask of rows eligible as partners."""
        age = persons['age']
        return (
            persons['alive'].astype(bool)
            & (persons['sex'] == self.partner_sex)
            & (age >= self._min_age)
            & (age <= self._max_age)
        )

    # ── Build phase ──────────────────────────────────────────────────

    def clear(self) -> None:
        """Empty every bucket in place."""
        for bucket in self._buckets:
            bucket.clear()
        self._counts[:] = 0
        self._n_eligible = 0
        self._built = True

    def add_agent_to_index(self, ref: int, location: int, age: int,
                           sb: int) -> None:
        """Append one agent reference to the (location, age, sb) bucket."""
        key = self.compute_compound_index(location, age, sb)
        self._buckets[key].append(ref)
        self._counts[key] += 1
        self._n_eligible += 1

    def rebuild(self, persons: np.ndarray) -> int:
        """Clear all buckets and re-classify every eligible person.

        One linear pass over the population.  Rows are grouped with a
        stable sort on the compound key, so each bucket lists its agents
        in ascending row order and repeated rebuilds of an unchanged
        population are identical.

        Args:
            persons: PERSON_DTYPE array (the population store).

        Returns:
            Number of eligible persons indexed.

        Raises:
            CompoundIndexError: If an eligible person's location or
                socio-behavioural category is outside the index dimensions.
        """
        self.clear()
        self._built = False

        rows = np.flatnonzero(self.eligible_mask(persons))
        location = persons['location'][rows].astype(np.int64)
        sb = persons['social_behaviour'][rows].astype(np.int64)
        _check_range('location', location, self._L, rows)
        _check_range('social_behaviour', sb, self._S, rows)
        age = self.age_band_of(persons['age'][rows])

        keys = age + self._A * location + (self._A * self._L) * sb
        order = np.argsort(keys, kind='stable')
        sorted_rows = rows[order]
        counts = np.bincount(keys, minlength=self.n_buckets)
        offsets = np.zeros(self.n_buckets + 1, dtype=np.int64)
        np.cumsum(counts, out=offsets[1:])

        for key in np.flatnonzero(counts):
            self._buckets[key].extend(sorted_rows[offsets[key]:offsets[key + 1]])

        self._counts[:] = counts
        self._n_eligible = int(rows.size)
        self._built = True
        return self._n_eligible

    # ── Query phase ──────────────────────────────────────────────────

    def _require_built(self) -> None:
        if not self._built:
            raise IndexNotBuilt(
                "CategoricalIndex queried before rebuild(); "
                "call rebuild() at the start of every step"
            )

    def bucket(self, location: int, age: int, sb: int) -> AgentBucket:
        self._require_built()
        return self._buckets[self.compute_compound_index(location, age, sb)]

    def count_at(self, location: int, age: int, sb: int) -> int:
        """Number of eligible agents in the (location, age, sb) bucket."""
        self._require_built()
        return int(self._counts[self.compute_compound_index(location, age, sb)])

    def sample_at(self, location: int, age: int, sb: int,
                  rng: np.random.Generator) -> int:
        """Uniformly random agent reference from one bucket.

        Raises:
            EmptyBucket: If the bucket is empty.
        """
        return self.bucket(location, age, sb).random_agent(rng)

    def counts(self) -> np.ndarray:
        """Bucket sizes as an (S, L, A) array."""
        self._require_built()
        return self._counts.reshape(self.shape).copy()

    def location_counts(self) -> np.ndarray:
        """Eligible agents per location, summed over age and sb, shape (L,)."""
        return self.counts().sum(axis=(0, 2))

    def describe_population(self, include_empty: bool = False) -> str:
        """Table of bucket populations (eligible partners per category)."""
        self._require_built()
        lines = [
            f"Eligible population (sex={Sex(self.partner_sex).name.lower()}, "
            f"age {self._min_age:g}–{self._max_age:g}): {self._n_eligible}",
            f"{'Location':>8} {'Age':>5} {'SB':>4} {'Count':>8}",
            f"{'-'*8} {'-'*5} {'-'*4} {'-'*8}",
        ]
        counts = self.counts()
        for loc in range(self._L):
            for age in range(self._A):
                for sb in range(self._S):
                    n = int(counts[sb, loc, age])
                    if n or include_empty:
                        lines.append(f"{loc:>8} {age:>5} {sb:>4} {n:>8}")
        return '\n'.join(lines)


# ═══════════════════════════════════════════════════════════════════════
# HELPERS
# ═══════════════════════════════════════════════════════════════════════

def _check_window(min_age: float, max_age: float) -> None:
    if not min_age < max_age:
        raise ValueError(
            f"min_age ({min_age}) must be < max_age ({max_age})")


def _check_range(name: str, values: np.ndarray, upper: int,
                 rows: Optional[np.ndarray] = None) -> None:
    bad = np.flatnonzero((values < 0) | (values >= upper))
    if bad.size:
        first = int(bad[0])
        row = int(rows[first]) if rows is not None else first
        raise CompoundIndexError(
            f"{bad.size} eligible person(s) with {name} outside [0, {upper}); "
            f"first at row {row} ({name}={int(values[first])})"
        )


def _component(name: str, value) -> int:
    try:
        return operator.index(value)
    except TypeError:
        raise CompoundIndexError(
            f"{name} must be an integer, got {value!r}") from None
