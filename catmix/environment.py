"""Categorical mating environment.

Owns, for the lifetime of a simulation run:
  - the CategoricalIndex of eligible partners,
  - the MixingTable derived from the static policy matrix,
  - the MixingFrequencies diagnostic counters.

Per step the driver calls update() exactly once, alone (build phase):
the index is rebuilt from the population store, then the mixing table is
recomputed from the fresh per-location counts.  Afterwards any number of
workers may call find_partner() / count_at() / sample_at() concurrently
(query phase); none of them mutate the index or the table.
"""

from __future__ import annotations

import warnings
from typing import Optional, Union

import numpy as np

from catmix.index import CategoricalIndex
from catmix.mixing import (
    MixingFrequencies,
    MixingReport,
    MixingTable,
    RedistributionRule,
    build_policy_matrix,
)
from catmix.sampler import PartnerSampler
from catmix.types import (
    DEFAULT_MAX_AGE,
    DEFAULT_MIN_AGE,
    DEFAULT_N_AGE_CATEGORIES,
    DEFAULT_N_LOCATIONS,
    DEFAULT_N_SB_CATEGORIES,
    SEX_NAMES,
    Sex,
)


class CategoricalEnvironment:
    """Partner index + location mixing for the mating behaviour.

    Args:
        min_age: Youngest eligible partner age.
        max_age: Oldest eligible partner age.
        n_age_categories: Age bands in the index.
        n_locations: Number of locations (L).
        n_sb_categories: Socio-behavioural categories in the index.
        policy: (L, L) policy weights; defaults to pure uniform mixing.
        redistribution: Rule applied to the policy each step.
        partner_sex: Sex of the indexed partners.
    """

    def __init__(
        self,
        min_age: float = DEFAULT_MIN_AGE,
        max_age: float = DEFAULT_MAX_AGE,
        n_age_categories: int = DEFAULT_N_AGE_CATEGORIES,
        n_locations: int = DEFAULT_N_LOCATIONS,
        n_sb_categories: int = DEFAULT_N_SB_CATEGORIES,
        policy: Optional[np.ndarray] = None,
        redistribution: Union[str, RedistributionRule] = 'renormalize',
        partner_sex: int = Sex.FEMALE,
    ):
        self.index = CategoricalIndex(
            min_age=min_age,
            max_age=max_age,
            n_age_categories=n_age_categories,
            n_locations=n_locations,
            n_sb_categories=n_sb_categories,
            partner_sex=partner_sex,
        )
        if policy is None:
            policy = build_policy_matrix(n_locations, self_mixing=1.0 / n_locations)
        self.table = MixingTable(policy, redistribution=redistribution)
        if self.table.n_locations != n_locations:
            raise ValueError(
                f"Policy matrix is {self.table.n_locations}×{self.table.n_locations} "
                f"but the environment has {n_locations} locations"
            )
        self.frequencies = MixingFrequencies(n_locations)
        self.sampler = PartnerSampler(self.index, self.table, self.frequencies)
        self.n_updates = 0

    @classmethod
    def from_config(cls, config) -> 'CategoricalEnvironment':
        """Build from a SimulationConfig."""
        from catmix.config import resolve_policy

        idx = config.index
        return cls(
            min_age=idx.min_age,
            max_age=idx.max_age,
            n_age_categories=idx.n_age_categories,
            n_locations=idx.n_locations,
            n_sb_categories=idx.n_sb_categories,
            policy=resolve_policy(config),
            redistribution=config.mixing.redistribution,
            partner_sex=SEX_NAMES[idx.partner_sex],
        )

    # ── Dimensions & window ──────────────────────────────────────────

    @property
    def n_locations(self) -> int:
        return self.index.n_locations

    @property
    def n_age_categories(self) -> int:
        return self.index.n_age_categories

    @property
    def n_sb_categories(self) -> int:
        return self.index.n_sb_categories

    def get_min_age(self) -> float:
        return self.index.min_age

    def get_max_age(self) -> float:
        return self.index.max_age

    def set_min_age(self, min_age: float) -> None:
        """Change the window; takes effect at the next update()."""
        self.index.min_age = min_age

    def set_max_age(self, max_age: float) -> None:
        """Change the window; takes effect at the next update()."""
        self.index.max_age = max_age

    # ── Build phase ──────────────────────────────────────────────────

    def update(self, persons: np.ndarray) -> int:
        """Rebuild the index and the mixing table for a new step.

        Must complete before any query of the step.  The observed mixing
        frequencies are left untouched.

        Returns:
            Number of eligible partners indexed.
        """
        self.table.clear()
        n_eligible = self.index.rebuild(persons)
        n_degenerate = self.table.rebuild(self.index.location_counts())
        self.frequencies.consolidate()
        self.n_updates += 1
        if n_degenerate:
            warnings.warn(
                f"{n_degenerate} of {self.n_locations} mixing rows are degenerate "
                f"({n_eligible} eligible partners); partner searches from those "
                f"locations will fail this step.",
                RuntimeWarning,
                stacklevel=2,
            )
        return n_eligible

    # ── Query phase ──────────────────────────────────────────────────

    def find_partner(self, own_location: int, age: int, sb: int,
                     rng: np.random.Generator, record: bool = True) -> int:
        """Sample a partner; see catmix.sampler.find_partner."""
        return self.sampler.find_partner(own_location, age, sb, rng, record=record)

    def count_at(self, location: int, age: int, sb: int) -> int:
        return self.index.count_at(location, age, sb)

    get_num_agents_at_index = count_at

    def sample_at(self, location: int, age: int, sb: int,
                  rng: np.random.Generator) -> int:
        return self.index.sample_at(location, age, sb, rng)

    def compute_compound_index(self, location: int, age: int, sb: int) -> int:
        return self.index.compute_compound_index(location, age, sb)

    def get_mate_location_distribution(self, location: int) -> np.ndarray:
        return self.table.distribution(location)

    # ── Diagnostics ──────────────────────────────────────────────────

    def increase_count_mates_in_locations(self, loc_agent: int, loc_mate: int) -> None:
        self.frequencies.record_selection(loc_agent, loc_mate)

    def normalize_mate_location_frequencies(self) -> np.ndarray:
        return self.frequencies.normalize()

    def report(self) -> MixingReport:
        """Observed mixing next to the current mixing-table probabilities.

        Observed counts cover every step since the last reset; the
        probabilities are those of the latest update() only.
        """
        policy = self.table.probabilities() if self.table.is_built else None
        return self.frequencies.report(policy=policy)

    def describe_population(self) -> str:
        return self.index.describe_population()

    def print_mate_location_frequencies(self) -> None:
        print(self.frequencies.format_report())
