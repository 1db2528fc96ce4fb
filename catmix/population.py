"""Synthetic population store and annual demography.

The population store is a PERSON_DTYPE array of fixed size.  Rows are
recycled: a death frees its row and the same row may be reused by a
newborn in the same annual update, which is why the partner index never
keeps references across steps.

Handles:
  - initialize_population: draw ages, sexes, locations, risk categories
  - seeker_indices: who looks for a partner this step
  - annual_aging: +1 year, background + senescent mortality, replacement
"""

from __future__ import annotations

from typing import Optional, Tuple

import numpy as np

from catmix.config import PopulationSection
from catmix.types import GemsState, Sex, SocioBehaviour, allocate_persons


def initialize_population(
    n_agents: int,
    pop_cfg: PopulationSection,
    n_locations: int,
    n_sb_categories: int,
    rng: np.random.Generator,
) -> np.ndarray:
    """Create a living, healthy population store.

    Ages are uniform in [0, max_initial_age), sexes are 50/50, locations
    follow ``pop_cfg.location_weights`` (uniform when None).  With two or
    more sb categories a fraction ``p_high_sb`` is HIGH risk; any further
    categories are unused by this generator.

    Args:
        n_agents: Number of persons (rows).
        pop_cfg: PopulationSection.
        n_locations: Number of locations.
        n_sb_categories: Socio-behavioural categories of the index.
        rng: Generator for all draws.

    Returns:
        PERSON_DTYPE array of shape (n_agents,).
    """
    persons = allocate_persons(n_agents)
    if n_agents == 0:
        return persons

    if pop_cfg.location_weights is None:
        p_loc = np.full(n_locations, 1.0 / n_locations)
    else:
        p_loc = np.asarray(pop_cfg.location_weights, dtype=np.float64)
        p_loc = p_loc / p_loc.sum()

    persons['age'] = rng.uniform(0.0, pop_cfg.max_initial_age, n_agents)
    persons['sex'] = np.where(rng.random(n_agents) < 0.5, Sex.FEMALE, Sex.MALE)
    persons['location'] = rng.choice(n_locations, size=n_agents, p=p_loc)
    if n_sb_categories > 1:
        persons['social_behaviour'] = np.where(
            rng.random(n_agents) < pop_cfg.p_high_sb,
            SocioBehaviour.HIGH, SocioBehaviour.LOW,
        )
    else:
        persons['social_behaviour'] = SocioBehaviour.LOW
    persons['biomedical'] = 0
    persons['state'] = GemsState.HEALTHY
    persons['alive'] = True
    return persons


def seeker_indices(
    persons: np.ndarray,
    min_age: float,
    max_age: float,
    seeker_sex: int = Sex.MALE,
) -> np.ndarray:
    """Rows of living persons of ``seeker_sex`` inside the age window."""
    mask = (
        persons['alive'].astype(bool)
        & (persons['sex'] == seeker_sex)
        & (persons['age'] >= min_age)
        & (persons['age'] <= max_age)
    )
    return np.flatnonzero(mask)


def annual_aging(
    persons: np.ndarray,
    pop_cfg: PopulationSection,
    n_locations: int,
    n_sb_categories: int,
    rng: np.random.Generator,
) -> Tuple[int, int]:
    """Age everyone by one year; replace the dead with newborns.

    A person dies with probability ``annual_mortality`` or on reaching
    ``max_age_death``.  Every freed row is immediately reused by a
    newborn (age 0) at a random location, keeping the store size fixed.

    Returns:
        (n_deaths, n_births).
    """
    alive = persons['alive'].astype(bool)
    persons['age'][alive] += 1.0

    dies = alive & (
        (rng.random(persons.size) < pop_cfg.annual_mortality)
        | (persons['age'] >= pop_cfg.max_age_death)
    )
    persons['alive'][dies] = False
    n_deaths = int(dies.sum())

    free = np.flatnonzero(~persons['alive'].astype(bool))
    n_births = int(free.size)
    if n_births:
        newborns = initialize_population(
            n_births, pop_cfg, n_locations, n_sb_categories, rng)
        newborns['age'] = 0.0
        persons[free] = newborns
    return n_deaths, n_births


def population_summary(persons: np.ndarray, n_locations: Optional[int] = None) -> str:
    """One-paragraph text summary of the population store."""
    alive = persons['alive'].astype(bool)
    n_alive = int(alive.sum())
    n_f = int(np.sum(alive & (persons['sex'] == Sex.FEMALE)))
    n_m = n_alive - n_f
    mean_age = float(persons['age'][alive].mean()) if n_alive else 0.0
    lines = [
        f"Population: {n_alive} alive / {persons.size} rows "
        f"({n_f} female, {n_m} male), mean age {mean_age:.1f}",
    ]
    if n_locations is not None and n_alive:
        per_loc = np.bincount(persons['location'][alive], minlength=n_locations)
        lines.append("  per location: " + ', '.join(
            f"{i}:{int(c)}" for i, c in enumerate(per_loc)))
    return '\n'.join(lines)
