"""Two-stage partner sampling.

Stage 1: draw the partner's location from the agent's mixing row
         (inverse CDF, MixingTable.sample_location).
Stage 2: draw the partner uniformly from the (location, age, sb) bucket
         (CategoricalIndex.sample_at).

The sampler never retries.  A miss is reported as NoEligiblePartner (or
its subclass DegenerateMixingRow) and the mating behaviour decides what
to do with the agent.  The only side effect is an optional increment of
the observed mixing frequencies after a successful draw.
"""

from __future__ import annotations

from typing import Optional

import numpy as np

from catmix.errors import EmptyBucket, NoEligiblePartner
from catmix.index import CategoricalIndex
from catmix.mixing import MixingFrequencies, MixingTable


def find_partner(
    index: CategoricalIndex,
    table: MixingTable,
    own_location: int,
    age: int,
    sb: int,
    rng: np.random.Generator,
    frequencies: Optional[MixingFrequencies] = None,
) -> int:
    """Sample an eligible partner for an agent at ``own_location``.

    Args:
        index: Categorical index rebuilt for the current step.
        table: Mixing table rebuilt for the current step.
        own_location: Location of the seeking agent.
        age: Required partner age band.
        sb: Required partner socio-behavioural category.
        rng: Uniform random source (one per worker).
        frequencies: If given, the realised (own, partner) location pair
            is recorded on success.

    Returns:
        Row index of the partner in the population store.

    Raises:
        DegenerateMixingRow: The own-location row has no viable destination.
        NoEligiblePartner: The drawn bucket is empty.
    """
    target = table.sample_location(own_location, float(rng.random()))
    try:
        partner = index.sample_at(target, age, sb, rng)
    except EmptyBucket as err:
        raise NoEligiblePartner(
            f"No eligible partner for location {own_location}: {err}"
        ) from err
    if frequencies is not None:
        frequencies.record_selection(own_location, target)
    return partner


class PartnerSampler:
    """Binds an index, a mixing table and optional frequency counters."""

    def __init__(self, index: CategoricalIndex, table: MixingTable,
                 frequencies: Optional[MixingFrequencies] = None):
        if index.n_locations != table.n_locations:
            raise ValueError(
                f"Index has {index.n_locations} locations but mixing table "
                f"has {table.n_locations}"
            )
        if frequencies is not None and frequencies.n_locations != index.n_locations:
            raise ValueError(
                f"Frequency matrix has {frequencies.n_locations} locations, "
                f"expected {index.n_locations}"
            )
        self.index = index
        self.table = table
        self.frequencies = frequencies

    def find_partner(self, own_location: int, age: int, sb: int,
                     rng: np.random.Generator, record: bool = True) -> int:
        return find_partner(
            self.index, self.table, own_location, age, sb, rng,
            frequencies=self.frequencies if record else None,
        )
