"""Bulk-synchronous mating simulation driver.

Each step (one year) runs strictly ordered phases:
  1. Build:      env.update(persons) rebuilds the partner index and the
                 mixing table.  Runs alone; the query workers are only
                 started after it returns.
  2. Query:      seekers (opposite sex, inside the age window) are split
                 into contiguous chunks, one per worker thread, each with
                 its own RNG stream.  Workers only read the index and the
                 table; the observed mixing counters are striped per
                 thread.
  3. Record:     optional MixingRecorder capture.
  4. Demography: aging, mortality and replacement in the population store.

Results are bit-identical for a given seed and worker count, whatever
the thread interleaving, because every worker owns its chunk and stream.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

import numpy as np

from catmix.config import SimulationConfig, default_config
from catmix.environment import CategoricalEnvironment
from catmix.errors import DegenerateMixingRow, NoEligiblePartner
from catmix.mixing import MixingReport
from catmix.perf import PerfMonitor
from catmix.population import annual_aging, initialize_population, seeker_indices
from catmix.recorder import MixingRecorder
from catmix.rng import create_rng_hierarchy, get_worker_rng
from catmix.types import PERSON_DTYPE, Sex


# ═══════════════════════════════════════════════════════════════════════
# RESULT CONTAINER
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class MixingSimResult:
    """Results from a mating simulation."""
    n_steps: int = 0
    n_locations: int = 0
    seed: int = 0
    # Per-step timeseries (length = n_steps)
    years: Optional[np.ndarray] = None
    step_seekers: Optional[np.ndarray] = None
    step_pairs: Optional[np.ndarray] = None
    step_misses: Optional[np.ndarray] = None       # empty bucket at drawn location
    step_degenerate: Optional[np.ndarray] = None   # no viable location at all
    step_deaths: Optional[np.ndarray] = None
    step_births: Optional[np.ndarray] = None
    # Per-step, per-location eligible partners: shape (n_steps, L)
    step_eligible: Optional[np.ndarray] = None
    # (k, 2) seeker/partner rows of the last step
    last_pairs: Optional[np.ndarray] = None
    # Diagnostics
    final_report: Optional[MixingReport] = None
    final_probabilities: Optional[np.ndarray] = None
    perf_summary: Optional[dict] = None

    @property
    def success_rate(self) -> float:
        """Fraction of partner searches that returned a partner."""
        if self.step_seekers is None:
            return 0.0
        total = int(self.step_seekers.sum())
        return float(self.step_pairs.sum()) / total if total else 0.0


# ═══════════════════════════════════════════════════════════════════════
# QUERY PHASE
# ═══════════════════════════════════════════════════════════════════════

def query_chunk(
    env: CategoricalEnvironment,
    persons: np.ndarray,
    seekers: np.ndarray,
    rng: np.random.Generator,
    assortative_sb: bool = True,
    record: bool = True,
) -> Tuple[np.ndarray, int, int]:
    """Look for one partner for each seeker in a chunk.

    The partner's age band is the seeker's own band in the index window;
    the partner's sb category is the seeker's own (assortative) or drawn
    uniformly.  Failed searches are counted, never retried.

    Returns:
        (pairs, n_misses, n_degenerate) with pairs of shape (k, 2).
    """
    pairs: List[Tuple[int, int]] = []
    n_misses = 0
    n_degenerate = 0
    n_sb = env.n_sb_categories
    for row in seekers:
        person = persons[row]
        location = int(person['location'])
        age = env.index.age_band_of(float(person['age']))
        if assortative_sb:
            sb = int(person['social_behaviour'])
        else:
            sb = int(rng.integers(n_sb))
        try:
            partner = env.find_partner(location, age, sb, rng, record=record)
        except DegenerateMixingRow:
            n_degenerate += 1
            continue
        except NoEligiblePartner:
            n_misses += 1
            continue
        pairs.append((int(row), partner))
    return np.array(pairs, dtype=np.int64).reshape(-1, 2), n_misses, n_degenerate


def query_phase(
    env: CategoricalEnvironment,
    persons: np.ndarray,
    seekers: np.ndarray,
    rngs: dict,
    n_workers: int = 1,
    assortative_sb: bool = True,
    record: bool = True,
) -> Tuple[np.ndarray, int, int]:
    """Run query_chunk over all seekers with ``n_workers`` threads."""
    chunks = np.array_split(seekers, n_workers)
    if n_workers == 1:
        results = [query_chunk(env, persons, chunks[0], get_worker_rng(rngs, 0),
                               assortative_sb, record)]
    else:
        with ThreadPoolExecutor(max_workers=n_workers) as pool:
            futures = [
                pool.submit(query_chunk, env, persons, chunk,
                            get_worker_rng(rngs, w), assortative_sb, record)
                for w, chunk in enumerate(chunks)
            ]
            results = [f.result() for f in futures]
    pairs = np.concatenate([r[0] for r in results], axis=0)
    return pairs, sum(r[1] for r in results), sum(r[2] for r in results)


# ═══════════════════════════════════════════════════════════════════════
# SIMULATION LOOP
# ═══════════════════════════════════════════════════════════════════════

def run_mixing_simulation(
    config: Optional[SimulationConfig] = None,
    persons: Optional[np.ndarray] = None,
    env: Optional[CategoricalEnvironment] = None,
    progress_callback: Optional[Callable[[int, int], None]] = None,
    recorder: Optional[MixingRecorder] = None,
    perf: Optional[PerfMonitor] = None,
) -> MixingSimResult:
    """Run the bulk-synchronous build/query/demography loop.

    Args:
        config: SimulationConfig; uses default if None.
        persons: PERSON_DTYPE population store, modified in place by the
            demography phase.  Generated from ``config.population`` if None.
        env: Environment to use; built from the config if None.  Its
            frequency counters keep accumulating across calls.
        progress_callback: Optional callable(step, n_steps).
        recorder: MixingRecorder; one following ``config.output`` if None.
        perf: PerfMonitor; a disabled one if None.

    Returns:
        MixingSimResult with per-step timeseries and the final report.
    """
    if config is None:
        config = default_config()
    if perf is None:
        perf = PerfMonitor(enabled=False)
    perf.start()

    sim = config.simulation
    pop_cfg = config.population
    mix_cfg = config.mixing
    n_steps = sim.n_steps
    n_workers = sim.parallel_workers

    rngs = create_rng_hierarchy(sim.seed, n_workers)
    if env is None:
        env = CategoricalEnvironment.from_config(config)
    L = env.n_locations
    n_sb = env.n_sb_categories

    if persons is None:
        persons = initialize_population(
            pop_cfg.n_agents, pop_cfg, L, n_sb, rngs['population'])
    elif persons.dtype != PERSON_DTYPE:
        raise ValueError(f"persons must have PERSON_DTYPE, got {persons.dtype}")

    if recorder is None:
        interval = config.output.record_interval
        recorder = MixingRecorder(enabled=interval > 0, interval=max(interval, 1))

    seeker_sex = Sex.MALE if env.index.partner_sex == Sex.FEMALE else Sex.FEMALE

    result = MixingSimResult(n_steps=n_steps, n_locations=L, seed=sim.seed)
    result.years = np.arange(sim.start_year, sim.start_year + n_steps, dtype=np.int32)
    result.step_seekers = np.zeros(n_steps, dtype=np.int64)
    result.step_pairs = np.zeros(n_steps, dtype=np.int64)
    result.step_misses = np.zeros(n_steps, dtype=np.int64)
    result.step_degenerate = np.zeros(n_steps, dtype=np.int64)
    result.step_deaths = np.zeros(n_steps, dtype=np.int64)
    result.step_births = np.zeros(n_steps, dtype=np.int64)
    result.step_eligible = np.zeros((n_steps, L), dtype=np.int64)
    result.last_pairs = np.zeros((0, 2), dtype=np.int64)

    for step in range(n_steps):
        year = int(result.years[step])

        with perf.track('build'):
            env.update(persons)
        result.step_eligible[step] = env.index.location_counts()

        seekers = seeker_indices(persons, env.get_min_age(), env.get_max_age(),
                                 seeker_sex=seeker_sex)
        with perf.track('query'):
            pairs, n_misses, n_degenerate = query_phase(
                env, persons, seekers, rngs,
                n_workers=n_workers,
                assortative_sb=mix_cfg.assortative_sb,
                record=mix_cfg.record_frequencies,
            )
        result.step_seekers[step] = seekers.size
        result.step_pairs[step] = pairs.shape[0]
        result.step_misses[step] = n_misses
        result.step_degenerate[step] = n_degenerate
        result.last_pairs = pairs

        with perf.track('record'):
            recorder.capture(step, year, env)

        with perf.track('demography'):
            deaths, births = annual_aging(persons, pop_cfg, L, n_sb, rngs['demography'])
        result.step_deaths[step] = deaths
        result.step_births[step] = births

        if progress_callback is not None:
            progress_callback(step, n_steps)

    if env.table.is_built:
        result.final_probabilities = env.table.probabilities()
    result.final_report = env.report()

    perf.stop()
    if perf.enabled:
        result.perf_summary = perf.summary()
    return result
