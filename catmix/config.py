"""Configuration system for CatMix.

Hierarchical YAML configuration with deep-merge support:
  base.yaml → scenario override → sweep overrides

Sections map 1:1 to YAML top-level keys; unknown keys are ignored so
older config files keep loading.
"""

from __future__ import annotations

import dataclasses
import os
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import numpy as np
import yaml

from catmix.mixing import (
    REDISTRIBUTION_RULES,
    build_policy_matrix,
    load_policy,
    validate_policy,
)
from catmix.types import (
    DEFAULT_MAX_AGE,
    DEFAULT_MIN_AGE,
    DEFAULT_N_AGE_CATEGORIES,
    DEFAULT_N_LOCATIONS,
    DEFAULT_N_SB_CATEGORIES,
    SEX_NAMES,
)


# ═══════════════════════════════════════════════════════════════════════
# CONFIGURATION DATACLASSES
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class SimulationSection:
    """Top-level simulation timing and control."""
    seed: int = 42
    n_steps: int = 10            # One step = one year
    start_year: int = 1960
    parallel_workers: int = 1    # Threads in the query phase


@dataclass
class IndexSection:
    """Dimensions and eligibility window of the categorical index."""
    min_age: float = DEFAULT_MIN_AGE
    max_age: float = DEFAULT_MAX_AGE
    n_age_categories: int = DEFAULT_N_AGE_CATEGORIES
    n_locations: int = DEFAULT_N_LOCATIONS
    n_sb_categories: int = DEFAULT_N_SB_CATEGORIES
    partner_sex: str = 'female'  # Sex of the indexed partners


@dataclass
class MixingSection:
    """Location mixing policy.

    policy: inline L×L weights; takes precedence over policy_file.
    policy_file: .npy or text matrix; used when policy is None.
    self_mixing: diagonal weight of the generated policy when neither
                 policy nor policy_file is given.
    """
    policy: Optional[List[List[float]]] = None
    policy_file: Optional[str] = None
    self_mixing: float = 0.8
    redistribution: str = 'renormalize'
    assortative_sb: bool = True      # Seekers ask for their own sb category
    record_frequencies: bool = True


@dataclass
class PopulationSection:
    """Synthetic population store and annual demography."""
    n_agents: int = 2000
    max_initial_age: float = 60.0
    p_high_sb: float = 0.2               # Fraction with high-risk socio-behaviour
    location_weights: Optional[List[float]] = None  # None = uniform
    annual_mortality: float = 0.015
    max_age_death: float = 80.0


@dataclass
class OutputSection:
    """Output control."""
    directory: str = "results/"
    record_interval: int = 1             # Steps between recorder captures (0 = off)


@dataclass
class SimulationConfig:
    """Complete simulation configuration.

    Load from YAML via `load_config()`.
    """
    simulation: SimulationSection = field(default_factory=SimulationSection)
    index: IndexSection = field(default_factory=IndexSection)
    mixing: MixingSection = field(default_factory=MixingSection)
    population: PopulationSection = field(default_factory=PopulationSection)
    output: OutputSection = field(default_factory=OutputSection)


_SECTION_MAP = {
    'simulation': SimulationSection,
    'index': IndexSection,
    'mixing': MixingSection,
    'population': PopulationSection,
    'output': OutputSection,
}


# ═══════════════════════════════════════════════════════════════════════
# YAML LOADING & MERGING
# ═══════════════════════════════════════════════════════════════════════

def deep_merge(base: Dict, override: Dict) -> Dict:
    """Recursively merge override into base. Modifies base in place.

    - Dict values are merged recursively
    - Non-dict values are replaced
    - Keys in override but not base are added

    Args:
        base: Base dictionary (modified in place).
        override: Override dictionary.

    Returns:
        The merged base dictionary.
    """
    for key, value in override.items():
        if (
            key in base
            and isinstance(base[key], dict)
            and isinstance(value, dict)
        ):
            deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def _dict_to_section(section_cls, data: Dict) -> Any:
    """Convert a dict to a dataclass, ignoring unknown keys."""
    valid_fields = {f.name for f in dataclasses.fields(section_cls)}
    filtered = {k: v for k, v in data.items() if k in valid_fields}
    return section_cls(**filtered)


def _yaml_to_config(data: Dict) -> SimulationConfig:
    """Convert a merged YAML dict to a SimulationConfig."""
    sections = {}
    for key, cls in _SECTION_MAP.items():
        if key in data and isinstance(data[key], dict):
            sections[key] = _dict_to_section(cls, data[key])
        else:
            sections[key] = cls()
    return SimulationConfig(**sections)


def resolve_policy(config: SimulationConfig) -> np.ndarray:
    """The L×L policy matrix the configuration describes."""
    mix = config.mixing
    n_loc = config.index.n_locations
    if mix.policy is not None:
        return validate_policy(mix.policy, n_loc)
    if mix.policy_file is not None:
        return validate_policy(load_policy(mix.policy_file), n_loc)
    return build_policy_matrix(n_loc, mix.self_mixing)


def validate_config(config: SimulationConfig) -> None:
    """Validate configuration constraints. Raises ValueError on failure."""
    sim = config.simulation
    if sim.seed < 0:
        raise ValueError("simulation.seed must be non-negative")
    if sim.n_steps < 0:
        raise ValueError(f"simulation.n_steps must be >= 0, got {sim.n_steps}")
    if sim.parallel_workers < 1:
        raise ValueError(
            f"simulation.parallel_workers must be >= 1, got {sim.parallel_workers}"
        )

    idx = config.index
    for name in ('n_age_categories', 'n_locations', 'n_sb_categories'):
        value = getattr(idx, name)
        if not isinstance(value, int) or value < 1:
            raise ValueError(f"index.{name} must be a positive integer, got {value!r}")
    if idx.min_age < 0:
        raise ValueError(f"index.min_age must be >= 0, got {idx.min_age}")
    if idx.min_age >= idx.max_age:
        raise ValueError(
            f"index.min_age ({idx.min_age}) must be < index.max_age ({idx.max_age})"
        )
    if idx.partner_sex not in SEX_NAMES:
        raise ValueError(
            f"index.partner_sex must be one of {sorted(SEX_NAMES)}, "
            f"got '{idx.partner_sex}'"
        )

    mix = config.mixing
    if mix.redistribution not in REDISTRIBUTION_RULES:
        raise ValueError(
            f"mixing.redistribution must be one of {sorted(REDISTRIBUTION_RULES)}, "
            f"got '{mix.redistribution}'"
        )
    if not 0.0 <= mix.self_mixing <= 1.0:
        raise ValueError(f"mixing.self_mixing must be in [0, 1], got {mix.self_mixing}")
    if mix.policy is not None:
        validate_policy(mix.policy, idx.n_locations)

    pop = config.population
    if pop.n_agents < 0:
        raise ValueError(f"population.n_agents must be >= 0, got {pop.n_agents}")
    if pop.max_initial_age <= 0:
        raise ValueError("population.max_initial_age must be positive")
    for name in ('p_high_sb', 'annual_mortality'):
        value = getattr(pop, name)
        if not 0.0 <= value <= 1.0:
            raise ValueError(f"population.{name} must be in [0, 1], got {value}")
    if pop.max_age_death <= idx.min_age:
        raise ValueError(
            f"population.max_age_death ({pop.max_age_death}) must exceed "
            f"index.min_age ({idx.min_age})"
        )
    if pop.location_weights is not None:
        w = np.asarray(pop.location_weights, dtype=np.float64)
        if w.shape != (idx.n_locations,):
            raise ValueError(
                f"population.location_weights must have {idx.n_locations} "
                f"elements, got {w.size}"
            )
        if np.any(w < 0) or w.sum() <= 0:
            raise ValueError(
                "population.location_weights must be non-negative with a positive sum"
            )

    out = config.output
    if out.record_interval < 0:
        raise ValueError(
            f"output.record_interval must be >= 0, got {out.record_interval}"
        )
    if not os.path.isdir(out.directory):
        warnings.warn(
            f"output.directory '{out.directory}' does not exist; "
            f"it will be created when results are saved.",
            UserWarning,
            stacklevel=2,
        )


def load_config(
    base_path: Union[str, Path],
    scenario_path: Optional[Union[str, Path]] = None,
    sweep_overrides: Optional[Dict] = None,
) -> SimulationConfig:
    """Load and merge hierarchical YAML configuration.

    Merge order: base → scenario → sweep overrides.
    Each layer overrides only the fields it specifies.

    Args:
        base_path: Path to base configuration YAML.
        scenario_path: Optional scenario override YAML.
        sweep_overrides: Optional dict of parameter sweep overrides.

    Returns:
        Validated SimulationConfig.

    Raises:
        FileNotFoundError: If base_path doesn't exist.
        ValueError: If validation fails.
    """
    base_path = Path(base_path)
    if not base_path.exists():
        raise FileNotFoundError(f"Config file not found: {base_path}")

    with open(base_path) as f:
        config_dict = yaml.safe_load(f) or {}

    if scenario_path is not None:
        scenario_path = Path(scenario_path)
        if scenario_path.exists():
            with open(scenario_path) as f:
                scenario = yaml.safe_load(f) or {}
            deep_merge(config_dict, scenario)

    if sweep_overrides is not None:
        deep_merge(config_dict, sweep_overrides)

    config = _yaml_to_config(config_dict)
    validate_config(config)
    return config


def default_config() -> SimulationConfig:
    """Return a SimulationConfig with all default values."""
    config = SimulationConfig()
    with warnings.catch_warnings():
        warnings.simplefilter('ignore', UserWarning)
        validate_config(config)
    return config
