"""Core data types for CatMix.

This module is the SINGLE SOURCE OF TRUTH for:
  - PERSON_DTYPE: NumPy structured array dtype for the population store
  - Sex, SocioBehaviour, GemsState enumerations
  - Default dimensions of the categorical partner index

An Eligible Agent Reference is the integer row index of a person in a
PERSON_DTYPE array.  The index never holds anything else: rows are owned
by the population store and are recycled when a person dies.
"""

from enum import IntEnum

import numpy as np


# ═══════════════════════════════════════════════════════════════════════
# ENUMERATIONS
# ═══════════════════════════════════════════════════════════════════════

class Sex(IntEnum):
    """Biological sex as stored in the ``sex`` field."""
    FEMALE = 0
    MALE   = 1


class SocioBehaviour(IntEnum):
    """Socio-behavioural risk category.

    Only the first ``n_sb_categories`` values are used by an index; with
    the default of one category every person is LOW.
    """
    LOW  = 0   # Low-risk sexual behaviour
    HIGH = 1   # High-risk sexual behaviour (more casual partners)


class GemsState(IntEnum):
    """Infection stage of a person (read-only for this package)."""
    HEALTHY = 0
    ACUTE   = 1   # Recently infected, high transmissibility
    CHRONIC = 2
    TREATED = 3   # On ART, viral load suppressed
    FAILING = 4   # Treatment failure


SEX_NAMES = {
    'female': Sex.FEMALE,
    'male': Sex.MALE,
}


# ═══════════════════════════════════════════════════════════════════════
# INDEX DEFAULTS
# ═══════════════════════════════════════════════════════════════════════

DEFAULT_MIN_AGE = 15        # Minimal age for sexual interaction (years)
DEFAULT_MAX_AGE = 40        # Maximal age for sexual interaction (years)
DEFAULT_N_AGE_CATEGORIES = 1
DEFAULT_N_SB_CATEGORIES = 1
DEFAULT_N_LOCATIONS = 4


# ═══════════════════════════════════════════════════════════════════════
# PERSON_DTYPE — canonical structured array for the population store
# ═══════════════════════════════════════════════════════════════════════

PERSON_DTYPE = np.dtype([
    ('age',              np.float32),  # years (fractional)
    ('sex',              np.int8),     # Sex enum (0=female, 1=male)
    ('location',         np.int16),    # categorical location in [0, n_locations)
    ('social_behaviour', np.int8),     # SocioBehaviour enum
    ('biomedical',       np.int8),     # biomedical risk factor (0=low, 1=high)
    ('state',            np.int8),     # GemsState enum
    ('alive',            np.bool_),    # row holds a living person
])


def allocate_persons(max_n: int) -> np.ndarray:
    """Allocate a zeroed population store.

    Args:
        max_n: Number of rows.

    Returns:
        Zeroed structured array of shape (max_n,) with PERSON_DTYPE.
        All rows start dead (``alive == False``).
    """
    return np.zeros(max_n, dtype=PERSON_DTYPE)
