"""Exception taxonomy for CatMix.

Programming errors (fail fast, never recovered):
  - CompoundIndexError: a key component is outside its declared range
  - IndexNotBuilt: a query ran before the step's rebuild

Expected runtime conditions (always recoverable by the caller):
  - EmptyBucket: the requested category holds no eligible agent
  - NoEligiblePartner: the partner search came back empty-handed
  - DegenerateMixingRow: the mixing row has no viable destination, either
    because no location has eligible agents or because the rule left
    the row without weight

DegenerateMixingRow subclasses NoEligiblePartner so that a caller who
only wants to skip the agent can catch the latter, while one who wants to
detect population collapse can catch the former first.
"""


class CatmixError(Exception):
    """Base class for all CatMix errors."""


class CompoundIndexError(CatmixError, IndexError):
    """Raised when (location, age, sb) falls outside the index dimensions."""


class IndexNotBuilt(CatmixError, RuntimeError):
    """Raised when the index is queried before rebuild() ran."""


class EmptyBucket(CatmixError, LookupError):
    """Raised when sampling from a bucket with zero entries."""

    def __init__(self, location: int, age: int, sb: int):
        self.location = location
        self.age = age
        self.sb = sb
        super().__init__(
            f"No eligible agent at location={location}, age={age}, sb={sb}"
        )


class NoEligiblePartner(CatmixError, LookupError):
    """Raised by the partner sampler when no partner can be returned."""


class DegenerateMixingRow(NoEligiblePartner):
    """Raised when a mixing row has no viable destination location."""

    def __init__(self, location: int, reason: str = "row has no viable destination"):
        self.location = location
        self.reason = reason
        super().__init__(
            f"Mixing row for location {location} is degenerate: {reason}"
        )
