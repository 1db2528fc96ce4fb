"""CatMix: categorical partner index for individual-based epidemic models.

Partitions a changing population by location, age band and
socio-behavioural category, and samples mating partners in two stages:
  - partner location from a per-location cumulative mixing distribution
  - partner uniformly within the (location, age, sb) bucket

Also provides a small bulk-synchronous driver (build phase, threaded
query phase, demography) and mixing diagnostics.
"""

__version__ = "0.1.0"

from catmix.environment import CategoricalEnvironment  # noqa: F401
from catmix.errors import (  # noqa: F401
    CompoundIndexError,
    DegenerateMixingRow,
    EmptyBucket,
    IndexNotBuilt,
    NoEligiblePartner,
)
from catmix.index import AgentBucket, CategoricalIndex  # noqa: F401
from catmix.mixing import MixingFrequencies, MixingTable  # noqa: F401
from catmix.sampler import PartnerSampler, find_partner  # noqa: F401
