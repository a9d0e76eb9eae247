"""Make/model regularization across curated and uncurated years.

Import RegularizationEngine from saaqengine.regularization.engine; this
package init stays light so query modules can import value types without
pulling in storage.
"""

from saaqengine.regularization.models import (
    CanonicalHierarchy,
    Expansion,
    MappingRecord,
    MappingRequest,
    UncuratedPair,
)
from saaqengine.regularization.years import YearConfiguration

__all__ = [
    "CanonicalHierarchy",
    "Expansion",
    "MappingRecord",
    "MappingRequest",
    "UncuratedPair",
    "YearConfiguration",
]
