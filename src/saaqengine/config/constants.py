"""Configuration constants.

Values here describe the dataset and the engine's fixed behavior. They are
NOT user-configurable. For configurable values, see models.py.
"""

# =============================================================================
# Dataset eras
# =============================================================================

DEFAULT_CURATED_YEARS = tuple(range(2011, 2023))
"""Years whose make/model spellings are validated by the publisher."""

DEFAULT_UNCURATED_YEARS = (2023, 2024)
"""Raw export years that may need regularization."""

FUEL_TYPE_SCHEMA_YEAR = 2017
"""First data year whose records carry a fuel type."""

# =============================================================================
# Dimension sentinels
# =============================================================================

PLACEHOLDER_FUEL_TYPE_ID = -1
"""Fuel type id used in the canonical hierarchy when a model year has no fuel type."""

PLACEHOLDER_FUEL_TYPE_LABEL = "Not Specified"
"""Description paired with PLACEHOLDER_FUEL_TYPE_ID."""

UNKNOWN_CLASSIFICATION = "UNK"
"""Vehicle class code used when the raw record carries none."""

UNSPECIFIED_MARKERS = ("not specified", "not assigned", "non spécifié")
"""Description fragments that mark a vehicle/fuel type as a non-answer."""

# =============================================================================
# Regularization heuristics
# =============================================================================

SIMILARITY_THRESHOLD = 0.4
"""Minimum string similarity for a canonical candidate to be suggested."""

HYPHENATION_MATCH_SCORE = 0.99
"""Score given to names that differ only by hyphens (CRV vs CR-V)."""

# =============================================================================
# Road Wear Index
# =============================================================================

RWI_DEFAULT_COEFFICIENT = 0.125
"""Coefficient used when no configuration entry matches."""

RWI_DISTRIBUTION_TOLERANCE = 0.01
"""Allowed deviation from 100% when validating an axle distribution."""

RWI_MIN_AXLES = 2
RWI_MAX_AXLES = 6
"""Axle counts with explicit distributions. 6 stands for 6 or more."""

RWI_WILDCARD_TYPE = "*"
"""Vehicle-type fallback code applied to any unlisted type."""
