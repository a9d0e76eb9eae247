"""Auto-assignment heuristics for regularization mappings.

Pure functions over canonical hierarchy values; nothing here touches storage.

Rules:
- Placeholder fuel types (id -1) and "not specified" style entries are never
  valid choices.
- Exactly one valid value: assign it.
- Several valid values: take the first code of the ordered priority list
  that is present (vehicle types only).
- Otherwise: leave unassigned for review.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from rapidfuzz import process
from rapidfuzz.distance import Levenshtein

from saaqengine.config.constants import (
    HYPHENATION_MATCH_SCORE,
    SIMILARITY_THRESHOLD,
    UNSPECIFIED_MARKERS,
)
from saaqengine.regularization.models import (
    CanonicalModel,
    FuelTypeInfo,
    MappingRequest,
    UncuratedPair,
    VehicleTypeInfo,
)


def is_unspecified(description: str | None) -> bool:
    if not description:
        return False
    lowered = description.lower()
    return any(marker in lowered for marker in UNSPECIFIED_MARKERS)


def valid_fuel_types(fuel_types: Iterable[FuelTypeInfo]) -> list[FuelTypeInfo]:
    return [f for f in fuel_types if not f.is_placeholder and not is_unspecified(f.description)]


def valid_vehicle_types(vehicle_types: Iterable[VehicleTypeInfo]) -> list[VehicleTypeInfo]:
    return [v for v in vehicle_types if v.id is not None and not is_unspecified(v.description)]


def choose_fuel_type(fuel_types: Iterable[FuelTypeInfo]) -> FuelTypeInfo | None:
    """The single valid fuel type, or None when zero or several remain."""
    valid = valid_fuel_types(fuel_types)
    return valid[0] if len(valid) == 1 else None


def choose_vehicle_type(
    vehicle_types: Iterable[VehicleTypeInfo],
    priority_codes: Sequence[str] = (),
) -> VehicleTypeInfo | None:
    """The single valid vehicle type, else the first priority code present, else None."""
    valid = valid_vehicle_types(vehicle_types)
    if len(valid) == 1:
        return valid[0]
    if len(valid) > 1:
        by_code = {v.code: v for v in valid}
        for code in priority_codes:
            if code in by_code:
                return by_code[code]
    return None


def plan_auto_regularization(
    pair: UncuratedPair,
    canonical: CanonicalModel,
    uncurated_model_year_ids: Iterable[int],
    priority_codes: Sequence[str] = (),
) -> list[MappingRequest]:
    """Mappings to create for an uncurated pair matched to a canonical model.

    One triplet mapping per uncurated model year whose canonical fuel type is
    unambiguous, plus one wildcard pair mapping carrying the vehicle type (or
    none, pending review).
    """
    vehicle_type = choose_vehicle_type(canonical.vehicle_types, priority_codes)
    requests = []
    for model_year_id in sorted(set(uncurated_model_year_ids)):
        fuel = choose_fuel_type(canonical.fuel_types_for(model_year_id))
        if fuel is None:
            continue
        requests.append(
            MappingRequest(
                uncurated_make_id=pair.make_id,
                uncurated_model_id=pair.model_id,
                canonical_make_id=canonical.make_id,
                canonical_model_id=canonical.model_id,
                model_year_id=model_year_id,
                fuel_type_id=fuel.id,
                vehicle_type_id=vehicle_type.id if vehicle_type else None,
            )
        )
    requests.append(
        MappingRequest(
            uncurated_make_id=pair.make_id,
            uncurated_model_id=pair.model_id,
            canonical_make_id=canonical.make_id,
            canonical_model_id=canonical.model_id,
            vehicle_type_id=vehicle_type.id if vehicle_type else None,
        )
    )
    return requests


# ============================================================================
# STRING SIMILARITY
# ============================================================================


def hyphenation_match(a: str, b: str) -> bool:
    """True when two names differ only by hyphens ("CRV" / "CR-V")."""
    ua, ub = a.upper(), b.upper()
    return ua != ub and ua.replace("-", "") == ub.replace("-", "")


def string_similarity(a: str, b: str) -> float:
    """1 - edit distance / longer length, case-insensitive, with a hyphenation boost."""
    if hyphenation_match(a, b):
        return HYPHENATION_MATCH_SCORE
    return float(Levenshtein.normalized_similarity(a, b, processor=str.upper))


@dataclass(frozen=True)
class Candidate:
    model: CanonicalModel
    score: float


def rank_candidates(
    make_name: str,
    model_name: str,
    candidates: Iterable[CanonicalModel],
    threshold: float = SIMILARITY_THRESHOLD,
    limit: int = 10,
) -> list[Candidate]:
    """Canonical models most similar to an uncurated spelling.

    The score averages make and model similarity, with the model weighted
    double; candidates below threshold are dropped.
    """
    pool = list(candidates)
    matches = process.extract(
        model_name,
        [model.model_name for model in pool],
        scorer=Levenshtein.normalized_similarity,
        processor=str.upper,
        limit=None,
    )
    scored = []
    for name, model_score, index in matches:
        model = pool[index]
        if hyphenation_match(model_name, name):
            model_score = HYPHENATION_MATCH_SCORE
        score = (string_similarity(make_name, model.make_name) + 2 * model_score) / 3
        if score >= threshold:
            scored.append(Candidate(model, score))
    scored.sort(key=lambda c: (-c.score, c.model.make_name, c.model.model_name))
    return scored[:limit]
