"""SQL reads over the mapping table and uncurated-year facts.

Every function takes the caller's own StoreHandle; nothing here opens a
connection.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

from saaqengine.regularization.models import (
    MakeRegularizationDisplay,
    MappingRecord,
    RegularizationDisplay,
    UncuratedPair,
)
from saaqengine.store.sql import bind_in

if TYPE_CHECKING:
    from saaqengine.regularization.years import YearConfiguration
    from saaqengine.store.database import StoreHandle

Pair = tuple[int, int]

# Records a pair contributes: the wildcard row covers every model year, else sum triplets.
_PAIR_COUNT_SQL = """
    SELECT uncurated_make_id, uncurated_model_id, canonical_make_id, canonical_model_id,
           COALESCE(MAX(CASE WHEN model_year_id IS NULL THEN record_count END),
                    SUM(record_count)) AS pair_count
    FROM make_model_regularization
    GROUP BY uncurated_make_id, uncurated_model_id
"""


def total_uncurated_records(handle: StoreHandle, years: YearConfiguration) -> int:
    if not years.uncurated:
        return 0
    params: dict[str, Any] = {}
    in_years = bind_in("uy", years.uncurated, params)
    return int(
        handle.scalar(
            f"""
            SELECT COUNT(*) FROM vehicles v
            JOIN year_enum y ON v.year_id = y.id
            WHERE y.year IN ({in_years})
            """,
            params,
        )
        or 0
    )


def record_count(
    handle: StoreHandle,
    years: YearConfiguration,
    make_id: int,
    model_id: int,
    model_year_id: int | None = None,
) -> int:
    """Uncurated-year records of a pair (or triplet). Zero with no uncurated years."""
    if not years.uncurated:
        return 0
    params: dict[str, Any] = {"make_id": make_id, "model_id": model_id}
    in_years = bind_in("uy", years.uncurated, params)
    sql = f"""
        SELECT COUNT(*) FROM vehicles v
        JOIN year_enum y ON v.year_id = y.id
        WHERE v.make_id = :make_id AND v.model_id = :model_id
          AND y.year IN ({in_years})
    """
    if model_year_id is not None:
        sql += " AND v.model_year_id = :model_year_id"
        params["model_year_id"] = model_year_id
    return int(handle.scalar(sql, params) or 0)


def uncurated_year_range(
    handle: StoreHandle,
    years: YearConfiguration,
    make_id: int,
    model_id: int,
) -> tuple[int | None, int | None]:
    if not years.uncurated:
        return (None, None)
    params: dict[str, Any] = {"make_id": make_id, "model_id": model_id}
    in_years = bind_in("uy", years.uncurated, params)
    row = handle.execute(
        f"""
        SELECT MIN(y.year), MAX(y.year) FROM vehicles v
        JOIN year_enum y ON v.year_id = y.id
        WHERE v.make_id = :make_id AND v.model_id = :model_id AND y.year IN ({in_years})
        """,
        params,
    ).fetchone()
    if row is None:
        return (None, None)
    return (row[0], row[1])


def load_mappings(
    handle: StoreHandle,
    total_uncurated: int,
    where: str = "",
    params: dict[str, Any] | None = None,
) -> list[MappingRecord]:
    rows = handle.all(
        f"""
        SELECT r.id,
               r.uncurated_make_id, um.name, r.uncurated_model_id, umd.name,
               r.canonical_make_id, cm.name, r.canonical_model_id, cmd.name,
               r.model_year_id, my.year,
               r.fuel_type_id, ft.code, r.vehicle_type_id, vt.code,
               r.record_count, r.year_range_start, r.year_range_end, r.created_date
        FROM make_model_regularization r
        JOIN make_enum um ON r.uncurated_make_id = um.id
        JOIN model_enum umd ON r.uncurated_model_id = umd.id
        JOIN make_enum cm ON r.canonical_make_id = cm.id
        JOIN model_enum cmd ON r.canonical_model_id = cmd.id
        LEFT JOIN model_year_enum my ON r.model_year_id = my.id
        LEFT JOIN fuel_type_enum ft ON r.fuel_type_id = ft.id
        LEFT JOIN vehicle_type_enum vt ON r.vehicle_type_id = vt.id
        {where}
        ORDER BY um.name, umd.name, my.year
        """,
        params,
    )
    return [
        MappingRecord(
            id=r[0],
            uncurated_make_id=r[1],
            uncurated_make=r[2],
            uncurated_model_id=r[3],
            uncurated_model=r[4],
            canonical_make_id=r[5],
            canonical_make=r[6],
            canonical_model_id=r[7],
            canonical_model=r[8],
            model_year_id=r[9],
            model_year=r[10],
            fuel_type_id=r[11],
            fuel_type=r[12],
            vehicle_type_id=r[13],
            vehicle_type=r[14],
            record_count=r[15] or 0,
            year_range_start=r[16],
            year_range_end=r[17],
            created_date=r[18],
            percentage_of_uncurated=(r[15] or 0) * 100.0 / total_uncurated if total_uncurated else 0.0,
        )
        for r in rows
    ]


def pair_display_info(handle: StoreHandle) -> dict[Pair, RegularizationDisplay]:
    """Badge data per mapped uncurated pair."""
    rows = handle.all(
        f"""
        SELECT p.uncurated_make_id, p.uncurated_model_id, cm.name, cmd.name, p.pair_count
        FROM ({_PAIR_COUNT_SQL}) p
        JOIN make_enum cm ON p.canonical_make_id = cm.id
        JOIN model_enum cmd ON p.canonical_model_id = cmd.id
        """
    )
    return {(r[0], r[1]): RegularizationDisplay(r[2], r[3], int(r[4] or 0)) for r in rows}


def make_display_info(handle: StoreHandle) -> dict[int, MakeRegularizationDisplay]:
    """Badge data per mapped uncurated make, summed over its pairs."""
    rows = handle.all(
        f"""
        SELECT p.uncurated_make_id, cm.name, SUM(p.pair_count)
        FROM ({_PAIR_COUNT_SQL}) p
        JOIN make_enum cm ON p.canonical_make_id = cm.id
        GROUP BY p.uncurated_make_id
        """
    )
    return {r[0]: MakeRegularizationDisplay(r[1], int(r[2] or 0)) for r in rows}


def mapped_pairs(handle: StoreHandle) -> set[Pair]:
    rows = handle.all(
        "SELECT DISTINCT uncurated_make_id, uncurated_model_id FROM make_model_regularization"
    )
    return {(r[0], r[1]) for r in rows}


def curated_pairs(handle: StoreHandle, years: YearConfiguration) -> set[Pair]:
    if not years.curated:
        return set()
    params: dict[str, Any] = {}
    in_years = bind_in("cy", years.curated, params)
    rows = handle.all(
        f"""
        SELECT DISTINCT v.make_id, v.model_id FROM vehicles v
        JOIN year_enum y ON v.year_id = y.id
        WHERE y.year IN ({in_years}) AND v.make_id IS NOT NULL AND v.model_id IS NOT NULL
        """,
        params,
    )
    return {(r[0], r[1]) for r in rows}


def curated_makes(handle: StoreHandle, years: YearConfiguration) -> set[int]:
    if not years.curated:
        return set()
    params: dict[str, Any] = {}
    in_years = bind_in("cy", years.curated, params)
    rows = handle.all(
        f"""
        SELECT DISTINCT v.make_id FROM vehicles v
        JOIN year_enum y ON v.year_id = y.id
        WHERE y.year IN ({in_years}) AND v.make_id IS NOT NULL
        """,
        params,
    )
    return {r[0] for r in rows}


def uncurated_pairs(
    handle: StoreHandle,
    years: YearConfiguration,
    include_exact_matches: bool = False,
) -> list[UncuratedPair]:
    """Pairs seen in uncurated years, biggest first.

    Without include_exact_matches, pairs that also occur in curated years
    are left out (their spelling is already canonical).
    """
    if not years.uncurated:
        return []
    total = total_uncurated_records(handle, years)
    params: dict[str, Any] = {}
    in_years = bind_in("uy", years.uncurated, params)
    rows = handle.all(
        f"""
        SELECT v.make_id, mk.name, v.model_id, md.name, COUNT(*), MIN(y.year), MAX(y.year)
        FROM vehicles v
        JOIN year_enum y ON v.year_id = y.id
        JOIN make_enum mk ON v.make_id = mk.id
        JOIN model_enum md ON v.model_id = md.id
        WHERE y.year IN ({in_years})
        GROUP BY v.make_id, v.model_id
        ORDER BY COUNT(*) DESC, mk.name, md.name
        """,
        params,
    )
    in_curated = curated_pairs(handle, years)
    mapped = mapped_pairs(handle)

    pairs = []
    for r in rows:
        key = (r[0], r[2])
        exists = key in in_curated
        if exists and not include_exact_matches:
            continue
        pairs.append(
            UncuratedPair(
                make_id=r[0],
                make_name=r[1],
                model_id=r[2],
                model_name=r[3],
                record_count=int(r[4]),
                percentage_of_uncurated=int(r[4]) * 100.0 / total if total else 0.0,
                earliest_year=r[5],
                latest_year=r[6],
                has_mapping=key in mapped,
                exists_in_curated=exists,
            )
        )
    return pairs


def uncurated_makes(handle: StoreHandle, years: YearConfiguration) -> dict[int, int]:
    """Makes that only occur in uncurated years, with their record counts."""
    if not years.uncurated:
        return {}
    params: dict[str, Any] = {}
    in_years = bind_in("uy", years.uncurated, params)
    rows = handle.all(
        f"""
        SELECT v.make_id, COUNT(*) FROM vehicles v
        JOIN year_enum y ON v.year_id = y.id
        WHERE y.year IN ({in_years}) AND v.make_id IS NOT NULL
        GROUP BY v.make_id
        """,
        params,
    )
    in_curated = curated_makes(handle, years)
    return {r[0]: int(r[1]) for r in rows if r[0] not in in_curated}


def uncurated_model_years(handle: StoreHandle, years: YearConfiguration, make_id: int, model_id: int) -> list[int]:
    """Model-year ids a pair carries in uncurated years."""
    if not years.uncurated:
        return []
    params: dict[str, Any] = {"make_id": make_id, "model_id": model_id}
    in_years = bind_in("uy", years.uncurated, params)
    rows = handle.all(
        f"""
        SELECT DISTINCT v.model_year_id FROM vehicles v
        JOIN year_enum y ON v.year_id = y.id
        WHERE v.make_id = :make_id AND v.model_id = :model_id
          AND y.year IN ({in_years}) AND v.model_year_id IS NOT NULL
        """,
        params,
    )
    return sorted(r[0] for r in rows)


def pairs_for_vehicle_type(handle: StoreHandle, vehicle_type_id: int) -> set[Pair]:
    """Uncurated pairs whose mappings assign a vehicle type."""
    rows = handle.all(
        """
        SELECT DISTINCT uncurated_make_id, uncurated_model_id FROM make_model_regularization
        WHERE vehicle_type_id = :vt
        """,
        {"vt": vehicle_type_id},
    )
    return {(r[0], r[1]) for r in rows}


def mapped_vehicle_types(handle: StoreHandle) -> list[tuple[int, str, str | None]]:
    """Vehicle types referenced by at least one mapping."""
    rows = handle.all(
        """
        SELECT DISTINCT vt.id, vt.code, vt.description FROM make_model_regularization r
        JOIN vehicle_type_enum vt ON r.vehicle_type_id = vt.id
        ORDER BY vt.code
        """
    )
    return [(r[0], r[1], r[2]) for r in rows]


def mapping_rows_touching(
    handle: StoreHandle,
    *,
    uncurated_makes: Iterable[int] = (),
    uncurated_models: Iterable[int] = (),
    canonical_makes: Iterable[int] = (),
    canonical_models: Iterable[int] = (),
) -> list[tuple[int, int, int, int]]:
    """(uncurated_make, uncurated_model, canonical_make, canonical_model) rows matching any set."""
    params: dict[str, Any] = {}
    clauses = []
    for column, prefix, values in (
        ("uncurated_make_id", "um", set(uncurated_makes)),
        ("uncurated_model_id", "ud", set(uncurated_models)),
        ("canonical_make_id", "cm", set(canonical_makes)),
        ("canonical_model_id", "cd", set(canonical_models)),
    ):
        if values:
            clauses.append(f"{column} IN ({bind_in(prefix, values, params)})")
    if not clauses:
        return []
    rows = handle.all(
        f"""
        SELECT DISTINCT uncurated_make_id, uncurated_model_id, canonical_make_id, canonical_model_id
        FROM make_model_regularization
        WHERE {" OR ".join(clauses)}
        """,
        params,
    )
    return [(r[0], r[1], r[2], r[3]) for r in rows]


def makes_of_models(handle: StoreHandle, model_ids: Iterable[int]) -> set[int]:
    ids = set(model_ids)
    if not ids:
        return set()
    params: dict[str, Any] = {}
    rows = handle.all(
        f"SELECT DISTINCT make_id FROM model_enum WHERE id IN ({bind_in('md', ids, params)})",
        params,
    )
    return {r[0] for r in rows}
