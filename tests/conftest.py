"""Root conftest.py for test configuration.

Ensures local src/ directory takes priority over any installed packages,
and provides the database and engine fixtures shared by every test package.
"""

import sys
import tempfile
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any

import pytest

# Insert local src directory at the beginning of sys.path
# This ensures that the local saaqengine package is used, not any installed one
_src_dir = Path(__file__).parent.parent / "src"
if str(_src_dir) not in sys.path:
    sys.path.insert(0, str(_src_dir))

# Force reimport of saaqengine modules if already imported
for module_name in list(sys.modules.keys()):
    if module_name.startswith("saaqengine"):
        del sys.modules[module_name]

from saaqengine.config.models import EngineConfig, QueryConfig, YearsConfig  # noqa: E402
from saaqengine.dimensions.registry import Dimension  # noqa: E402
from saaqengine.dimensions.schema import DimensionSchema  # noqa: E402
from saaqengine.engine import Engine  # noqa: E402
from saaqengine.models import EntityScope  # noqa: E402
from saaqengine.regularization.models import MappingRequest  # noqa: E402
from saaqengine.store.database import Database  # noqa: E402

CURATED_YEAR = 2020
UNCURATED_YEAR = 2023


def vehicle_row(sequence: str, make: str | None = "HONDA", model: str | None = "CR-V", **fields: Any) -> dict[str, Any]:
    """Raw vehicle row as read from an open-data CSV file."""
    row: dict[str, Any] = {
        "NOSEQ_VEH": sequence,
        "CLAS": "PAU",
        "TYP_VEH_CATEG_USA": "AU",
        "MARQ_VEH": make or "",
        "MODEL_VEH": model or "",
        "ANNEE_MOD": "2018",
        "MASSE_NETTE": "1500",
        "NB_CYL": "4",
        "CYL_VEH": "2400",
        "NB_ESIEU_MAX": "2",
        "COUL_ORIG": "BLANC",
        "TYP_CARBU": "E",
        "REG_ADM": "Montréal (06)",
        "MRC": "Montréal (66 )",
        "CG_FIXE": "66023",
    }
    row.update(fields)
    return row


def vehicle_rows(prefix: str, count: int, **fields: Any) -> list[dict[str, Any]]:
    return [vehicle_row(f"{prefix}{i:05d}", **fields) for i in range(count)]


def license_row(sequence: str, **fields: Any) -> dict[str, Any]:
    row: dict[str, Any] = {
        "NOSEQ_TITUL": sequence,
        "AGE_1ER_JUIN": "25-34",
        "SEXE": "F",
        "REG_ADM": "Laval (13)",
        "MRC": "Laval (65 )",
        "TYPE_PERMIS": "REG",
        "IND_PERMISCONDUIRE_5": "OUI",
        "IND_PROBATOIRE": "NON",
        "EXPERIENCE_GLOBALE": "10 ans ou plus",
    }
    row.update(fields)
    return row


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory(ignore_cleanup_errors=True) as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def temp_db(temp_dir: Path) -> Generator[Database, None, None]:
    """Create a temporary database with schema."""
    db = Database(temp_dir / "test.db")
    DimensionSchema(db).create()
    yield db
    db.dispose()


@pytest.fixture
def engine_config() -> EngineConfig:
    return EngineConfig(
        years=YearsConfig(curated=[CURATED_YEAR], uncurated=[UNCURATED_YEAR]),
        query=QueryConfig(slow_query_policy="ignore"),
    )


@pytest.fixture
def engine(temp_dir: Path, engine_config: EngineConfig) -> Generator[Engine, None, None]:
    """Empty engine over a fresh database."""
    eng = Engine.open(temp_dir / "saaq.db", engine_config)
    yield eng
    eng.close()


@pytest.fixture
def pair_ids(engine: Engine) -> Callable[[str, str], tuple[int, int]]:
    """(make_id, model_id) of an imported make/model pair."""

    def lookup(make: str, model: str) -> tuple[int, int]:
        make_id = engine.schema.lookup_id(Dimension.MAKE, make)
        assert make_id is not None, make
        model_id = engine.schema.lookup_id(Dimension.MODEL, model, parent_id=make_id)
        assert model_id is not None, model
        return make_id, model_id

    return lookup


@pytest.fixture
def seeded_engine(engine: Engine, pair_ids: Callable[[str, str], tuple[int, int]]) -> Engine:
    """Engine with one curated and one uncurated year and a CRV -> CR-V mapping.

    2020 (curated): 197 HONDA CR-V, 50 TOYOTA COROLLA
    2023 (uncurated): 14 HONDA CRV (no fuel or vehicle type), 10 TOYOTA COROLLA
    """
    engine.import_batch(
        EntityScope.VEHICLE,
        CURATED_YEAR,
        vehicle_rows("A", 197) + vehicle_rows("B", 50, make="TOYOTA", model="COROLLA", TYP_CARBU="H"),
    )
    engine.import_batch(
        EntityScope.VEHICLE,
        UNCURATED_YEAR,
        vehicle_rows("C", 14, model="CRV", TYP_CARBU="", TYP_VEH_CATEG_USA="")
        + vehicle_rows("D", 10, make="TOYOTA", model="COROLLA", TYP_CARBU="H"),
    )
    honda, crv = pair_ids("HONDA", "CRV")
    _, cr_v = pair_ids("HONDA", "CR-V")
    engine.add_mapping(
        MappingRequest(
            uncurated_make_id=honda,
            uncurated_model_id=crv,
            canonical_make_id=honda,
            canonical_model_id=cr_v,
        )
    )
    engine.initialize()
    return engine


@pytest.fixture
def make_vehicle_rows() -> Callable[..., list[dict[str, Any]]]:
    """Factory: make_vehicle_rows(prefix, count, **fields)."""
    return vehicle_rows


@pytest.fixture
def make_vehicle_row() -> Callable[..., dict[str, Any]]:
    return vehicle_row


@pytest.fixture
def make_license_row() -> Callable[..., dict[str, Any]]:
    return license_row
