"""Generation stamps for data and mapping changes.

Two monotonically increasing counters live in the engine_state singleton row:

- data_generation: bumped inside every import batch transaction.
- mapping_version: bumped after every mapping insert, replacement or delete.

Every bump also appends a Generation record. Readers (the filter cache, the
canonical hierarchy) remember the stamp they were built from and compare it
to the current stamp to decide whether to rebuild.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog
from sqlmodel import Session, select

from saaqengine.models import EngineState, Generation, GenerationKind

if TYPE_CHECKING:
    from saaqengine.store.database import Database

logger = structlog.get_logger()


@dataclass(frozen=True)
class GenerationStamp:
    """Pair of counters a derived structure was built from."""

    data_generation: int
    mapping_version: int

    def to_dict(self) -> dict[str, int]:
        return {
            "data_generation": self.data_generation,
            "mapping_version": self.mapping_version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, int]) -> GenerationStamp:
        return cls(
            data_generation=int(data.get("data_generation", 0)),
            mapping_version=int(data.get("mapping_version", 0)),
        )


class GenerationManager:
    """Reads and publishes generation stamps."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def current(self) -> GenerationStamp:
        """Return the committed stamp (zeros before the first publish)."""
        with self.db.session() as session:
            state = session.get(EngineState, 1)
            if state is None:
                return GenerationStamp(0, 0)
            return GenerationStamp(state.data_generation, state.mapping_version)

    @staticmethod
    def bump(session: Session, kind: GenerationKind, detail: str | None = None) -> GenerationStamp:
        """Advance one counter inside the caller's transaction.

        The stamp commits or rolls back together with the change it
        describes: a mapping write, or an import batch through
        BulkWriter.session().
        """
        now = time.time()
        state = session.get(EngineState, 1)
        if state is None:
            state = EngineState(id=1)
            session.add(state)

        if kind is GenerationKind.DATA:
            state.data_generation += 1
            value = state.data_generation
        else:
            state.mapping_version += 1
            value = state.mapping_version
        state.updated_at = now

        session.add(Generation(kind=kind.value, generation=value, published_at=now, detail=detail))
        session.flush()
        logger.debug("generation_bumped", kind=kind.value, generation=value, detail=detail)
        return GenerationStamp(state.data_generation, state.mapping_version)

    def latest(self, limit: int = 10, kind: GenerationKind | None = None) -> list[Generation]:
        """Return latest published generations in descending order."""
        with self.db.session() as session:
            stmt = select(Generation)
            if kind is not None:
                stmt = stmt.where(Generation.kind == kind.value)
            stmt = stmt.order_by(Generation.id.desc()).limit(limit)  # type: ignore[union-attr]
            return list(session.exec(stmt).all())

