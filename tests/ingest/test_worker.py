"""Tests for the background importer."""

from __future__ import annotations

import threading
from collections.abc import Callable, Generator, Iterator
from typing import Any

import pytest

from saaqengine.config.models import IngestConfig
from saaqengine.core.errors import ErrorCode, IngestError, InternalError
from saaqengine.engine import Engine
from saaqengine.ingest.importer import Importer, ImportResult
from saaqengine.ingest.worker import BackgroundImporter, ImporterState
from saaqengine.models import EntityScope

RowsFactory = Callable[..., list[dict[str, Any]]]


@pytest.fixture
def worker(engine: Engine) -> Generator[BackgroundImporter, None, None]:
    importer = Importer(engine.db, engine.schema, IngestConfig(batch_size=1))
    bg = BackgroundImporter(importer, queue_max_size=4)
    bg.start()
    yield bg
    bg.stop()


def gated(rows: list[dict[str, Any]], started: threading.Event, gate: threading.Event) -> Iterator[dict[str, Any]]:
    """Rows that only flow once the gate opens."""
    started.set()
    gate.wait(5)
    yield from rows


class TestLifecycle:
    def test_submit_before_start_raises(self, engine: Engine, make_vehicle_rows: RowsFactory) -> None:
        bg = BackgroundImporter(engine.importer)
        assert bg.status.state is ImporterState.STOPPED

        with pytest.raises(IngestError, match="not running"):
            bg.submit(EntityScope.VEHICLE, 2020, make_vehicle_rows("A", 1))

    def test_start_and_stop(self, engine: Engine) -> None:
        bg = BackgroundImporter(engine.importer)
        bg.start()
        assert bg.status.state is ImporterState.IDLE

        bg.stop()
        assert bg.status.state is ImporterState.STOPPED

    def test_engine_shares_one_worker(self, engine: Engine) -> None:
        first = engine.background_importer()
        assert engine.background_importer() is first
        assert engine.status()["importer"]["state"] == "idle"


class TestSubmit:
    def test_future_resolves_to_result(self, worker: BackgroundImporter, make_vehicle_rows: RowsFactory) -> None:
        future = worker.submit(EntityScope.VEHICLE, 2020, make_vehicle_rows("A", 3), file_name="a.csv")

        result = future.result(timeout=10)

        assert isinstance(result, ImportResult)
        assert result.inserted == 3
        status = worker.status
        assert status.completed == 1
        assert status.last_result is result

    def test_batches_run_in_order(self, worker: BackgroundImporter, make_vehicle_rows: RowsFactory) -> None:
        first = worker.submit(EntityScope.VEHICLE, 2020, make_vehicle_rows("A", 2))
        second = worker.submit(EntityScope.VEHICLE, 2020, make_vehicle_rows("A", 1), replace_year=True)

        assert first.result(timeout=10).inserted == 2
        assert second.result(timeout=10).replaced == 2

    def test_failure_is_set_on_future(self, worker: BackgroundImporter, make_vehicle_rows: RowsFactory) -> None:
        worker.submit(EntityScope.VEHICLE, 2020, make_vehicle_rows("A", 1)).result(timeout=10)

        future = worker.submit(EntityScope.VEHICLE, 2020, make_vehicle_rows("A", 1))

        with pytest.raises(IngestError) as exc_info:
            future.result(timeout=10)
        assert exc_info.value.code is ErrorCode.INGEST_BATCH_FAILED
        assert worker.status.failed == 1
        assert worker.status.last_error is not None

    def test_unexpected_error_is_wrapped(self, worker: BackgroundImporter) -> None:
        def broken() -> Iterator[dict[str, Any]]:
            raise RuntimeError("reader exploded")
            yield {}

        future = worker.submit(EntityScope.VEHICLE, 2020, broken())

        with pytest.raises(InternalError, match="reader exploded") as exc_info:
            future.result(timeout=10)
        assert exc_info.value.code is ErrorCode.INTERNAL_ERROR
        assert worker.status.failed == 1

    def test_on_complete_callback(self, engine: Engine, make_vehicle_rows: RowsFactory) -> None:
        seen: list[ImportResult] = []
        bg = BackgroundImporter(engine.importer, on_complete=seen.append)
        bg.start()
        try:
            bg.submit(EntityScope.VEHICLE, 2020, make_vehicle_rows("A", 1)).result(timeout=10)
        finally:
            bg.stop(cancel_pending=False)

        assert [r.inserted for r in seen] == [1]

    def test_full_queue_times_out(self, worker: BackgroundImporter, make_vehicle_rows: RowsFactory) -> None:
        started, gate = threading.Event(), threading.Event()
        worker.submit(EntityScope.VEHICLE, 2020, gated(make_vehicle_rows("A", 1), started, gate))
        assert started.wait(5)
        try:
            for i in range(4):
                worker.submit(EntityScope.VEHICLE, 2020 + i + 1, make_vehicle_rows("B", 1))
            with pytest.raises(IngestError, match="queue is full"):
                worker.submit(EntityScope.VEHICLE, 2030, make_vehicle_rows("C", 1), timeout=0.05)
        finally:
            gate.set()


class TestCancel:
    def test_cancel_stops_running_and_drops_queued(
        self, engine: Engine, worker: BackgroundImporter, make_vehicle_rows: RowsFactory
    ) -> None:
        started, gate = threading.Event(), threading.Event()
        running = worker.submit(EntityScope.VEHICLE, 2020, gated(make_vehicle_rows("A", 3), started, gate))
        queued = worker.submit(EntityScope.VEHICLE, 2023, make_vehicle_rows("B", 3))
        assert started.wait(5)

        dropped = worker.cancel()
        gate.set()

        assert dropped == 1
        assert queued.cancelled()
        with pytest.raises(IngestError) as exc_info:
            running.result(timeout=10)
        assert exc_info.value.code is ErrorCode.INGEST_CANCELLED
        assert engine.db.execute_raw("SELECT COUNT(*) FROM vehicles")[0][0] == 0

    def test_cancel_while_idle_does_not_affect_later_batches(
        self, worker: BackgroundImporter, make_vehicle_rows: RowsFactory
    ) -> None:
        assert worker.cancel() == 0

        result = worker.submit(EntityScope.VEHICLE, 2020, make_vehicle_rows("A", 2)).result(timeout=10)

        assert result.inserted == 2
