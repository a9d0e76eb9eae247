"""Background importer: the single writer thread."""

from __future__ import annotations

import queue
import threading
from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

import structlog

from saaqengine.core.errors import EngineError, ErrorCode, IngestError, InternalError

if TYPE_CHECKING:
    from saaqengine.ingest.importer import Importer, ImportResult
    from saaqengine.ingest.records import RawRow
    from saaqengine.models import EntityScope

logger = structlog.get_logger()


class ImporterState(Enum):
    """Background importer state."""

    IDLE = "idle"
    IMPORTING = "importing"
    STOPPING = "stopping"
    STOPPED = "stopped"


@dataclass
class ImporterStatus:
    """Current importer status."""

    state: ImporterState
    queue_size: int
    current: str | None = None
    completed: int = 0
    failed: int = 0
    last_result: ImportResult | None = None
    last_error: str | None = None


@dataclass
class ImportJob:
    """One queued batch. rows is consumed on the worker thread."""

    scope: EntityScope
    year: int
    rows: Iterable[RawRow]
    replace_year: bool = False
    file_name: str | None = None
    future: Future[ImportResult] = field(default_factory=Future)

    def describe(self) -> str:
        return f"{self.scope.value} {self.year}"


@dataclass
class BackgroundImporter:
    """
    Queue of import batches drained by one worker thread.

    Design:
    - The worker is the only writer; batches run strictly in order
    - Callers get a Future per batch
    - Cancellation is cooperative: the running batch stops at its next
      chunk boundary and rolls back; queued batches are cancelled
    """

    importer: Importer
    queue_max_size: int = 64
    on_complete: Callable[[ImportResult], None] | None = None

    _state: ImporterState = field(default=ImporterState.STOPPED, init=False)
    _executor: ThreadPoolExecutor | None = field(default=None, init=False)
    _queue: queue.Queue[ImportJob | None] = field(default_factory=queue.Queue, init=False)
    _cancel: threading.Event = field(default_factory=threading.Event, init=False)
    _status_lock: threading.Lock = field(default_factory=threading.Lock, init=False)
    _current: str | None = field(default=None, init=False)
    _completed: int = field(default=0, init=False)
    _failed: int = field(default=0, init=False)
    _last_result: ImportResult | None = field(default=None, init=False)
    _last_error: str | None = field(default=None, init=False)

    def __post_init__(self) -> None:
        self._queue = queue.Queue(maxsize=self.queue_max_size)

    def start(self) -> None:
        """Start the worker thread."""
        if self._executor is not None:
            return
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="saaq-import")
        self._state = ImporterState.IDLE
        self._cancel.clear()
        self._executor.submit(self._run)
        logger.info("background_importer_started", queue_max_size=self.queue_max_size)

    def stop(self, *, cancel_pending: bool = True) -> None:
        """Stop the worker, waiting for it to exit.

        With cancel_pending, the running batch is cancelled and queued
        batches are dropped; otherwise the queue is drained first.
        """
        if self._executor is None:
            return
        self._state = ImporterState.STOPPING
        if cancel_pending:
            self.cancel()
        self._queue.put(None)
        self._executor.shutdown(wait=True)
        self._executor = None
        self._state = ImporterState.STOPPED
        logger.info("background_importer_stopped", completed=self._completed, failed=self._failed)

    def submit(
        self,
        scope: EntityScope,
        year: int,
        rows: Iterable[RawRow],
        *,
        replace_year: bool = False,
        file_name: str | None = None,
        timeout: float | None = None,
    ) -> Future[ImportResult]:
        """Queue a batch. Blocks while the queue is full (up to timeout).

        Raises:
            IngestError: importer not running, or queue still full after timeout.
        """
        if self._executor is None or self._state is ImporterState.STOPPING:
            raise IngestError.batch_failed(year, "background importer is not running")
        job = ImportJob(scope=scope, year=year, rows=rows, replace_year=replace_year, file_name=file_name)
        try:
            self._queue.put(job, timeout=timeout)
        except queue.Full as e:
            raise IngestError.batch_failed(year, "import queue is full") from e
        logger.debug("import_queued", batch=job.describe(), queue_size=self._queue.qsize())
        return job.future

    def cancel(self) -> int:
        """Cancel the running batch and drop queued ones. Returns how many were dropped."""
        self._cancel.set()
        dropped = 0
        while True:
            try:
                job = self._queue.get_nowait()
            except queue.Empty:
                break
            if job is None:
                # Keep the shutdown sentinel for the worker.
                self._queue.put_nowait(None)
                break
            job.future.cancel()
            dropped += 1
        logger.info("import_cancel_requested", dropped=dropped, running=self._current)
        return dropped

    @property
    def status(self) -> ImporterStatus:
        with self._status_lock:
            return ImporterStatus(
                state=self._state,
                queue_size=self._queue.qsize(),
                current=self._current,
                completed=self._completed,
                failed=self._failed,
                last_result=self._last_result,
                last_error=self._last_error,
            )

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    def _run(self) -> None:
        while True:
            job = self._queue.get()
            if job is None:
                return
            if not job.future.set_running_or_notify_cancel():
                continue
            self._run_job(job)

    def _run_job(self, job: ImportJob) -> None:
        # A cancel() issued while idle applies to nothing that is queued later.
        if self._state is not ImporterState.STOPPING:
            self._cancel.clear()
        with self._status_lock:
            if self._state is not ImporterState.STOPPING:
                self._state = ImporterState.IMPORTING
            self._current = job.describe()

        try:
            result = self.importer.import_batch(
                job.scope,
                job.year,
                job.rows,
                replace_year=job.replace_year,
                file_name=job.file_name,
                cancel=self._cancel,
            )
        except EngineError as e:
            with self._status_lock:
                self._failed += 1
                self._last_error = e.message
            if e.code is not ErrorCode.INGEST_CANCELLED:
                logger.error("background_import_failed", batch=job.describe(), error=e.message)
            job.future.set_exception(e)
        except Exception as e:
            with self._status_lock:
                self._failed += 1
                self._last_error = str(e)
            logger.exception("background_import_crashed", batch=job.describe())
            job.future.set_exception(InternalError.unexpected(str(e), batch=job.describe()))
        else:
            with self._status_lock:
                self._completed += 1
                self._last_result = result
                self._last_error = None
            job.future.set_result(result)
            if self.on_complete is not None:
                self.on_complete(result)
        finally:
            with self._status_lock:
                self._current = None
                if self._state is ImporterState.IMPORTING:
                    self._state = ImporterState.IDLE
