"""Background execution of a pipeline with coalesced progress delivery.

The caller's thread is never blocked: the pipeline runs on its own
thread with its own event loop.  Progress lines are delivered in
batches; a line is held for at most one coalescing window.  A completion
callback fires exactly once after the last batch.

Usage:
    from bbf_backup.pipeline.worker import PipelineWorker

    worker = PipelineWorker(on_progress=console.print)
    worker.start(lambda progress: run_backup(descriptor, request, progress=progress))
    result = worker.join()
"""

import asyncio
import logging
import threading
import time
from collections.abc import Awaitable, Callable
from typing import Protocol

from bbf_backup.pipeline.models import PipelineResult, Stage

logger = logging.getLogger(__name__)

ProgressSink = Callable[[str], None]
CompletionSink = Callable[[PipelineResult], None]
PipelineFn = Callable[[ProgressSink], Awaitable[PipelineResult]]


class Cancellable(Protocol):
    def cancel(self) -> None: ...


Scheduler = Callable[[float, Callable[[], None]], Cancellable]


def start_timer(delay: float, callback: Callable[[], None]) -> threading.Timer:
    """Run ``callback`` after ``delay`` seconds on a daemon timer thread."""
    timer = threading.Timer(delay, callback)
    timer.daemon = True
    timer.start()
    return timer


class ProgressBatcher:
    """Coalesce progress lines into newline-joined batches.

    A batch is delivered when a line arrives more than ``window``
    seconds after the previous delivery.  Otherwise the line is held
    and a flush is scheduled for the end of the window, so no line
    waits longer than ``window`` even when no further lines follow.
    Order is preserved.  Safe to call from several threads.

    Args:
        sink: Receives each batch.  Exceptions it raises are logged.
        window: Coalescing window in seconds.
        clock: Monotonic time source.
        schedule: Runs a callback after a delay and returns a handle
            with ``cancel()``.
    """

    def __init__(
        self,
        sink: ProgressSink,
        window: float = 0.1,
        clock: Callable[[], float] = time.monotonic,
        schedule: Scheduler = start_timer,
    ) -> None:
        self._sink = sink
        self._window = window
        self._clock = clock
        self._schedule = schedule
        self._pending: list[str] = []
        self._last_delivery = clock()
        self._deadline: Cancellable | None = None
        self._lock = threading.Lock()

    def add(self, line: str) -> None:
        with self._lock:
            self._pending.append(line)
            elapsed = self._clock() - self._last_delivery
            if elapsed > self._window:
                self._deliver()
            elif self._deadline is None:
                self._deadline = self._schedule(self._window - elapsed, self.flush)

    def flush(self) -> None:
        with self._lock:
            if self._pending:
                self._deliver()

    def _deliver(self) -> None:
        if self._deadline is not None:
            self._deadline.cancel()
            self._deadline = None
        batch = "\n".join(self._pending)
        self._pending.clear()
        self._last_delivery = self._clock()
        try:
            self._sink(batch)
        except Exception:
            logger.exception("Progress sink failed")


class PipelineWorker:
    """Run one async pipeline on a dedicated background thread.

    There is no cancellation: once started, the pipeline runs until it
    finishes.  Runs shorter than ``min_duration`` are padded so that the
    completion signal never fires sooner than that.

    Args:
        on_progress: Receives coalesced progress batches.
        on_complete: Called once with the final ``PipelineResult``.
        coalesce_window: Seconds over which progress lines are batched.
        min_duration: Minimum seconds between start and completion.

    Example:
        worker = PipelineWorker(print, on_complete=lambda r: print(r.success))
        worker.start(lambda progress: run_restore(descriptor, request, progress=progress))
        result = worker.join()
    """

    def __init__(
        self,
        on_progress: ProgressSink,
        on_complete: CompletionSink | None = None,
        coalesce_window: float = 0.1,
        min_duration: float = 1.0,
    ) -> None:
        self._batcher = ProgressBatcher(on_progress, coalesce_window)
        self._on_complete = on_complete
        self._min_duration = min_duration
        self._thread: threading.Thread | None = None
        self._result: PipelineResult | None = None
        self._completed = threading.Event()

    def start(self, pipeline_fn: PipelineFn) -> None:
        """Start ``pipeline_fn(progress)`` on a new daemon thread.

        Raises:
            RuntimeError: If this worker was already started.
        """
        if self._thread is not None:
            raise RuntimeError("PipelineWorker can only be started once")
        self._thread = threading.Thread(
            target=self._run, args=(pipeline_fn,), name="bbf-pipeline", daemon=True
        )
        self._thread.start()

    def join(self, timeout: float | None = None) -> PipelineResult | None:
        """Wait for completion and return the result.

        Returns:
            The ``PipelineResult``, or ``None`` if ``timeout`` expired first.
        """
        if self._thread is None:
            raise RuntimeError("PipelineWorker was not started")
        self._thread.join(timeout)
        if not self._completed.is_set():
            return None
        return self._result

    @property
    def done(self) -> bool:
        return self._completed.is_set()

    def _run(self, pipeline_fn: PipelineFn) -> None:
        started = time.monotonic()
        try:
            result = asyncio.run(pipeline_fn(self._batcher.add))
        except Exception as e:
            logger.exception("Pipeline raised")
            result = PipelineResult.failure(Stage.FAILED, e)

        remaining = self._min_duration - (time.monotonic() - started)
        if remaining > 0:
            time.sleep(remaining)

        self._batcher.flush()
        self._result = result
        self._completed.set()
        if self._on_complete is not None:
            try:
                self._on_complete(result)
            except Exception:
                logger.exception("Completion callback failed")
