"""Tests for background pipeline execution and progress coalescing."""

import asyncio
import threading
import time

import pytest

from bbf_backup.pipeline.models import PipelineResult, Stage
from bbf_backup.pipeline.worker import PipelineWorker, ProgressBatcher


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class FakeTimer:
    """Scheduled callback that only runs when fired by the test."""

    def __init__(self, delay: float, callback) -> None:
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        if not self.cancelled:
            self.callback()


class FakeScheduler:
    """Records scheduled deadline flushes instead of starting timers."""

    def __init__(self) -> None:
        self.timers: list[FakeTimer] = []

    def __call__(self, delay: float, callback) -> FakeTimer:
        timer = FakeTimer(delay, callback)
        self.timers.append(timer)
        return timer


class TestProgressBatcher:
    """Coalescing of progress lines."""

    def test_lines_within_window_are_coalesced(self) -> None:
        """Lines arriving inside the window go out together in one batch."""
        clock = FakeClock()
        scheduler = FakeScheduler()
        batches: list[str] = []
        batcher = ProgressBatcher(batches.append, window=0.1, clock=clock, schedule=scheduler)

        clock.now = 0.05
        batcher.add("a")
        clock.now = 0.08
        batcher.add("b")
        assert batches == []

        clock.now = 0.2
        batcher.add("c")
        assert batches == ["a\nb\nc"]
        assert scheduler.timers[0].cancelled

    def test_deadline_flush_without_further_lines(self) -> None:
        """A held line is delivered at the end of the window with no later line."""
        clock = FakeClock()
        scheduler = FakeScheduler()
        batches: list[str] = []
        batcher = ProgressBatcher(batches.append, window=0.1, clock=clock, schedule=scheduler)

        clock.now = 0.04
        batcher.add("Running pg_dump")
        clock.now = 0.07
        batcher.add("pg_dump: reading schemas")

        assert len(scheduler.timers) == 1
        assert scheduler.timers[0].delay == pytest.approx(0.06)
        clock.now = 0.1
        scheduler.timers[0].fire()
        assert batches == ["Running pg_dump\npg_dump: reading schemas"]

    def test_new_deadline_after_delivery(self) -> None:
        """Each held batch gets its own deadline."""
        clock = FakeClock()
        scheduler = FakeScheduler()
        batches: list[str] = []
        batcher = ProgressBatcher(batches.append, window=0.1, clock=clock, schedule=scheduler)

        clock.now = 0.05
        batcher.add("first")
        scheduler.timers[0].fire()
        clock.now = 0.1
        batcher.add("second")
        scheduler.timers[1].fire()

        assert batches == ["first", "second"]

    def test_flush_delivers_leftovers(self) -> None:
        """flush() delivers pending lines in order."""
        clock = FakeClock()
        batches: list[str] = []
        batcher = ProgressBatcher(
            batches.append, window=0.1, clock=clock, schedule=FakeScheduler()
        )
        clock.now = 0.2
        batcher.add("first")
        clock.now = 0.25
        batcher.add("second")
        batcher.add("third")
        batcher.flush()
        assert batches == ["first", "second\nthird"]

    def test_flush_without_pending_is_noop(self) -> None:
        """Nothing is delivered when nothing is pending."""
        batches: list[str] = []
        ProgressBatcher(batches.append).flush()
        assert batches == []

    def test_sink_errors_are_contained(self, caplog) -> None:
        """A failing sink is logged and does not raise."""

        def _boom(batch: str) -> None:
            raise RuntimeError("display gone")

        clock = FakeClock()
        batcher = ProgressBatcher(_boom, window=0.1, clock=clock, schedule=FakeScheduler())
        clock.now = 1.0
        batcher.add("line")
        assert "Progress sink failed" in caplog.text


class TestPipelineWorker:
    """Thread, completion signal and minimum duration."""

    def test_result_and_progress(self) -> None:
        """Progress arrives in order and join returns the result."""
        batches: list[str] = []

        async def _pipeline(progress):
            for i in range(5):
                progress(f"line {i}")
            return PipelineResult(success=True, output="done")

        worker = PipelineWorker(batches.append, min_duration=0)
        worker.start(_pipeline)
        result = worker.join(timeout=5)

        assert result is not None and result.success
        assert "\n".join(batches).split("\n") == [f"line {i}" for i in range(5)]

    def test_completion_once_after_progress(self) -> None:
        """on_complete fires exactly once, after the last batch."""
        events: list[str] = []

        async def _pipeline(progress):
            progress("working")
            return PipelineResult(success=True)

        worker = PipelineWorker(
            lambda batch: events.append("progress"),
            on_complete=lambda result: events.append("complete"),
            min_duration=0,
        )
        worker.start(_pipeline)
        worker.join(timeout=5)

        assert events.count("complete") == 1
        assert events[-1] == "complete"
        assert "progress" in events

    def test_minimum_duration(self) -> None:
        """Fast pipelines complete no sooner than min_duration."""

        async def _pipeline(progress):
            return PipelineResult(success=True)

        started = time.monotonic()
        worker = PipelineWorker(lambda batch: None, min_duration=0.3)
        worker.start(_pipeline)
        worker.join(timeout=5)
        assert time.monotonic() - started >= 0.3

    def test_caller_not_blocked(self) -> None:
        """start() returns while the pipeline is still running."""
        release = threading.Event()

        async def _pipeline(progress):
            while not release.is_set():
                await asyncio.sleep(0.01)
            return PipelineResult(success=True)

        worker = PipelineWorker(lambda batch: None, min_duration=0)
        worker.start(_pipeline)
        assert not worker.done
        assert worker.join(timeout=0.05) is None
        release.set()
        assert worker.join(timeout=5).success

    def test_pipeline_exception_becomes_result(self) -> None:
        """An exception escaping the pipeline is turned into a failed result."""

        async def _pipeline(progress):
            raise RuntimeError("unexpected")

        worker = PipelineWorker(lambda batch: None, min_duration=0)
        worker.start(_pipeline)
        result = worker.join(timeout=5)

        assert result is not None and not result.success
        assert result.stage == Stage.FAILED
        assert result.error_type == "RuntimeError"

    def test_start_twice(self) -> None:
        """A worker runs one pipeline only."""

        async def _pipeline(progress):
            return PipelineResult(success=True)

        worker = PipelineWorker(lambda batch: None, min_duration=0)
        worker.start(_pipeline)
        with pytest.raises(RuntimeError):
            worker.start(_pipeline)
        worker.join(timeout=5)

    def test_line_delivered_while_pipeline_is_silent(self) -> None:
        """A single line reaches the display during a long silent step."""
        delivered = threading.Event()
        release = threading.Event()
        batches: list[str] = []

        def _on_progress(batch: str) -> None:
            batches.append(batch)
            delivered.set()

        async def _pipeline(progress):
            progress("Running pg_dump ...")
            while not release.is_set():
                await asyncio.sleep(0.01)
            return PipelineResult(success=True)

        worker = PipelineWorker(_on_progress, coalesce_window=0.1, min_duration=0)
        worker.start(_pipeline)
        try:
            assert delivered.wait(timeout=1.0)
            assert batches == ["Running pg_dump ..."]
            assert not worker.done
        finally:
            release.set()
        assert worker.join(timeout=5).success
