from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass

from loadgen.core.actions import CycleOutcome, Dispatcher
from loadgen.core.state import EngineState
from loadgen.exceptions import ValidationError
from loadgen.logger import Logger


@dataclass
class CycleCounters:
    launched: int = 0
    ok: int = 0
    failed: int = 0
    aborted: int = 0
    skipped: int = 0
    no_action: int = 0
    cancelled: int = 0

    def record(self, outcome: CycleOutcome) -> None:
        if outcome is CycleOutcome.OK:
            self.ok += 1
        elif outcome is CycleOutcome.FAILED:
            self.failed += 1
        elif outcome is CycleOutcome.ABORTED:
            self.aborted += 1
        elif outcome is CycleOutcome.SKIPPED:
            self.skipped += 1
        else:
            self.no_action += 1

    @property
    def finished(self) -> int:
        return self.ok + self.failed + self.aborted + self.skipped + self.no_action


class Scheduler:
    """Launches dispatch cycles at ``state.rate`` per second.

    The launch loop never waits on a cycle. With ``workers=None`` every cycle
    runs as its own task; otherwise cycles queue up for a fixed pool of
    worker tasks. When the run ends the scheduler drains in-flight work for
    up to ``drain_timeout`` seconds, then sets the stop event and cancels
    whatever is left.
    """

    def __init__(
        self,
        state: EngineState,
        dispatcher: Dispatcher,
        *,
        workers: int | None = None,
        drain_timeout: float = 10.0,
        logger: Logger | None = None,
    ) -> None:
        if workers is not None and workers < 1:
            raise ValidationError("workers must be >= 1", details={"workers": workers})
        self._state = state
        self._dispatcher = dispatcher
        self._workers = workers
        self._drain_timeout = drain_timeout
        self._logger = logger or state.logger

        self.counters = CycleCounters()
        self._in_flight: set[asyncio.Task[None]] = set()
        self._queue: asyncio.Queue[int] | None = None

    async def run(self, duration_seconds: float) -> CycleCounters:
        stop_event = self._state.stop_event
        worker_tasks: list[asyncio.Task[None]] = []
        if self._workers is not None:
            self._queue = asyncio.Queue()
            worker_tasks = [
                asyncio.create_task(self._worker(self._queue), name=f"loadgen-worker-{i}")
                for i in range(self._workers)
            ]

        deadline = time.monotonic() + max(0.0, duration_seconds)
        next_fire = time.monotonic()

        try:
            while not stop_event.is_set():
                now = time.monotonic()
                if now >= deadline:
                    break
                if now < next_fire:
                    try:
                        await asyncio.wait_for(stop_event.wait(), timeout=min(next_fire, deadline) - now)
                    except asyncio.TimeoutError:
                        pass
                    continue

                self._launch()
                next_fire = max(next_fire + 1.0 / self._state.rate, time.monotonic())
        finally:
            self._logger.info(
                "loadgen.scheduler_stopping",
                event="loadgen.scheduler_stopping",
                launched=self.counters.launched,
                stop_requested=stop_event.is_set(),
            )
            await self._drain(worker_tasks)

        return self.counters

    def _launch(self) -> None:
        self.counters.launched += 1
        if self._queue is not None:
            self._queue.put_nowait(self.counters.launched)
            return
        task = asyncio.create_task(self._cycle())
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def _worker(self, queue: asyncio.Queue[int]) -> None:
        while True:
            await queue.get()
            try:
                await self._cycle()
            finally:
                queue.task_done()

    async def _cycle(self) -> None:
        try:
            outcome = await self._dispatcher.dispatch()
        except asyncio.CancelledError:
            self.counters.cancelled += 1
            raise
        except Exception as exc:
            self.counters.failed += 1
            self._logger.error(
                "loadgen.cycle_crashed",
                event="loadgen.cycle_crashed",
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return
        self.counters.record(outcome)

    async def _drain(self, worker_tasks: list[asyncio.Task[None]]) -> None:
        started = time.monotonic()
        if self._queue is not None:
            try:
                await asyncio.wait_for(self._queue.join(), timeout=self._drain_timeout)
            except asyncio.TimeoutError:
                pass
            pending_items = self._queue.qsize()
            self.counters.cancelled += pending_items
            pending = set(worker_tasks)
        else:
            pending = set(self._in_flight)
            if pending:
                _, pending = await asyncio.wait(pending, timeout=self._drain_timeout)

        # Anything still running gets the stop signal and is cancelled.
        self._state.stop_event.set()
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        self._logger.info(
            "loadgen.scheduler_drained",
            event="loadgen.scheduler_drained",
            drain_seconds=round(time.monotonic() - started, 3),
            cancelled=self.counters.cancelled,
        )
