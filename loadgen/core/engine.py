from __future__ import annotations

import asyncio
import signal
import sys
import time
from random import Random
from typing import TextIO

import httpx
from cryptography.hazmat.primitives.asymmetric import rsa

from loadgen.challenge.responder import ChallengeResponder
from loadgen.core.actions import Dispatcher
from loadgen.core.models import LoadConfig, RunResult
from loadgen.core.scheduler import Scheduler
from loadgen.core.state import EngineState
from loadgen.exceptions import ConfigurationError
from loadgen.logger import Logger, session_logger


class LoadGenerator:
    """Runs one load generation session against an ACME server.

    Startup failures (bad settings, key generation, challenge port already in
    use) raise ConfigurationError before any load is sent. Per-call failures
    never stop the run.
    """

    def __init__(
        self,
        config: LoadConfig,
        *,
        logger: Logger | None = None,
        http: httpx.AsyncClient | None = None,
        cert_key: rsa.RSAPrivateKey | None = None,
        seed: int | None = None,
    ) -> None:
        self._config = config
        self._logger = logger or session_logger
        self.state = EngineState(config, http=http, cert_key=cert_key, logger=self._logger, seed=seed)
        self.dispatcher = Dispatcher(self.state, rng=Random(seed), logger=self._logger)
        self.scheduler = Scheduler(
            self.state,
            self.dispatcher,
            workers=config.workers,
            drain_timeout=config.drain_timeout_seconds,
            logger=self._logger,
        )
        self.responder = ChallengeResponder(
            self.state.challenges,
            port=config.challenge_port,
            host=config.challenge_host,
            logger=self._logger,
        )

    async def run(self) -> RunResult:
        try:
            self.responder.start()
        except ConfigurationError:
            await self.state.aclose()
            raise

        loop = asyncio.get_running_loop()
        stop_event = self.state.stop_event

        def _handle_signal(signum: int, _frame) -> None:  # pragma: no cover
            self._logger.warning("loadgen.signal", event="loadgen.signal", signum=signum)
            loop.call_soon_threadsafe(stop_event.set)

        self._logger.info(
            "loadgen.start",
            event="loadgen.start",
            api_base=self._config.api_base,
            rate=self.state.rate,
            max_regs=self._config.max_regs,
            duration_seconds=self._config.duration_seconds,
            workers=self._config.workers or "unbounded",
            challenge_port=self.responder.port,
        )

        started = time.monotonic()
        try:
            with _SignalHandlers(_handle_signal):
                counters = await self.scheduler.run(self._config.duration_seconds)
        finally:
            self.responder.stop()
            await self.state.aclose()
        ended = time.monotonic()

        result = RunResult(
            started_at_monotonic=started,
            ended_at_monotonic=ended,
            cycles_launched=counters.launched,
            cycles_completed=counters.finished,
            cycles_failed=counters.failed,
            cycles_cancelled=counters.cancelled,
            registrations=self.state.registry.size(),
            latency_report=self.state.recorder.report(),
        )

        self._logger.info(
            "loadgen.end",
            event="loadgen.end",
            cycles_launched=result.cycles_launched,
            cycles_completed=result.cycles_completed,
            cycles_failed=result.cycles_failed,
            cycles_cancelled=result.cycles_cancelled,
            registrations=result.registrations,
            duration_seconds=round(result.duration_seconds, 3),
        )
        return result

    def dump(self, out: TextIO | None = None) -> None:
        """Print the per-operation latency histograms."""
        out = out or sys.stdout
        out.write("ACME latency histograms\n")
        out.write("#######################\n")
        out.write(self.state.recorder.render())


class _SignalHandlers:
    def __init__(self, handler) -> None:
        self._handler = handler
        self._previous: dict[int, object] = {}

    def __enter__(self):
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                self._previous[signum] = signal.signal(signum, self._handler)
            except (ValueError, OSError):
                # Not on the main thread, or the platform forbids it.
                pass
        return self

    def __exit__(self, exc_type, exc, tb):
        for signum, previous in self._previous.items():
            try:
                signal.signal(signum, previous)  # type: ignore[arg-type]
            except (ValueError, OSError):
                pass
        return False
