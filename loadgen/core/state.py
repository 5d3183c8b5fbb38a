from __future__ import annotations

import asyncio

import httpx
from cryptography.hazmat.primitives.asymmetric import rsa

from loadgen.challenge.store import ChallengeStore
from loadgen.core.latency import LatencyRecorder
from loadgen.core.models import LoadConfig
from loadgen.core.nonce import NoncePool
from loadgen.core.registry import ClientRegistry
from loadgen.core.signing import generate_rsa_key
from loadgen.core.transport import TargetClient, build_http_client
from loadgen.exceptions import ConfigurationError, SigningError, ValidationError
from loadgen.logger import Logger, session_logger


class EngineState:
    """Everything a run shares, built once and passed to each component.

    Each field keeps its own lock; nothing here serializes the whole engine.
    """

    def __init__(
        self,
        config: LoadConfig,
        *,
        http: httpx.AsyncClient | None = None,
        cert_key: rsa.RSAPrivateKey | None = None,
        logger: Logger | None = None,
        seed: int | None = None,
    ) -> None:
        config.validate()

        self.config = config
        self.logger = logger or session_logger
        self.recorder = LatencyRecorder(logger=self.logger)
        self.registry = ClientRegistry(config.max_regs, seed=seed)
        self.challenges = ChallengeStore()
        self.http = http or build_http_client(config.timeout_seconds)
        self.nonces = NoncePool(self.http, config.api_base, self.recorder, logger=self.logger)
        self.target = TargetClient(
            self.http,
            config.api_base,
            self.nonces,
            self.recorder,
            logger=self.logger,
        )
        # Cancellation token observed by the scheduler and every in-flight cycle.
        self.stop_event = asyncio.Event()
        self._rate = float(config.rate)

        if cert_key is None:
            try:
                cert_key = generate_rsa_key(config.key_size)
            except SigningError as exc:
                raise ConfigurationError(
                    "certificate key generation failed",
                    details={"key_size": config.key_size, "cause": exc.message},
                ) from exc
        self.cert_key = cert_key

    @property
    def rate(self) -> float:
        return self._rate

    def set_rate(self, rate: float) -> None:
        """Change the dispatch rate; the scheduler picks it up on its next tick."""
        if rate <= 0:
            raise ValidationError("rate must be > 0", details={"rate": rate})
        previous = self._rate
        self._rate = float(rate)
        self.logger.info(
            "loadgen.rate_changed",
            event="loadgen.rate_changed",
            previous=previous,
            rate=self._rate,
        )

    async def aclose(self) -> None:
        await self.http.aclose()
