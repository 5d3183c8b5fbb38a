from __future__ import annotations

import threading
import time
from collections import deque

import httpx

from loadgen.core.latency import LatencyRecorder
from loadgen.core.transport import NONCE_HEADER, classify_exception
from loadgen.exceptions import NetworkError, ProtocolError
from loadgen.logger import Logger, session_logger

DIRECTORY_LABEL = "HEAD /directory"


class NoncePool:
    """FIFO store of single-use anti-replay nonces.

    The lock only guards the deque. When the pool is empty, ``get`` fetches a
    fresh nonce with ``HEAD <api-base>/directory`` outside the lock and hands
    it straight to the caller, so a slow refill never stalls other consumers
    and the refilled nonce is never visible to anyone else.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        api_base: str,
        recorder: LatencyRecorder,
        *,
        logger: Logger | None = None,
    ) -> None:
        self._http = http
        self._directory_url = f"{api_base.rstrip('/')}/directory"
        self._recorder = recorder
        self._logger = logger or session_logger
        self._lock = threading.Lock()
        self._pool: deque[str] = deque()

    def __len__(self) -> int:
        with self._lock:
            return len(self._pool)

    def add(self, nonce: str) -> None:
        with self._lock:
            self._pool.append(nonce)

    def pop(self) -> str | None:
        """Remove and return the oldest pooled nonce, or None if empty."""
        with self._lock:
            if not self._pool:
                return None
            return self._pool.popleft()

    async def get(self) -> str:
        nonce = self.pop()
        if nonce is not None:
            return nonce
        return await self._refill()

    async def _refill(self) -> str:
        started = time.monotonic()
        try:
            response = await self._http.head(self._directory_url)
        except httpx.HTTPError as exc:
            self._recorder.record(
                DIRECTORY_LABEL,
                time.monotonic() - started,
                success=False,
                error_type=classify_exception(exc),
            )
            raise NetworkError(
                "nonce refill request failed",
                details={"url": self._directory_url, "error": str(exc)},
            ) from exc

        nonce = response.headers.get(NONCE_HEADER)
        self._recorder.record(
            DIRECTORY_LABEL,
            time.monotonic() - started,
            success=bool(nonce),
            error_type=None if nonce else "missing_nonce",
        )
        if not nonce:
            raise ProtocolError(
                "nonce header not supplied",
                details={"url": self._directory_url, "status_code": response.status_code},
            )

        self._logger.debug(
            "loadgen.nonce_refilled",
            event="loadgen.nonce_refilled",
            status_code=response.status_code,
        )
        return nonce
