from __future__ import annotations

import json
import time
from typing import TYPE_CHECKING, Any, Iterable

import httpx

from loadgen.core.latency import LatencyRecorder
from loadgen.exceptions import NetworkError, ProtocolError
from loadgen.logger import Logger, session_logger

if TYPE_CHECKING:
    from loadgen.core.nonce import NoncePool
    from loadgen.core.signing import JWSSigner

NONCE_HEADER = "Replay-Nonce"
USER_AGENT = "acme-loadgen/0.1"


def build_http_client(timeout_seconds: float, **kwargs: Any) -> httpx.AsyncClient:
    """Create the shared AsyncClient used for all calls to the target.

    No connection cap: in-flight concurrency is governed by the scheduler.
    """
    return httpx.AsyncClient(
        timeout=httpx.Timeout(timeout_seconds),
        limits=httpx.Limits(max_connections=None, max_keepalive_connections=100),
        headers={"User-Agent": USER_AGENT},
        **kwargs,
    )


class TargetClient:
    """Sends signed protocol requests to the target server.

    Every response carrying a ``Replay-Nonce`` header feeds the nonce pool,
    whatever the outcome of the call.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        api_base: str,
        nonce_pool: "NoncePool",
        recorder: LatencyRecorder,
        *,
        logger: Logger | None = None,
    ) -> None:
        self._http = http
        self._api_base = api_base.rstrip("/")
        self._nonces = nonce_pool
        self._recorder = recorder
        self._logger = logger or session_logger

    def endpoint(self, path: str) -> str:
        return f"{self._api_base}/{path.lstrip('/')}"

    async def signed_post(
        self,
        signer: "JWSSigner",
        url: str,
        payload: dict[str, Any],
        *,
        label: str,
        expected: Iterable[int] = (200, 201, 202),
    ) -> httpx.Response:
        """Sign ``payload`` with a fresh nonce and POST it to ``url``."""
        nonce = await self._nonces.get()
        body = signer.sign(json.dumps(payload).encode("utf-8"), nonce)
        return await self.post(url, body, label=label, expected=expected)

    async def post(
        self,
        url: str,
        body: bytes,
        *,
        label: str,
        expected: Iterable[int] = (200, 201, 202),
    ) -> httpx.Response:
        started = time.monotonic()
        try:
            response = await self._http.post(
                url,
                content=body,
                headers={"Content-Type": "application/json"},
            )
        except httpx.HTTPError as exc:
            self._recorder.record(
                label,
                time.monotonic() - started,
                success=False,
                error_type=classify_exception(exc),
            )
            raise NetworkError(
                "request to target failed",
                details={"url": url, "error_type": classify_exception(exc), "error": str(exc)},
            ) from exc

        elapsed = time.monotonic() - started
        new_nonce = response.headers.get(NONCE_HEADER)
        if new_nonce:
            self._nonces.add(new_nonce)

        ok = response.status_code in tuple(expected)
        error_type = None if ok else (classify_http_error(response.status_code) or "unexpected_status")
        self._recorder.record(label, elapsed, success=ok, error_type=error_type)

        if not ok:
            raise ProtocolError(
                "unexpected response status",
                details={
                    "url": url,
                    "status_code": response.status_code,
                    "error_type": error_type,
                    "problem": _problem_detail(response),
                },
            )
        return response


def _problem_detail(response: httpx.Response) -> str | None:
    try:
        data = response.json()
    except ValueError:
        return None
    if isinstance(data, dict):
        detail = data.get("detail")
        return str(detail) if detail is not None else None
    return None


def classify_http_error(status_code: int) -> str | None:
    """Map an HTTP status code to a canonical error_type, or None if success."""
    if 200 <= status_code < 400:
        return None
    if status_code in (401, 403):
        return "unauthorized"
    if status_code == 404:
        return "not_found"
    if status_code == 429:
        return "rate_limited"
    if 400 <= status_code < 500:
        return "client_error"
    if 500 <= status_code < 600:
        return "server_error"
    return f"http_{status_code}"


def classify_exception(exc: Exception) -> str:
    """Map a network-level exception to a canonical error_type."""
    if isinstance(exc, httpx.TimeoutException):
        return "network_timeout"
    if isinstance(exc, httpx.ConnectError):
        return "network_connect"
    if isinstance(exc, (httpx.RemoteProtocolError, httpx.LocalProtocolError)):
        return "network_protocol"
    if isinstance(exc, httpx.HTTPError):
        return "network_error"
    return type(exc).__name__
