"""Pytest configuration and fixtures

Provides shared fixtures for all tests: a fake ACME server served through
httpx.MockTransport, pre-generated RSA keys, and a logger that records
events for assertions.
"""

import asyncio
import base64
import itertools
import json
import sys
import threading
from pathlib import Path
from typing import Any

import httpx
import pytest

# Add project root to sys.path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from loadgen.core.models import LoadConfig
from loadgen.core.signing import generate_rsa_key
from loadgen.core.state import EngineState
from loadgen.logger import Logger

API_BASE = "http://acme.test"

# Smallest key size accepted by LoadConfig; keeps key generation fast.
TEST_KEY_SIZE = 1024


def _b64url_decode(value: str) -> bytes:
    return base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))


class RecordingLogger(Logger):
    """Logger that keeps every call for later inspection."""

    def __init__(self) -> None:
        self.records: list[tuple[str, str, dict[str, Any]]] = []
        self._lock = threading.Lock()

    def _log(self, level: str, message: str, kwargs: dict[str, Any]) -> None:
        with self._lock:
            self.records.append((level, message, kwargs))

    def debug(self, message: str, **kwargs: Any) -> None:
        self._log("debug", message, kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        self._log("info", message, kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self._log("warning", message, kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self._log("error", message, kwargs)

    def critical(self, message: str, **kwargs: Any) -> None:
        self._log("critical", message, kwargs)

    def events(self, level: str | None = None) -> list[str]:
        return [m for lvl, m, _ in self.records if level is None or lvl == level]


class FakeACMEServer:
    """Minimal in-process ACME target for httpx.MockTransport.

    Issues a fresh Replay-Nonce on every response, tracks the nonces it has
    seen in signed requests, and can be told to fail specific paths.
    """

    def __init__(self, base: str = API_BASE) -> None:
        self.base = base
        self._counter = itertools.count(1)
        self._lock = threading.Lock()
        self.requests: list[tuple[str, str]] = []
        self.nonces_used: list[str] = []
        self.payloads: list[tuple[str, dict[str, Any]]] = []
        self.fail_paths: dict[str, int] = {}
        self.omit_directory_nonce = False
        self.raise_on_paths: set[str] = set()
        self.challenge_store = None
        self.tokens_ready_at_validation: list[bool] = []
        self.terms_url: str | None = None
        self.cert_body = b"\x30\x82fake-der-certificate"
        # Requests whose path starts with one of these never get an answer.
        self.hang_paths: set[str] = set()
        self.hanging = asyncio.Event()

    def _next(self) -> int:
        with self._lock:
            return next(self._counter)

    def _nonce_headers(self) -> dict[str, str]:
        return {"Replay-Nonce": f"nonce-{self._next()}"}

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle_async)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport())

    async def handle_async(self, request: httpx.Request) -> httpx.Response:
        if any(request.url.path.startswith(p) for p in self.hang_paths):
            self.hanging.set()
            await asyncio.sleep(3600)
        return self.handle(request)

    def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        with self._lock:
            self.requests.append((request.method, path))

        if path in self.raise_on_paths:
            raise httpx.ConnectError("connection refused", request=request)

        if request.method == "HEAD" and path == "/directory":
            headers = {} if self.omit_directory_nonce else self._nonce_headers()
            return httpx.Response(200, headers=headers)

        if request.method != "POST":
            return httpx.Response(405, headers=self._nonce_headers())

        envelope = json.loads(request.content)
        protected = json.loads(_b64url_decode(envelope["protected"]))
        payload = json.loads(_b64url_decode(envelope["payload"]))
        with self._lock:
            self.nonces_used.append(protected["nonce"])
            self.payloads.append((path, payload))

        if path in self.fail_paths:
            return httpx.Response(
                self.fail_paths[path],
                headers=self._nonce_headers(),
                json={"type": "urn:acme:error:serverInternal", "detail": "injected failure"},
            )

        n = self._next()
        if path == "/acme/new-reg":
            headers = {**self._nonce_headers(), "Location": f"{self.base}/acme/reg/{n}"}
            if self.terms_url:
                headers["Link"] = f'<{self.terms_url}>;rel="terms-of-service"'
            return httpx.Response(201, headers=headers, json={"contact": payload.get("contact")})
        if path.startswith("/acme/reg/"):
            return httpx.Response(202, headers=self._nonce_headers(), json=payload)
        if path == "/acme/new-authz":
            token = f"token-{n}"
            body = {
                "identifier": payload["identifier"],
                "status": "pending",
                "challenges": [
                    {"type": "dns-01", "token": f"dns-{n}", "uri": f"{self.base}/acme/challenge/dns-{n}"},
                    {"type": "http-01", "token": token, "uri": f"{self.base}/acme/challenge/{n}"},
                ],
            }
            headers = {**self._nonce_headers(), "Location": f"{self.base}/acme/authz/{n}"}
            return httpx.Response(201, headers=headers, json=body)
        if path.startswith("/acme/challenge/"):
            if self.challenge_store is not None:
                token = payload["keyAuthorization"].split(".", 1)[0]
                self.tokens_ready_at_validation.append(token in self.challenge_store)
            return httpx.Response(202, headers=self._nonce_headers(), json={"status": "pending"})
        if path == "/acme/new-cert":
            headers = {**self._nonce_headers(), "Location": f"{self.base}/acme/cert/{n}"}
            return httpx.Response(201, headers=headers, content=self.cert_body)
        if path == "/acme/revoke-cert":
            return httpx.Response(200, headers=self._nonce_headers())
        return httpx.Response(404, headers=self._nonce_headers())

    def count(self, method: str, path: str) -> int:
        with self._lock:
            return sum(1 for m, p in self.requests if m == method and p == path)


def make_config(**overrides: Any) -> LoadConfig:
    values: dict[str, Any] = {
        "api_base": API_BASE,
        "challenge_port": 0,
        "rate": 20.0,
        "max_regs": 0,
        "key_size": TEST_KEY_SIZE,
        "domain_base": "example.test",
        "duration_seconds": 0.5,
        "timeout_seconds": 5.0,
        "drain_timeout_seconds": 2.0,
        "challenge_host": "127.0.0.1",
    }
    values.update(overrides)
    return LoadConfig(**values)


@pytest.fixture(scope="session")
def cert_key():
    """Engine certificate key, generated once for the whole session."""
    return generate_rsa_key(TEST_KEY_SIZE)


@pytest.fixture(scope="session")
def account_key():
    return generate_rsa_key(TEST_KEY_SIZE)


@pytest.fixture
def fake_acme():
    return FakeACMEServer()


@pytest.fixture
def recording_logger():
    return RecordingLogger()


@pytest.fixture
def make_state(fake_acme, cert_key, recording_logger):
    """Factory building an EngineState wired to the fake ACME server."""

    def _make(**overrides: Any) -> EngineState:
        state = EngineState(
            make_config(**overrides),
            http=fake_acme.client(),
            cert_key=cert_key,
            logger=recording_logger,
            seed=1234,
        )
        fake_acme.challenge_store = state.challenges
        return state

    return _make
