from __future__ import annotations

import http.server
import threading

from loadgen.challenge.store import ChallengeStore
from loadgen.exceptions import ConfigurationError
from loadgen.logger import Logger, session_logger

CHALLENGE_PATH_PREFIX = "/.well-known/acme-challenge/"


class ChallengeResponder:
    """HTTP-01 challenge server answered from a ChallengeStore.

    ``GET /.well-known/acme-challenge/<token>`` returns the registered key
    authorization with 200, or 404 for unknown tokens and other paths.
    Port 0 binds an ephemeral port; ``port`` holds the bound value after
    ``start()``.
    """

    def __init__(
        self,
        store: ChallengeStore,
        *,
        port: int,
        host: str = "0.0.0.0",
        logger: Logger | None = None,
    ) -> None:
        self._store = store
        self._host = host
        self._logger = logger or session_logger
        self.port = port

        self._server: http.server.ThreadingHTTPServer | None = None
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        store = self._store
        logger = self._logger

        class Handler(http.server.BaseHTTPRequestHandler):
            def do_GET(self) -> None:  # noqa: N802
                body: str | None = None
                if self.path.startswith(CHALLENGE_PATH_PREFIX):
                    token = self.path[len(CHALLENGE_PATH_PREFIX):]
                    body = store.get(token)

                if body is None:
                    logger.debug(
                        "loadgen.challenge_miss",
                        event="loadgen.challenge_miss",
                        path=self.path,
                    )
                    self.send_error(404)
                    return

                payload = body.encode("utf-8")
                self.send_response(200)
                self.send_header("Content-Type", "text/plain")
                self.send_header("Content-Length", str(len(payload)))
                self.end_headers()
                self.wfile.write(payload)
                logger.debug(
                    "loadgen.challenge_served",
                    event="loadgen.challenge_served",
                    path=self.path,
                )

            def log_message(self, format, *args):  # noqa: A002, ARG002
                pass

        class ReusableHTTPServer(http.server.ThreadingHTTPServer):
            allow_reuse_address = True
            daemon_threads = True

        try:
            self._server = ReusableHTTPServer((self._host, self.port), Handler)
        except OSError as exc:
            raise ConfigurationError(
                "challenge responder could not bind",
                details={"host": self._host, "port": self.port, "error": str(exc)},
            ) from exc

        self.port = int(self._server.server_port)
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()

        self._logger.info(
            "loadgen.challenge_responder_started",
            event="loadgen.challenge_responder_started",
            host=self._host,
            port=self.port,
        )

    def stop(self) -> None:
        if self._server:
            self._server.shutdown()
            self._server.server_close()
            self._server = None
        if self._thread:
            self._thread.join(timeout=5)
            self._thread = None

        self._logger.info(
            "loadgen.challenge_responder_stopped",
            event="loadgen.challenge_responder_stopped",
            port=self.port,
        )

    def url_for(self, token: str, host: str = "127.0.0.1") -> str:
        return f"http://{host}:{self.port}{CHALLENGE_PATH_PREFIX}{token}"

    def __enter__(self) -> "ChallengeResponder":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()
        return None
