from __future__ import annotations

import threading


class ChallengeStore:
    """Shared map from HTTP-01 token to the key authorization to serve.

    Written by authorization actions on the event loop and read by the
    responder's server threads.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._responses: dict[str, str] = {}

    def add(self, token: str, key_authorization: str) -> None:
        with self._lock:
            self._responses[token] = key_authorization

    def get(self, token: str) -> str | None:
        with self._lock:
            return self._responses.get(token)

    def remove(self, token: str) -> None:
        with self._lock:
            self._responses.pop(token, None)

    def __contains__(self, token: object) -> bool:
        with self._lock:
            return token in self._responses

    def __len__(self) -> int:
        with self._lock:
            return len(self._responses)
