from __future__ import annotations

import threading
from dataclasses import dataclass, field
from random import Random

from cryptography.hazmat.primitives.asymmetric import rsa

from loadgen.core.signing import JWSSigner
from loadgen.exceptions import ValidationError


@dataclass(frozen=True)
class Authorization:
    url: str
    domain: str
    token: str


@dataclass(frozen=True)
class ClientState:
    """Point-in-time copy of a client's mutable state."""

    authorizations: tuple[Authorization, ...]
    certificates: tuple[str, ...]


@dataclass(eq=False)
class ClientRecord:
    """One simulated ACME account.

    ``key``, ``signer`` and ``registration_url`` never change after
    construction. The authorization and certificate sequences are append-only
    and only touched under the record's own lock.
    """

    key: rsa.RSAPrivateKey
    signer: JWSSigner
    registration_url: str | None = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _authorizations: list[Authorization] = field(default_factory=list, repr=False)
    _certificates: list[str] = field(default_factory=list, repr=False)

    def add_authorization(self, authz: Authorization) -> None:
        with self._lock:
            self._authorizations.append(authz)

    def add_certificate(self, certificate_id: str) -> None:
        with self._lock:
            self._certificates.append(certificate_id)

    def snapshot(self) -> ClientState:
        with self._lock:
            return ClientState(tuple(self._authorizations), tuple(self._certificates))


class ClientRegistry:
    """Growable, thread-safe collection of client records.

    The registry lock covers only list appends and index picks. It is never
    held while a record's own lock is taken or across network I/O.
    """

    def __init__(self, max_size: int = 0, *, seed: int | None = None) -> None:
        if max_size < 0:
            raise ValidationError("max_size must be >= 0", details={"max_size": max_size})
        self.max_size = max_size
        self._lock = threading.Lock()
        self._records: list[ClientRecord] = []
        self._reserved = 0
        self._rng = Random(seed)

    def size(self) -> int:
        with self._lock:
            return len(self._records)

    def __len__(self) -> int:
        return self.size()

    def has_capacity(self) -> bool:
        """True when another registration may be started."""
        with self._lock:
            return self._has_room()

    def reserve(self) -> bool:
        """Claim a slot for a registration about to be sent.

        Returns False when the registry, counting in-flight registrations, is
        already at ``max_size``. Unbounded registries always succeed.
        """
        with self._lock:
            if not self._has_room():
                return False
            self._reserved += 1
            return True

    def release(self) -> None:
        """Give back a reservation whose registration failed."""
        with self._lock:
            if self._reserved > 0:
                self._reserved -= 1

    def add(self, record: ClientRecord, *, reserved: bool = False) -> None:
        with self._lock:
            if reserved and self._reserved > 0:
                self._reserved -= 1
            self._records.append(record)

    def random_pick(self) -> ClientRecord | None:
        with self._lock:
            if not self._records:
                return None
            return self._records[self._rng.randrange(len(self._records))]

    def _has_room(self) -> bool:
        return self.max_size == 0 or len(self._records) + self._reserved < self.max_size
