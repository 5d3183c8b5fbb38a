from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from loadgen.exceptions import ConfigurationError


class Action(str, Enum):
    """Protocol actions a dispatch cycle can perform.

    Values double as the endpoint path segment under ``<api-base>/acme/``.
    """

    NEW_REGISTRATION = "new-reg"
    NEW_AUTHORIZATION = "new-authz"
    NEW_CERTIFICATE = "new-cert"
    REVOKE_CERTIFICATE = "revoke-cert"


@dataclass(frozen=True)
class LoadConfig:
    api_base: str
    challenge_port: int
    rate: float
    max_regs: int
    key_size: int
    domain_base: str
    duration_seconds: float
    timeout_seconds: float = 30.0
    workers: int | None = None
    drain_timeout_seconds: float = 10.0
    challenge_ttl_seconds: float = 300.0
    contact_email: str = "loadgen@example.com"
    challenge_host: str = "0.0.0.0"

    def validate(self) -> None:
        """Raise ConfigurationError for settings the run cannot start with."""

        problems: dict[str, Any] = {}
        if not self.api_base.startswith(("http://", "https://")):
            problems["api_base"] = self.api_base
        if not 0 <= self.challenge_port <= 65535:
            problems["challenge_port"] = self.challenge_port
        if self.rate <= 0:
            problems["rate"] = self.rate
        if self.max_regs < 0:
            problems["max_regs"] = self.max_regs
        if self.key_size < 1024:
            problems["key_size"] = self.key_size
        if not self.domain_base.strip(".").strip():
            problems["domain_base"] = self.domain_base
        if self.duration_seconds < 0:
            problems["duration_seconds"] = self.duration_seconds
        if self.timeout_seconds <= 0:
            problems["timeout_seconds"] = self.timeout_seconds
        if self.workers is not None and self.workers < 1:
            problems["workers"] = self.workers
        if problems:
            raise ConfigurationError("invalid load generator settings", details=problems)


@dataclass
class RunResult:
    started_at_monotonic: float
    ended_at_monotonic: float
    cycles_launched: int
    cycles_completed: int
    cycles_failed: int
    cycles_cancelled: int = 0
    registrations: int = 0
    latency_report: dict[str, Any] = field(default_factory=dict)

    @property
    def duration_seconds(self) -> float:
        return max(0.0, self.ended_at_monotonic - self.started_at_monotonic)

    @property
    def launch_rate(self) -> float:
        duration = self.duration_seconds
        return (self.cycles_launched / duration) if duration > 0 else 0.0


_DURATION_RE = re.compile(r"^(?P<value>\d+(?:\.\d+)?)(?P<unit>ms|s|m|h)?$")
_UNIT_SECONDS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(raw: str) -> float:
    """Parse '500ms', '30s', '5m', '1h' (or bare seconds) into seconds."""
    match = _DURATION_RE.match(raw.strip())
    if not match:
        raise ConfigurationError(
            "duration must match <number>[ms|s|m|h]",
            details={"provided": raw},
        )
    return float(match.group("value")) * _UNIT_SECONDS[match.group("unit") or "s"]
