"""Per-call exceptions raised while executing a dispatch cycle.

These never escape a single cycle: the dispatcher logs them, records a failed
latency sample and moves on.
"""

from typing import Any

from loadgen.exceptions.base import LoadGenError


class DispatchError(LoadGenError):
    """Base exception for failures local to one dispatch cycle."""

    default_code = "DISPATCH"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(code=self.default_code, message=message, details=details)


class NetworkError(DispatchError):
    """Transport-level failure reaching the target server.

    Root cause: connection refused, timeout, or a broken response stream.
    Remediation: check that the target is reachable from the load generator.
    """

    default_code = "NETWORK"


class ProtocolError(DispatchError):
    """The target answered, but without a field the flow depends on.

    Root cause: missing Replay-Nonce header, unexpected status code, or a
    response body without the expected challenge/location data.
    """

    default_code = "PROTOCOL"


class SigningError(DispatchError):
    """Producing the signed JWS envelope failed."""

    default_code = "SIGNING"


class CycleAbortedError(DispatchError):
    """The run is stopping; the cycle gave up before its next network step."""

    default_code = "ABORTED"
