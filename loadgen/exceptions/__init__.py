"""Exception hierarchy for acme-loadgen."""

from loadgen.exceptions.base import ConfigurationError, LoadGenError, ValidationError
from loadgen.exceptions.dispatch import (
    CycleAbortedError,
    DispatchError,
    NetworkError,
    ProtocolError,
    SigningError,
)

__all__ = [
    "LoadGenError",
    "ValidationError",
    "ConfigurationError",
    "DispatchError",
    "CycleAbortedError",
    "NetworkError",
    "ProtocolError",
    "SigningError",
]
