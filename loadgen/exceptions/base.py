"""Base exception classes for acme-loadgen.

Every error carries a machine-readable ``code``, a human message and an
optional ``details`` dict so that failures can be logged as structured events
and counted by error type.
"""

from typing import Any


class LoadGenError(Exception):
    """Base exception for all load generator errors."""

    def __init__(self, code: str, message: str, details: dict[str, Any] | None = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(str(self))

    def __str__(self) -> str:
        if self.details:
            return f"{self.code}: {self.message} (details: {self.details})"
        return f"{self.code}: {self.message}"


class ValidationError(LoadGenError):
    """Raised when a caller passes an out-of-range value at runtime.

    Examples: a non-positive rate handed to ``EngineState.set_rate`` or a
    negative registry size.
    """

    default_code = "VALIDATION"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(code=self.default_code, message=message, details=details)


class ConfigurationError(LoadGenError):
    """Raised at startup when the run cannot be configured.

    Root cause: invalid settings, key generation failure, or the challenge
    listener failing to bind.
    Remediation: fix the offending setting; the run never starts.
    """

    default_code = "CONFIGURATION"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(code=self.default_code, message=message, details=details)
