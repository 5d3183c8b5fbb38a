from __future__ import annotations

import logging
import sys
from typing import Any

from loadgen.logger.base import Logger

_FORMAT = "%(asctime)s %(levelname)-8s %(name)s %(message)s"


def _render_fields(fields: dict[str, Any]) -> str:
    parts = []
    for key, value in fields.items():
        if key == "event":
            continue
        text = str(value)
        if " " in text or not text:
            text = repr(text)
        parts.append(f"{key}={text}")
    return " ".join(parts)


class ConsoleLogger(Logger):
    """Logger writing ``message key=value ...`` lines to stderr."""

    def __init__(self, name: str = "loadgen", level: int = logging.INFO) -> None:
        self._logger = logging.getLogger(name)
        self._logger.setLevel(level)
        if not self._logger.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(logging.Formatter(_FORMAT))
            self._logger.addHandler(handler)
        self._logger.propagate = False

    def set_level(self, level: int) -> None:
        self._logger.setLevel(level)

    def _log(self, level: int, message: str, kwargs: dict[str, Any]) -> None:
        if not self._logger.isEnabledFor(level):
            return
        rendered = _render_fields(kwargs)
        self._logger.log(level, f"{message} {rendered}" if rendered else message)

    def debug(self, message: str, **kwargs: Any) -> None:
        self._log(logging.DEBUG, message, kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        self._log(logging.INFO, message, kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self._log(logging.WARNING, message, kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self._log(logging.ERROR, message, kwargs)

    def critical(self, message: str, **kwargs: Any) -> None:
        self._log(logging.CRITICAL, message, kwargs)
