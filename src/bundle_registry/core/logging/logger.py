"""
Thin logging facade.

Call sites pass structured context through ``data=`` instead of formatting it
into the message::

    logger = get_logger(__name__)
    logger.warning("Failed to parse manifest", data={"path": path, "error": str(exc)})

Records go through the standard :mod:`logging` module so host applications keep
control over handlers and levels.
"""

from __future__ import annotations

import logging
import sys
from typing import Any

_ROOT_LOGGER_NAME = "bundle_registry"
_configured = False


def _render_data(data: dict[str, Any] | None) -> str:
    if not data:
        return ""
    parts = [f"{key}={data[key]!r}" for key in sorted(data)]
    return " [" + " ".join(parts) + "]"


def redact_token(token: str | None) -> str:
    """Return a short non-reversible preview of a credential."""
    if not token:
        return "<none>"
    if len(token) <= 8:
        return "***"
    return f"{token[:4]}...{token[-2:]}"


class Logger:
    def __init__(self, name: str) -> None:
        self.name = name
        self._logger = logging.getLogger(name)

    def _log(
        self,
        level: int,
        message: str,
        data: dict[str, Any] | None,
        exc_info: Any = None,
    ) -> None:
        if not self._logger.isEnabledFor(level):
            return
        self._logger.log(
            level,
            "%s%s",
            message,
            _render_data(data),
            exc_info=exc_info,
            extra={"data": data or {}},
        )

    def debug(self, message: str, data: dict[str, Any] | None = None) -> None:
        self._log(logging.DEBUG, message, data)

    def info(self, message: str, data: dict[str, Any] | None = None) -> None:
        self._log(logging.INFO, message, data)

    def warning(self, message: str, data: dict[str, Any] | None = None) -> None:
        self._log(logging.WARNING, message, data)

    def error(
        self,
        message: str,
        data: dict[str, Any] | None = None,
        exc_info: Any = None,
    ) -> None:
        self._log(logging.ERROR, message, data, exc_info=exc_info)

    def exception(self, message: str, data: dict[str, Any] | None = None) -> None:
        self._log(logging.ERROR, message, data, exc_info=True)


def get_logger(name: str) -> Logger:
    return Logger(name)


class LoggingConfig:
    @staticmethod
    def configure(level: str | int = "WARNING", stream: Any = None) -> None:
        """Install a single stream handler on the package root logger."""
        global _configured
        root = logging.getLogger(_ROOT_LOGGER_NAME)
        root.setLevel(level if isinstance(level, int) else level.upper())
        if _configured:
            return
        handler = logging.StreamHandler(stream or sys.stderr)
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        root.addHandler(handler)
        _configured = True
