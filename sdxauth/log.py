"""Logging utilities for sdxauth.

Every component logs through children of the ``sdxauth`` logger
(``sdxauth.auth``, ``sdxauth.backend``). Token material must pass
through :func:`redact_sensitive_data` or :func:`mask_token` first.
"""

from __future__ import annotations

import logging
import re
import sys

from typing import TYPE_CHECKING, Any


if TYPE_CHECKING:
    from .config import LogSettings


class _LoggerHolder:
    """Holder for the global logger instance."""

    instance: logging.Logger | None = None


def get_logger() -> logging.Logger:
    """Get the sdxauth logger instance.

    Returns
    -------
    logging.Logger
        The sdxauth logger configured with a stream handler.
    """
    if _LoggerHolder.instance is None:
        logger = logging.getLogger("sdxauth")
        logger.setLevel(logging.WARNING)

        # Only add handler if none exists
        if not logger.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setLevel(logging.DEBUG)
            formatter = logging.Formatter("%(name)s - %(levelname)s - %(message)s")
            handler.setFormatter(formatter)
            logger.addHandler(handler)

        _LoggerHolder.instance = logger

    return _LoggerHolder.instance


def set_level(level: int | str) -> None:
    """Set the logging level.

    Parameters
    ----------
    level : int or str
        The logging level (e.g., logging.DEBUG, "DEBUG").
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper())
    get_logger().setLevel(level)


def enable_debug() -> None:
    """Enable verbose logging of flows, polling and refresh ticks."""
    set_level(logging.DEBUG)


def configure(settings: LogSettings) -> logging.Logger:
    """Apply log settings to the sdxauth logger.

    Parameters
    ----------
    settings : LogSettings
        Level and format to apply.

    Returns
    -------
    logging.Logger
        The configured logger.
    """
    logger = get_logger()
    set_level(settings.level)
    formatter = logging.Formatter(settings.format)
    for handler in logger.handlers:
        handler.setFormatter(formatter)
    return logger


def mask_token(token: str | None, visible: int = 8) -> str:
    """Shorten a token for log output.

    Parameters
    ----------
    token : str or None
        The token to mask.
    visible : int
        Number of leading characters kept.

    Returns
    -------
    str
        The leading characters followed by an ellipsis.
    """
    if not token:
        return "<none>"
    if len(token) <= visible:
        return "*" * len(token)
    return f"{token[:visible]}..."


# Substrings of dict keys whose values never reach a log record
_SENSITIVE_KEYS = frozenset(
    {
        "secret",
        "password",
        "token",
        "code",
        "verifier",
        "authorization",
        "credential",
    }
)

_JWT_SHAPE = re.compile(r"^eyJ[\w-]*\.[\w-]*\.[\w-]*$")


def _is_sensitive_key(key: Any) -> bool:
    name = str(key).lower()
    return any(part in name for part in _SENSITIVE_KEYS)


def redact_sensitive_data(data: Any, max_depth: int = 5) -> Any:
    """Return a copy of ``data`` that is safe to log.

    Values under keys such as ``id_token``, ``refresh_token``,
    ``device_code`` or ``client_secret`` become ``"[REDACTED]"``. JWT-shaped
    strings found anywhere else are shortened with :func:`mask_token`.
    Nesting deeper than ``max_depth`` is replaced by ``"[MAX_DEPTH]"``.
    """
    if max_depth <= 0:
        return "[MAX_DEPTH]"
    if isinstance(data, dict):
        return {
            k: "[REDACTED]" if _is_sensitive_key(k) else redact_sensitive_data(v, max_depth - 1)
            for k, v in data.items()
        }
    if isinstance(data, (list, tuple)):
        return [redact_sensitive_data(item, max_depth - 1) for item in data]
    if isinstance(data, str) and _JWT_SHAPE.match(data):
        return mask_token(data)
    return data
