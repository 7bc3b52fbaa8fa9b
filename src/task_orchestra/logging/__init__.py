"""
Secret-safe logging for Task Orchestra.

Implements a redaction pipeline to prevent credential leakage: provider error
messages and subprocess stderr end up in log records, and those can carry API
keys or bearer tokens.
"""

from __future__ import annotations

import logging
import re

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "task_orchestra"
REDACTED = "[REDACTED]"

_SECRET_PATTERNS: tuple[re.Pattern[str], ...] = (
    # OpenAI / Anthropic / OpenRouter style keys
    re.compile(r"\bsk-[A-Za-z0-9_\-]{16,}"),
    re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._\-]{8,}"),
    re.compile(r"(?i)\b(api[_-]?key|token|secret|password)\s*[=:]\s*['\"]?[^\s'\",]{6,}"),
)


def redact(text: str) -> str:
    """Replace anything that looks like a credential in *text*."""

    for pattern in _SECRET_PATTERNS:
        text = pattern.sub(_replacement, text)
    return text


def _replacement(match: re.Match[str]) -> str:
    # Keep the key name of "key=value" pairs
    if match.lastindex:
        return f"{match.group(1)}={REDACTED}"
    return REDACTED


class RedactingFilter(logging.Filter):
    """Scrubs credentials from log records before any handler sees them."""

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            return True
        cleaned = redact(message)
        if cleaned != message:
            record.msg = cleaned
            record.args = None
        return True


def configure_logging(level: int | str = logging.WARNING, console: Console | None = None) -> logging.Logger:
    """Install a rich, redacting handler on the ``task_orchestra`` logger tree.

    Calling it again replaces the handler instead of stacking another one.
    """

    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        if getattr(handler, "_task_orchestra", False):
            logger.removeHandler(handler)

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
    )
    handler.addFilter(RedactingFilter())
    handler._task_orchestra = True  # type: ignore[attr-defined]
    logger.addHandler(handler)
    logger.setLevel(level)
    return logger


__all__ = [
    "LOGGER_NAME",
    "RedactingFilter",
    "configure_logging",
    "redact",
]
