"""Logging configuration utilities."""

import logging
import shlex
import sys

import structlog

REDACTED = "[REDACTED]"

# Name fragments marking a value as secret, in log keys, worker flags
# (--bot-token abc, --password=abc) and KEY=VALUE command arguments.
SENSITIVE_MARKERS = (
    "token",
    "secret",
    "password",
    "passwd",
    "credential",
    "api_key",
    "apikey",
)


def _is_sensitive(name: str) -> bool:
    lowered = name.lower().replace("-", "_")
    return any(marker in lowered for marker in SENSITIVE_MARKERS)


def redact_command(command: str) -> str:
    """Hide secret values passed on a worker command line."""
    try:
        parts = shlex.split(command)
    except ValueError:
        return command

    redacted = []
    hide_next = False
    for part in parts:
        if hide_next:
            redacted.append(REDACTED)
            hide_next = False
            continue

        name, sep, _ = part.partition("=")
        if sep and _is_sensitive(name):
            redacted.append(f"{shlex.quote(name)}={REDACTED}")
        else:
            redacted.append(shlex.quote(part))
            hide_next = part.startswith("-") and not sep and _is_sensitive(part)
    return " ".join(redacted)


def _redact_sensitive(_, __, event_dict: dict) -> dict:
    """Redact secrets from worker commands and secret-named fields."""
    for key in list(event_dict.keys()):
        value = event_dict[key]
        if key == "command" and isinstance(value, str):
            event_dict[key] = redact_command(value)
        elif _is_sensitive(key):
            event_dict[key] = REDACTED
    return event_dict


def setup_logging(log_level: str = "INFO", log_format: str = "console") -> None:
    """Configure structured logging."""

    level = getattr(logging, log_level.upper())

    # Configure standard logging
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=level,
    )

    # Configure structlog processors
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
        _redact_sensitive,
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
