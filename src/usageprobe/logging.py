import logging
import sys
from typing import Any, MutableMapping

import structlog

# event keys whose values are credentials and must never be logged whole
SECRET_KEYS = frozenset(
    {
        "access_token",
        "refresh_token",
        "id_token",
        "token",
        "session_key",
        "cookie",
        "authorization",
    }
)


def mask_secret(secret: "str | None", visible: "int" = 8) -> "str":
    """
    keeps a short prefix of a token or session key for log lines.
    """
    if not secret:
        return "<empty>"
    if len(secret) <= visible:
        return "*" * len(secret)
    return f"{secret[:visible]}...({len(secret)} chars)"


def redact_secrets(
    logger: "Any",
    method_name: "str",
    event_dict: "MutableMapping[str, Any]",
) -> "MutableMapping[str, Any]":
    for key, value in event_dict.items():
        if key.lower() in SECRET_KEYS and isinstance(value, str) and "..." not in value:
            event_dict[key] = mask_secret(value)
    return event_dict


def setup_logging(level: "str") -> "None":
    """
    configures structlog on top of the stdlib logger at the given
    level name. Everything goes to stderr; stdout is reserved for the
    probe report.
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, level.upper(), logging.INFO),
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            redact_secrets,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
