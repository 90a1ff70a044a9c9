"""
Custody - Structured Logging Configuration
===========================================
structlog on top of stdlib logging, so every module logger (including the
audit recovery channel) can be captured and routed by handler config.

Console output in development, one JSON object per line otherwise.
"""

import logging
import sys

import structlog

from custody.config import settings

# Secondary channel for audit entries that could not be persisted.
AUDIT_RECOVERY_LOGGER = "custody.audit.recovery"

# Event keys whose values never reach a log line.
MASKED_KEYS = frozenset({"password", "new_password", "current_password", "hashed_secret", "token"})
MASK = "[REDACTED]"


def mask_secrets(logger, method_name, event_dict):
    """structlog processor replacing credential values."""
    for key in MASKED_KEYS.intersection(event_dict):
        event_dict[key] = MASK
    return event_dict


def _use_console() -> bool:
    if settings.log_json is not None:
        return not settings.log_json
    return settings.debug or settings.environment == "development"


def configure_logging() -> None:
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        mask_secrets,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if _use_console():
        processors.append(structlog.dev.ConsoleRenderer(colors=True))
    else:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level, logging.INFO),
    )


# Configure on import
configure_logging()
