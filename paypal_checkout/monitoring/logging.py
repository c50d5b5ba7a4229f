"""
Structured logging configuration.

structlog builds the event, python-json-logger writes it: the event dict is
handed to the stdlib record as extra fields, so every line is one flat JSON
object carrying timestamp, level, logger, message and the bound context.
Bearer tokens and webhook signatures never reach the output.
"""
import logging
import re
import sys
from typing import IO, Any, Optional

import structlog
from pythonjsonlogger import jsonlogger

from paypal_checkout.config import get_settings

REDACTED = "[REDACTED]"

# Compared after lower-casing and mapping "_" to "-"
SENSITIVE_KEYS = frozenset(
    {
        "authorization",
        "access-token",
        "client-secret",
        "paypal-transmission-sig",
    }
)

BEARER_PATTERN = re.compile(r"(Bearer\s+)[A-Za-z0-9\-._~+/]+=*", re.IGNORECASE)


def _is_sensitive(key: Any) -> bool:
    return isinstance(key, str) and key.lower().replace("_", "-") in SENSITIVE_KEYS


def _redact(value: Any) -> Any:
    if isinstance(value, str):
        return BEARER_PATTERN.sub(rf"\1{REDACTED}", value)
    if isinstance(value, dict):
        return {k: REDACTED if _is_sensitive(k) else _redact(v) for k, v in value.items()}
    return value


def redact_secrets(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Mask credentials and signatures, including ones nested in header dicts."""
    for key, value in list(event_dict.items()):
        event_dict[key] = REDACTED if _is_sensitive(key) else _redact(value)
    return event_dict


def add_app_context(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    settings = get_settings()
    event_dict["app_name"] = settings.app_name
    event_dict["app_env"] = settings.app_env
    return event_dict


def setup_logging(stream: Optional[IO[str]] = None) -> None:
    """
    Configure structured JSON logging.

    Args:
        stream: Where log lines go (stdout if omitted)
    """
    settings = get_settings()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            add_app_context,
            redact_secrets,
            structlog.stdlib.render_to_log_kwargs,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.log_level))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    json_handler = logging.StreamHandler(stream or sys.stdout)
    json_handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={
                "asctime": "@timestamp",
                "levelname": "level",
                "name": "logger",
            },
        )
    )
    root_logger.addHandler(json_handler)

    # httpx logs every request URL at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    structlog.get_logger(__name__).info(
        "logging_configured",
        log_level=settings.log_level,
        app_env=settings.app_env,
    )
