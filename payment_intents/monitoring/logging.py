"""
Structured logging for the payment intents service.

Every event is rendered as one JSON object carrying the service name and
environment. Request ids are merged from contextvars by the HTTP
middleware; intent-scoped loggers carry the intent id on every event.
Client idempotency keys are truncated before rendering.
"""
import logging
import sys
from typing import Any, Dict, List, Optional

import structlog
from pythonjsonlogger.json import JsonFormatter

from payment_intents.config import Settings, get_settings

EventDict = Dict[str, Any]

IDEMPOTENCY_KEY_VISIBLE_CHARS = 8

QUIET_LOGGERS = ("uvicorn.access", "httpx")


def service_context(settings: Settings) -> Any:
    """Processor adding ``service`` and ``environment`` unless already bound."""

    def add_service_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service", settings.app_name)
        event_dict.setdefault("environment", settings.app_env)
        return event_dict

    return add_service_context


def truncate_idempotency_key(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Keys are client-chosen and may embed customer identifiers."""
    key = event_dict.get("idempotency_key")
    if isinstance(key, str) and len(key) > IDEMPOTENCY_KEY_VISIBLE_CHARS:
        event_dict["idempotency_key"] = key[:IDEMPOTENCY_KEY_VISIBLE_CHARS] + "..."
    return event_dict


def build_processors(settings: Settings) -> List[Any]:
    """Processor chain shared by every structlog logger in the service."""
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        service_context(settings),
        truncate_idempotency_key,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer(sort_keys=True),
    ]


def _json_handler() -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={"asctime": "@timestamp", "levelname": "level", "name": "logger"},
        )
    )
    return handler


def setup_logging(settings: Optional[Settings] = None) -> None:
    """
    Route structlog and stdlib logging to a single JSON stream on stdout.

    Safe to call more than once; the root handlers are replaced each time.

    Args:
        settings: Optional settings (defaults to the cached instance)
    """
    settings = settings or get_settings()

    structlog.configure(
        processors=build_processors(settings),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(settings.log_level)
    root_logger.handlers = [_json_handler()]

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    get_logger(__name__).info(
        "logging_configured", log_level=settings.log_level, production=settings.is_production
    )


def get_logger(name: str, **context: Any) -> Any:
    """
    Get a structured logger, optionally pre-bound with ``context``.

    Args:
        name: Logger name
        **context: Fields added to every event from this logger

    Returns:
        Any: Structured logger
    """
    logger = structlog.get_logger(name)
    return logger.bind(**context) if context else logger


def intent_logger(name: str, intent_id: str, **context: Any) -> Any:
    """Logger whose events all carry ``intent_id``."""
    return get_logger(name, intent_id=intent_id, **context)
