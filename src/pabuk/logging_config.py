"""structlog setup for processes that run the reward engine.

Every log line carries the deployment context (service, environment and
version) and, for events emitted from ``pabuk.*`` modules, the component
that produced it, e.g. ``ledger`` or ``streak_service``.
"""

import logging

import structlog

from pabuk.config import Settings

SERVICE_NAME = "pabuk-rewards"


def add_component(logger: object, method_name: str, event_dict: dict) -> dict:
    """Derive ``component`` from the stdlib logger name of a pabuk module."""
    name = event_dict.get("logger")
    if name and name.startswith("pabuk.") and "component" not in event_dict:
        event_dict["component"] = name.rsplit(".", 1)[-1]
    return event_dict


def _log_level(settings: Settings) -> int:
    if settings.debug:
        return logging.DEBUG
    return getattr(logging, settings.log_level.upper(), logging.INFO)


def setup_logging(settings: Settings) -> None:
    """Configure structlog and bind the deployment context for this process."""
    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer() if settings.log_format == "json" else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            add_component,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.bind_contextvars(
        service=SERVICE_NAME,
        environment=settings.environment,
        app_version=settings.app_version,
    )

    logging.basicConfig(level=_log_level(settings))
    logging.getLogger("pabuk").setLevel(_log_level(settings))
