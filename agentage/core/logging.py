"""structlog setup shared by the API server and the CLI.

Every event is stamped with ``service``, ``env`` and ``version`` so that
lines from several deployments can share one aggregator. Bearer tokens,
device codes and client secrets are masked before anything is rendered.
"""

import logging
import sys

import structlog

from agentage import __version__
from agentage.core.config import Settings, get_settings

SECRET_KEYS = frozenset(
    {"access_token", "authorization", "client_secret", "device_code", "jwt_secret", "token"}
)
_QUIET_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine", "aiosqlite")

_configured = False


def add_service_context(settings: Settings) -> structlog.types.Processor:
    context = {"service": "agentage", "env": settings.app_env, "version": __version__}

    def processor(_logger, _method, event_dict):
        for key, value in context.items():
            event_dict.setdefault(key, value)
        return event_dict

    return processor


def mask_secrets(_logger, _method, event_dict):
    for key in SECRET_KEYS.intersection(event_dict):
        event_dict[key] = "***"
    return event_dict


def configure_logging(settings: Settings | None = None, *, force: bool = False) -> None:
    global _configured
    if _configured and not force:
        return

    settings = settings or get_settings()
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_service_context(settings),
        mask_secrets,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if settings.app_debug:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))
    else:
        processors += [structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        # add_logger_name needs a stdlib logger underneath
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level)
    # Per-request client and SQL chatter only at DEBUG
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))
    _configured = True


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    configure_logging()
    return structlog.get_logger(name)
