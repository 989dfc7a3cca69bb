# makeup_preview/utils/logging.py
import logging
import sys
from typing import Any

import orjson
import structlog
from structlog.typing import EventDict, Processor, WrappedLogger

from makeup_preview.data.settings import settings

_NOISY_LOGGERS = ("aiohttp.access", "httpx", "openai", "PIL")


def orjson_dumps(value: Any, **kwargs: Any) -> str:
    return orjson.dumps(value, default=str).decode()


def _add_service(_: WrappedLogger, __: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("service", "makeup_preview")
    return event_dict


def _pick_renderer(log_format: str) -> Processor:
    if log_format == "json" or (log_format == "auto" and not sys.stderr.isatty()):
        return structlog.processors.JSONRenderer(serializer=orjson_dumps)
    return structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())


def setup_logger(level: int | None = None, log_format: str | None = None) -> structlog.typing.FilteringBoundLogger:
    """
    Sends structlog events and stdlib records (aiohttp, openai, ...) through
    one stdout handler. `log_format` is "console", "json" or "auto"
    (console on a terminal, JSON lines otherwise).
    """
    chain: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _add_service,
        structlog.processors.format_exc_info,
    ]

    structlog.configure(
        processors=[*chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=chain,
            processor=_pick_renderer(log_format or settings.log_format),
        )
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level if level is not None else settings.logging_level)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return structlog.get_logger("makeup_preview")
