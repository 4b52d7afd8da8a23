"""structlog setup shared by the API server and the CLI.

Every module logs through ``logging.getLogger(__name__)``; those records and
structlog's own loggers are rendered by one processor chain, as JSON when
``APP_ENV=prod`` and as console lines otherwise.
"""

import logging
import os
import re
import sys
from collections.abc import Iterable

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

_INLINE_PAYLOAD = re.compile(r"data:[\w.+-]+/[\w.+-]+;base64,[A-Za-z0-9+/=]+")
_CHATTY_LOGGERS = ("httpx", "httpcore")


def scrub_inline_payloads(_: WrappedLogger, __: str, event_dict: EventDict) -> EventDict:
    """Replace embedded ``data:`` URLs in the rendered message with their size."""
    event = event_dict.get("event")
    if isinstance(event, str) and "base64," in event:
        event_dict["event"] = _INLINE_PAYLOAD.sub(
            lambda found: f"<inline payload {len(found.group(0))} chars>", event
        )
    return event_dict


def configure_logging(
    level: str,
    json_output: bool | None = None,
    *,
    quiet: Iterable[str] = _CHATTY_LOGGERS,
) -> None:
    """Install the structlog handler on the root logger.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR).
        json_output: Force JSON output. If None, JSON only when APP_ENV is prod.
        quiet: Loggers held at WARNING unless ``level`` is DEBUG.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    if json_output is None:
        json_output = os.environ.get("APP_ENV", "dev") == "prod"

    chain: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        scrub_inline_payloads,
        structlog.processors.StackInfoRenderer(),
    ]
    renderer: Processor = (
        structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[*chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=chain,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(log_level)

    quiet_level = log_level if log_level <= logging.DEBUG else max(log_level, logging.WARNING)
    for name in quiet:
        logging.getLogger(name).setLevel(quiet_level)


def bind_context(**kwargs: object) -> None:
    """Attach request-scoped keys such as ``chat_id`` to every later record."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()
