import logging
import os

import structlog
from dotenv import load_dotenv

load_dotenv()


def setup_logging(level: int | None = logging.INFO, json_logs: bool | None = None) -> None:
    """
    Configure structured logging for the monitor.

    Args:
        level: The logging level to use. Defaults to INFO.
        json_logs: Render one JSON object per line instead of the colored console
            output. Defaults to LOG_FORMAT=json from the environment.
    """
    if json_logs is None:
        json_logs = os.getenv("LOG_FORMAT", "console").lower() == "json"

    logging.basicConfig(level=level)
    logging.getLogger().setLevel(level)

    # Chatty client libraries stay at WARNING unless we are debugging
    for noisy in ("urllib3", "kafka"):
        logging.getLogger(noisy).setLevel(max(level or logging.INFO, logging.WARNING))

    if json_logs:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(
            colors=True,
            exception_formatter=structlog.dev.plain_traceback,
            pad_event=50,
        )

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        renderer,
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def level_from_env(default: str = "INFO") -> int:
    """Resolve LOG_LEVEL from the environment to a logging level"""
    name = os.getenv("LOG_LEVEL", default).upper()
    return getattr(logging, name, logging.INFO)


setup_logging(level=level_from_env())

