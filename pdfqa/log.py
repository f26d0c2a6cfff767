"""structlog setup shared by the HTTP app and the CLI scripts."""
import logging

import structlog

from pdfqa import config


def configure_logging(level: str = None, json: bool = True) -> None:
    """Configure structlog with ISO timestamps and a level filter.

    Args:
        level: Log level name (default from config.LOG_LEVEL)
        json: Render JSON lines; falls back to the console renderer otherwise
    """
    level_name = (level or config.LOG_LEVEL).upper()
    numeric_level = logging.getLevelName(level_name)
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    logging.basicConfig(format="%(message)s", level=numeric_level)

    renderer = (
        structlog.processors.JSONRenderer()
        if json
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
