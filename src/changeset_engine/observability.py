"""Structured logging setup for the change-set engine.

All modules log through structlog with an event string and keyword context:

    logger = get_logger(__name__)
    logger.info("Change set started", change_set_id=record.id, scope=record.scope)

configure_logging() is called once from the application lifespan (or a test
fixture); get_logger() is safe to call at import time before that.
"""

import logging
import sys

import structlog

_configured = False


def configure_logging(level: str = "INFO", json_logs: bool = False) -> None:
    """Configure structlog and the stdlib root logger.

    Repeated calls only update the log level so fixtures and the app
    lifespan can both call this without stacking handlers.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR).
        json_logs: Render events as JSON lines instead of console output.
    """
    global _configured

    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    root = logging.getLogger()
    root.setLevel(numeric_level)
    if _configured:
        return

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(handler)

    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    _configured = True


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger bound to a module name.

    Args:
        name: Logger name, normally __name__.

    Returns:
        A structlog BoundLogger.
    """
    return structlog.get_logger(name)
