import logging
import sys

import structlog

from . import config


def configure_logging(level: str = None, json_output: bool = None) -> None:
    """
    Configure structlog on top of the stdlib root logger.

    Production emits one JSON object per line; everywhere else uses the
    human-readable console renderer.
    """
    level = (level or config.LOG_LEVEL).upper()
    if json_output is None:
        json_output = config.IS_PRODUCTION

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if json_output:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        # the console renderer formats exceptions itself
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level)
        ),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
