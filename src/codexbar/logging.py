import logging
import sys

import structlog

# third-party loggers that are chatty below WARNING
_NOISY_LOGGERS: "tuple[str, ...]" = ("httpx", "httpcore")


def setup_logging(level: "str") -> "None":
    """
    configures structlog on top of stdlib logging for a one-shot CLI.

    Everything is written to stderr; stdout is reserved for the usage
    and snapshot documents. Unknown level names fall back to WARNING.
    """
    numeric_level = getattr(logging, level.upper(), logging.WARNING)
    logging.basicConfig(
        format="%(message)s",
        level=numeric_level,
        stream=sys.stderr,
    )
    if numeric_level > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
