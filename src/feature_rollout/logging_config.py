import logging
import warnings

import structlog


def configure_logging(level: int = logging.INFO):
    logging.basicConfig(level=level, format="%(message)s")
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
    )

    # aiosqlite and the asyncpg driver are chatty at INFO
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    # Suppress a known PendingDeprecationWarning from starlette.formparsers about
    # `multipart` import; it's noisy in test output and not actionable for us.
    warnings.filterwarnings(
        "ignore",
        category=PendingDeprecationWarning,
        module=r"starlette\.formparsers",
    )


def get_logger(name: str | None = None):
    if not structlog.is_configured():
        configure_logging()
    return structlog.get_logger(name)
