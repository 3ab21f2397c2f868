"""structlog configuration."""

import logging
import sys

import structlog

from quota_proxy.config.logging_settings import LoggingSettings


_configured = False


def setup_logging(settings: LoggingSettings | None = None, *, force: bool = False) -> None:
    """Configure structlog once for the process.

    Args:
        settings: Logging settings, defaults are used when omitted
        force: Reconfigure even if logging was already set up
    """
    global _configured
    if _configured and not force:
        return

    settings = settings or LoggingSettings()
    level = logging.getLevelName(settings.level)

    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]
    if settings.json_output:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )
    _configured = True
