"""Logging setup — structlog on top of stdlib logging.

Learn: Modules call structlog.get_logger() and log event names with
key/value context. configure_logging() routes everything (ours, uvicorn's,
SQLAlchemy's) through one stdlib handler: pretty console output in
development, one JSON object per line everywhere else.

Per-connection context (session_id, request_id) is bound with
structlog.contextvars and merged into every entry.

Exceptions in background tasks and uncaught exceptions are logged
here too; they never close live sessions.
"""

import asyncio
import logging
import sys

import structlog


def configure_logging(level: str = "INFO", json_logs: bool = False) -> None:
    """Configure structlog and the stdlib root logger."""
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    structlog.configure(
        processors=shared_processors + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    if json_logs:
        renderer = structlog.processors.JSONRenderer()
        final = [structlog.processors.format_exc_info, renderer]
    else:
        final = [structlog.dev.ConsoleRenderer()]

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta] + final,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level.upper())

    # uvicorn installs its own handlers; send its records through ours.
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uv_logger = logging.getLogger(name)
        uv_logger.handlers.clear()
        uv_logger.propagate = True


def install_fault_handlers(loop: asyncio.AbstractEventLoop) -> None:
    """Log unhandled task exceptions and uncaught exceptions."""
    logger = structlog.get_logger("rowcast.faults")

    def loop_handler(loop, context):
        exc = context.get("exception")
        logger.error(
            "rowcast.unhandled_task_error",
            message=context.get("message"),
            exc_info=exc,
        )

    def excepthook(exc_type, exc, tb):
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc, tb)
            return
        logger.critical("rowcast.uncaught_exception", exc_info=(exc_type, exc, tb))

    loop.set_exception_handler(loop_handler)
    sys.excepthook = excepthook
