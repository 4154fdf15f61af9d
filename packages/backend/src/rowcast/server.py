"""Process entry point — runs the relay under uvicorn.

Learn: uvicorn handles SIGINT/SIGTERM in two phases, each bounded by
`shutdown_grace_seconds`:
1. Stop accepting connections, wait up to the grace period for open ones
2. Run the lifespan shutdown, which closes every session (same bound)

If something still hangs, a watchdog armed on the first signal exits
the process hard once both phases plus a margin have passed.

Usage:
    rowcast serve
    python -m rowcast
"""

import os
import sys
import threading
from typing import Optional

import structlog
import uvicorn

from rowcast.config import Settings, settings as default_settings
from rowcast.errors import ConfigError
from rowcast.log import configure_logging

logger = structlog.get_logger()

WATCHDOG_MARGIN_SECONDS = 5.0


def watchdog_seconds(grace: float) -> float:
    """Connection drain plus session close, plus a margin."""
    return 2 * grace + WATCHDOG_MARGIN_SECONDS


class RelayServer(uvicorn.Server):
    """uvicorn.Server with a forced-exit fallback on shutdown."""

    def __init__(self, config: uvicorn.Config, grace: float):
        super().__init__(config)
        self.grace = grace
        self._watchdog: Optional[threading.Timer] = None

    def handle_exit(self, sig, frame) -> None:
        if self._watchdog is None:
            self._watchdog = threading.Timer(watchdog_seconds(self.grace), self._force_exit)
            self._watchdog.daemon = True
            self._watchdog.start()
        super().handle_exit(sig, frame)

    def _force_exit(self) -> None:
        logger.error("rowcast.shutdown.forced", grace=self.grace)
        os._exit(1)


def build_config(app, settings: Settings, host: Optional[str] = None, port: Optional[int] = None) -> uvicorn.Config:
    return uvicorn.Config(
        app,
        host=host or settings.host,
        port=port or settings.port,
        log_config=None,
        timeout_graceful_shutdown=settings.shutdown_grace_seconds,
    )


def serve(settings: Optional[Settings] = None, host: Optional[str] = None, port: Optional[int] = None) -> None:
    """Validate config, then run until interrupted. Exits 1 on bad config."""
    settings = settings or default_settings
    configure_logging(settings.log_level, json_logs=settings.log_json)

    try:
        settings.require_database()
    except ConfigError as e:
        logger.error("rowcast.config_error", error=str(e))
        sys.exit(1)

    from rowcast.main import create_app

    config = build_config(create_app(settings), settings, host=host, port=port)
    server = RelayServer(config, grace=settings.shutdown_grace_seconds)
    server.run()
