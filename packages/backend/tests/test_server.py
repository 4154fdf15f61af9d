"""uvicorn wiring tests — shutdown bounds, no server started."""

import pytest
from fastapi import FastAPI

from rowcast.config import Settings
from rowcast.server import WATCHDOG_MARGIN_SECONDS, build_config, watchdog_seconds


def test_fractional_grace_reaches_uvicorn_unchanged():
    settings = Settings(_env_file=None, shutdown_grace_seconds=0.5)
    config = build_config(FastAPI(), settings)
    assert config.timeout_graceful_shutdown == 0.5


def test_host_and_port_overrides():
    settings = Settings(_env_file=None)
    config = build_config(FastAPI(), settings, host="127.0.0.1", port=9000)
    assert (config.host, config.port) == ("127.0.0.1", 9000)


@pytest.mark.parametrize("grace", [0.5, 10.0, 60.0])
def test_watchdog_outlasts_drain_and_session_close(grace):
    # uvicorn's drain and the lifespan's session close are each bounded by grace.
    assert watchdog_seconds(grace) == 2 * grace + WATCHDOG_MARGIN_SECONDS
    assert watchdog_seconds(grace) > grace + grace
