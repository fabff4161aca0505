"""Shared test configuration and fixtures."""

import logging
import sys
import textwrap
from pathlib import Path

import pytest

from ordstack.cli import cleanup_logging
from ordstack.config import OrdstackConfig


@pytest.fixture(scope="function", autouse=True)
def cleanup_logging_handlers():
    """Automatically cleanup logging handlers after each test to prevent ResourceWarnings."""
    yield
    cleanup_logging()


@pytest.fixture(scope="function", autouse=True)
def reset_logging():
    """Reset logging configuration after each test."""
    yield
    # Clear all handlers and reset to default
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)
    # Reset logging level
    root_logger.setLevel(logging.WARNING)


@pytest.fixture
def config(tmp_path):
    """Regtest configuration rooted in a temporary directory with fast polling."""
    return OrdstackConfig(
        bitcoin_data_dir=tmp_path / "bitcoin",
        ord_data_dir=tmp_path / "ord",
        state_dir=tmp_path / "state",
        log_dir=tmp_path / "logs",
        bitcoind_ready_interval=0.02,
        bitcoind_ready_attempts=100,
        ord_ready_interval=0.02,
        ord_ready_attempts=100,
        sync_poll_interval=0.01,
        sync_timeout=1,
        bitcoind_stop_timeout=2,
        ord_stop_timeout=2,
        ord_command_timeout=10,
    )


@pytest.fixture
def cookie(config):
    """Write the cookie bitcoind would create on startup."""
    config.cookie_file.parent.mkdir(parents=True, exist_ok=True)
    config.cookie_file.write_text("__cookie__:secret")
    return config.cookie_file


@pytest.fixture
def write_script(tmp_path):
    """Create an executable Python script standing in for bitcoind or ord."""

    def _write(name: str, body: str) -> Path:
        path = tmp_path / "bin" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(f"#!{sys.executable}\n" + textwrap.dedent(body))
        path.chmod(0o755)
        return path

    return _write
