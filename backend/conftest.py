"""Root conftest: test environment from .env.tests and structlog wired for caplog."""

from pathlib import Path

import pytest
import structlog
from dotenv import load_dotenv

from accounts.logging import configure_structlog

ENV_FILE = Path(__file__).resolve().parent.parent / ".env.tests"

load_dotenv(ENV_FILE)
configure_structlog()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Bound context vars must not carry over from one test to the next."""
    structlog.contextvars.clear_contextvars()
    yield
    structlog.contextvars.clear_contextvars()
