"""Root conftest: relay test environment and log routing."""

from pathlib import Path

import pytest
import structlog
from dotenv import load_dotenv

from shared.logging import configure_structlog

# RelaySettings refuses to build without OPERATOR_PRIVATE_KEY.
load_dotenv(Path(__file__).resolve().parent.parent / ".env.tests")

# No handlers are installed, so records reach pytest's caplog untouched.
configure_structlog()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Connection ids and players bound by one test must not show up in the next."""
    structlog.contextvars.clear_contextvars()
    yield
    structlog.contextvars.clear_contextvars()
