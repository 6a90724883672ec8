"""Pytest configuration for tasklane tests."""

import pytest

from tasklane.logging import Logger

from helpers.logging import LoggerStub


@pytest.fixture
def logger() -> Logger:
    """Provide a logger that discards all output."""
    return LoggerStub()
