"""Test configuration."""

import os
from collections.abc import Iterator
from typing import List

import pytest
from pytest import Config
from structlog.contextvars import clear_contextvars

# Must be set before settings are created so test databases are used
os.environ.setdefault("TESTING", "true")

from truthchain.core.logging import configure_logging  # noqa: E402

pytest_plugins: List[str] = [
    "tests.fixtures.cache",
    "tests.fixtures.db",
    "tests.fixtures.chain",
    "tests.fixtures.api",
]


@pytest.fixture(autouse=True)
def clean_log_context() -> Iterator[None]:
    """Drop correlation ids bound by a previous request."""
    clear_contextvars()
    yield
    clear_contextvars()


def pytest_configure(config: Config) -> None:
    """Configure pytest.

    Args:
        config: Pytest configuration object
    """
    configure_logging(testing=True)
