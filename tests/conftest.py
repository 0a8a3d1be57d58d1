"""
Shared pytest fixtures for herald tests.

This module provides:
- In-memory SQLite connections with the herald tables created
- A controllable clock for backoff and lease assertions
- Registry and settings cleanup for test isolation
"""

import sqlite3
from datetime import UTC, datetime, timedelta
from typing import Generator

import pytest

from herald.core.schema import create_core_tables
from herald.core.settings import get_settings
from herald.execution.registry import HandlerRegistry, reset_default_registry


# =============================================================================
# Clock
# =============================================================================


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 1, 5, 12, 0, 0, tzinfo=UTC))


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def conn() -> Generator[sqlite3.Connection, None, None]:
    """In-memory database with the herald tables."""
    connection = sqlite3.connect(":memory:")
    create_core_tables(connection)
    yield connection
    connection.close()


# =============================================================================
# Isolation
# =============================================================================


@pytest.fixture(autouse=True)
def clean_handler_registry() -> Generator[None, None, None]:
    """Reset the global handler registry and cached settings around each test."""
    reset_default_registry()
    get_settings.cache_clear()
    yield
    reset_default_registry()
    get_settings.cache_clear()


@pytest.fixture
def registry() -> HandlerRegistry:
    return HandlerRegistry()
