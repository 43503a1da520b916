"""
Shared test fixtures for lane-dispatch tests.
"""

from __future__ import annotations

import pytest

from _testkit import EventRecorder, FakePool, FlakyJobRepository
from lane_dispatch.events import InMemoryEventBus
from lane_dispatch.persistence import InMemoryJobRepository


@pytest.fixture
def repository() -> InMemoryJobRepository:
    """Empty in-memory job repository."""
    return InMemoryJobRepository()


@pytest.fixture
def flaky_repository() -> FlakyJobRepository:
    """Repository that can be switched into a failing state."""
    return FlakyJobRepository()


@pytest.fixture
def event_bus() -> InMemoryEventBus:
    """Fresh in-memory event bus."""
    return InMemoryEventBus()


@pytest.fixture
def recorder() -> EventRecorder:
    """Lane event sink that records calls."""
    return EventRecorder()


@pytest.fixture
def fake_pool() -> FakePool:
    """asyncpg pool stand-in backed by a single FakeConnection."""
    return FakePool()
