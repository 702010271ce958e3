"""Shared fixtures for Mailboard tests."""

import pytest

from mailboard.cache.store import CacheStore
from mailboard.sync.invalidation import InvalidationCoordinator
from mailboard.sync.mutations import MutationEngine
from mailboard.sync.orchestrator import FetchOrchestrator

from .fakes import TTLS, FakeClock, FakeMailApi, RecordingCoordinator


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return CacheStore(":memory:", clock=clock)


@pytest.fixture
def orchestrator(store, clock):
    return FetchOrchestrator(store, TTLS, clock=clock)


@pytest.fixture
def coordinator(store, orchestrator):
    return InvalidationCoordinator(store, orchestrator)


@pytest.fixture
def recorder():
    return RecordingCoordinator()


@pytest.fixture
def engine(store, orchestrator, recorder):
    """Engine whose settle step only records events, so rollbacks stay observable."""
    return MutationEngine(store, orchestrator, recorder)


@pytest.fixture
def fake_api():
    return FakeMailApi()
