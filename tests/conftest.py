# tests/conftest.py

from __future__ import annotations

import logging

import pytest

from taskboard.infra.db.kv_store import InMemoryKeyValueStore
from taskboard.infra.providers.local import LocalTaskProvider
from taskboard.services.task_engine import TaskEngine

from .fakes import FakeClock, FakeProvider


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def provider() -> FakeProvider:
    """Record-strategy provider with scripted failures."""
    return FakeProvider()


@pytest.fixture()
def engine(provider: FakeProvider, clock: FakeClock) -> TaskEngine:
    return TaskEngine(provider, clock=clock, timeout_seconds=1.0)


@pytest.fixture()
def kv_store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture()
def local_provider(kv_store: InMemoryKeyValueStore) -> LocalTaskProvider:
    return LocalTaskProvider(kv_store)


@pytest.fixture()
def local_engine(local_provider: LocalTaskProvider, clock: FakeClock) -> TaskEngine:
    return TaskEngine(local_provider, clock=clock, timeout_seconds=1.0)


@pytest.fixture()
def restore_logging():
    """create_app() reconfigures the root logger; put pytest's handlers back afterwards."""
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    yield
    for h in list(root.handlers):
        if h not in saved_handlers:
            root.removeHandler(h)
            h.close()
    for h in saved_handlers:
        if h not in root.handlers:
            root.addHandler(h)
    root.setLevel(saved_level)
