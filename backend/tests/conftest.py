"""Pytest configuration and shared fixtures."""
import os
import tempfile

import pytest

# Keep the module-level SQLite engine out of /data during tests
os.environ.setdefault("DATA_PATH", tempfile.gettempdir())

from pushdispatch.services.dispatcher import Dispatcher  # noqa: E402
from pushdispatch.services.failure_policy import FailurePolicy  # noqa: E402
from pushdispatch.services.registry import TokenRegistry  # noqa: E402

from fakes import FakeGateway, InMemoryTokenStore  # noqa: E402


@pytest.fixture
def store():
    return InMemoryTokenStore()


@pytest.fixture
def policy():
    return FailurePolicy(failure_threshold=5)


@pytest.fixture
def registry(store, policy):
    return TokenRegistry(store, policy=policy)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def dispatcher(registry, gateway):
    return Dispatcher(registry, gateway, device_concurrency=10, user_concurrency=5)
