"""Shared test fixtures."""
from datetime import datetime, timedelta, timezone

import pytest

from hemisphere import create_app
from hemisphere.repositories import InMemoryRepository


class FakeClock:
    """Controllable clock for services that stamp records."""

    def __init__(self, start=None):
        self.now = start or datetime(2025, 3, 14, 9, 0, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_repo():
    """Factory for empty or pre-seeded in-memory repositories."""
    def _make(initial=None):
        return InMemoryRepository(initial)
    return _make


@pytest.fixture
def data_dir(tmp_path):
    path = tmp_path / "data"
    path.mkdir()
    return path


@pytest.fixture
def hemisphere_app(data_dir):
    return create_app({
        'DATA_DIR': str(data_dir),
        'TESTING': True,
        'CONFIGURE_LOGGING': False,
    })


@pytest.fixture
def client(hemisphere_app):
    """Flask test client."""
    with hemisphere_app.app.test_client() as c:
        yield c
