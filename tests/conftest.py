"""Shared fixtures for the Flowboard test suite."""

from datetime import datetime

import pytest

from pkg.flowboard.config import Config
from pkg.flowboard.service import BoardService
from pkg.flowboard.store import BoardStore


class FrozenClock:
    """Callable clock returning a settable instant."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock():
    return FrozenClock(datetime(2025, 3, 10, 15, 0))


@pytest.fixture
def store(tmp_path):
    return BoardStore(str(tmp_path / "flowboard.db"))


@pytest.fixture
def config():
    return Config(api_secret="test-secret")


@pytest.fixture
def service(store, config, clock):
    return BoardService(store, config, clock=clock)


@pytest.fixture
def board(service):
    """A fresh board with the default To Do / In Progress / Done columns."""
    created = service.create_board("Work", space="work")
    return service.get_board(created.board_id)
