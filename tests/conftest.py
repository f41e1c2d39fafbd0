"""Shared pytest fixtures for kanban-sync tests."""

import pytest

from kanban_sync.board.models import Board, Card, Column
from kanban_sync.board.reducer import BoardState
from kanban_sync.board.store import BoardStore
from kanban_sync.config import Config
from kanban_sync.remote.authority import AuthorityState, InMemoryAuthority
from kanban_sync.storage import MemoryStore
from kanban_sync.sync.events import EventBus
from kanban_sync.sync.queue import SyncQueue
from kanban_sync.sync.resolver import ConflictResolver

TIMESTAMP = "2024-01-01T00:00:00+00:00"


def make_board(version: int = 1) -> Board:
    """Two columns, three cards, fixed ids and timestamps.

    ``todo``: ``c1`` ("Write design doc", tags ``["draft"]``), ``c2``
    ``done``: ``c3``
    """
    cards = {
        "c1": Card(
            id="c1",
            title="Write design doc",
            description="First pass",
            tags=["draft"],
            created_at=TIMESTAMP,
        ),
        "c2": Card(id="c2", title="Review", created_at=TIMESTAMP),
        "c3": Card(id="c3", title="Ship", created_at=TIMESTAMP),
    }
    columns = {
        "todo": Column(id="todo", title="To Do", card_ids=["c1", "c2"]),
        "done": Column(id="done", title="Done", card_ids=["c3"]),
    }
    return Board(
        columns=columns,
        column_order=["todo", "done"],
        cards=cards,
        version=version,
        last_modified_at=TIMESTAMP,
    )


@pytest.fixture
def board_factory():
    return make_board


@pytest.fixture
def board():
    return make_board()


@pytest.fixture
def state(board):
    return BoardState(board=board)


@pytest.fixture
def storage():
    return MemoryStore()


@pytest.fixture
def authority():
    """Authority holding the same board as the client, at version 1."""
    return InMemoryAuthority(
        AuthorityState(board=make_board(), version=1, last_modified_at=TIMESTAMP)
    )


@pytest.fixture
def events():
    return EventBus()


@pytest.fixture
def store(storage, state):
    return BoardStore(storage, debounce=0, state=state)


@pytest.fixture
def queue(authority, storage, events):
    """Queue with no backoff and no throttle so passes run back to back."""
    return SyncQueue(
        authority,
        storage,
        events=events,
        max_retries=4,
        retry_delays=(0.0,),
        throttle=0.0,
    )


@pytest.fixture
def resolver(storage, board):
    resolver = ConflictResolver(storage)
    resolver.set_base(board)
    return resolver


@pytest.fixture
def config():
    return Config(api_url="https://board.example.com/api", request_timeout=5.0)
