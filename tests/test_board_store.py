"""Tests for BoardStore dispatch, subscriptions and debounced persistence."""

import asyncio
import logging
from unittest.mock import MagicMock

from kanban_sync.board.models import Board
from kanban_sync.board.mutations import (
    AddColumn,
    CardUpdate,
    RenameColumn,
    UpdateCard,
)
from kanban_sync.board.store import BoardStore
from kanban_sync.storage import BOARD_KEY, MemoryStore


class TestDispatch:
    """Tests for dispatch() and subscribe()."""

    def test_dispatch_updates_state(self, store):
        state = store.dispatch(RenameColumn(column_id="todo", title="Backlog"))

        assert store.state is state
        assert store.board.columns["todo"].title == "Backlog"

    def test_listeners_notified_on_change(self, store):
        listener = MagicMock()
        store.subscribe(listener)

        m = RenameColumn(column_id="todo", title="Backlog")
        state = store.dispatch(m)

        listener.assert_called_once_with(state, m)

    def test_no_notification_for_noop(self, store):
        """Missing-entity mutations leave state and listeners untouched."""
        listener = MagicMock()
        store.subscribe(listener)
        before = store.state

        after = store.dispatch(RenameColumn(column_id="nope", title="X"))

        assert after is before
        listener.assert_not_called()

    def test_unsubscribe(self, store):
        listener = MagicMock()
        unsubscribe = store.subscribe(listener)
        unsubscribe()

        store.dispatch(AddColumn(id="x", title="X"))
        listener.assert_not_called()

    def test_failing_listener_is_logged(self, store, caplog):
        def _broken(state, mutation):
            raise RuntimeError("listener bug")

        store.subscribe(_broken)
        with caplog.at_level(logging.ERROR):
            store.dispatch(AddColumn(id="x", title="X"))

        assert "x" in store.board.columns
        assert "Board listener failed" in caplog.text


class TestPersistence:
    """Tests for hydrate(), debounce and flush()."""

    def test_zero_debounce_writes_immediately(self, store, storage):
        store.dispatch(AddColumn(id="x", title="X"))

        saved = Board.from_wire(storage.get(BOARD_KEY))
        assert "x" in saved.columns
        assert store.pending_write is None

    def test_hydrate_loads_snapshot(self, board):
        stored = board.model_copy(update={"version": 9})
        storage = MemoryStore({BOARD_KEY: stored.to_wire()})
        store = BoardStore(storage, debounce=0)

        assert store.hydrate() is True
        assert store.board.version == 9
        assert set(store.board.cards) == {"c1", "c2", "c3"}

    def test_hydrate_missing_snapshot(self):
        store = BoardStore(MemoryStore())
        assert store.hydrate() is False
        assert len(store.board.column_order) == 3

    def test_hydrate_invalid_snapshot(self, caplog):
        store = BoardStore(MemoryStore({BOARD_KEY: {"version": "nope"}}))
        with caplog.at_level(logging.WARNING):
            assert store.hydrate() is False
        assert "invalid" in caplog.text

    async def test_debounce_coalesces_writes(self, state):
        """Rapid dispatches produce a single write of the latest board."""
        storage = MemoryStore()
        store = BoardStore(storage, debounce=0.05, state=state)

        store.dispatch(AddColumn(id="x", title="X"))
        store.dispatch(AddColumn(id="y", title="Y"))
        assert storage.writes == 0
        assert store.pending_write is not None

        await asyncio.sleep(0.15)

        assert storage.writes == 1
        assert store.pending_write is None
        saved = Board.from_wire(storage.get(BOARD_KEY))
        assert {"x", "y"} <= set(saved.columns)

    async def test_flush_writes_pending_snapshot(self, state):
        storage = MemoryStore()
        store = BoardStore(storage, debounce=10, state=state)

        store.dispatch(
            UpdateCard(card_id="c1", updates=CardUpdate(title="Write design notes"))
        )
        store.flush()

        assert storage.writes == 1
        assert store.pending_write is None
        saved = Board.from_wire(storage.get(BOARD_KEY))
        assert saved.cards["c1"].title == "Write design notes"

    def test_storage_failure_is_logged(self, state, caplog):
        storage = MagicMock()
        storage.set.side_effect = OSError("disk full")
        store = BoardStore(storage, debounce=0, state=state)

        with caplog.at_level(logging.ERROR):
            store.dispatch(AddColumn(id="x", title="X"))

        assert "x" in store.board.columns
        assert "Failed to persist board snapshot" in caplog.text
