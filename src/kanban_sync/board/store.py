"""Board State Store: holds the current ``BoardState`` and persists the board.

``BoardStore.dispatch`` runs a mutation through the pure reducer, notifies
subscribers when the state changed, and schedules a debounced write of
the board snapshot. The in-memory state is always authoritative for
reads; persistence only bounds write amplification.

The debounce is modelled as an explicit ``PendingWrite`` value (board
snapshot plus a cancellable timer handle) exposed as
``BoardStore.pending_write`` so its lifecycle is observable.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable

from pydantic import ValidationError

from ..storage import BOARD_KEY, KeyValueStore
from .models import Board
from .mutations import BaseMutation, LoadBoard
from .reducer import BoardState, apply, create_initial_state

logger = logging.getLogger(__name__)

Listener = Callable[[BoardState, BaseMutation], None]


@dataclass
class PendingWrite:
    """A board snapshot waiting for its quiet period to elapse.

    Attributes:
        board: Snapshot to be written.
        handle: Timer that performs the write; ``None`` once fired or when
            no event loop was running.
    """

    board: Board
    handle: asyncio.TimerHandle | None = None

    def cancel(self) -> None:
        if self.handle is not None:
            self.handle.cancel()
            self.handle = None


class BoardStore:
    """Process-wide owner of the board state.

    Args:
        storage: Key-value store used for the board snapshot.
        debounce: Quiet period in seconds before a write happens.
            ``0`` writes synchronously on every change.
        state: Initial state (defaults to a fresh three-column board).
    """

    def __init__(
        self,
        storage: KeyValueStore,
        debounce: float = 0.5,
        state: BoardState | None = None,
    ) -> None:
        self._storage = storage
        self._debounce = debounce
        self._state = state or create_initial_state()
        self._listeners: list[Listener] = []
        self.pending_write: PendingWrite | None = None

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def state(self) -> BoardState:
        return self._state

    @property
    def board(self) -> Board:
        return self._state.board

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def dispatch(self, mutation: BaseMutation) -> BoardState:
        """Apply *mutation* and return the resulting state."""
        previous = self._state
        current = apply(previous, mutation)
        if current is previous:
            return current

        self._state = current
        if current.board is not previous.board:
            self._schedule_write(current.board)

        for listener in list(self._listeners):
            try:
                listener(current, mutation)
            except Exception:
                logger.exception("Board listener failed for %s", mutation.type)
        return current

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register *listener*; returns a function that unregisters it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def hydrate(self) -> bool:
        """Load the persisted board snapshot, if any.

        Returns:
            ``True`` when a stored board was loaded. A missing or invalid
            snapshot leaves the current state in place.
        """
        try:
            raw = self._storage.get(BOARD_KEY)
        except Exception:
            logger.exception("Failed to read board snapshot")
            return False
        if raw is None:
            return False
        try:
            board = Board.from_wire(raw)
        except ValidationError as e:
            logger.warning("Stored board is invalid, using defaults: %s", e)
            return False

        self._state = apply(self._state, LoadBoard(board=board))
        logger.debug("Hydrated board at version %d", board.version)
        return True

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def flush(self) -> None:
        """Write any pending snapshot immediately."""
        pending = self.pending_write
        if pending is None:
            return
        pending.cancel()
        self.pending_write = None
        self._write(pending.board)

    def _schedule_write(self, board: Board) -> None:
        if self.pending_write is not None:
            self.pending_write.cancel()

        if self._debounce <= 0:
            self.pending_write = None
            self._write(board)
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.pending_write = None
            self._write(board)
            return

        pending = PendingWrite(board=board)
        pending.handle = loop.call_later(self._debounce, self._fire, pending)
        self.pending_write = pending

    def _fire(self, pending: PendingWrite) -> None:
        if self.pending_write is not pending:
            return
        pending.handle = None
        self.pending_write = None
        self._write(pending.board)

    def _write(self, board: Board) -> None:
        try:
            self._storage.set(BOARD_KEY, board.to_wire())
        except Exception:
            logger.exception("Failed to persist board snapshot")
