"""In-memory remote authority for tests and offline development.

Implements the same request/response contract as ``RemoteClient`` against
an explicit ``AuthorityState`` passed in by the caller, so every test owns
its own authority and nothing is shared between runs.

Features:

* Version check on every write: ``client_version < state.version`` raises
  ``ConflictError`` whose payload carries the full server state.
* 404 for missing entities on entity-scoped endpoints.
* Scripted failure injection with ``fail_next(count, status)``.
* A call log (``calls``) of every request received, including failed ones.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from ..board.models import Board, Card, create_initial_board, now_iso
from ..board.mutations import (
    AddCard,
    AddColumn,
    ArchiveColumn,
    BaseMutation,
    CardUpdate,
    DeleteCard,
    MoveCard,
    RenameColumn,
    UpdateCard,
)
from ..board.reducer import apply_to_board
from .errors import ApiError, ConflictError
from .models import BoardResponse, EntityAck, SyncAck

logger = logging.getLogger(__name__)


@dataclass
class AuthorityState:
    """The authority's accepted board and version."""

    board: Board = field(default_factory=create_initial_board)
    version: int = 1
    last_modified_at: str = field(default_factory=now_iso)

    def snapshot(self) -> dict[str, Any]:
        """Wire shape of the full server state."""
        return {
            "board": self.board.to_wire(),
            "version": self.version,
            "lastModifiedAt": self.last_modified_at,
        }


@dataclass
class _ScriptedFailure:
    status: int
    message: str


class InMemoryAuthority:
    """Authority backed by an ``AuthorityState``.

    Args:
        state: State to serve; a fresh default board when omitted.
    """

    def __init__(self, state: AuthorityState | None = None) -> None:
        self.state = state or AuthorityState()
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self._failures: list[_ScriptedFailure] = []

    # ------------------------------------------------------------------
    # Test controls
    # ------------------------------------------------------------------

    def fail_next(
        self, count: int = 1, status: int = 500, message: str = "Server error"
    ) -> None:
        """Make the next *count* requests fail with *status*."""
        self._failures.extend(
            _ScriptedFailure(status=status, message=message) for _ in range(count)
        )

    def apply_remote(self, mutation: BaseMutation) -> int:
        """Apply an edit from another client and return the new version."""
        self.state.board = apply_to_board(self.state.board, mutation)
        return self._bump()

    def calls_to(self, method: str) -> list[dict[str, Any]]:
        return [payload for name, payload in self.calls if name == method]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _receive(self, method: str, payload: dict[str, Any]) -> None:
        self.calls.append((method, payload))
        if self._failures:
            failure = self._failures.pop(0)
            logger.debug("Scripted failure for %s: %d", method, failure.status)
            raise ApiError(
                failure.message, failure.status, {"message": failure.message}
            )

    def _check_version(self, version: int) -> None:
        if version < self.state.version:
            raise ConflictError(
                "Version conflict - server has newer data",
                {
                    "message": "Version conflict - server has newer data",
                    "serverVersion": self.state.version,
                    "lastModifiedAt": self.state.last_modified_at,
                    "serverState": self.state.snapshot(),
                },
            )

    def _require_column(self, column_id: str) -> None:
        if column_id not in self.state.board.columns:
            raise ApiError("Column not found", 404, {"message": "Column not found"})

    def _require_card(self, card_id: str) -> None:
        if card_id not in self.state.board.cards:
            raise ApiError("Card not found", 404, {"message": "Card not found"})

    def _bump(self) -> int:
        self.state.version += 1
        self.state.last_modified_at = now_iso()
        self.state.board = self.state.board.model_copy(
            update={
                "version": self.state.version,
                "last_modified_at": self.state.last_modified_at,
            }
        )
        return self.state.version

    def _commit(self, mutation: BaseMutation) -> EntityAck:
        self.state.board = apply_to_board(self.state.board, mutation)
        self._bump()
        return EntityAck(
            version=self.state.version,
            last_modified_at=self.state.last_modified_at,
        )

    def _board_response(self) -> BoardResponse:
        return BoardResponse(
            board=self.state.board,
            version=self.state.version,
            last_modified_at=self.state.last_modified_at,
        )

    # ------------------------------------------------------------------
    # Board
    # ------------------------------------------------------------------

    def get_board(self) -> BoardResponse:
        self._receive("get_board", {})
        return self._board_response()

    def save_board(self, board: Board, version: int) -> BoardResponse:
        self._receive("save_board", {"board": board, "version": version})
        self._check_version(version)
        self.state.board = board
        self._bump()
        return self._board_response()

    def sync_mutation(self, mutation: BaseMutation, version: int) -> SyncAck:
        self._receive("sync_mutation", {"mutation": mutation, "version": version})
        self._check_version(version)
        self.state.board = apply_to_board(self.state.board, mutation)
        self._bump()
        return SyncAck(
            version=self.state.version,
            last_modified_at=self.state.last_modified_at,
        )

    # ------------------------------------------------------------------
    # Columns
    # ------------------------------------------------------------------

    def add_column(self, column_id: str, title: str, version: int) -> EntityAck:
        self._receive("add_column", {"id": column_id, "title": title, "version": version})
        self._check_version(version)
        ack = self._commit(AddColumn(id=column_id, title=title))
        return ack.model_copy(update={"column": self.state.board.columns[column_id]})

    def rename_column(self, column_id: str, title: str, version: int) -> EntityAck:
        self._receive(
            "rename_column", {"id": column_id, "title": title, "version": version}
        )
        self._require_column(column_id)
        self._check_version(version)
        ack = self._commit(RenameColumn(column_id=column_id, title=title))
        return ack.model_copy(update={"column": self.state.board.columns[column_id]})

    def archive_column(self, column_id: str, version: int) -> EntityAck:
        self._receive("archive_column", {"id": column_id, "version": version})
        self._require_column(column_id)
        self._check_version(version)
        return self._commit(ArchiveColumn(column_id=column_id))

    # ------------------------------------------------------------------
    # Cards
    # ------------------------------------------------------------------

    def add_card(self, column_id: str, card: Card, version: int) -> EntityAck:
        self._receive(
            "add_card", {"column_id": column_id, "card": card, "version": version}
        )
        self._require_column(column_id)
        self._check_version(version)
        ack = self._commit(AddCard(column_id=column_id, card=card))
        return ack.model_copy(update={"card": self.state.board.cards[card.id]})

    def update_card(
        self, card_id: str, updates: CardUpdate, version: int
    ) -> EntityAck:
        self._receive(
            "update_card", {"id": card_id, "updates": updates, "version": version}
        )
        self._require_card(card_id)
        self._check_version(version)
        ack = self._commit(UpdateCard(card_id=card_id, updates=updates))
        return ack.model_copy(update={"card": self.state.board.cards[card_id]})

    def delete_card(self, card_id: str, column_id: str, version: int) -> EntityAck:
        self._receive(
            "delete_card", {"id": card_id, "column_id": column_id, "version": version}
        )
        self._require_card(card_id)
        self._require_column(column_id)
        self._check_version(version)
        return self._commit(DeleteCard(card_id=card_id, column_id=column_id))

    def move_card(
        self,
        card_id: str,
        source_column_id: str,
        dest_column_id: str,
        dest_index: int,
        version: int,
    ) -> EntityAck:
        self._receive(
            "move_card",
            {
                "id": card_id,
                "source_column_id": source_column_id,
                "dest_column_id": dest_column_id,
                "dest_index": dest_index,
                "version": version,
            },
        )
        self._require_card(card_id)
        self._require_column(source_column_id)
        self._require_column(dest_column_id)
        self._check_version(version)
        return self._commit(
            MoveCard(
                card_id=card_id,
                source_column_id=source_column_id,
                dest_column_id=dest_column_id,
                dest_index=dest_index,
            )
        )
