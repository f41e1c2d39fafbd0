"""Pure transition function for board state.

``apply(state, mutation)`` returns a new ``BoardState`` and never mutates
its input. Untouched branches (columns, cards, UI) are shared between the
old and new state, so identity checks (``new.board.cards is old.board.cards``)
hold for every branch a mutation does not affect.

Missing-entity policy: a mutation that names a column or card absent from
the board is logged and ignored; the input state is returned unchanged.
Unknown mutation types are handled the same way.

``apply_to_board`` is the board-only half of the reducer. It is shared by
the sync engine (replaying queued mutations onto the confirmed board) and
by the in-memory authority.
"""

from __future__ import annotations

import logging
from typing import Callable

from pydantic import BaseModel, Field

from .conflicts import Conflict, Resolution
from .models import (
    WIRE_MODEL_CONFIG,
    Board,
    Column,
    create_initial_board,
    now_iso,
)
from .mutations import (
    AddCard,
    AddColumn,
    ApplyMerge,
    ArchiveColumn,
    BaseMutation,
    ConflictDetected,
    DeleteCard,
    LoadBoard,
    MoveCard,
    OpenCard,
    RenameColumn,
    ResolveConflict,
    Revert,
    SetVersion,
    UpdateCard,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# State
# ---------------------------------------------------------------------------


class ConflictDialog(BaseModel):
    """An open conflict episode awaiting user decisions."""

    conflicts: list[Conflict]
    local: Board
    server: Board
    base: Board | None = None
    resolutions: dict[str, Resolution] = Field(default_factory=dict)

    model_config = WIRE_MODEL_CONFIG

    @property
    def unresolved_ids(self) -> list[str]:
        return [c.id for c in self.conflicts if c.id not in self.resolutions]


class UiState(BaseModel):
    """Transient, never-synced UI state."""

    selected_card_id: str | None = None
    selected_column_id: str | None = None
    conflict_dialog: ConflictDialog | None = None

    model_config = WIRE_MODEL_CONFIG


class BoardState(BaseModel):
    """Board plus UI state held by the store."""

    board: Board
    ui: UiState = Field(default_factory=UiState)

    model_config = WIRE_MODEL_CONFIG


def create_initial_state() -> BoardState:
    """Fresh state with the default three-column board."""
    return BoardState(board=create_initial_board())


# ---------------------------------------------------------------------------
# Board transitions
# ---------------------------------------------------------------------------


def _ignored(mutation: BaseMutation, what: str, entity_id: str) -> None:
    logger.warning(
        "%s ignored: %s '%s' not found", mutation.type, what, entity_id
    )


def _add_column(board: Board, m: AddColumn) -> Board:
    return board.model_copy(
        update={
            "columns": {
                **board.columns,
                m.id: Column(id=m.id, title=m.title),
            },
            "column_order": [*board.column_order, m.id],
        }
    )


def _rename_column(board: Board, m: RenameColumn) -> Board:
    column = board.columns.get(m.column_id)
    if column is None:
        _ignored(m, "column", m.column_id)
        return board
    return board.model_copy(
        update={
            "columns": {
                **board.columns,
                m.column_id: column.model_copy(update={"title": m.title}),
            }
        }
    )


def _archive_column(board: Board, m: ArchiveColumn) -> Board:
    column = board.columns.get(m.column_id)
    if column is None:
        _ignored(m, "column", m.column_id)
        return board

    owned = set(column.card_ids)
    return board.model_copy(
        update={
            "columns": {
                cid: col
                for cid, col in board.columns.items()
                if cid != m.column_id
            },
            "column_order": [
                cid for cid in board.column_order if cid != m.column_id
            ],
            "cards": {
                card_id: card
                for card_id, card in board.cards.items()
                if card_id not in owned
            },
        }
    )


def _add_card(board: Board, m: AddCard) -> Board:
    column = board.columns.get(m.column_id)
    if column is None:
        _ignored(m, "column", m.column_id)
        return board
    return board.model_copy(
        update={
            "cards": {**board.cards, m.card.id: m.card},
            "columns": {
                **board.columns,
                m.column_id: column.model_copy(
                    update={"card_ids": [*column.card_ids, m.card.id]}
                ),
            },
        }
    )


def _update_card(board: Board, m: UpdateCard) -> Board:
    card = board.cards.get(m.card_id)
    if card is None:
        _ignored(m, "card", m.card_id)
        return board
    updated = card.model_copy(
        update={**m.updates.changes(), "updated_at": now_iso()}
    )
    return board.model_copy(
        update={"cards": {**board.cards, m.card_id: updated}}
    )


def _delete_card(board: Board, m: DeleteCard) -> Board:
    column = board.columns.get(m.column_id)
    if column is None:
        _ignored(m, "column", m.column_id)
        return board
    if m.card_id not in board.cards:
        _ignored(m, "card", m.card_id)
        return board
    return board.model_copy(
        update={
            "cards": {
                card_id: card
                for card_id, card in board.cards.items()
                if card_id != m.card_id
            },
            "columns": {
                **board.columns,
                m.column_id: column.model_copy(
                    update={
                        "card_ids": [
                            cid for cid in column.card_ids if cid != m.card_id
                        ]
                    }
                ),
            },
        }
    )


def _move_card(board: Board, m: MoveCard) -> Board:
    source = board.columns.get(m.source_column_id)
    dest = board.columns.get(m.dest_column_id)
    if source is None:
        _ignored(m, "column", m.source_column_id)
        return board
    if dest is None:
        _ignored(m, "column", m.dest_column_id)
        return board
    if m.card_id not in board.cards:
        _ignored(m, "card", m.card_id)
        return board

    source_ids = [cid for cid in source.card_ids if cid != m.card_id]

    if m.source_column_id == m.dest_column_id:
        # list.insert appends when the index is past the end
        source_ids.insert(m.dest_index, m.card_id)
        columns = {
            **board.columns,
            m.source_column_id: source.model_copy(
                update={"card_ids": source_ids}
            ),
        }
    else:
        dest_ids = list(dest.card_ids)
        dest_ids.insert(m.dest_index, m.card_id)
        columns = {
            **board.columns,
            m.source_column_id: source.model_copy(
                update={"card_ids": source_ids}
            ),
            m.dest_column_id: dest.model_copy(update={"card_ids": dest_ids}),
        }
    return board.model_copy(update={"columns": columns})


_BOARD_HANDLERS: dict[str, Callable[[Board, BaseMutation], Board]] = {
    "COLUMN_ADD": _add_column,  # type: ignore[dict-item]
    "COLUMN_RENAME": _rename_column,  # type: ignore[dict-item]
    "COLUMN_ARCHIVE": _archive_column,  # type: ignore[dict-item]
    "CARD_ADD": _add_card,  # type: ignore[dict-item]
    "CARD_UPDATE": _update_card,  # type: ignore[dict-item]
    "CARD_DELETE": _delete_card,  # type: ignore[dict-item]
    "CARD_MOVE": _move_card,  # type: ignore[dict-item]
}


def apply_to_board(board: Board, mutation: BaseMutation) -> Board:
    """Apply a syncable mutation to a bare board.

    Returns *board* itself for unknown or non-board mutations.
    """
    handler = _BOARD_HANDLERS.get(mutation.type)
    if handler is None:
        logger.warning("Unknown board mutation type: %s", mutation.type)
        return board
    return handler(board, mutation)


# ---------------------------------------------------------------------------
# State transitions
# ---------------------------------------------------------------------------


def _with_board(state: BoardState, board: Board) -> BoardState:
    if board is state.board:
        return state
    return state.model_copy(update={"board": board})


def _with_ui(state: BoardState, **changes) -> BoardState:
    return state.model_copy(update={"ui": state.ui.model_copy(update=changes)})


def _load_board(state: BoardState, m: LoadBoard) -> BoardState:
    return state.model_copy(update={"board": m.board})


def _reset_board(state: BoardState, m: BaseMutation) -> BoardState:
    return create_initial_state()


def _set_version(state: BoardState, m: SetVersion) -> BoardState:
    return _with_board(
        state,
        state.board.model_copy(
            update={"version": m.version, "last_modified_at": now_iso()}
        ),
    )


def _revert(state: BoardState, m: Revert) -> BoardState:
    return state.model_copy(update={"board": m.board})


def _open_card(state: BoardState, m: OpenCard) -> BoardState:
    if m.card_id not in state.board.cards:
        _ignored(m, "card", m.card_id)
        return state
    return _with_ui(
        state, selected_card_id=m.card_id, selected_column_id=m.column_id
    )


def _close_card(state: BoardState, m: BaseMutation) -> BoardState:
    return _with_ui(state, selected_card_id=None, selected_column_id=None)


def _conflict_detected(
    state: BoardState, m: ConflictDetected
) -> BoardState:
    dialog = ConflictDialog(
        conflicts=m.conflicts, local=m.local, server=m.server, base=m.base
    )
    return _with_ui(state, conflict_dialog=dialog)


def _resolve_conflict(state: BoardState, m: ResolveConflict) -> BoardState:
    dialog = state.ui.conflict_dialog
    if dialog is None:
        logger.warning("%s ignored: no open conflict episode", m.type)
        return state
    resolutions = {**dialog.resolutions, m.conflict_id: m.resolution}
    return _with_ui(
        state,
        conflict_dialog=dialog.model_copy(update={"resolutions": resolutions}),
    )


def _apply_merge(state: BoardState, m: ApplyMerge) -> BoardState:
    return BoardState(
        board=m.board,
        ui=state.ui.model_copy(update={"conflict_dialog": None}),
    )


def _dismiss_conflict(state: BoardState, m: BaseMutation) -> BoardState:
    dialog = state.ui.conflict_dialog
    if dialog is None:
        return state
    return BoardState(
        board=dialog.server,
        ui=state.ui.model_copy(update={"conflict_dialog": None}),
    )


_STATE_HANDLERS: dict[str, Callable[[BoardState, BaseMutation], BoardState]] = {
    "BOARD_LOAD": _load_board,  # type: ignore[dict-item]
    "BOARD_RESET": _reset_board,
    "BOARD_SET_VERSION": _set_version,  # type: ignore[dict-item]
    "SYNC_REVERT": _revert,  # type: ignore[dict-item]
    "MODAL_OPEN": _open_card,  # type: ignore[dict-item]
    "MODAL_CLOSE": _close_card,
    "CONFLICT_DETECTED": _conflict_detected,  # type: ignore[dict-item]
    "CONFLICT_RESOLVE": _resolve_conflict,  # type: ignore[dict-item]
    "CONFLICT_APPLY_MERGE": _apply_merge,  # type: ignore[dict-item]
    "CONFLICT_DISMISS": _dismiss_conflict,
}


def apply(state: BoardState, mutation: BaseMutation) -> BoardState:
    """Map ``(state, mutation)`` to the next state.

    Args:
        state: Current state; never modified.
        mutation: Any mutation variant.

    Returns:
        The new state, or *state* itself when the mutation is unknown or
        refers to a missing entity.
    """
    if mutation.type in _BOARD_HANDLERS:
        return _with_board(
            state, _BOARD_HANDLERS[mutation.type](state.board, mutation)
        )

    handler = _STATE_HANDLERS.get(mutation.type)
    if handler is None:
        logger.warning("Unknown mutation type: %s", mutation.type)
        return state
    return handler(state, mutation)
