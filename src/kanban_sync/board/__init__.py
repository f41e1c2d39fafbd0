"""Board State Store.

Modules:

- ``models``     -- ``Card``, ``Column``, ``Board`` snapshots.
- ``conflicts``  -- ``Conflict``, ``Resolution`` and their enums.
- ``mutations``  -- tagged mutation variants and their wire form.
- ``reducer``    -- the pure ``apply(state, mutation)`` transition.
- ``selectors``  -- read helpers over a board.
- ``store``      -- ``BoardStore`` with debounced persistence.
"""

from .conflicts import (
    Conflict,
    ConflictEntity,
    ConflictKind,
    MergeStrategy,
    Resolution,
    ResolutionChoice,
    ResolvedConflict,
)
from .models import Board, Card, Column, create_initial_board
from .mutations import (
    AddCard,
    AddColumn,
    ApplyMerge,
    ArchiveColumn,
    BaseMutation,
    CardUpdate,
    CloseCard,
    ConflictDetected,
    DeleteCard,
    DismissConflict,
    LoadBoard,
    MoveCard,
    OpenCard,
    RenameColumn,
    ResetBoard,
    ResolveConflict,
    Revert,
    SetVersion,
    UpdateCard,
    is_syncable,
    new_card,
    new_column,
    parse_mutation,
)
from .reducer import (
    BoardState,
    ConflictDialog,
    UiState,
    apply,
    apply_to_board,
    create_initial_state,
)
from .store import BoardStore, PendingWrite

__all__ = [
    "AddCard",
    "AddColumn",
    "ApplyMerge",
    "ArchiveColumn",
    "BaseMutation",
    "Board",
    "BoardState",
    "BoardStore",
    "Card",
    "CardUpdate",
    "CloseCard",
    "Column",
    "Conflict",
    "ConflictDetected",
    "ConflictDialog",
    "ConflictEntity",
    "ConflictKind",
    "DeleteCard",
    "DismissConflict",
    "LoadBoard",
    "MergeStrategy",
    "MoveCard",
    "OpenCard",
    "PendingWrite",
    "RenameColumn",
    "ResetBoard",
    "Resolution",
    "ResolutionChoice",
    "ResolveConflict",
    "ResolvedConflict",
    "Revert",
    "SetVersion",
    "UiState",
    "UpdateCard",
    "apply",
    "apply_to_board",
    "create_initial_board",
    "create_initial_state",
    "is_syncable",
    "new_card",
    "new_column",
    "parse_mutation",
]
