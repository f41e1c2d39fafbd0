"""Tagged mutation variants for the board reducer.

Every mutation is a frozen pydantic model whose ``type`` literal acts as
the discriminator. Only the fields needed to replay the effect are
carried. The variants fall into three groups:

* **Syncable** -- column and card edits that are delivered to the remote
  authority (``SYNC_MUTATION_TYPES``).
* **Sync bookkeeping** -- ``LoadBoard``, ``ResetBoard``, ``SetVersion``,
  ``Revert``; issued by the sync layer, never enqueued.
* **UI-only** -- card selection and the conflict dialog workflow.

Wire shape (``to_wire`` / ``parse_mutation``)::

    {"type": "CARD_MOVE", "payload": {"cardId": ..., "destIndex": 0, ...}}
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

from .conflicts import Conflict, Resolution
from .models import WIRE_MODEL_CONFIG, Board, Card, generate_id


class BaseMutation(BaseModel):
    """Common base for all mutations."""

    type: str

    model_config = WIRE_MODEL_CONFIG

    def to_wire(self) -> dict[str, Any]:
        """Serialize as ``{"type", "payload"}`` with camelCase payload keys."""
        return {
            "type": self.type,
            "payload": self.model_dump(
                mode="json", by_alias=True, exclude={"type"}
            ),
        }


# ---------------------------------------------------------------------------
# Syncable mutations
# ---------------------------------------------------------------------------


class AddColumn(BaseMutation):
    type: Literal["COLUMN_ADD"] = "COLUMN_ADD"
    id: str
    title: str


class RenameColumn(BaseMutation):
    type: Literal["COLUMN_RENAME"] = "COLUMN_RENAME"
    column_id: str
    title: str


class ArchiveColumn(BaseMutation):
    type: Literal["COLUMN_ARCHIVE"] = "COLUMN_ARCHIVE"
    column_id: str


class AddCard(BaseMutation):
    type: Literal["CARD_ADD"] = "CARD_ADD"
    column_id: str
    card: Card


class CardUpdate(BaseModel):
    """Partial card fields; fields left as ``None`` are not applied."""

    title: str | None = None
    description: str | None = None
    tags: list[str] | None = None

    model_config = WIRE_MODEL_CONFIG

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class UpdateCard(BaseMutation):
    type: Literal["CARD_UPDATE"] = "CARD_UPDATE"
    card_id: str
    updates: CardUpdate

    def to_wire(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "payload": {
                "cardId": self.card_id,
                "updates": self.updates.model_dump(
                    mode="json", by_alias=True, exclude_none=True
                ),
            },
        }


class DeleteCard(BaseMutation):
    type: Literal["CARD_DELETE"] = "CARD_DELETE"
    card_id: str
    column_id: str


class MoveCard(BaseMutation):
    type: Literal["CARD_MOVE"] = "CARD_MOVE"
    card_id: str
    source_column_id: str
    dest_column_id: str
    dest_index: int = Field(ge=0)


# ---------------------------------------------------------------------------
# Sync bookkeeping
# ---------------------------------------------------------------------------


class LoadBoard(BaseMutation):
    type: Literal["BOARD_LOAD"] = "BOARD_LOAD"
    board: Board


class ResetBoard(BaseMutation):
    type: Literal["BOARD_RESET"] = "BOARD_RESET"


class SetVersion(BaseMutation):
    type: Literal["BOARD_SET_VERSION"] = "BOARD_SET_VERSION"
    version: int = Field(ge=1)


class Revert(BaseMutation):
    """Replace the board wholesale with a previously computed snapshot."""

    type: Literal["SYNC_REVERT"] = "SYNC_REVERT"
    board: Board


# ---------------------------------------------------------------------------
# UI-only
# ---------------------------------------------------------------------------


class OpenCard(BaseMutation):
    type: Literal["MODAL_OPEN"] = "MODAL_OPEN"
    card_id: str
    column_id: str


class CloseCard(BaseMutation):
    type: Literal["MODAL_CLOSE"] = "MODAL_CLOSE"


class ConflictDetected(BaseMutation):
    type: Literal["CONFLICT_DETECTED"] = "CONFLICT_DETECTED"
    conflicts: list[Conflict]
    local: Board
    server: Board
    base: Board | None = None


class ResolveConflict(BaseMutation):
    type: Literal["CONFLICT_RESOLVE"] = "CONFLICT_RESOLVE"
    conflict_id: str
    resolution: Resolution


class ApplyMerge(BaseMutation):
    type: Literal["CONFLICT_APPLY_MERGE"] = "CONFLICT_APPLY_MERGE"
    board: Board


class DismissConflict(BaseMutation):
    type: Literal["CONFLICT_DISMISS"] = "CONFLICT_DISMISS"


SyncMutation = Annotated[
    Union[
        AddColumn,
        RenameColumn,
        ArchiveColumn,
        AddCard,
        UpdateCard,
        DeleteCard,
        MoveCard,
    ],
    Field(discriminator="type"),
]

Mutation = Annotated[
    Union[
        AddColumn,
        RenameColumn,
        ArchiveColumn,
        AddCard,
        UpdateCard,
        DeleteCard,
        MoveCard,
        LoadBoard,
        ResetBoard,
        SetVersion,
        Revert,
        OpenCard,
        CloseCard,
        ConflictDetected,
        ResolveConflict,
        ApplyMerge,
        DismissConflict,
    ],
    Field(discriminator="type"),
]

SYNC_MUTATION_TYPES = frozenset(
    {
        "COLUMN_ADD",
        "COLUMN_RENAME",
        "COLUMN_ARCHIVE",
        "CARD_ADD",
        "CARD_UPDATE",
        "CARD_DELETE",
        "CARD_MOVE",
    }
)

_sync_adapter: TypeAdapter = TypeAdapter(SyncMutation)


def is_syncable(mutation: BaseMutation) -> bool:
    """Return True if *mutation* is delivered to the remote authority."""
    return mutation.type in SYNC_MUTATION_TYPES


def parse_mutation(data: dict[str, Any]) -> BaseMutation:
    """Validate a syncable mutation from its wire shape.

    Accepts both ``{"type", "payload"}`` and the flat form produced by
    ``model_dump``.

    Raises:
        pydantic.ValidationError: If the type is unknown or fields are
            missing or malformed.
    """
    if "payload" in data:
        flat = {"type": data.get("type"), **(data.get("payload") or {})}
    else:
        flat = data
    return _sync_adapter.validate_python(flat)


# ---------------------------------------------------------------------------
# Mutation builders
# ---------------------------------------------------------------------------


def new_column(title: str) -> AddColumn:
    """Build an ``AddColumn`` with a fresh id."""
    return AddColumn(id=generate_id(), title=title)


def new_card(
    column_id: str,
    title: str,
    description: str = "",
    tags: list[str] | None = None,
) -> AddCard:
    """Build an ``AddCard`` carrying a fresh card."""
    card = Card(
        id=generate_id(),
        title=title,
        description=description,
        tags=list(tags or []),
    )
    return AddCard(column_id=column_id, card=card)
