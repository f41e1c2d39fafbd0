"""Pydantic models for board data.

Defines the entities that make up a board snapshot:

- ``Card``: a single card, owned by exactly one column.
- ``Column``: a titled, ordered list of card ids.
- ``Board``: columns, column order, cards, version and timestamp.

All models are frozen. Transitions build new instances with
``model_copy(update=...)`` so unaffected branches are shared between the
old and new snapshot. Field names are snake_case in Python and camelCase
on the wire (``cardIds``, ``columnOrder``, ``lastModifiedAt``).
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

WIRE_MODEL_CONFIG = {
    "frozen": True,
    "alias_generator": to_camel,
    "populate_by_name": True,
}

DEFAULT_COLUMN_TITLES = ("To Do", "In Progress", "Done")


def now_iso() -> str:
    """Current UTC time as an ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()


def generate_id() -> str:
    """Return a new random entity id."""
    return str(uuid.uuid4())


class Card(BaseModel):
    """A card on the board.

    Attributes:
        id: Stable card id.
        title: Card title (validated non-empty before it reaches the store).
        description: Free-form body text.
        tags: Set-like list of tags; order is preserved for display.
        created_at: ISO 8601 creation timestamp.
        updated_at: ISO 8601 timestamp of the last update, if any.
    """

    id: str
    title: str
    description: str = ""
    tags: list[str] = Field(default_factory=list)
    created_at: str = Field(default_factory=now_iso)
    updated_at: str | None = None

    model_config = WIRE_MODEL_CONFIG


class Column(BaseModel):
    """A column holding an ordered list of card ids."""

    id: str
    title: str
    card_ids: list[str] = Field(default_factory=list)

    model_config = WIRE_MODEL_CONFIG


class Board(BaseModel):
    """A full board snapshot.

    Every id in ``column_order`` is a key of ``columns`` and every id in a
    column's ``card_ids`` is a key of ``cards``.
    """

    columns: dict[str, Column] = Field(default_factory=dict)
    column_order: list[str] = Field(default_factory=list)
    cards: dict[str, Card] = Field(default_factory=dict)
    version: int = Field(default=1, ge=1)
    last_modified_at: str = Field(default_factory=now_iso)

    model_config = WIRE_MODEL_CONFIG

    def to_wire(self) -> dict:
        """Serialize to the camelCase JSON shape used by the remote API."""
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_wire(cls, data: dict) -> Board:
        """Validate a board received from storage or the network."""
        return cls.model_validate(data)


def create_initial_board() -> Board:
    """Build a fresh board with the three default columns."""
    columns: dict[str, Column] = {}
    order: list[str] = []
    for title in DEFAULT_COLUMN_TITLES:
        column_id = generate_id()
        columns[column_id] = Column(id=column_id, title=title)
        order.append(column_id)
    return Board(columns=columns, column_order=order)
