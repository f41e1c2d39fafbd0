"""Conflict records exchanged between the resolver, the store and callers.

- ``ConflictKind``: what sort of divergence was found.
- ``ConflictEntity``: which part of the board it concerns.
- ``Conflict``: one divergence between local and server edits.
- ``ResolutionChoice`` / ``Resolution``: how a caller settles a conflict.
- ``MergeStrategy``: how unresolved conflicts are treated by a merge.

Conflict values (``local_value``, ``server_value``, ``base_value``) are
JSON-shaped: a scalar or list for field conflicts, a dict for
entity-level conflicts, ``None`` for a deleted entity.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel

from .models import WIRE_MODEL_CONFIG


class ConflictKind(str, Enum):
    """Categories of concurrent divergence."""

    SAME_FIELD = "same_field"
    DELETE_MODIFY = "delete_modify"
    MOVE_CONFLICT = "move_conflict"
    ORDER_CONFLICT = "order_conflict"


class ConflictEntity(str, Enum):
    """Board entity a conflict refers to."""

    COLUMN = "column"
    CARD = "card"
    BOARD = "board"


class ResolutionChoice(str, Enum):
    """Ways to settle a conflict."""

    KEEP_LOCAL = "keep_local"
    KEEP_SERVER = "keep_server"
    KEEP_BOTH = "keep_both"
    CUSTOM = "custom"


class MergeStrategy(str, Enum):
    """Treatment of conflicts that have no caller-supplied resolution."""

    AUTO_MERGE = "auto_merge"
    LOCAL_WINS = "local_wins"
    SERVER_WINS = "server_wins"
    MANUAL = "manual"


class Conflict(BaseModel):
    """A single divergence found by a three-way comparison.

    Attributes:
        id: Identifier stable for one merge episode
            (``<entity>:<entity_id>:<field>``).
        kind: Conflict category.
        entity: Column, card or the board itself.
        entity_id: Id of the column or card (``None`` for board-level).
        field: Conflicting field, ``None`` for whole-entity conflicts.
        description: Human-readable explanation.
        local_value: Value on the local side.
        server_value: Value on the server side.
        base_value: Value in the common ancestor.
    """

    id: str
    kind: ConflictKind
    entity: ConflictEntity
    entity_id: str | None = None
    field: str | None = None
    description: str
    local_value: Any = None
    server_value: Any = None
    base_value: Any = None

    model_config = WIRE_MODEL_CONFIG


class Resolution(BaseModel):
    """A caller's decision for one conflict."""

    choice: ResolutionChoice
    value: Any = None

    model_config = WIRE_MODEL_CONFIG


class ResolvedConflict(Conflict):
    """A conflict together with the resolution that was applied to it."""

    resolution: Resolution


def conflict_id_for(
    entity: ConflictEntity, entity_id: str | None, field: str | None
) -> str:
    """Build the deterministic id used for a conflict."""
    return f"{entity.value}:{entity_id or '-'}:{field or '*'}"
