"""Response shapes returned by the remote authority.

Validated once at the boundary; the rest of the package only sees these
models.
"""

from __future__ import annotations

from pydantic import BaseModel

from ..board.models import WIRE_MODEL_CONFIG, Board, Card, Column


class BoardResponse(BaseModel):
    """Full-board fetch or replace result.

    Attributes:
        board: The authority's board.
        version: The authority's current version.
        last_modified_at: ISO 8601 timestamp of the last accepted write.
    """

    board: Board
    version: int
    last_modified_at: str | None = None

    model_config = WIRE_MODEL_CONFIG

    def to_board(self) -> Board:
        """Board with the response's version and timestamp stamped on it."""
        update: dict = {"version": self.version}
        if self.last_modified_at:
            update["last_modified_at"] = self.last_modified_at
        return self.board.model_copy(update=update)


class SyncAck(BaseModel):
    """Acknowledgement of a single accepted mutation."""

    success: bool = True
    version: int
    last_modified_at: str | None = None

    model_config = WIRE_MODEL_CONFIG


class EntityAck(SyncAck):
    """Acknowledgement from an entity-scoped endpoint."""

    column: Column | None = None
    card: Card | None = None
