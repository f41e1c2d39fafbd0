"""Errors raised by remote authority clients.

Every failure is an ``ApiError`` carrying ``message``, ``status`` and the
optional decoded response body (``data``):

* ``status == 0``   -- network error (no response).
* ``status == 408`` -- request timeout.
* ``status == 409`` -- version conflict, raised as ``ConflictError``.
* anything else     -- the HTTP status returned by the authority.
"""

from __future__ import annotations

from typing import Any

from pydantic import ValidationError

from ..board.models import Board

CONFLICT_STATUS = 409
_TRANSIENT_STATUSES = frozenset({0, 408, 429})


class ApiError(Exception):
    """Failure reported by (or while reaching) the remote authority."""

    def __init__(
        self, message: str, status: int, data: dict[str, Any] | None = None
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.data = data

    @property
    def is_transient(self) -> bool:
        """True for failures worth retrying (network, timeout, 429, 5xx)."""
        return self.status in _TRANSIENT_STATUSES or self.status >= 500

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, status={self.status})"


class ConflictError(ApiError):
    """The authority's version is ahead of the version the client sent."""

    def __init__(
        self,
        message: str = "Version conflict",
        data: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, CONFLICT_STATUS, data)

    @property
    def server_version(self) -> int | None:
        if not self.data:
            return None
        version = self.data.get("serverVersion")
        return version if isinstance(version, int) else None

    @property
    def server_state(self) -> Board | None:
        """The authority's board when the payload carries it.

        Reads ``data["serverState"]`` (``{board, version, lastModifiedAt}``)
        and stamps the authority's version on the board. Returns ``None``
        when absent or malformed; callers then fetch the board instead.
        """
        if not self.data:
            return None
        state = self.data.get("serverState")
        if not isinstance(state, dict) or "board" not in state:
            return None
        try:
            board = Board.from_wire(state["board"])
        except ValidationError:
            return None
        update: dict[str, Any] = {}
        if isinstance(state.get("version"), int):
            update["version"] = state["version"]
        if state.get("lastModifiedAt"):
            update["last_modified_at"] = state["lastModifiedAt"]
        return board.model_copy(update=update) if update else board
