"""HTTP client for the remote board authority.

JSON over HTTP via ``requests``. Every request carries the client's board
version; the authority answers 409 when its own version is ahead. All
failures surface as ``ApiError`` (``ConflictError`` for 409).

The client is synchronous. Async callers go through
``kanban_sync.core.run_sync`` so requests never block the event loop.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Protocol, TypeVar
from urllib.parse import quote

import requests
from pydantic import BaseModel, ValidationError

from ..board.models import Board, Card
from ..board.mutations import BaseMutation, CardUpdate
from ..config import Config
from .errors import CONFLICT_STATUS, ApiError, ConflictError
from .models import BoardResponse, EntityAck, SyncAck

logger = logging.getLogger(__name__)

_M = TypeVar("_M", bound=BaseModel)


class Authority(Protocol):
    """The part of the authority contract the sync layer depends on."""

    def get_board(self) -> BoardResponse:
        ...  # pragma: no cover

    def save_board(self, board: Board, version: int) -> BoardResponse:
        ...  # pragma: no cover

    def sync_mutation(self, mutation: BaseMutation, version: int) -> SyncAck:
        ...  # pragma: no cover


class RemoteClient:
    def __init__(self, config: Config):
        self.config = config
        self._thread_local = threading.local()
        self.base_url = config.api_url.rstrip("/")

    @property
    def session(self) -> requests.Session:
        """Session for the current thread."""
        return self._get_session()

    def _get_session(self) -> requests.Session:
        """Get or create a thread-local requests.Session."""
        if not hasattr(self._thread_local, "session"):
            self._thread_local.session = self._create_session()
        return self._thread_local.session

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        session.headers.update(
            {"Content-Type": "application/json", "Accept": "application/json"}
        )
        return session

    def _request(
        self, method: str, path: str, payload: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """
        Send one JSON request and return the decoded body.

        Raises:
            ConflictError: On HTTP 409.
            ApiError: On any other non-2xx status, timeout (408) or
                network failure (0).
        """
        url = f"{self.base_url}{path}"
        try:
            response = self._get_session().request(
                method,
                url,
                json=payload,
                timeout=self.config.request_timeout,
            )
        except requests.Timeout:
            raise ApiError("Request timeout", 408)
        except requests.ConnectionError:
            raise ApiError("Network error - you may be offline", 0)
        except requests.RequestException as e:
            raise ApiError(str(e), 500)

        try:
            data = response.json()
        except ValueError:
            data = None

        if not response.ok:
            message = (
                data.get("message") if isinstance(data, dict) else None
            ) or f"HTTP {response.status_code}"
            logger.debug("%s %s -> %d %s", method, path, response.status_code, message)
            if response.status_code == CONFLICT_STATUS:
                raise ConflictError(message, data if isinstance(data, dict) else None)
            raise ApiError(
                message,
                response.status_code,
                data if isinstance(data, dict) else None,
            )

        return data if isinstance(data, dict) else {}

    @staticmethod
    def _parse(model: type[_M], data: dict[str, Any]) -> _M:
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise ApiError(
                f"Invalid {model.__name__} from authority: {e.error_count()} error(s)",
                502,
                data,
            )

    # ------------------------------------------------------------------
    # Board
    # ------------------------------------------------------------------

    def get_board(self) -> BoardResponse:
        """Fetch the full board with its version."""
        return self._parse(BoardResponse, self._request("GET", "/board"))

    def save_board(self, board: Board, version: int) -> BoardResponse:
        """
        Replace the authority's board.

        Raises:
            ConflictError: If *version* is behind the authority's version.
        """
        payload = {"board": board.to_wire(), "version": version}
        return self._parse(BoardResponse, self._request("PUT", "/board", payload))

    def sync_mutation(self, mutation: BaseMutation, version: int) -> SyncAck:
        """Deliver one mutation recorded at *version*."""
        payload = {"action": mutation.to_wire(), "version": version}
        return self._parse(SyncAck, self._request("POST", "/board/sync", payload))

    # ------------------------------------------------------------------
    # Columns
    # ------------------------------------------------------------------

    def add_column(self, column_id: str, title: str, version: int) -> EntityAck:
        payload = {"id": column_id, "title": title, "version": version}
        return self._parse(EntityAck, self._request("POST", "/columns", payload))

    def rename_column(self, column_id: str, title: str, version: int) -> EntityAck:
        payload = {"title": title, "version": version}
        return self._parse(
            EntityAck,
            self._request("PATCH", f"/columns/{quote(column_id, safe='')}", payload),
        )

    def archive_column(self, column_id: str, version: int) -> EntityAck:
        """Remove a column and every card it owns."""
        return self._parse(
            EntityAck,
            self._request(
                "DELETE",
                f"/columns/{quote(column_id, safe='')}",
                {"version": version},
            ),
        )

    # ------------------------------------------------------------------
    # Cards
    # ------------------------------------------------------------------

    def add_card(self, column_id: str, card: Card, version: int) -> EntityAck:
        payload = {
            "card": card.model_dump(mode="json", by_alias=True),
            "version": version,
        }
        return self._parse(
            EntityAck,
            self._request(
                "POST", f"/columns/{quote(column_id, safe='')}/cards", payload
            ),
        )

    def update_card(
        self, card_id: str, updates: CardUpdate, version: int
    ) -> EntityAck:
        payload = {
            "updates": updates.model_dump(
                mode="json", by_alias=True, exclude_none=True
            ),
            "version": version,
        }
        return self._parse(
            EntityAck,
            self._request("PATCH", f"/cards/{quote(card_id, safe='')}", payload),
        )

    def delete_card(self, card_id: str, column_id: str, version: int) -> EntityAck:
        payload = {"columnId": column_id, "version": version}
        return self._parse(
            EntityAck,
            self._request("DELETE", f"/cards/{quote(card_id, safe='')}", payload),
        )

    def move_card(
        self,
        card_id: str,
        source_column_id: str,
        dest_column_id: str,
        dest_index: int,
        version: int,
    ) -> EntityAck:
        payload = {
            "sourceColumnId": source_column_id,
            "destColumnId": dest_column_id,
            "destIndex": dest_index,
            "version": version,
        }
        return self._parse(
            EntityAck,
            self._request(
                "POST", f"/cards/{quote(card_id, safe='')}/move", payload
            ),
        )
