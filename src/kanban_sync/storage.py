"""Persistent key-value storage for board, queue and base snapshots.

Three keys are used, each read at startup and written independently:

* ``BOARD_KEY`` -- the local board snapshot.
* ``QUEUE_KEY`` -- the serialized list of pending queue entries.
* ``BASE_KEY``  -- the last common-ancestor board used for three-way merges.

Key design choices:

* **Atomic writes** -- ``JsonFileStore.set()`` writes to a temp file then
  calls ``os.replace()`` so readers never see partial data.
* **JSON values** -- values are plain JSON-shaped data (dicts, lists,
  scalars); serialization of models is the caller's job.
* No transaction spans more than one key.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)

BOARD_KEY = "kanban-board"
QUEUE_KEY = "kanban-sync-queue"
BASE_KEY = "kanban-base-state"

_SAFE_KEY = re.compile(r"^[A-Za-z0-9_.-]+$")


class KeyValueStore(Protocol):
    """Protocol every storage backend must satisfy."""

    def get(self, key: str) -> Any | None:
        """Return the stored value, or ``None`` if absent."""
        ...  # pragma: no cover

    def set(self, key: str, value: Any) -> None:
        """Store *value* under *key*, replacing any previous value."""
        ...  # pragma: no cover

    def delete(self, key: str) -> None:
        """Remove *key*. No-op if absent."""
        ...  # pragma: no cover


class MemoryStore:
    """In-process store; values are deep-copied in and out."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = copy.deepcopy(initial or {})
        self.writes: int = 0

    def get(self, key: str) -> Any | None:
        return copy.deepcopy(self._data.get(key))

    def set(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)
        self.writes += 1

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._data)


class JsonFileStore:
    """One JSON file per key inside *directory*.

    Args:
        directory: Directory holding ``<key>.json`` files. Created on the
            first write.
    """

    def __init__(self, directory: Path) -> None:
        self._directory = Path(directory)

    @property
    def directory(self) -> Path:
        return self._directory

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def get(self, key: str) -> Any | None:
        """Load the value for *key*.

        Returns ``None`` when the file does not exist or cannot be parsed;
        a corrupt file is logged and treated as absent.
        """
        path = self._path(key)
        if not path.exists():
            return None
        try:
            with open(path, encoding="utf-8") as fh:
                return json.load(fh)
        except json.JSONDecodeError as e:
            logger.warning("Ignoring corrupt storage file %s: %s", path, e)
            return None

    def set(self, key: str, value: Any) -> None:
        """Persist *value* atomically.

        Writes to a temporary file in the same directory then atomically
        replaces the target. Creates the directory if it does not exist.
        """
        self._directory.mkdir(parents=True, exist_ok=True)
        target = self._path(key)
        fd, tmp_path = tempfile.mkstemp(
            dir=str(self._directory), suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(value, fh, indent=2)
            os.replace(tmp_path, target)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    def delete(self, key: str) -> None:
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            pass

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _path(self, key: str) -> Path:
        if not _SAFE_KEY.match(key):
            raise ValueError(f"Invalid storage key: '{key}'")
        return self._directory / f"{key}.json"
