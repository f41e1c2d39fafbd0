"""Pydantic models for the sync queue and the conflict resolver.

Defines the data contracts used across the sync modules:

- ``EntryStatus``: lifecycle state of a queue entry.
- ``QueueEntry``: one not-yet-confirmed mutation.
- ``QueueStatus``: subscribable summary of the queue.
- ``ProcessResult``: outcome of one ``process_queue`` pass.
- ``MergeResult``: outcome of a three-way merge.

The conflict records (``Conflict``, ``Resolution``, ...) live in
``kanban_sync.board.conflicts`` and are re-exported here.

All models are frozen (immutable). The queue replaces entries with
``model_copy(update=...)`` rather than editing them in place.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field

from ..board.conflicts import (
    Conflict,
    ConflictEntity,
    ConflictKind,
    MergeStrategy,
    Resolution,
    ResolutionChoice,
    ResolvedConflict,
)
from ..board.models import WIRE_MODEL_CONFIG, Board, generate_id, now_iso
from ..board.mutations import SyncMutation

__all__ = [
    "Conflict",
    "ConflictEntity",
    "ConflictKind",
    "EntryStatus",
    "MergeResult",
    "MergeStrategy",
    "ProcessResult",
    "QueueEntry",
    "QueueStatus",
    "Resolution",
    "ResolutionChoice",
    "ResolvedConflict",
]


class EntryStatus(str, Enum):
    """Lifecycle state of a queue entry."""

    PENDING = "pending"
    PROCESSING = "processing"
    FAILED = "failed"


class QueueEntry(BaseModel):
    """A mutation waiting for acknowledgement by the authority.

    Attributes:
        id: Locally unique entry id.
        mutation: The syncable mutation to deliver.
        created_at: ISO 8601 enqueue timestamp.
        retries: Failed delivery attempts so far (conflicts excluded).
        status: Current lifecycle state.
        last_error: Message of the most recent failure.
        version_at_enqueue: Board version the mutation was made against.
        conflict: True when the entry failed with a version conflict.
        reverted: True once the optimistic effect has been undone locally.
    """

    id: str = Field(default_factory=lambda: f"q_{generate_id()}")
    mutation: SyncMutation
    created_at: str = Field(default_factory=now_iso)
    retries: int = 0
    status: EntryStatus = EntryStatus.PENDING
    last_error: str | None = None
    version_at_enqueue: int
    conflict: bool = False
    reverted: bool = False

    model_config = WIRE_MODEL_CONFIG

    @property
    def is_live(self) -> bool:
        """Whether the entry's effect is still present on the local board."""
        return not self.reverted


class QueueStatus(BaseModel):
    """Snapshot of the queue for display."""

    pending: int = 0
    processing: int = 0
    failed: int = 0
    total: int = 0
    is_syncing: bool = False
    is_online: bool = True
    last_sync_at: str | None = None
    error: str | None = None

    model_config = WIRE_MODEL_CONFIG


class ProcessResult(BaseModel):
    """Outcome of one ``process_queue`` pass.

    Attributes:
        synced: Entries acknowledged during the pass.
        failed: Delivery attempts that failed during the pass.
        skipped: Why the pass did not run (``"offline"``, ``"busy"``,
            ``"throttled"``), ``None`` when it ran.
    """

    synced: int = 0
    failed: int = 0
    skipped: str | None = None

    model_config = {"frozen": True}


class MergeResult(BaseModel):
    """Result of a three-way merge.

    Attributes:
        merged: The merged board (version ``server.version + 1``).
        conflicts: Conflicts still awaiting a resolution.
        resolved: Conflicts settled during the merge, with the resolution
            that was applied.
    """

    merged: Board
    conflicts: list[Conflict] = []
    resolved: list[ResolvedConflict] = []

    model_config = WIRE_MODEL_CONFIG

    @property
    def has_conflicts(self) -> bool:
        return bool(self.conflicts)
