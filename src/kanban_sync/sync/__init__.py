"""Offline-first synchronisation of the board with the remote authority.

Architecture
------------
Local edits are applied optimistically to the board store and recorded
in a persistent **sync queue**, which delivers them one at a time, in
order, with bounded retries. The authority is the source of truth: each
request carries the board version the edit was made against, and a
stale version is rejected as a conflict. Conflicts are settled by a
**three-way merge** of the local board, the server board and their last
common ancestor (the confirmed board).

Modules:

- ``engine``    -- ``SyncEngine``: coordinates store, queue and resolver.
- ``queue``     -- ``SyncQueue``: FIFO delivery, retries, persistence.
- ``resolver``  -- ``detect_conflicts``, ``three_way_merge``,
  ``ConflictResolver``.
- ``merger``    -- ``deep_equal``, ``get_diff`` primitives.
- ``events``    -- typed queue events and the ``EventBus``.
- ``models``    -- ``QueueEntry``, ``QueueStatus``, ``MergeResult``, ...
- ``reporter``  -- human-readable and JSON renderings.

Usage example
-------------
::

    from kanban_sync.board import BoardStore, new_card
    from kanban_sync.remote import RemoteClient
    from kanban_sync.storage import JsonFileStore
    from kanban_sync.sync import ConflictResolver, SyncEngine, SyncQueue

    storage = JsonFileStore(Path(".kanban_sync/data"))
    client = RemoteClient(config)
    engine = SyncEngine(
        store=BoardStore(storage),
        queue=SyncQueue(client, storage),
        authority=client,
        resolver=ConflictResolver(storage),
    )
    engine.restore()

    engine.dispatch(new_card(column_id, "Write design doc"))
    await engine.join()
"""

from .engine import SyncEngine, replay
from .events import (
    EntryConflicted,
    EntryReverted,
    EntrySynced,
    EventBus,
    QueueChanged,
)
from .merger import MergeError, UncomparableValueError, deep_equal, get_diff
from .models import (
    EntryStatus,
    MergeResult,
    ProcessResult,
    QueueEntry,
    QueueStatus,
)
from .queue import SyncQueue
from .reporter import (
    format_conflict,
    format_merge_result,
    format_queue_status,
    merge_result_to_json,
    status_to_json,
)
from .resolver import ConflictResolver, detect_conflicts, three_way_merge

__all__ = [
    "ConflictResolver",
    "EntryConflicted",
    "EntryReverted",
    "EntryStatus",
    "EntrySynced",
    "EventBus",
    "MergeError",
    "MergeResult",
    "ProcessResult",
    "QueueChanged",
    "QueueEntry",
    "QueueStatus",
    "SyncEngine",
    "SyncQueue",
    "UncomparableValueError",
    "deep_equal",
    "detect_conflicts",
    "format_conflict",
    "format_merge_result",
    "format_queue_status",
    "get_diff",
    "merge_result_to_json",
    "replay",
    "status_to_json",
    "three_way_merge",
]
