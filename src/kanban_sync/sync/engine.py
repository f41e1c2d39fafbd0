"""Sync engine: ties the board store, the sync queue and the resolver together.

The ``SyncEngine`` is the single entry point for local edits. It:

1. Validates a mutation and applies it optimistically to the board store.
2. Enqueues syncable mutations with the board version they were made at.
3. Advances the confirmed (common-ancestor) board as entries are
   acknowledged, and stamps the acknowledged version locally.
4. Undoes abandoned entries by rebuilding the local board from the
   confirmed board plus every still-live queue entry.
5. Routes version conflicts through a three-way merge. A clean merge is
   pushed with a full-board replace and adopted; otherwise the conflict
   dialog is opened and the episode waits for ``resolve_conflict`` /
   ``apply_resolutions`` / ``dismiss_conflict``.

The confirmed board is the resolver's base snapshot, persisted under
``BASE_KEY``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Coroutine, Iterable

from ..board.conflicts import MergeStrategy, Resolution
from ..board.models import Board, now_iso
from ..board.mutations import (
    AddCard,
    AddColumn,
    ApplyMerge,
    BaseMutation,
    ConflictDetected,
    DismissConflict,
    LoadBoard,
    ResolveConflict,
    Revert,
    SetVersion,
    is_syncable,
)
from ..board.reducer import BoardState, apply_to_board
from ..board.store import BoardStore
from ..core.async_utils import run_sync
from ..remote.client import Authority
from ..remote.errors import ApiError, ConflictError
from ..validators import validate_mutation
from .events import EntryConflicted, EntryReverted, EntrySynced
from .models import MergeResult, QueueEntry
from .queue import SyncQueue
from .resolver import ConflictResolver

logger = logging.getLogger(__name__)

MAX_MERGE_ATTEMPTS = 3


def replay(board: Board, entries: Iterable[QueueEntry]) -> Board:
    """Apply each entry's mutation to *board* in queue order."""
    for entry in entries:
        board = apply_to_board(board, entry.mutation)
    return board


def _touched_ids(entries: Iterable[QueueEntry]) -> tuple[set[str], set[str]]:
    """Column ids and card ids the entries' mutations refer to."""
    columns: set[str] = set()
    cards: set[str] = set()
    for entry in entries:
        m = entry.mutation
        if isinstance(m, AddColumn):
            columns.add(m.id)
        if isinstance(m, AddCard):
            cards.add(m.card.id)
        for attr in ("column_id", "source_column_id", "dest_column_id"):
            value = getattr(m, attr, None)
            if value:
                columns.add(value)
        card_id = getattr(m, "card_id", None)
        if card_id:
            cards.add(card_id)
    return columns, cards


def approximate_base(
    local: Board, server: Board, entries: Iterable[QueueEntry]
) -> Board:
    """Stand-in common ancestor for a client that lost its base snapshot.

    Columns and cards the queued entries refer to are taken from *server*
    (dropped when the server does not have them); everything else comes
    from *local*. The client's stale copy of something it never edited
    then matches the base, so the server's newer version of it wins
    instead of being overwritten.
    """
    column_ids, card_ids = _touched_ids(entries)
    base = local.to_wire()
    remote = server.to_wire()

    for key, ids in (("columns", column_ids), ("cards", card_ids)):
        for entity_id in ids:
            if entity_id in remote[key]:
                base[key][entity_id] = remote[key][entity_id]
            else:
                base[key].pop(entity_id, None)

    order = [cid for cid in base["columnOrder"] if cid in base["columns"]]
    order += [cid for cid in base["columns"] if cid not in order]
    base["columnOrder"] = order
    base["version"] = server.version
    base["lastModifiedAt"] = remote["lastModifiedAt"]
    return Board.from_wire(base)


class SyncEngine:
    """Coordinate optimistic edits, delivery and reconciliation.

    Args:
        store: The board state store.
        queue: Sync queue delivering to *authority*.
        authority: Remote client used for full-board fetch and replace.
        resolver: Merge session holding the confirmed board.
        strategy: Merge strategy for conflict episodes.
    """

    def __init__(
        self,
        store: BoardStore,
        queue: SyncQueue,
        authority: Authority,
        resolver: ConflictResolver,
        strategy: MergeStrategy = MergeStrategy.AUTO_MERGE,
    ) -> None:
        self.store = store
        self.queue = queue
        self.authority = authority
        self.resolver = resolver
        self.strategy = strategy
        self.last_error: str | None = None
        self.last_merge: MergeResult | None = None

        self._episode_entry_ids: list[str] = []
        self._tasks: set[asyncio.Task] = set()
        self._unsubscribe = [
            queue.events.subscribe(self._on_synced, EntrySynced),
            queue.events.subscribe(self._on_reverted, EntryReverted),
            queue.events.subscribe(self._on_conflicted, EntryConflicted),
        ]

    # ------------------------------------------------------------------
    # Startup / shutdown
    # ------------------------------------------------------------------

    def restore(self) -> None:
        """Hydrate board, queue and base snapshot from storage."""
        self.store.hydrate()
        self.queue.restore()
        if self.resolver.load_base() is not None:
            return
        if self.queue.live_entries:
            logger.warning(
                "No confirmed board stored for %d queued change(s), "
                "recovering it from the authority",
                len(self.queue.live_entries),
            )
        else:
            self.resolver.set_base(self.store.board)

    async def recover_base(self, server: Board | None = None) -> bool:
        """Record a confirmed board when ``restore()`` found none.

        When the authority is still at the version the oldest queued change
        was made against, its board is exactly the confirmed one. Otherwise
        ``approximate_base`` stands in for it.

        Args:
            server: The authority's board; fetched when ``None``.

        Returns:
            True if a confirmed board is recorded afterwards.
        """
        if self.resolver.has_base:
            return True
        entries = self.queue.live_entries
        if server is None:
            server = await self._fetch()
            if server is None:
                return False

        if not entries or server.version <= min(
            e.version_at_enqueue for e in entries
        ):
            self.resolver.set_base(server)
        else:
            logger.warning(
                "Authority is at v%d, past the queued changes; "
                "approximating the confirmed board",
                server.version,
            )
            self.resolver.set_base(
                approximate_base(self.store.board, server, entries)
            )
        return True

    async def stop(self) -> None:
        """Cancel queue work and reconciliations, and detach from the bus."""
        await self.queue.stop()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe = []

    async def join(self) -> None:
        """Wait for queue passes and reconciliations to settle."""
        while True:
            await self.queue.join()
            if not self._tasks:
                return
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Local edits
    # ------------------------------------------------------------------

    @property
    def state(self) -> BoardState:
        return self.store.state

    @property
    def board(self) -> Board:
        return self.store.board

    def dispatch(self, mutation: BaseMutation) -> BoardState:
        """Apply *mutation* locally and enqueue it when syncable.

        Raises:
            ValueError: If the mutation fails local validation.
        """
        is_valid, error_msg = validate_mutation(mutation)
        if not is_valid:
            raise ValueError(error_msg)

        previous = self.store.state
        version = previous.board.version
        state = self.store.dispatch(mutation)

        if is_syncable(mutation) and state.board is not previous.board:
            self.queue.enqueue(mutation, version)
        return state

    # ------------------------------------------------------------------
    # Queue events
    # ------------------------------------------------------------------

    def _on_synced(self, event: EntrySynced) -> None:
        entry, ack = event.entry, event.ack
        base = self.resolver.base
        if base is not None:
            confirmed = apply_to_board(base, entry.mutation).model_copy(
                update={
                    "version": ack.version,
                    "last_modified_at": ack.last_modified_at or now_iso(),
                }
            )
            self.resolver.set_base(confirmed)
            if entry.reverted:
                self._rebuild_local(confirmed)
                return

        if ack.version > self.store.board.version:
            self.store.dispatch(SetVersion(version=ack.version))

    def _on_reverted(self, event: EntryReverted) -> None:
        logger.warning(
            "Reverting %s (%s): %s",
            event.entry.id,
            event.entry.mutation.type,
            event.reason,
        )
        self.last_error = event.reason
        base = self.resolver.base
        if base is None:
            logger.warning("No confirmed board recorded, cannot revert %s", event.entry.id)
            return
        self._rebuild_local(base)

    def _on_conflicted(self, event: EntryConflicted) -> None:
        if self._episode_entry_ids:
            return
        self._spawn(self.reconcile(event.server_state))

    def _rebuild_local(self, confirmed: Board) -> None:
        board = replay(confirmed, self.queue.live_entries)
        board = board.model_copy(
            update={"version": max(confirmed.version, self.store.board.version)}
        )
        self.store.dispatch(Revert(board=board))

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def reconcile(self, server: Board | None = None) -> MergeResult | None:
        """Merge the local board with the authority's board.

        Args:
            server: The authority's board; fetched when ``None``.

        Returns:
            The merge result, or ``None`` if the authority was unreachable.
        """
        if server is None:
            server = await self._fetch()
            if server is None:
                return None
        await self.recover_base(server)

        self._episode_entry_ids = [e.id for e in self.queue.live_entries]
        local = self.store.board
        result = self.resolver.merge(local, server, self.strategy)
        self.last_merge = result

        if result.has_conflicts:
            logger.info(
                "Merge left %d unresolved conflict(s), awaiting resolution",
                len(result.conflicts),
            )
            self.store.dispatch(
                ConflictDetected(
                    conflicts=result.conflicts,
                    local=local,
                    server=server,
                    base=self.resolver.base,
                )
            )
            return result

        await self._commit(result.merged, server.version)
        return result

    async def refresh(self) -> Board | None:
        """Fetch the authority's board and catch up if it is ahead.

        With no live local edits the server board is adopted directly;
        otherwise a three-way merge runs.
        """
        server = await self._fetch()
        if server is None:
            return None
        await self.recover_base(server)
        if server.version <= self.store.board.version:
            return server

        if self.queue.live_entries:
            await self.reconcile(server)
        else:
            self.resolver.update_base(server)
            self.store.dispatch(LoadBoard(board=server))
        return server

    def resolve_conflict(self, conflict_id: str, resolution: Resolution) -> None:
        """Record the caller's decision for one conflict of the open episode."""
        self.resolver.add_resolution(conflict_id, resolution)
        self.store.dispatch(
            ResolveConflict(conflict_id=conflict_id, resolution=resolution)
        )

    async def apply_resolutions(self) -> MergeResult | None:
        """Re-merge the open episode with the resolutions supplied so far.

        Commits the merge when nothing is left unresolved. Returns ``None``
        when no conflict dialog is open.
        """
        dialog = self.store.state.ui.conflict_dialog
        if dialog is None:
            return None

        for conflict_id, resolution in dialog.resolutions.items():
            self.resolver.add_resolution(conflict_id, resolution)
        result = self.resolver.merge(dialog.local, dialog.server, self.strategy)
        self.last_merge = result
        if result.has_conflicts:
            return result

        await self._commit(result.merged, dialog.server.version)
        return result

    def dismiss_conflict(self) -> None:
        """Abandon local edits of the open episode and adopt the server board."""
        dialog = self.store.state.ui.conflict_dialog
        if dialog is None:
            return
        server = dialog.server
        self.resolver.update_base(server)
        self.queue.remove_entries(self._episode_entry_ids)
        self._episode_entry_ids = []

        self.store.dispatch(DismissConflict())
        self._adopt(server)

    async def _commit(self, merged: Board, server_version: int) -> None:
        for attempt in range(1, MAX_MERGE_ATTEMPTS + 1):
            try:
                response = await run_sync(
                    self.authority.save_board, merged, server_version
                )
            except ConflictError as e:
                logger.warning(
                    "Authority moved on during merge (attempt %d/%d)",
                    attempt,
                    MAX_MERGE_ATTEMPTS,
                )
                server = e.server_state or await self._fetch()
                if server is None:
                    self._episode_entry_ids = []
                    return
                self._episode_entry_ids = [x.id for x in self.queue.live_entries]
                result = self.resolver.merge(self.store.board, server, self.strategy)
                self.last_merge = result
                if result.has_conflicts:
                    self.store.dispatch(
                        ConflictDetected(
                            conflicts=result.conflicts,
                            local=self.store.board,
                            server=server,
                            base=self.resolver.base,
                        )
                    )
                    return
                merged, server_version = result.merged, server.version
                continue
            except ApiError as e:
                logger.error("Failed to push merged board: %s", e.message)
                self.last_error = e.message
                self._episode_entry_ids = []
                return
            break
        else:
            self.last_error = "Merge could not be committed"
            self._episode_entry_ids = []
            logger.error("Giving up on merge after %d attempts", MAX_MERGE_ATTEMPTS)
            return

        confirmed = response.to_board()
        self.resolver.update_base(confirmed)
        self.queue.remove_entries(self._episode_entry_ids)
        self._episode_entry_ids = []
        self.last_error = None

        self.store.dispatch(ApplyMerge(board=confirmed))
        self._adopt(confirmed)
        logger.info("Merged board committed at version %d", confirmed.version)

    def _adopt(self, confirmed: Board) -> None:
        """Replay entries made during the episode on top of *confirmed*."""
        remaining = self.queue.live_entries
        if remaining:
            self.queue.rebase(confirmed.version)
            self.store.dispatch(Revert(board=replay(confirmed, remaining)))
            self._spawn(self.queue.force_sync())

    async def _fetch(self) -> Board | None:
        try:
            response = await run_sync(self.authority.get_board)
        except ApiError as e:
            logger.error("Failed to fetch board: %s", e.message)
            self.last_error = e.message
            return None
        return response.to_board()

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            logger.debug("No running event loop, task not scheduled")
            return
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
