"""Sync Queue: ordered, persistent delivery of mutations to the authority.

Each entry moves through **Pending -> Processing -> {removed | Pending
(retry) | Failed}**. Delivery is strictly sequential and FIFO: at most one
request is in flight, and a failed entry is always retried before any
entry enqueued after it is attempted.

Outcomes of a delivery attempt:

* **success** -- the entry is removed and ``EntrySynced`` is published.
* **version conflict** -- the entry is marked Failed (``conflict=True``),
  ``EntryConflicted`` is published, and later entries are held back until
  the conflict episode is settled.
* **any other failure** -- ``retries`` is incremented. Below
  ``max_retries`` the entry goes back to Pending and a retry is scheduled
  after a delay from ``retry_delays`` (saturating at the last value).
  Until that delay has elapsed no pass delivers it, nor anything behind
  it. At the ceiling, or at once for a non-transient ``ApiError`` such
  as a 404, the entry becomes Failed and ``EntryReverted`` is published
  exactly once.

The queue never raises across its public methods; every outcome is
reported through ``status`` and the ``EventBus``.

Persistence: the entry list is written to the key-value store on every
change. On ``restore()`` entries found mid-flight are reset to Pending.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import Any, Callable, Coroutine, Iterable

from pydantic import ValidationError

from ..board.models import now_iso
from ..board.mutations import BaseMutation, is_syncable
from ..config import Config
from ..core.async_utils import run_sync
from ..remote.client import Authority
from ..remote.errors import ApiError, ConflictError
from ..storage import QUEUE_KEY, KeyValueStore
from .events import (
    EntryConflicted,
    EntryReverted,
    EntrySynced,
    EventBus,
    QueueChanged,
)
from .models import EntryStatus, ProcessResult, QueueEntry, QueueStatus

logger = logging.getLogger(__name__)

CONFLICT_MESSAGE = "Conflict detected - requires resolution"

_SYNCED = "synced"
_RETRY = "retry"
_CONFLICT = "conflict"
_FAILED = "failed"


def _log_context(entry: QueueEntry) -> dict:
    return {
        "entry_id": entry.id,
        "mutation": entry.mutation.type,
        "version": entry.version_at_enqueue,
    }


class SyncQueue:
    """Queue of mutations awaiting acknowledgement.

    Args:
        authority: Remote client (or in-memory authority) to deliver to.
        storage: Key-value store for the serialized entries.
        events: Bus the queue publishes to; a private one when omitted.
        max_retries: Delivery attempts before an entry is abandoned.
        retry_delays: Backoff schedule in seconds.
        throttle: Minimum seconds between non-forced passes.
        interval: ``(min, max)`` seconds for the background timer.
        auto_sync: Attempt a pass after every enqueue while online.
        online: Initial connectivity.
        clock: Monotonic clock used for throttling.
    """

    def __init__(
        self,
        authority: Authority,
        storage: KeyValueStore,
        *,
        events: EventBus | None = None,
        max_retries: int = 4,
        retry_delays: Iterable[float] = (0.0, 1.0, 5.0, 15.0),
        throttle: float = 0.5,
        interval: tuple[float, float] = (30.0, 60.0),
        auto_sync: bool = True,
        online: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._authority = authority
        self._storage = storage
        self.events = events or EventBus()
        self.max_retries = max_retries
        self.retry_delays = tuple(retry_delays) or (0.0,)
        self.throttle = throttle
        self.interval = interval
        self.auto_sync = auto_sync
        self._clock = clock

        self._entries: list[QueueEntry] = []
        self._online = online
        self._processing = False
        self._rerun = False
        self._last_attempt: float | None = None
        self._last_sync_at: str | None = None
        self._error: str | None = None
        self._tasks: set[asyncio.Task] = set()
        # entry id -> clock time before which it must not be redelivered
        self._holds: dict[str, float] = {}
        self._deferred: asyncio.TimerHandle | None = None
        self._timer_task: asyncio.Task | None = None

    @classmethod
    def from_config(
        cls,
        config: Config,
        authority: Authority,
        storage: KeyValueStore,
        events: EventBus | None = None,
    ) -> SyncQueue:
        return cls(
            authority,
            storage,
            events=events,
            max_retries=config.max_retries,
            retry_delays=config.retry_delays,
            throttle=config.sync_throttle,
            interval=(config.sync_interval_min, config.sync_interval_max),
            auto_sync=config.auto_sync,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def entries(self) -> tuple[QueueEntry, ...]:
        return tuple(self._entries)

    @property
    def live_entries(self) -> list[QueueEntry]:
        """Entries whose optimistic effect is still on the local board."""
        return [e for e in self._entries if e.is_live]

    @property
    def is_online(self) -> bool:
        return self._online

    @property
    def status(self) -> QueueStatus:
        counts = {s: 0 for s in EntryStatus}
        for entry in self._entries:
            counts[entry.status] += 1
        return QueueStatus(
            pending=counts[EntryStatus.PENDING],
            processing=counts[EntryStatus.PROCESSING],
            failed=counts[EntryStatus.FAILED],
            total=len(self._entries),
            is_syncing=self._processing,
            is_online=self._online,
            last_sync_at=self._last_sync_at,
            error=self._error,
        )

    def get(self, entry_id: str) -> QueueEntry | None:
        for entry in self._entries:
            if entry.id == entry_id:
                return entry
        return None

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def restore(self) -> int:
        """Load persisted entries, resetting in-flight ones to Pending.

        Returns:
            Number of entries restored. Unreadable entries are skipped.
        """
        try:
            raw = self._storage.get(QUEUE_KEY)
        except Exception:
            logger.exception("Failed to load sync queue")
            return 0
        if not isinstance(raw, list):
            return 0

        restored: list[QueueEntry] = []
        for item in raw:
            try:
                entry = QueueEntry.model_validate(item)
            except ValidationError as e:
                logger.warning("Skipping unreadable queue entry: %s", e)
                continue
            if entry.status == EntryStatus.PROCESSING:
                entry = entry.model_copy(update={"status": EntryStatus.PENDING})
            restored.append(entry)

        self._entries = restored
        self._persist()
        self._publish_status()
        logger.info("Restored %d queue entries", len(restored))
        return len(restored)

    def _persist(self) -> None:
        try:
            self._storage.set(
                QUEUE_KEY,
                [e.model_dump(mode="json", by_alias=True) for e in self._entries],
            )
        except Exception:
            logger.exception("Failed to persist sync queue")

    # ------------------------------------------------------------------
    # Mutating the entry list
    # ------------------------------------------------------------------

    def enqueue(self, mutation: BaseMutation, version_at_enqueue: int) -> str | None:
        """Append *mutation* recorded against *version_at_enqueue*.

        Returns:
            The new entry id, or ``None`` if the mutation is not syncable.
        """
        if not is_syncable(mutation):
            logger.warning("Refusing to enqueue non-syncable %s", mutation.type)
            return None

        entry = QueueEntry(mutation=mutation, version_at_enqueue=version_at_enqueue)
        self._entries = [*self._entries, entry]
        self._persist()
        self._publish_status()
        logger.debug("Enqueued %s as %s", mutation.type, entry.id)

        if self._online and self.auto_sync:
            self._request_pass()
        return entry.id

    def remove_entries(self, entry_ids: Iterable[str]) -> int:
        """Drop entries superseded elsewhere (e.g. by a merge)."""
        ids = set(entry_ids)
        for entry_id in ids:
            self._holds.pop(entry_id, None)
        before = len(self._entries)
        self._entries = [e for e in self._entries if e.id not in ids]
        removed = before - len(self._entries)
        if removed:
            self._persist()
            self._publish_status()
        return removed

    def rebase(self, version: int, entry_ids: Iterable[str] | None = None) -> None:
        """Re-stamp entries (all live ones by default) with *version*."""
        ids = set(entry_ids) if entry_ids is not None else None
        self._entries = [
            e.model_copy(update={"version_at_enqueue": version})
            if e.is_live and (ids is None or e.id in ids)
            else e
            for e in self._entries
        ]
        self._persist()

    def retry_failed(self) -> int:
        """Reset every Failed entry to Pending with a fresh retry budget."""
        count = 0
        entries = []
        for entry in self._entries:
            if entry.status == EntryStatus.FAILED:
                entry = entry.model_copy(
                    update={
                        "status": EntryStatus.PENDING,
                        "retries": 0,
                        "conflict": False,
                        "last_error": None,
                    }
                )
                count += 1
            entries.append(entry)
        self._entries = entries
        self._error = None
        self._persist()
        self._publish_status()
        if count and self._online:
            self._request_pass(force=True)
        return count

    def clear_failed(self) -> int:
        """Remove Failed entries, reverting those not yet reverted."""
        failed = [e for e in self._entries if e.status == EntryStatus.FAILED]
        self._entries = [e for e in self._entries if e.status != EntryStatus.FAILED]
        self._error = None
        self._persist()
        for entry in failed:
            if not entry.reverted:
                reverted = entry.model_copy(update={"reverted": True})
                self.events.publish(EntryReverted(reverted, "Cleared by user"))
        self._publish_status()
        return len(failed)

    def clear(self) -> None:
        """Drop every entry without reverting anything."""
        self._entries = []
        self._holds.clear()
        self._persist()
        self._publish_status()

    def _replace(self, entry_id: str, **changes: Any) -> QueueEntry | None:
        updated: QueueEntry | None = None
        entries = []
        for entry in self._entries:
            if entry.id == entry_id:
                entry = entry.model_copy(update=changes)
                updated = entry
            entries.append(entry)
        self._entries = entries
        return updated

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    async def process_queue(self, force: bool = False) -> ProcessResult:
        """Deliver pending entries in order.

        Skipped when offline, when another pass is running (a follow-up
        pass is then scheduled) or, unless *force*, when the previous pass
        started less than ``throttle`` seconds ago.
        """
        if not self._online:
            return ProcessResult(skipped="offline")

        if self._processing:
            self._rerun = True
            return ProcessResult(skipped="busy")

        now = self._clock()
        if (
            not force
            and self._last_attempt is not None
            and now - self._last_attempt < self.throttle
        ):
            self._defer(self.throttle - (now - self._last_attempt))
            return ProcessResult(skipped="throttled")
        self._last_attempt = now

        if self._next_deliverable() is None:
            return ProcessResult()

        self._processing = True
        self._publish_status()
        synced = failed = 0
        try:
            while (entry := self._next_deliverable()) is not None:
                outcome = await self._deliver(entry)
                if outcome == _SYNCED:
                    synced += 1
                    continue
                failed += 1
                if outcome in (_RETRY, _CONFLICT):
                    break
        except Exception:
            logger.exception("Sync pass aborted")
            failed += 1
        finally:
            self._processing = False
            if synced:
                self._last_sync_at = now_iso()
            self._error = f"{failed} item(s) failed to sync" if failed else None
            self._persist()
            self._publish_status()

        logger.info("Sync pass complete: %d synced, %d failed", synced, failed)

        if self._rerun:
            self._rerun = False
            self._request_pass(force=True)
        return ProcessResult(synced=synced, failed=failed)

    async def force_sync(self) -> ProcessResult:
        """Run a pass now, ignoring the throttle and pending backoff."""
        if not self._online:
            self._error = "Cannot sync while offline"
            self._publish_status()
            return ProcessResult(skipped="offline")
        self._holds.clear()
        return await self.process_queue(force=True)

    def _next_deliverable(self) -> QueueEntry | None:
        """First Pending entry.

        ``None`` when a conflicted entry blocks it or when it is still
        waiting out its backoff delay; later entries never overtake it.
        """
        for entry in self._entries:
            if entry.status == EntryStatus.FAILED:
                if entry.conflict:
                    return None
                continue
            if entry.status == EntryStatus.PENDING:
                due = self._holds.get(entry.id)
                if due is not None and self._clock() < due:
                    return None
                return entry
        return None

    async def _deliver(self, entry: QueueEntry) -> str:
        self._holds.pop(entry.id, None)
        self._replace(entry.id, status=EntryStatus.PROCESSING)
        self._persist()
        self._publish_status()

        try:
            ack = await run_sync(
                self._authority.sync_mutation,
                entry.mutation,
                entry.version_at_enqueue,
            )
        except ConflictError as e:
            logger.warning(
                "Version conflict for %s (%s)",
                entry.id,
                entry.mutation.type,
                extra=_log_context(entry),
            )
            updated = self._replace(
                entry.id,
                status=EntryStatus.FAILED,
                conflict=True,
                last_error=CONFLICT_MESSAGE,
            )
            self._persist()
            if updated is not None:
                self.events.publish(EntryConflicted(updated, e.server_state))
            return _CONFLICT
        except ApiError as e:
            return self._handle_failure(
                entry, str(e) or "Sync failed", permanent=not e.is_transient
            )
        except Exception as e:
            return self._handle_failure(entry, str(e) or "Sync failed")

        self._entries = [e for e in self._entries if e.id != entry.id]
        if ack.version == entry.version_at_enqueue + 1:
            # Later entries made against the same version build on this
            # one, not on a foreign change.
            self._entries = [
                e.model_copy(update={"version_at_enqueue": ack.version})
                if e.version_at_enqueue == entry.version_at_enqueue
                else e
                for e in self._entries
            ]
        self._persist()
        logger.debug(
            "Synced %s (%s) -> v%d",
            entry.id,
            entry.mutation.type,
            ack.version,
            extra=_log_context(entry),
        )
        self.events.publish(EntrySynced(entry, ack))
        return _SYNCED

    def _handle_failure(
        self, entry: QueueEntry, message: str, permanent: bool = False
    ) -> str:
        retries = entry.retries + 1
        if permanent or retries >= self.max_retries:
            logger.error(
                "Giving up on %s (%s) after %d attempts: %s",
                entry.id,
                entry.mutation.type,
                retries,
                message,
                extra=_log_context(entry),
            )
            updated = self._replace(
                entry.id,
                status=EntryStatus.FAILED,
                retries=retries,
                last_error=message,
                reverted=True,
            )
            self._persist()
            if updated is not None:
                self.events.publish(EntryReverted(updated, message))
            return _FAILED

        delay = self.retry_delays[min(retries - 1, len(self.retry_delays) - 1)]
        logger.warning(
            "Delivery of %s failed (attempt %d/%d), retrying in %.1fs: %s",
            entry.id,
            retries,
            self.max_retries,
            delay,
            message,
            extra=_log_context(entry),
        )
        self._replace(
            entry.id,
            status=EntryStatus.PENDING,
            retries=retries,
            last_error=message,
        )
        self._persist()
        if delay > 0:
            self._holds[entry.id] = self._clock() + delay
        self._spawn(self._retry_after(entry.id, delay))
        return _RETRY

    async def _retry_after(self, entry_id: str, delay: float) -> None:
        await asyncio.sleep(delay)
        self._holds.pop(entry_id, None)
        if self._online:
            await self.process_queue(force=True)

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def set_online(self, online: bool) -> None:
        """Record a connectivity change; coming online forces a pass."""
        was_online = self._online
        self._online = online
        if online and not was_online:
            logger.info("Back online, syncing")
            self._error = None
            self._spawn(self.force_sync())
        elif not online and was_online:
            self._error = "You are offline. Changes will sync when reconnected."
        self._publish_status()

    def start(self) -> None:
        """Start the randomized background timer (requires a running loop)."""
        if not self.auto_sync or self._timer_task is not None:
            return
        self._timer_task = asyncio.get_running_loop().create_task(self._background())

    async def stop(self) -> None:
        """Cancel the timer, scheduled retries and in-flight passes."""
        if self._deferred is not None:
            self._deferred.cancel()
            self._deferred = None
        tasks = [t for t in (self._timer_task, *self._tasks) if t is not None]
        self._timer_task = None
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

    async def join(self) -> None:
        """Wait until no pass or scheduled retry is outstanding."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _background(self) -> None:
        while True:
            await asyncio.sleep(random.uniform(*self.interval))
            if self._online:
                await self.process_queue()

    def _request_pass(self, force: bool = False) -> None:
        self._spawn(self.process_queue(force=force))

    def _defer(self, delay: float) -> None:
        if self._deferred is not None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return

        def _fire() -> None:
            self._deferred = None
            self._request_pass()

        self._deferred = loop.call_later(max(delay, 0.0), _fire)

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            logger.debug("No running event loop, sync pass not scheduled")
            return
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _publish_status(self) -> None:
        self.events.publish(QueueChanged(self.status))
