"""Tests for SyncQueue delivery, retries, persistence and conflicts."""

from __future__ import annotations

import asyncio
import logging
from unittest.mock import AsyncMock, MagicMock, call, patch

import pytest

from kanban_sync.board.models import now_iso
from kanban_sync.board.mutations import (
    AddColumn,
    CardUpdate,
    CloseCard,
    RenameColumn,
    UpdateCard,
)
from kanban_sync.config import Config
from kanban_sync.remote.errors import ApiError
from kanban_sync.storage import QUEUE_KEY, MemoryStore
from kanban_sync.sync.events import (
    EntryConflicted,
    EntryReverted,
    EntrySynced,
    QueueChanged,
)
from kanban_sync.sync.models import EntryStatus, QueueEntry
from kanban_sync.sync.queue import CONFLICT_MESSAGE, SyncQueue

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _rename(title: str) -> RenameColumn:
    return RenameColumn(column_id="todo", title=title)


def _collect(events, event_type) -> list:
    seen: list = []
    events.subscribe(seen.append, event_type)
    return seen


# ---------------------------------------------------------------------------
# Enqueue and delivery
# ---------------------------------------------------------------------------


class TestEnqueue:
    """Tests for enqueue() and the entry list."""

    def test_enqueue_without_loop_records_entry(self, authority, storage):
        """Outside an event loop the entry is stored but not delivered."""
        queue = SyncQueue(authority, storage)
        entry_id = queue.enqueue(_rename("Backlog"), 1)

        assert entry_id is not None
        entry = queue.get(entry_id)
        assert entry.status == EntryStatus.PENDING
        assert entry.version_at_enqueue == 1
        assert entry.retries == 0
        assert authority.calls == []

    def test_enqueue_persists(self, authority, storage):
        queue = SyncQueue(authority, storage)
        queue.enqueue(_rename("Backlog"), 1)

        saved = storage.get(QUEUE_KEY)
        assert len(saved) == 1
        assert saved[0]["mutation"]["type"] == "COLUMN_RENAME"
        assert saved[0]["versionAtEnqueue"] == 1

    def test_non_syncable_mutation_refused(self, authority, storage, caplog):
        queue = SyncQueue(authority, storage)
        with caplog.at_level(logging.WARNING):
            assert queue.enqueue(CloseCard(), 1) is None
        assert queue.entries == ()

    def test_status_counts(self, authority, storage):
        queue = SyncQueue(authority, storage, online=False)
        queue.enqueue(_rename("A"), 1)
        queue.enqueue(_rename("B"), 1)

        status = queue.status
        assert status.pending == 2
        assert status.total == 2
        assert status.is_online is False
        assert status.is_syncing is False

    def test_from_config(self, authority, storage):
        config = Config(max_retries=7, retry_delays=(2.0,), sync_throttle=1.5)
        queue = SyncQueue.from_config(config, authority, storage)

        assert queue.max_retries == 7
        assert queue.retry_delays == (2.0,)
        assert queue.throttle == 1.5


class TestDelivery:
    """Tests for process_queue() outcomes."""

    async def test_auto_sync_delivers_in_order(self, queue, authority, events):
        synced = _collect(events, EntrySynced)

        queue.enqueue(_rename("A"), 1)
        queue.enqueue(AddColumn(id="review", title="Review"), 1)
        queue.enqueue(_rename("B"), 1)
        await queue.join()

        calls = authority.calls_to("sync_mutation")
        assert [c["mutation"].type for c in calls] == [
            "COLUMN_RENAME",
            "COLUMN_ADD",
            "COLUMN_RENAME",
        ]
        assert [e.ack.version for e in synced] == [2, 3, 4]
        assert queue.entries == ()
        assert authority.state.board.columns["todo"].title == "B"

    async def test_acknowledged_entry_rebases_followers(self, queue, authority):
        """Entries made at the same version follow our own accepted write."""
        queue.enqueue(_rename("A"), 1)
        queue.enqueue(_rename("B"), 1)
        await queue.join()

        versions = [c["version"] for c in authority.calls_to("sync_mutation")]
        assert versions == [1, 2]

    async def test_fail_twice_then_succeed(self, queue, authority, events):
        """Two failures then success: three attempts, entry removed."""
        synced = _collect(events, EntrySynced)
        reverted = _collect(events, EntryReverted)
        authority.fail_next(2)

        queue.enqueue(_rename("Backlog"), 1)
        await queue.join()

        assert len(authority.calls_to("sync_mutation")) == 3
        assert queue.entries == ()
        assert len(synced) == 1
        assert reverted == []

    async def test_max_retries_reverts_once(self, queue, authority, events):
        """Four consecutive failures: Failed status, exactly one revert."""
        reverted = _collect(events, EntryReverted)
        authority.fail_next(10, status=503, message="Unavailable")

        entry_id = queue.enqueue(_rename("Backlog"), 1)
        await queue.join()

        assert len(authority.calls_to("sync_mutation")) == 4
        entry = queue.get(entry_id)
        assert entry.status == EntryStatus.FAILED
        assert entry.retries == 4
        assert entry.reverted is True
        assert entry.last_error == "Unavailable"
        assert len(reverted) == 1
        assert reverted[0].entry.id == entry_id

        # Later passes never touch a permanently failed entry again
        await queue.force_sync()
        assert len(authority.calls_to("sync_mutation")) == 4
        assert len(reverted) == 1

    async def test_retried_entry_goes_first(self, queue, authority):
        """A failing entry is always redelivered before later entries."""
        authority.fail_next(1)
        queue.enqueue(_rename("A"), 1)
        queue.enqueue(AddColumn(id="review", title="Review"), 1)
        await queue.join()

        calls = [c["mutation"].type for c in authority.calls_to("sync_mutation")]
        assert calls == ["COLUMN_RENAME", "COLUMN_RENAME", "COLUMN_ADD"]

    async def test_permanent_failure_does_not_block_later_entries(
        self, authority, storage
    ):
        queue = SyncQueue(
            authority, storage, max_retries=1, retry_delays=(0.0,), throttle=0.0
        )
        authority.fail_next(1)
        first = queue.enqueue(_rename("A"), 1)
        queue.enqueue(AddColumn(id="review", title="Review"), 1)
        await queue.join()

        assert queue.get(first).status == EntryStatus.FAILED
        assert [e.id for e in queue.entries] == [first]
        assert "review" in authority.state.board.columns

    async def test_conflict_blocks_later_entries(self, queue, authority, events):
        conflicted = _collect(events, EntryConflicted)
        authority.apply_remote(RenameColumn(column_id="done", title="Shipped"))

        first = queue.enqueue(_rename("A"), 1)
        queue.enqueue(_rename("B"), 2)
        await queue.join()

        entry = queue.get(first)
        assert entry.status == EntryStatus.FAILED
        assert entry.conflict is True
        assert entry.last_error == CONFLICT_MESSAGE
        assert entry.retries == 0
        assert len(authority.calls_to("sync_mutation")) == 1

        assert len(conflicted) == 1
        server = conflicted[0].server_state
        assert server.version == 2
        assert server.columns["done"].title == "Shipped"

    async def test_listener_errors_do_not_escape(self, queue, events):
        def _broken(event):
            raise RuntimeError("listener bug")

        events.subscribe(_broken)
        queue.enqueue(_rename("A"), 1)
        await queue.join()

        assert queue.entries == ()

    async def test_unexpected_exception_is_a_failure(self, storage):
        authority = MagicMock()
        authority.sync_mutation.side_effect = ValueError("bad payload")
        queue = SyncQueue(
            authority, storage, max_retries=1, retry_delays=(0.0,), throttle=0.0
        )

        entry_id = queue.enqueue(_rename("A"), 1)
        await queue.join()

        entry = queue.get(entry_id)
        assert entry.status == EntryStatus.FAILED
        assert entry.last_error == "bad payload"
        assert queue.status.error == "1 item(s) failed to sync"

    async def test_client_error_is_not_retried(self, queue, authority, events):
        """A 404 cannot succeed later: the entry is reverted at once."""
        reverted = _collect(events, EntryReverted)
        authority.fail_next(10, status=404, message="Column not found")

        entry_id = queue.enqueue(_rename("A"), 1)
        await queue.join()

        assert len(authority.calls_to("sync_mutation")) == 1
        entry = queue.get(entry_id)
        assert entry.status == EntryStatus.FAILED
        assert entry.retries == 1
        assert entry.reverted is True
        assert [e.reason for e in reverted] == ["Column not found"]

    async def test_give_up_log_carries_entry_context(self, queue, authority, caplog):
        authority.fail_next(10, status=404, message="Column not found")

        with caplog.at_level(logging.ERROR, logger="kanban_sync.sync.queue"):
            entry_id = queue.enqueue(_rename("A"), 1)
            await queue.join()

        record = next(r for r in caplog.records if r.levelno == logging.ERROR)
        assert record.entry_id == entry_id
        assert record.mutation == "COLUMN_RENAME"
        assert record.version == 1


# ---------------------------------------------------------------------------
# Backoff
# ---------------------------------------------------------------------------


class TestBackoff:
    """Retry delays follow the schedule and are never cut short."""

    @pytest.mark.parametrize(
        "max_retries, expected",
        [
            (4, [0.0, 1.0, 5.0]),
            (6, [0.0, 1.0, 5.0, 15.0, 15.0]),
        ],
    )
    async def test_delay_schedule(self, authority, storage, max_retries, expected):
        queue = SyncQueue(authority, storage, max_retries=max_retries, throttle=0.0)
        authority.fail_next(10)

        with patch(
            "kanban_sync.sync.queue.asyncio.sleep", new_callable=AsyncMock
        ) as sleep:
            entry_id = queue.enqueue(_rename("A"), 1)
            await queue.join()

        assert [c.args[0] for c in sleep.await_args_list] == expected
        assert len(authority.calls_to("sync_mutation")) == max_retries
        assert queue.get(entry_id).status == EntryStatus.FAILED

    async def test_passes_during_backoff_do_not_retry_early(
        self, authority, storage
    ):
        now = [100.0]
        queue = SyncQueue(
            authority,
            storage,
            retry_delays=(30.0,),
            throttle=0.0,
            auto_sync=False,
            clock=lambda: now[0],
        )
        authority.fail_next(1)
        first = queue.enqueue(_rename("A"), 1)
        await queue.process_queue()

        # what an enqueue, a throttled follow-up and a rerun would trigger
        queue.enqueue(AddColumn(id="review", title="Review"), 1)
        held = await queue.process_queue()
        rerun = await queue.process_queue(force=True)

        assert (held.synced, held.failed) == (0, 0)
        assert rerun.synced == 0
        assert len(authority.calls_to("sync_mutation")) == 1
        assert queue.get(first).retries == 1

        now[0] = 130.0
        result = await queue.process_queue()

        assert result.synced == 2
        calls = [c["mutation"].type for c in authority.calls_to("sync_mutation")]
        assert calls == ["COLUMN_RENAME", "COLUMN_RENAME", "COLUMN_ADD"]
        await queue.stop()

    async def test_force_sync_skips_backoff(self, authority, storage):
        queue = SyncQueue(
            authority,
            storage,
            retry_delays=(30.0,),
            throttle=0.0,
            auto_sync=False,
            clock=lambda: 100.0,
        )
        authority.fail_next(1)
        queue.enqueue(_rename("A"), 1)
        await queue.process_queue()

        result = await queue.force_sync()

        assert result.synced == 1
        assert queue.entries == ()
        await queue.stop()


# ---------------------------------------------------------------------------
# Triggers
# ---------------------------------------------------------------------------


class TestTriggers:
    """Tests for connectivity, throttling and manual controls."""

    async def test_offline_skips(self, authority, storage):
        queue = SyncQueue(authority, storage, online=False, throttle=0.0)
        queue.enqueue(_rename("A"), 1)

        result = await queue.process_queue()

        assert result.skipped == "offline"
        assert authority.calls == []

    async def test_force_sync_offline_sets_error(self, authority, storage):
        queue = SyncQueue(authority, storage, online=False)
        result = await queue.force_sync()

        assert result.skipped == "offline"
        assert queue.status.error == "Cannot sync while offline"

    async def test_coming_online_flushes(self, authority, storage):
        queue = SyncQueue(authority, storage, online=False, throttle=0.0)
        queue.enqueue(_rename("A"), 1)

        queue.set_online(False)
        assert queue.status.error is None
        queue.set_online(True)
        await queue.join()

        assert queue.entries == ()
        assert queue.status.is_online is True

    async def test_going_offline_sets_message(self, queue):
        queue.set_online(False)
        assert "offline" in queue.status.error

    async def test_throttle(self, authority, storage):
        clock = MagicMock(side_effect=[100.0, 100.1])
        queue = SyncQueue(
            authority, storage, throttle=10.0, auto_sync=False, clock=clock
        )
        queue.enqueue(_rename("A"), 1)

        first = await queue.process_queue()
        queue.enqueue(_rename("B"), 2)
        second = await queue.process_queue()

        assert first.synced == 1
        assert second.skipped == "throttled"
        await queue.stop()

    async def test_force_ignores_throttle(self, authority, storage):
        clock = MagicMock(side_effect=[100.0, 100.1])
        queue = SyncQueue(
            authority, storage, throttle=10.0, auto_sync=False, clock=clock
        )
        queue.enqueue(_rename("A"), 1)
        await queue.process_queue()
        queue.enqueue(_rename("B"), 2)

        result = await queue.force_sync()

        assert result.synced == 1

    async def test_retry_failed(self, queue, authority, events):
        authority.fail_next(4)
        entry_id = queue.enqueue(_rename("A"), 1)
        await queue.join()
        assert queue.get(entry_id).status == EntryStatus.FAILED

        assert queue.retry_failed() == 1
        await queue.join()

        assert queue.entries == ()
        assert authority.state.board.columns["todo"].title == "A"

    async def test_clear_failed_reverts_unreverted(self, queue, authority, events):
        reverted = _collect(events, EntryReverted)
        authority.apply_remote(RenameColumn(column_id="done", title="Shipped"))
        queue.enqueue(_rename("A"), 1)
        await queue.join()

        assert queue.clear_failed() == 1

        assert queue.entries == ()
        assert len(reverted) == 1
        assert reverted[0].reason == "Cleared by user"

    async def test_status_events(self, queue, events):
        changes = _collect(events, QueueChanged)
        queue.enqueue(_rename("A"), 1)
        await queue.join()

        assert changes[0].status.pending == 1
        assert any(c.status.is_syncing for c in changes)
        final = changes[-1].status
        assert final.total == 0
        assert final.last_sync_at is not None

    def test_remove_entries_and_rebase(self, authority, storage):
        queue = SyncQueue(authority, storage, online=False)
        a = queue.enqueue(_rename("A"), 1)
        b = queue.enqueue(_rename("B"), 1)

        assert queue.remove_entries([a, "missing"]) == 1
        queue.rebase(5)

        assert [e.id for e in queue.entries] == [b]
        assert queue.get(b).version_at_enqueue == 5

    async def test_stop_cancels_background_timer(self, authority, storage):
        queue = SyncQueue(authority, storage, interval=(60.0, 60.0))
        queue.start()
        queue.start()  # idempotent
        await queue.stop()

        assert queue.status.is_syncing is False

    @pytest.mark.parametrize("online, passes", [(True, 2), (False, 0)])
    async def test_background_timer_rearms(
        self, authority, storage, online, passes
    ):
        """Each firing draws a fresh interval; offline firings skip the pass."""
        queue = SyncQueue(authority, storage, interval=(30.0, 60.0), online=online)
        delays: list[float] = []
        parked = asyncio.Event()

        async def _sleep(delay):
            delays.append(delay)
            if len(delays) == 3:
                parked.set()
                await asyncio.Future()  # until stop() cancels the timer

        with (
            patch(
                "kanban_sync.sync.queue.random.uniform", return_value=42.0
            ) as uniform,
            patch("kanban_sync.sync.queue.asyncio.sleep", new=_sleep),
            patch.object(queue, "process_queue", new_callable=AsyncMock) as process,
        ):
            queue.start()
            await parked.wait()
            await queue.stop()

        assert delays == [42.0, 42.0, 42.0]
        assert uniform.call_args_list == [call(30.0, 60.0)] * 3
        assert process.await_count == passes


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


class TestRestore:
    """Tests for restore()."""

    def test_restore_resets_processing(self, authority):
        in_flight = QueueEntry(
            mutation=_rename("A"),
            version_at_enqueue=1,
            status=EntryStatus.PROCESSING,
        )
        failed = QueueEntry(
            mutation=UpdateCard(card_id="c1", updates=CardUpdate(title="x")),
            version_at_enqueue=1,
            status=EntryStatus.FAILED,
            retries=4,
            reverted=True,
            created_at=now_iso(),
        )
        storage = MemoryStore(
            {
                QUEUE_KEY: [
                    in_flight.model_dump(mode="json", by_alias=True),
                    failed.model_dump(mode="json", by_alias=True),
                ]
            }
        )
        queue = SyncQueue(authority, storage)

        assert queue.restore() == 2
        assert queue.get(in_flight.id).status == EntryStatus.PENDING
        assert queue.get(failed.id).status == EntryStatus.FAILED
        assert queue.get(failed.id).reverted is True
        assert queue.get(failed.id).mutation.updates.title == "x"

    def test_restore_skips_unreadable_entries(self, authority, caplog):
        good = QueueEntry(mutation=_rename("A"), version_at_enqueue=1)
        storage = MemoryStore(
            {
                QUEUE_KEY: [
                    {"mutation": {"type": "NOPE"}},
                    good.model_dump(mode="json", by_alias=True),
                ]
            }
        )
        queue = SyncQueue(authority, storage)

        with caplog.at_level(logging.WARNING):
            assert queue.restore() == 1
        assert "Skipping unreadable queue entry" in caplog.text

    def test_restore_empty(self, authority, storage):
        assert SyncQueue(authority, storage).restore() == 0

    def test_storage_failure_is_logged(self, authority, caplog):
        storage = MagicMock()
        storage.set.side_effect = OSError("disk full")
        queue = SyncQueue(authority, storage, online=False)

        with caplog.at_level(logging.ERROR):
            entry_id = queue.enqueue(_rename("A"), 1)

        assert queue.get(entry_id) is not None
        assert "Failed to persist sync queue" in caplog.text


class TestErrors:
    def test_api_error_transient(self):
        assert ApiError("x", 0).is_transient
        assert ApiError("x", 503).is_transient
        assert ApiError("x", 429).is_transient
        assert not ApiError("x", 404).is_transient
