"""Tests for sync reporter formatting functions.

Covers:
- format_conflict with scalar, list and deleted values
- format_merge_result with resolved and unresolved conflicts
- format_queue_status in its online/offline/error variants
- merge_result_to_json and status_to_json structure
"""

from __future__ import annotations

import json

import pytest

from kanban_sync.board.conflicts import (
    Conflict,
    ConflictEntity,
    ConflictKind,
)
from kanban_sync.board.mutations import CardUpdate, UpdateCard
from kanban_sync.board.reducer import apply_to_board
from kanban_sync.sync.models import QueueStatus
from kanban_sync.sync.reporter import (
    format_conflict,
    format_merge_result,
    format_queue_status,
    merge_result_to_json,
    status_to_json,
)
from kanban_sync.sync.resolver import three_way_merge

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _edit(board, **fields):
    return apply_to_board(
        board, UpdateCard(card_id="c1", updates=CardUpdate(**fields))
    )


@pytest.fixture
def merge_result(board):
    """Title conflict left open, tags conflict settled by union."""
    local = _edit(board, title="Local", tags=["draft", "a"])
    server = _edit(board, title="Server", tags=["draft", "b"]).model_copy(
        update={"version": 2}
    )
    return three_way_merge(board, local, server)


# ---------------------------------------------------------------------------
# format_conflict
# ---------------------------------------------------------------------------


class TestFormatConflict:
    """Tests for format_conflict()."""

    def test_scalar_field(self, merge_result):
        text = format_conflict(merge_result.conflicts[0])

        lines = text.splitlines()
        assert lines[0] == "Conflict [same_field] card c1.title"
        assert "has conflicting title" in lines[1]
        assert "--- local" in text
        assert "+++ server" in text
        assert "-Local" in text
        assert "+Server" in text

    def test_list_values_rendered_as_json(self):
        conflict = Conflict(
            id="column:todo:cardIds",
            kind=ConflictKind.ORDER_CONFLICT,
            entity=ConflictEntity.COLUMN,
            entity_id="todo",
            field="cardIds",
            description="Column order diverged",
            local_value=["c1", "c2"],
            server_value=["c2", "c1"],
        )

        text = format_conflict(conflict)

        assert text.startswith("Conflict [order_conflict] column todo.cardIds")
        assert '-  "c1",' in text
        assert '+  "c2",' in text

    def test_deleted_side(self):
        conflict = Conflict(
            id="card:c2:*",
            kind=ConflictKind.DELETE_MODIFY,
            entity=ConflictEntity.CARD,
            entity_id="c2",
            description='Card "Review" was deleted locally but modified on server',
            local_value=None,
            server_value="kept",
        )

        text = format_conflict(conflict)

        assert text.splitlines()[0] == "Conflict [delete_modify] card c2"
        assert "-(deleted)" in text

    def test_board_level_label(self):
        conflict = Conflict(
            id="board:-:columnOrder",
            kind=ConflictKind.ORDER_CONFLICT,
            entity=ConflictEntity.BOARD,
            field="columnOrder",
            description="Column order changed on both sides",
            local_value=["a", "b"],
            server_value=["a", "b"],
        )

        text = format_conflict(conflict)

        assert text.splitlines()[0] == "Conflict [order_conflict] board.columnOrder"
        assert text.endswith("(no textual differences)")


# ---------------------------------------------------------------------------
# format_merge_result
# ---------------------------------------------------------------------------


class TestFormatMergeResult:
    """Tests for format_merge_result()."""

    def test_sections(self, merge_result):
        text = format_merge_result(merge_result)

        assert text.startswith("Merged board at version 3")
        assert "1 conflicts resolved, 1 unresolved" in text
        assert "Resolved:\n  card c1.tags: custom" in text
        assert "Needs resolution:\n  card c1.title:" in text

    def test_clean_merge_has_no_sections(self, board):
        result = three_way_merge(board, _edit(board, title="Only local"), board)
        text = format_merge_result(result)

        assert "0 conflicts resolved, 0 unresolved" in text
        assert "Resolved:" not in text
        assert "Needs resolution:" not in text


# ---------------------------------------------------------------------------
# format_queue_status
# ---------------------------------------------------------------------------


class TestFormatQueueStatus:
    """Tests for format_queue_status()."""

    def test_idle(self):
        text = format_queue_status(QueueStatus())

        assert text.splitlines()[0] == "Sync queue (online): 0 entries"
        assert "last sync: never" in text
        assert "error:" not in text

    def test_syncing_with_error(self):
        status = QueueStatus(
            pending=2,
            processing=1,
            failed=1,
            total=4,
            is_syncing=True,
            last_sync_at="2024-01-01T00:00:00+00:00",
            error="1 item(s) failed to sync",
        )

        text = format_queue_status(status)

        assert text.splitlines() == [
            "Sync queue (online, syncing): 4 entries",
            "  pending: 2, processing: 1, failed: 1",
            "  last sync: 2024-01-01T00:00:00+00:00",
            "  error: 1 item(s) failed to sync",
        ]

    def test_offline(self):
        text = format_queue_status(QueueStatus(is_online=False))
        assert text.startswith("Sync queue (offline)")


# ---------------------------------------------------------------------------
# JSON output
# ---------------------------------------------------------------------------


class TestJsonOutput:
    """Tests for merge_result_to_json() and status_to_json()."""

    def test_merge_result_structure(self, merge_result):
        data = merge_result_to_json(merge_result)

        assert data["version"] == 3
        assert data["summary"] == {"resolved": 1, "unresolved": 1}
        assert data["resolved"][0]["resolution"]["choice"] == "custom"
        assert data["resolved"][0]["resolution"]["value"] == ["draft", "a", "b"]
        conflict = data["conflicts"][0]
        assert conflict["entityId"] == "c1"
        assert conflict["localValue"] == "Local"
        assert conflict["serverValue"] == "Server"
        json.dumps(data)

    def test_status_uses_camel_case(self):
        data = status_to_json(QueueStatus(total=1, pending=1))

        assert data["isOnline"] is True
        assert data["lastSyncAt"] is None
        assert data["total"] == 1
