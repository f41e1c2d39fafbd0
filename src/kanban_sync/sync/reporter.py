"""Sync report formatting functions.

Provides human-readable and machine-readable output for sync state:

- ``format_conflict`` -- one conflict, with a unified diff of the values.
- ``format_merge_result`` -- summary of a three-way merge.
- ``format_queue_status`` -- one-paragraph queue summary.
- ``merge_result_to_json`` / ``status_to_json`` -- structured dicts.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from ..board.conflicts import ConflictEntity
from .merger import generate_diff

if TYPE_CHECKING:
    from ..board.conflicts import Conflict
    from .models import MergeResult, QueueStatus

# ------------------------------------------------------------------
# Human-readable report
# ------------------------------------------------------------------


def _render(value: Any) -> str:
    if value is None:
        return "(deleted)"
    if isinstance(value, str):
        return value
    return json.dumps(value, indent=2, sort_keys=True)


def _label(conflict: Conflict) -> str:
    if conflict.entity == ConflictEntity.BOARD:
        target = "board"
    else:
        target = f"{conflict.entity.value} {conflict.entity_id}"
    if conflict.field:
        target += f".{conflict.field}"
    return target


def format_conflict(conflict: Conflict) -> str:
    """Format a single conflict for interactive review.

    Shows the description plus a unified diff between the local and server
    values.

    Args:
        conflict: The conflict to display.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []
    lines.append(f"Conflict [{conflict.kind.value}] {_label(conflict)}")
    lines.append(f"  {conflict.description}")
    lines.append("")

    local_text = _render(conflict.local_value) + "\n"
    server_text = _render(conflict.server_value) + "\n"
    diff_text = generate_diff(local_text, server_text, "local", "server")
    if diff_text:
        lines.append(diff_text.rstrip())
    else:
        lines.append("(no textual differences)")

    return "\n".join(lines).rstrip()


def format_merge_result(result: MergeResult) -> str:
    """Summarise a merge: counts, resolved conflicts, then unresolved ones.

    Args:
        result: The merge outcome.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []
    lines.append(f"Merged board at version {result.merged.version}")
    lines.append(
        f"{len(result.resolved)} conflicts resolved, "
        f"{len(result.conflicts)} unresolved"
    )
    lines.append("")

    if result.resolved:
        lines.append("Resolved:")
        for r in result.resolved:
            lines.append(f"  {_label(r)}: {r.resolution.choice.value}")
        lines.append("")

    if result.conflicts:
        lines.append("Needs resolution:")
        for c in result.conflicts:
            lines.append(f"  {_label(c)}: {c.description}")
        lines.append("")

    return "\n".join(lines).rstrip()


def format_queue_status(status: QueueStatus) -> str:
    """Format the queue status as a short paragraph."""
    state = "online" if status.is_online else "offline"
    if status.is_syncing:
        state += ", syncing"
    lines = [
        f"Sync queue ({state}): {status.total} entries",
        f"  pending: {status.pending}, processing: {status.processing}, "
        f"failed: {status.failed}",
    ]
    lines.append(f"  last sync: {status.last_sync_at or 'never'}")
    if status.error:
        lines.append(f"  error: {status.error}")
    return "\n".join(lines)


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def merge_result_to_json(result: MergeResult) -> dict:
    """Convert a merge result to a structured dict for JSON serialisation.

    Returns:
        Dict with the merged version, counts and per-conflict details
        (camelCase keys, matching the board wire form).
    """
    return {
        "version": result.merged.version,
        "summary": {
            "resolved": len(result.resolved),
            "unresolved": len(result.conflicts),
        },
        "resolved": [
            r.model_dump(mode="json", by_alias=True) for r in result.resolved
        ],
        "conflicts": [
            c.model_dump(mode="json", by_alias=True) for c in result.conflicts
        ],
    }


def status_to_json(status: QueueStatus) -> dict:
    return status.model_dump(mode="json", by_alias=True)
