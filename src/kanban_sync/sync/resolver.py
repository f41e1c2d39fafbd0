"""Three-way conflict detection and merging for board snapshots.

Provides:

- ``detect_conflicts(base, local, server)``: per-entity, per-field
  divergence between two edits of a common ancestor.
- ``three_way_merge(base, local, server, strategy, resolutions)``: the
  merged board plus the conflicts resolved and still unresolved.
- ``ConflictResolver``: a merge session holding the persisted
  common-ancestor snapshot and the resolutions supplied so far.

Key design choices:

* Snapshots are compared in their camelCase wire form, so conflict
  fields and values (``cardIds``, ``columnOrder``) match what the
  authority and the UI see.
* The **server** snapshot is the starting point of every merge. Changes
  made on one side only are never conflicts; local-only changes are
  folded into the result field by field.
* ``DeleteModify`` conflicts are never resolved by a strategy. They stay
  unresolved until the caller supplies an explicit ``Resolution``.
* Conflict ids are deterministic (``<entity>:<entityId>:<field>``) so a
  caller's resolutions stay valid when the same episode is re-merged.
* A final normalisation pass restores the board invariants: every id in
  ``columnOrder`` and ``cardIds`` exists, and each card belongs to exactly
  one column.
"""

from __future__ import annotations

import copy
import logging
from typing import Any

from ..board.conflicts import (
    Conflict,
    ConflictEntity,
    ConflictKind,
    MergeStrategy,
    Resolution,
    ResolutionChoice,
    ResolvedConflict,
    conflict_id_for,
)
from ..board.models import Board, now_iso
from ..storage import BASE_KEY, KeyValueStore
from .merger import deep_equal, get_diff
from .models import MergeResult

logger = logging.getLogger(__name__)

CARD_FIELDS = ("title", "description", "tags")
COLUMN_FIELDS = ("title", "cardIds")
MOVE_FIELD = "columnId"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _diverged(base: Any, local: Any, server: Any) -> bool:
    """Both sides changed the value, and not to the same thing."""
    return (
        not deep_equal(base, local)
        and not deep_equal(base, server)
        and not deep_equal(local, server)
    )


def _all_ids(*maps: dict[str, Any]) -> list[str]:
    return list(dict.fromkeys(key for m in maps for key in m))


def _owners(board: dict[str, Any]) -> dict[str, str]:
    """Map card id to the id of the column listing it (first in order wins)."""
    owners: dict[str, str] = {}
    columns = board["columns"]
    for column_id in _all_ids(dict.fromkeys(board["columnOrder"]), columns):
        column = columns.get(column_id)
        if column is None:
            continue
        for card_id in column["cardIds"]:
            owners.setdefault(card_id, column_id)
    return owners


def _column_changed(base: dict, side: dict, column_id: str) -> bool:
    """Column differs from base, or one of the cards it lists does."""
    base_column = base["columns"].get(column_id)
    side_column = side["columns"].get(column_id)
    if not deep_equal(base_column, side_column):
        return True
    return any(
        not deep_equal(base["cards"].get(card_id), side["cards"].get(card_id))
        for card_id in side_column["cardIds"]
    )


def _union(local: list | None, server: list | None) -> list:
    """Order-preserving union, local items first."""
    return list(dict.fromkeys([*(local or []), *(server or [])]))


def _conflict(
    kind: ConflictKind,
    entity: ConflictEntity,
    entity_id: str | None,
    field: str | None,
    description: str,
    local_value: Any,
    server_value: Any,
    base_value: Any,
) -> Conflict:
    return Conflict(
        id=conflict_id_for(entity, entity_id, field),
        kind=kind,
        entity=entity,
        entity_id=entity_id,
        field=field,
        description=description,
        local_value=copy.deepcopy(local_value),
        server_value=copy.deepcopy(server_value),
        base_value=copy.deepcopy(base_value),
    )


# ---------------------------------------------------------------------------
# Detection
# ---------------------------------------------------------------------------


def _column_conflicts(b: dict, l: dict, s: dict) -> list[Conflict]:
    conflicts: list[Conflict] = []
    for column_id in _all_ids(b["columns"], l["columns"], s["columns"]):
        base = b["columns"].get(column_id)
        local = l["columns"].get(column_id)
        server = s["columns"].get(column_id)
        if base is None:
            continue

        if local is None and server is not None:
            if _column_changed(b, s, column_id):
                conflicts.append(
                    _conflict(
                        ConflictKind.DELETE_MODIFY,
                        ConflictEntity.COLUMN,
                        column_id,
                        None,
                        f'Column "{base["title"]}" was deleted locally '
                        f"but modified on server",
                        None,
                        server,
                        base,
                    )
                )
        elif local is not None and server is None:
            if _column_changed(b, l, column_id):
                conflicts.append(
                    _conflict(
                        ConflictKind.DELETE_MODIFY,
                        ConflictEntity.COLUMN,
                        column_id,
                        None,
                        f'Column "{base["title"]}" was modified locally '
                        f"but deleted on server",
                        local,
                        None,
                        base,
                    )
                )
        elif local is not None and server is not None:
            if _diverged(base["title"], local["title"], server["title"]):
                conflicts.append(
                    _conflict(
                        ConflictKind.SAME_FIELD,
                        ConflictEntity.COLUMN,
                        column_id,
                        "title",
                        f'Column title conflict: "{local["title"]}" '
                        f'vs "{server["title"]}"',
                        local["title"],
                        server["title"],
                        base["title"],
                    )
                )
            if _diverged(base["cardIds"], local["cardIds"], server["cardIds"]):
                conflicts.append(
                    _conflict(
                        ConflictKind.ORDER_CONFLICT,
                        ConflictEntity.COLUMN,
                        column_id,
                        "cardIds",
                        f'Card order conflict in column '
                        f'"{local["title"] or server["title"]}"',
                        local["cardIds"],
                        server["cardIds"],
                        base["cardIds"],
                    )
                )
    return conflicts


def _card_conflicts(b: dict, l: dict, s: dict) -> list[Conflict]:
    conflicts: list[Conflict] = []
    for card_id in _all_ids(b["cards"], l["cards"], s["cards"]):
        base = b["cards"].get(card_id)
        local = l["cards"].get(card_id)
        server = s["cards"].get(card_id)
        if base is None:
            continue

        if local is None and server is not None:
            if not deep_equal(base, server):
                conflicts.append(
                    _conflict(
                        ConflictKind.DELETE_MODIFY,
                        ConflictEntity.CARD,
                        card_id,
                        None,
                        f'Card "{base["title"]}" was deleted locally '
                        f"but modified on server",
                        None,
                        server,
                        base,
                    )
                )
        elif local is not None and server is None:
            if not deep_equal(base, local):
                conflicts.append(
                    _conflict(
                        ConflictKind.DELETE_MODIFY,
                        ConflictEntity.CARD,
                        card_id,
                        None,
                        f'Card "{base["title"]}" was modified locally '
                        f"but deleted on server",
                        local,
                        None,
                        base,
                    )
                )
        elif local is not None and server is not None:
            for field in CARD_FIELDS:
                if _diverged(base.get(field), local.get(field), server.get(field)):
                    conflicts.append(
                        _conflict(
                            ConflictKind.SAME_FIELD,
                            ConflictEntity.CARD,
                            card_id,
                            field,
                            f'Card "{local["title"] or server["title"]}" '
                            f"has conflicting {field}",
                            local.get(field),
                            server.get(field),
                            base.get(field),
                        )
                    )
    return conflicts


def _move_conflicts(b: dict, l: dict, s: dict) -> list[Conflict]:
    conflicts: list[Conflict] = []
    base_owners, local_owners, server_owners = _owners(b), _owners(l), _owners(s)
    for card_id in b["cards"]:
        if card_id not in l["cards"] or card_id not in s["cards"]:
            continue
        base_owner = base_owners.get(card_id)
        local_owner = local_owners.get(card_id)
        server_owner = server_owners.get(card_id)
        if _diverged(base_owner, local_owner, server_owner):
            conflicts.append(
                _conflict(
                    ConflictKind.MOVE_CONFLICT,
                    ConflictEntity.CARD,
                    card_id,
                    MOVE_FIELD,
                    f'Card "{l["cards"][card_id]["title"]}" was moved to '
                    f"different columns",
                    local_owner,
                    server_owner,
                    base_owner,
                )
            )
    return conflicts


def _order_conflicts(b: dict, l: dict, s: dict) -> list[Conflict]:
    if not _diverged(b["columnOrder"], l["columnOrder"], s["columnOrder"]):
        return []
    return [
        _conflict(
            ConflictKind.ORDER_CONFLICT,
            ConflictEntity.BOARD,
            None,
            "columnOrder",
            "Column order was changed differently",
            l["columnOrder"],
            s["columnOrder"],
            b["columnOrder"],
        )
    ]


def _detect(b: dict, l: dict, s: dict) -> list[Conflict]:
    return [
        *_column_conflicts(b, l, s),
        *_card_conflicts(b, l, s),
        *_move_conflicts(b, l, s),
        *_order_conflicts(b, l, s),
    ]


def detect_conflicts(base: Board, local: Board, server: Board) -> list[Conflict]:
    """Find concurrent divergences between *local* and *server*.

    Only values changed on both sides, to different results, are
    reported. One-sided changes are never conflicts.

    Raises:
        UncomparableValueError: If a snapshot holds non-JSON values.
    """
    return _detect(base.to_wire(), local.to_wire(), server.to_wire())


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------


def _remove_card(merged: dict, card_id: str) -> None:
    merged["cards"].pop(card_id, None)
    for column in merged["columns"].values():
        column["cardIds"] = [cid for cid in column["cardIds"] if cid != card_id]


def _remove_column(merged: dict, column_id: str) -> None:
    merged["columns"].pop(column_id, None)
    merged["columnOrder"] = [
        cid for cid in merged["columnOrder"] if cid != column_id
    ]


def _contested_cards(conflicts: list[Conflict], *sides: dict) -> set[str]:
    """Cards listed by any column caught in a DeleteModify conflict."""
    contested: set[str] = set()
    for conflict in conflicts:
        if (
            conflict.kind != ConflictKind.DELETE_MODIFY
            or conflict.entity != ConflictEntity.COLUMN
        ):
            continue
        for side in sides:
            column = side["columns"].get(conflict.entity_id)
            if column is not None:
                contested.update(column["cardIds"])
    return contested


def _apply_local_changes(
    merged: dict,
    b: dict,
    l: dict,
    s: dict,
    keep: set[str] | frozenset[str] = frozenset(),
) -> None:
    """Fold every change made on the local side only into *merged*.

    Local deletions of the card ids in *keep* are held back; they belong
    to a column whose fate is still up to a resolution.
    """
    # Column order first so created and deleted columns adjust it after.
    if not deep_equal(b["columnOrder"], l["columnOrder"]) and deep_equal(
        b["columnOrder"], s["columnOrder"]
    ):
        merged["columnOrder"] = list(l["columnOrder"])

    for column_id, local_column in l["columns"].items():
        base_column = b["columns"].get(column_id)
        server_column = s["columns"].get(column_id)
        if base_column is None and server_column is None:
            merged["columns"][column_id] = copy.deepcopy(local_column)
            if column_id not in merged["columnOrder"]:
                merged["columnOrder"].append(column_id)
        elif base_column is not None and server_column is not None:
            target = merged["columns"][column_id]
            for field in COLUMN_FIELDS:
                if not deep_equal(
                    base_column[field], local_column[field]
                ) and deep_equal(base_column[field], server_column[field]):
                    target[field] = copy.deepcopy(local_column[field])

    for column_id in b["columns"]:
        if (
            column_id not in l["columns"]
            and column_id in s["columns"]
            and not _column_changed(b, s, column_id)
        ):
            _remove_column(merged, column_id)

    local_owners = _owners(l)
    for card_id, local_card in l["cards"].items():
        base_card = b["cards"].get(card_id)
        server_card = s["cards"].get(card_id)
        if base_card is None and server_card is None:
            merged["cards"][card_id] = copy.deepcopy(local_card)
            owner = merged["columns"].get(local_owners.get(card_id, ""))
            if owner is not None and card_id not in owner["cardIds"]:
                owner["cardIds"].append(card_id)
        elif base_card is not None and server_card is not None:
            target = merged["cards"][card_id]
            applied = False
            for field, change in get_diff(base_card, local_card).items():
                if field in CARD_FIELDS and deep_equal(
                    base_card.get(field), server_card.get(field)
                ):
                    target[field] = copy.deepcopy(change["to"])
                    applied = True
            if applied:
                stamps = [t for t in (target.get("updatedAt"), local_card.get("updatedAt")) if t]
                target["updatedAt"] = max(stamps) if stamps else None

    for card_id, base_card in b["cards"].items():
        server_card = s["cards"].get(card_id)
        if (
            card_id not in l["cards"]
            and card_id not in keep
            and server_card is not None
            and deep_equal(base_card, server_card)
        ):
            _remove_card(merged, card_id)


def _auto_resolution(
    conflict: Conflict, strategy: MergeStrategy
) -> Resolution | None:
    """Resolution implied by *strategy*, or ``None`` to leave unresolved."""
    if conflict.kind == ConflictKind.DELETE_MODIFY:
        return None

    if strategy == MergeStrategy.LOCAL_WINS:
        return Resolution(choice=ResolutionChoice.KEEP_LOCAL)
    if strategy == MergeStrategy.SERVER_WINS:
        return Resolution(choice=ResolutionChoice.KEEP_SERVER)
    if strategy != MergeStrategy.AUTO_MERGE:
        return None

    if conflict.kind == ConflictKind.SAME_FIELD and conflict.field == "tags":
        return Resolution(
            choice=ResolutionChoice.CUSTOM,
            value=_union(conflict.local_value, conflict.server_value),
        )

    if (
        conflict.kind == ConflictKind.ORDER_CONFLICT
        and conflict.entity == ConflictEntity.COLUMN
        and conflict.field == "cardIds"
    ):
        local_ids = list(conflict.local_value or [])
        server_only = [
            cid for cid in conflict.server_value or [] if cid not in local_ids
        ]
        return Resolution(
            choice=ResolutionChoice.CUSTOM, value=local_ids + server_only
        )

    return None


def _resolved_value(conflict: Conflict, resolution: Resolution) -> Any:
    choice = resolution.choice
    if choice == ResolutionChoice.KEEP_LOCAL:
        return conflict.local_value
    if choice == ResolutionChoice.KEEP_SERVER:
        return conflict.server_value
    if choice == ResolutionChoice.CUSTOM:
        return resolution.value
    # KEEP_BOTH: union for lists, otherwise whichever side still exists,
    # preferring local.
    if isinstance(conflict.local_value, list) and isinstance(
        conflict.server_value, list
    ):
        return _union(conflict.local_value, conflict.server_value)
    if conflict.local_value is None:
        return conflict.server_value
    return conflict.local_value


def _restore_cards(
    merged: dict, card_ids: list[str], first: dict, second: dict
) -> None:
    """Bring back listed cards missing from *merged*, preferring *first*."""
    for card_id in card_ids:
        if card_id in merged["cards"]:
            continue
        card = first["cards"].get(card_id) or second["cards"].get(card_id)
        if card is not None:
            merged["cards"][card_id] = copy.deepcopy(card)


def _apply_resolution(
    merged: dict,
    conflict: Conflict,
    resolution: Resolution,
    placements: dict[str, str],
    l: dict,
    s: dict,
) -> None:
    value = copy.deepcopy(_resolved_value(conflict, resolution))
    entity_id = conflict.entity_id or ""

    if conflict.field is None:
        if conflict.entity == ConflictEntity.CARD:
            if value is None:
                _remove_card(merged, entity_id)
            else:
                merged["cards"][entity_id] = value
        elif conflict.entity == ConflictEntity.COLUMN:
            if value is None:
                _remove_column(merged, entity_id)
            else:
                merged["columns"][entity_id] = value
                from_server = (
                    resolution.choice == ResolutionChoice.KEEP_SERVER
                    or conflict.local_value is None
                )
                _restore_cards(
                    merged,
                    value.get("cardIds", []),
                    *((s, l) if from_server else (l, s)),
                )
        return

    if value is None:
        return

    if conflict.entity == ConflictEntity.BOARD:
        if conflict.field == "columnOrder":
            merged["columnOrder"] = list(value)
    elif conflict.entity == ConflictEntity.CARD:
        if conflict.field == MOVE_FIELD:
            placements[entity_id] = value
        elif entity_id in merged["cards"]:
            merged["cards"][entity_id][conflict.field] = value
    elif conflict.entity == ConflictEntity.COLUMN:
        if entity_id in merged["columns"]:
            merged["columns"][entity_id][conflict.field] = value


def _normalize(
    merged: dict, b: dict, l: dict, s: dict, placements: dict[str, str]
) -> None:
    """Restore referential integrity and exclusive card membership."""
    columns = merged["columns"]
    cards = merged["cards"]

    order = [cid for cid in dict.fromkeys(merged["columnOrder"]) if cid in columns]
    for column_id in columns:
        if column_id in order:
            continue
        # Kept after a delete on one side: back to that column's old slot.
        side_order = s["columnOrder"] if column_id in s["columns"] else l["columnOrder"]
        index = (
            side_order.index(column_id) if column_id in side_order else len(order)
        )
        order.insert(min(index, len(order)), column_id)
    merged["columnOrder"] = order

    for column in columns.values():
        column["cardIds"] = [
            cid for cid in dict.fromkeys(column["cardIds"]) if cid in cards
        ]

    base_owners, local_owners, server_owners = _owners(b), _owners(l), _owners(s)

    for card_id in list(cards):
        local_owner = local_owners.get(card_id)
        server_owner = server_owners.get(card_id)
        if card_id in placements:
            target = placements[card_id]
        elif (
            local_owner is not None
            and local_owner != base_owners.get(card_id)
            and server_owner == base_owners.get(card_id)
        ):
            target = local_owner
        else:
            target = server_owner if server_owner is not None else local_owner

        holders = [cid for cid in order if card_id in columns[cid]["cardIds"]]

        if target in columns:
            if target not in holders:
                side = l if target == local_owner else s
                side_ids = side["columns"].get(target, {}).get("cardIds", [])
                ids = columns[target]["cardIds"]
                index = side_ids.index(card_id) if card_id in side_ids else len(ids)
                ids.insert(min(index, len(ids)), card_id)
            keep = target
        elif holders:
            keep = holders[0]
        else:
            logger.debug("Dropping card %s with no owning column", card_id)
            del cards[card_id]
            continue

        for column_id in holders:
            if column_id != keep:
                columns[column_id]["cardIds"] = [
                    cid for cid in columns[column_id]["cardIds"] if cid != card_id
                ]


def three_way_merge(
    base: Board,
    local: Board,
    server: Board,
    strategy: MergeStrategy = MergeStrategy.AUTO_MERGE,
    resolutions: dict[str, Resolution] | None = None,
) -> MergeResult:
    """Merge *local* and *server*, two edits of the common ancestor *base*.

    Args:
        base: Last snapshot both sides agreed on.
        local: The client's current snapshot.
        server: The authority's current snapshot.
        strategy: Treatment of conflicts with no entry in *resolutions*.
        resolutions: Caller decisions keyed by conflict id.

    Returns:
        A ``MergeResult`` whose board has version ``server.version + 1``.
        Unresolved conflicts are left at the server value.

    Raises:
        UncomparableValueError: If a snapshot holds non-JSON values.
        pydantic.ValidationError: If a custom resolution value does not
            fit the field it is applied to.
    """
    resolutions = resolutions or {}
    b, l, s = base.to_wire(), local.to_wire(), server.to_wire()

    conflicts = _detect(b, l, s)
    merged = server.to_wire()
    _apply_local_changes(merged, b, l, s, _contested_cards(conflicts, b, l, s))

    placements: dict[str, str] = {}
    resolved: list[ResolvedConflict] = []
    unresolved: list[Conflict] = []

    for conflict in conflicts:
        resolution = resolutions.get(conflict.id) or _auto_resolution(
            conflict, strategy
        )
        if resolution is None:
            unresolved.append(conflict)
            continue
        _apply_resolution(merged, conflict, resolution, placements, l, s)
        resolved.append(
            ResolvedConflict.model_validate(
                {**conflict.model_dump(), "resolution": resolution}
            )
        )

    _normalize(merged, b, l, s, placements)
    merged["version"] = server.version + 1
    merged["lastModifiedAt"] = now_iso()

    logger.debug(
        "Three-way merge: %d conflict(s), %d resolved, %d unresolved",
        len(conflicts),
        len(resolved),
        len(unresolved),
    )
    return MergeResult(
        merged=Board.from_wire(merged), conflicts=unresolved, resolved=resolved
    )


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class ConflictResolver:
    """Merge session for one client.

    Holds the common-ancestor snapshot (persisted under ``BASE_KEY`` when a
    storage backend is given), the conflicts left by the last merge and
    the resolutions supplied so far.

    Args:
        storage: Optional key-value store for the base snapshot.
        strategy: Default strategy for ``merge()``.
    """

    def __init__(
        self,
        storage: KeyValueStore | None = None,
        strategy: MergeStrategy = MergeStrategy.AUTO_MERGE,
    ) -> None:
        self._storage = storage
        self.strategy = strategy
        self._base: Board | None = None
        self.pending_conflicts: list[Conflict] = []
        self.resolutions: dict[str, Resolution] = {}

    # ------------------------------------------------------------------
    # Base snapshot
    # ------------------------------------------------------------------

    @property
    def base(self) -> Board | None:
        return self._base

    @property
    def has_base(self) -> bool:
        return self._base is not None

    def load_base(self) -> Board | None:
        """Restore the base snapshot from storage, if one was saved."""
        if self._storage is None:
            return None
        try:
            raw = self._storage.get(BASE_KEY)
            self._base = Board.from_wire(raw) if raw is not None else None
        except Exception:
            logger.exception("Failed to load base snapshot")
            self._base = None
        return self._base

    def set_base(self, board: Board) -> None:
        """Record *board* as the common ancestor and persist it."""
        self._base = board
        if self._storage is None:
            return
        try:
            self._storage.set(BASE_KEY, board.to_wire())
        except Exception:
            logger.exception("Failed to persist base snapshot")

    def update_base(self, board: Board) -> None:
        """Start a new episode from *board*, dropping stored resolutions."""
        self.set_base(board)
        self.clear_resolutions()

    # ------------------------------------------------------------------
    # Merging
    # ------------------------------------------------------------------

    def merge(
        self,
        local: Board,
        server: Board,
        strategy: MergeStrategy | None = None,
    ) -> MergeResult:
        """Merge against the recorded base (the server when none exists)."""
        if self._base is None:
            logger.info("No base snapshot recorded, merging against server")
            self._base = server
        result = three_way_merge(
            self._base,
            local,
            server,
            strategy or self.strategy,
            self.resolutions,
        )
        self.pending_conflicts = list(result.conflicts)
        return result

    def add_resolution(self, conflict_id: str, resolution: Resolution) -> None:
        self.resolutions[conflict_id] = resolution

    def clear_resolutions(self) -> None:
        self.resolutions = {}
        self.pending_conflicts = []
