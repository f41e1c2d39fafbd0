"""Equality and diff primitives for three-way merging.

Every "changed since base" decision in the resolver goes through
``deep_equal``, so it must be exact:

* lists are compared element by element (order matters);
* dicts are compared by key set and value, ignoring key order;
* numbers compare exactly, with no float tolerance, and ``bool`` is never
  equal to ``int``;
* ``None`` only equals ``None``.

Values that are not JSON-shaped raise ``UncomparableValueError``. The
error is never swallowed: a merge that cannot tell "unchanged" from
"changed" must not produce a result.

``generate_diff`` is a thin wrapper around ``difflib.unified_diff``
for display purposes (conflict review of long descriptions).
"""

from __future__ import annotations

import difflib
from typing import Any


class MergeError(RuntimeError):
    """Internal failure while computing a merge."""


class UncomparableValueError(MergeError):
    """A value that is not JSON-shaped reached the equality check."""


_SCALARS = (str, int, float)


def _check(value: Any) -> None:
    if value is None or isinstance(value, (bool, *_SCALARS, list, tuple, dict)):
        return
    raise UncomparableValueError(
        f"Cannot compare value of type {type(value).__name__}"
    )


def deep_equal(a: Any, b: Any) -> bool:
    """Structural equality over JSON-shaped values.

    Raises:
        UncomparableValueError: If either side holds a non-JSON value.
    """
    _check(a)
    _check(b)

    if a is None or b is None:
        return a is b

    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b

    if isinstance(a, (list, tuple)):
        if not isinstance(b, (list, tuple)) or len(a) != len(b):
            return False
        return all(deep_equal(x, y) for x, y in zip(a, b))

    if isinstance(a, dict):
        if not isinstance(b, dict) or a.keys() != b.keys():
            return False
        return all(deep_equal(a[key], b[key]) for key in a)

    if isinstance(a, str) or isinstance(b, str):
        return isinstance(a, str) and isinstance(b, str) and a == b

    if isinstance(b, (list, tuple, dict)):
        return False
    return a == b


def get_diff(base: dict[str, Any] | None, changed: dict[str, Any] | None) -> dict[str, dict]:
    """Per-key differences between two dicts.

    Returns:
        ``{key: {"from": old, "to": new, "type": kind}}`` where *kind* is
        ``"added"``, ``"changed"`` or ``"removed"``. Unchanged keys are
        omitted.
    """
    base = base or {}
    changed = changed or {}
    diff: dict[str, dict] = {}

    for key, value in changed.items():
        if key not in base:
            diff[key] = {"from": None, "to": value, "type": "added"}
        elif not deep_equal(base[key], value):
            diff[key] = {"from": base[key], "to": value, "type": "changed"}

    for key, value in base.items():
        if key not in changed:
            diff[key] = {"from": value, "to": None, "type": "removed"}

    return diff


def generate_diff(
    old_content: str,
    new_content: str,
    label_old: str = "old",
    label_new: str = "new",
) -> str:
    """Generate a unified diff between two strings.

    Returns:
        A unified diff string. Empty string if the contents are identical.
    """
    diff_lines = difflib.unified_diff(
        old_content.splitlines(True),
        new_content.splitlines(True),
        fromfile=label_old,
        tofile=label_new,
    )
    return "".join(diff_lines)
