"""Merge-if-empty for partial updates.

Every partial-update entry point (appointment patches, kiosk submissions, patient
reconciliation) funnels through ``merge_if_empty``: a proposed value is only
written where the destination currently holds nothing.
"""

import copy
from collections.abc import Collection, Mapping
from typing import Any

Tree = dict[str, Any]

_MISSING = object()


def is_empty(value: Any) -> bool:
    """Return True for values the merge treats as unset."""
    return value is _MISSING or value is None or value == ""


def flatten(tree: Mapping[str, Any], prefix: str = "") -> dict[str, Any]:
    """
    Flatten nested mappings into dot-delimited leaf paths.

    Lists are leaves; they are never descended into.
    """
    leaves: dict[str, Any] = {}
    for key, value in tree.items():
        path = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, Mapping):
            leaves.update(flatten(value, path))
        else:
            leaves[path] = value
    return leaves


def _lookup(tree: Mapping[str, Any], parts: list[str]) -> tuple[bool, Any]:
    """
    Walk ``parts`` through ``tree``.

    Returns:
        (navigable, value) where ``navigable`` is False when an intermediate
        segment holds a populated non-mapping value
    """
    current: Any = tree
    for part in parts[:-1]:
        if not isinstance(current, Mapping):
            return False, _MISSING
        current = current.get(part, _MISSING)
        if is_empty(current):
            return True, _MISSING
    if not isinstance(current, Mapping):
        return False, _MISSING
    return True, current.get(parts[-1], _MISSING)


def _set_path(tree: Tree, parts: list[str], value: Any) -> None:
    current = tree
    for part in parts[:-1]:
        child = current.get(part)
        if not isinstance(child, dict):
            child = {}
            current[part] = child
        current = child
    current[parts[-1]] = value


def merge_if_empty(
    destination: Mapping[str, Any],
    source: Mapping[str, Any],
    always_overwrite: Collection[str] = (),
) -> Tree:
    """
    Compute the updates that fill empty destination fields from ``source``.

    Args:
        destination: Current record tree (not modified)
        source: Proposed values, possibly nested
        always_overwrite: Leaf paths written regardless of the destination value

    Returns:
        Sparse update tree of the fields that would change
    """
    updates: Tree = {}
    for path, value in flatten(source).items():
        if value is None:
            continue

        parts = path.split(".")
        if path not in always_overwrite:
            navigable, current = _lookup(destination, parts)
            if not navigable or not is_empty(current):
                continue

        _set_path(updates, parts, copy.deepcopy(value))

    return updates


def apply_updates(destination: Mapping[str, Any], updates: Mapping[str, Any]) -> Tree:
    """Return a copy of ``destination`` with the update tree applied."""
    merged: Tree = copy.deepcopy(dict(destination))
    for path, value in flatten(updates).items():
        _set_path(merged, path.split("."), copy.deepcopy(value))
    return merged
