"""Tests for merge-if-empty updates."""

import copy

from app.core.merge import apply_updates, flatten, is_empty, merge_if_empty


def test_is_empty():
    """None and the empty string are unset; falsy values are not."""
    assert is_empty(None)
    assert is_empty("")
    assert not is_empty(0)
    assert not is_empty(False)
    assert not is_empty([])


def test_flatten_descends_mappings_only():
    """Lists are leaves."""
    tree = {"a": 1, "b": {"c": 2, "d": {"e": 3}}, "f": [{"g": 4}]}
    assert flatten(tree) == {"a": 1, "b.c": 2, "b.d.e": 3, "f": [{"g": 4}]}


def test_scenario_c_fills_only_empty_fields():
    """Kiosk data never replaces a populated field."""
    stored = {"patientEmail": "a@x.com", "patientCity": None}
    proposed = {"patientEmail": "b@y.com", "patientCity": "Springfield"}

    updates = merge_if_empty(stored, proposed)

    assert updates == {"patientCity": "Springfield"}
    merged = apply_updates(stored, updates)
    assert merged == {"patientEmail": "a@x.com", "patientCity": "Springfield"}


def test_merge_does_not_mutate_inputs():
    """The stored tree and the proposal are left untouched."""
    stored = {"kioskCheckIn": {"location": "Lobby"}, "medicalInfo": None}
    proposed = {"kioskCheckIn": {"location": "Desk", "hasHIPAASignature": True}, "medicalInfo": {"allergies": ["nuts"]}}
    stored_before = copy.deepcopy(stored)
    proposed_before = copy.deepcopy(proposed)

    updates = merge_if_empty(stored, proposed)
    merged = apply_updates(stored, updates)

    assert stored == stored_before
    assert proposed == proposed_before
    assert merged["kioskCheckIn"] == {"location": "Lobby", "hasHIPAASignature": True}
    assert merged["medicalInfo"] == {"allergies": ["nuts"]}

    # The merged tree does not share list objects with the proposal
    merged["medicalInfo"]["allergies"].append("dust")
    assert proposed["medicalInfo"]["allergies"] == ["nuts"]


def test_merge_is_non_destructive_for_every_populated_leaf():
    """No populated leaf of the destination changes."""
    stored = {"a": "x", "b": {"c": 0, "d": ""}, "e": False}
    proposed = {"a": "y", "b": {"c": 5, "d": "filled"}, "e": True, "f": "new"}

    merged = apply_updates(stored, merge_if_empty(stored, proposed))

    for path, value in flatten(stored).items():
        if not is_empty(value):
            assert flatten(merged)[path] == value
    assert merged["b"]["d"] == "filled"
    assert merged["f"] == "new"


def test_always_overwrite_paths():
    """Flagged paths are written even when populated."""
    stored = {"kioskCheckIn": {"checkedInAt": "2024-01-15T08:00:00+00:00", "location": "Lobby"}}
    proposed = {"kioskCheckIn": {"checkedInAt": "2024-01-15T09:00:00+00:00", "location": "Desk"}}

    updates = merge_if_empty(stored, proposed, always_overwrite={"kioskCheckIn.checkedInAt"})

    assert updates == {"kioskCheckIn": {"checkedInAt": "2024-01-15T09:00:00+00:00"}}


def test_none_source_leaves_are_skipped():
    """A proposal cannot blank out a field."""
    assert merge_if_empty({"a": None}, {"a": None}) == {}
    assert merge_if_empty({}, {"a": {"b": None}}) == {}


def test_missing_intermediate_segment_is_created():
    """Absent parents count as empty."""
    assert merge_if_empty({}, {"a": {"b": 1}}) == {"a": {"b": 1}}
    assert merge_if_empty({"a": None}, {"a": {"b": 1}}) == {"a": {"b": 1}}


def test_populated_scalar_parent_blocks_nested_write():
    """A populated non-mapping value is never replaced by a sub-tree."""
    assert merge_if_empty({"address": "1 Main St"}, {"address": {"city": "Springfield"}}) == {}
