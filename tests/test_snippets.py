"""Tests for common config snippet merging."""

import copy

from clihub.core.snippets import (
    BLOCK_BEGIN,
    BLOCK_END,
    contains_structured,
    contains_text,
    merge_structured,
    merge_text,
    remove_structured,
    remove_text,
    replace_structured,
    replace_text,
)


def test_structured_merge_contains_remove_example():
    target = {"env": {"FOO": "a"}}
    snippet = {"env": {"FOO": "a", "BAR": "b"}}

    merged = merge_structured(target, snippet)
    assert merged == {"env": {"FOO": "a", "BAR": "b"}}
    assert contains_structured(merged, snippet)
    # The whole env equals the snippet's env, so the key goes with it.
    assert remove_structured(merged, snippet) == {}


def test_structured_remove_undoes_merge_without_conflicts():
    target = {"env": {"KEEP": "1"}, "model": "m"}
    snippet = {"env": {"BAR": "b"}, "includeCoAuthoredBy": False}

    merged = merge_structured(target, snippet)
    assert merged["env"] == {"KEEP": "1", "BAR": "b"}
    assert remove_structured(merged, snippet) == target


def test_structured_merge_is_idempotent():
    target = {"permissions": {"allow": ["Read"]}}
    snippet = {"permissions": {"deny": ["Bash"]}, "theme": "dark"}
    once = merge_structured(target, snippet)
    assert merge_structured(once, snippet) == once


def test_structured_arrays_are_replaced_not_merged():
    merged = merge_structured({"list": [1, 2], "nested": {"a": 1}}, {"list": [3]})
    assert merged == {"list": [3], "nested": {"a": 1}}


def test_structured_equality_is_type_strict():
    assert not contains_structured({"flag": 1}, {"flag": True})
    assert remove_structured({"flag": 1}, {"flag": True}) == {"flag": 1}
    assert not contains_structured({"value": None}, {"value": 0})


def test_structured_contains_short_circuits_on_mismatch():
    assert not contains_structured({"env": {"A": "1"}}, {"env": {"A": "2"}})
    assert not contains_structured({}, {"missing": 1})
    assert contains_structured({"env": {"A": "1", "B": "2"}}, {"env": {"A": "1"}})


def test_structured_remove_keeps_modified_values():
    target = {"env": {"A": "user-changed", "B": "b"}}
    assert remove_structured(target, {"env": {"A": "1", "B": "b"}}) == {"env": {"A": "user-changed"}}


def test_structured_functions_do_not_mutate_inputs():
    target = {"env": {"A": "1"}}
    snippet = {"env": {"B": "2"}}
    target_before = copy.deepcopy(target)
    snippet_before = copy.deepcopy(snippet)

    merged = merge_structured(target, snippet)
    merged["env"]["C"] = "3"
    remove_structured(merged, snippet)

    assert target == target_before
    assert snippet == snippet_before


def test_structured_replace_leaves_no_old_fragments():
    old = {"env": {"OLD": "1"}, "theme": "light"}
    new = {"env": {"NEW": "2"}}
    settings = merge_structured({"model": "m"}, old)

    replaced = replace_structured(settings, old, new)
    assert replaced == {"model": "m", "env": {"NEW": "2"}}


def test_text_merge_appends_marked_block():
    merged = merge_text('model = "o3"\n', "disable_response_storage = true")
    assert merged == (
        'model = "o3"\n\n'
        f"{BLOCK_BEGIN}\ndisable_response_storage = true\n{BLOCK_END}\n"
    )
    assert contains_text(merged, "disable_response_storage = true")


def test_text_remove_restores_original():
    for original in ['model = "o3"\n', 'model = "o3"', ""]:
        merged = merge_text(original, "a = 1\nb = 2\n")
        assert remove_text(merged, "a = 1\nb = 2\n") == original


def test_text_merge_is_idempotent_and_normalized():
    merged = merge_text("", "a = 1\n")
    assert merge_text(merged, "\n\na = 1   \r\n") == merged
    assert contains_text(merged, "a = 1\r\n\n")


def test_text_merge_replaces_stale_block_in_place():
    merged = merge_text("x = 1\n", "a = 1") + "y = 2\n"
    updated = merge_text(merged, "a = 2")
    assert "a = 1" not in updated
    assert updated.startswith("x = 1\n")
    assert updated.endswith("y = 2\n")
    assert contains_text(updated, "a = 2")
    assert not contains_text(updated, "a = 1")


def test_text_replace_swaps_snippet_versions():
    merged = merge_text("x = 1\n", "a = 1")
    replaced = replace_text(merged, "a = 1", "b = 2")
    assert contains_text(replaced, "b = 2")
    assert "a = 1" not in replaced
    assert remove_text(replaced, "b = 2") == "x = 1\n"


def test_text_handles_unmarked_legacy_copy():
    target = "a = 1\nb = 2\n"
    assert contains_text(target, "a = 1")
    assert merge_text(target, "a = 1") == target
    assert remove_text(target, "a = 1") == "b = 2\n"
    # Only whole lines count as a copy.
    assert not contains_text("aa = 11\n", "a = 1")


def test_text_empty_snippet_is_noop():
    assert merge_text("x = 1\n", "   \n") == "x = 1\n"
    assert remove_text("x = 1\n", "") == "x = 1\n"
    assert contains_text("x = 1\n", "")
