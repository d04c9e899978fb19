"""Merge a common configuration snippet into provider settings and back out.

Two strategies:

* structured: for tree-shaped settings (JSON objects). Objects are merged
  recursively; any other value, arrays included, is replaced wholesale.
  Removal deletes a key only where the target holds a value deep-equal to the
  snippet's, pruning objects that become empty.
* text: for opaque text settings (TOML). The snippet lives in one block
  delimited by marker comments, so it can be found, replaced and removed
  without parsing the surrounding text.

Every function is pure; inputs are never mutated. Replacing an active
snippet must go through ``replace_*`` (remove old, then merge new) so no
fragment of the old version is left behind.

Note that structural removal has no provenance: a key the user set to the same
value as the snippet is removed along with it.
"""

from __future__ import annotations

import copy
from typing import Any, Dict, List, Mapping, Optional, Tuple

from clihub.utils.json_utils import deep_equal

BLOCK_BEGIN = "# >>> cli-hub common config >>>"
BLOCK_END = "# <<< cli-hub common config <<<"


def _is_object(value: Any) -> bool:
    return isinstance(value, dict)


# Structured strategy


def merge_structured(target: Mapping[str, Any], snippet: Mapping[str, Any]) -> Dict[str, Any]:
    result: Dict[str, Any] = copy.deepcopy(dict(target))
    for key, value in snippet.items():
        if _is_object(value) and _is_object(result.get(key)):
            result[key] = merge_structured(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def remove_structured(target: Mapping[str, Any], snippet: Mapping[str, Any]) -> Dict[str, Any]:
    result: Dict[str, Any] = copy.deepcopy(dict(target))
    for key, value in snippet.items():
        if key not in result:
            continue
        if deep_equal(result[key], value):
            del result[key]
        elif _is_object(result[key]) and _is_object(value):
            nested = remove_structured(result[key], value)
            if nested:
                result[key] = nested
            else:
                del result[key]
    return result


def contains_structured(target: Mapping[str, Any], snippet: Mapping[str, Any]) -> bool:
    for key, value in snippet.items():
        if key not in target:
            return False
        if deep_equal(target[key], value):
            continue
        if _is_object(target[key]) and _is_object(value):
            if not contains_structured(target[key], value):
                return False
            continue
        return False
    return True


def replace_structured(
    target: Mapping[str, Any],
    old_snippet: Optional[Mapping[str, Any]],
    new_snippet: Optional[Mapping[str, Any]],
) -> Dict[str, Any]:
    result = dict(target)
    if old_snippet:
        result = remove_structured(result, old_snippet)
    if new_snippet:
        result = merge_structured(result, new_snippet)
    return result


# Text / marker strategy


def _normalize_block(text: str) -> str:
    lines = [line.rstrip() for line in text.replace("\r\n", "\n").replace("\r", "\n").split("\n")]
    while lines and not lines[0]:
        lines.pop(0)
    while lines and not lines[-1]:
        lines.pop()
    return "\n".join(lines)


def _find_block(text: str) -> Optional[Tuple[int, int, str]]:
    """Locate the marked block: (start, end, body). ``end`` is past the end marker line."""
    lines = text.splitlines(keepends=True)
    offset = 0
    begin_at: Optional[int] = None
    body: List[str] = []
    for line in lines:
        stripped = line.strip()
        if begin_at is None:
            if stripped == BLOCK_BEGIN:
                begin_at = offset
        elif stripped == BLOCK_END:
            return begin_at, offset + len(line), "".join(body)
        else:
            body.append(line)
        offset += len(line)
    return None


def _render_block(snippet_body: str) -> str:
    return f"{BLOCK_BEGIN}\n{snippet_body}\n{BLOCK_END}\n"


def _cut(text: str, start: int, end: int) -> str:
    # The block was appended after a separating newline; take it back with the block.
    if end >= len(text) and start > 0 and text[start - 1] == "\n":
        start -= 1
    return text[:start] + text[end:]


def _find_unmarked(target: str, body: str) -> Optional[Tuple[int, int]]:
    """Line-aligned verbatim occurrence of ``body`` (snippets written before markers existed)."""
    position = target.find(body)
    while position >= 0:
        end = position + len(body)
        starts_line = position == 0 or target[position - 1] == "\n"
        ends_line = end == len(target) or target[end] in "\r\n"
        if starts_line and ends_line:
            if target[end : end + 2] == "\r\n":
                end += 2
            elif target[end : end + 1] == "\n":
                end += 1
            return position, end
        position = target.find(body, position + 1)
    return None


def contains_text(target: str, snippet: str) -> bool:
    body = _normalize_block(snippet)
    if not body:
        return True
    block = _find_block(target)
    if block is not None:
        return _normalize_block(block[2]) == body
    return _find_unmarked(target, body) is not None


def remove_text(target: str, snippet: str) -> str:
    block = _find_block(target)
    if block is not None:
        start, end, _ = block
        return _cut(target, start, end)
    body = _normalize_block(snippet)
    if not body:
        return target
    found = _find_unmarked(target, body)
    if found is None:
        return target
    return _cut(target, *found)


def merge_text(target: str, snippet: str) -> str:
    body = _normalize_block(snippet)
    if not body:
        return target
    block = _find_block(target)
    if block is not None:
        start, end, existing = block
        if _normalize_block(existing) == body:
            return target
        return target[:start] + _render_block(body) + target[end:]
    if _find_unmarked(target, body) is not None:
        return target
    separator = "\n" if target else ""
    return target + separator + _render_block(body)


def replace_text(target: str, old_snippet: Optional[str], new_snippet: Optional[str]) -> str:
    result = target
    if old_snippet and old_snippet.strip():
        result = remove_text(result, old_snippet)
    if new_snippet and new_snippet.strip():
        result = merge_text(result, new_snippet)
    return result


__all__ = [
    "BLOCK_BEGIN",
    "BLOCK_END",
    "contains_structured",
    "contains_text",
    "merge_structured",
    "merge_text",
    "remove_structured",
    "remove_text",
    "replace_structured",
    "replace_text",
]
