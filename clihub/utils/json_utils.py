"""JSON helper utilities for cli-hub."""

from __future__ import annotations

import json
from typing import Any


def dump_canonical_json(value: Any) -> str:
    """Stable JSON text: 2-space indent, sorted keys, trailing newline."""
    return json.dumps(value, indent=2, sort_keys=True, ensure_ascii=False) + "\n"


def deep_equal(left: Any, right: Any) -> bool:
    """Structural equality that keeps JSON types apart (``1 != True``, ``0 != None``)."""
    if isinstance(left, dict) and isinstance(right, dict):
        if left.keys() != right.keys():
            return False
        return all(deep_equal(left[key], right[key]) for key in left)
    if isinstance(left, list) and isinstance(right, list):
        return len(left) == len(right) and all(deep_equal(a, b) for a, b in zip(left, right))
    if isinstance(left, bool) or isinstance(right, bool):
        return type(left) is type(right) and left == right
    if isinstance(left, (int, float)) and isinstance(right, (int, float)):
        return left == right
    if type(left) is not type(right):
        return False
    return bool(left == right)
