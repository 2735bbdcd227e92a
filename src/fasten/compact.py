"""Blank detection and recursive compaction of attribute maps."""

from typing import Any

__all__ = ["is_blank", "deep_compact"]


def is_blank(value: Any) -> bool:
    """True for None, empty or whitespace-only strings, and empty collections.

    Objects that only define ``__bool__`` (data frames, arrays) are never blank.
    """
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (dict, list, tuple, set, frozenset)):
        return len(value) == 0
    return False


def deep_compact(values: dict) -> dict:
    """Return a copy of ``values`` without blank entries.

    Nested maps are compacted first and dropped if that leaves them empty; lists
    lose their ``None`` members and have their map members compacted.

    Example:
        >>> deep_compact({"a": None, "b": {"c": ""}, "d": [None, {"e": 1}]})
        {'d': [{'e': 1}]}
    """
    compacted = {}
    for key, value in values.items():
        if value is None:
            continue
        if isinstance(value, dict):
            value = deep_compact(value)
        elif isinstance(value, list):
            value = [
                deep_compact(item) if isinstance(item, dict) else item
                for item in value
                if item is not None
            ]
        if not is_blank(value):
            compacted[key] = value
    return compacted
