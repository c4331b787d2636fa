"""
Category Normalization.

Events arrive with categories as a single string, a comma-separated string,
a list of strings or nothing at all. Storage always holds one canonical
comma-joined string; search facets need the list back.
"""

from __future__ import annotations

from typing import Any

DEFAULT_CATEGORY = "General"
SEPARATOR = ","


def parse_categories(value: Any) -> list[str]:
    """
    Split a category value into a list of trimmed, non-empty tags.

    Accepts comma-joined strings and lists (whose items may themselves be
    comma-joined). Order is preserved and duplicates are removed
    case-insensitively, keeping the first spelling.

    Args:
        value: String, list/tuple of strings, or None

    Returns:
        List of tags (empty when nothing usable is present)
    """
    if value is None:
        return []

    if isinstance(value, str):
        items = [value]
    elif isinstance(value, (list, tuple, set)):
        items = [item for item in value if isinstance(item, str)]
    else:
        return []

    tags: list[str] = []
    seen: set[str] = set()
    for item in items:
        for part in item.split(SEPARATOR):
            tag = " ".join(part.split())
            key = tag.casefold()
            if tag and key not in seen:
                seen.add(key)
                tags.append(tag)
    return tags


def normalize_category(value: Any, default: str = DEFAULT_CATEGORY) -> str:
    """
    Reduce a category value to its canonical storage form.

    Example:
        >>> normalize_category(["music", " Jazz", "Music"])
        'music,Jazz'
        >>> normalize_category(None)
        'General'

    Args:
        value: String, list of strings, or None
        default: Category used when no tag survives

    Returns:
        Comma-joined, de-duplicated tags; idempotent on its own output
    """
    tags = parse_categories(value)
    if not tags:
        return default
    return SEPARATOR.join(tags)
