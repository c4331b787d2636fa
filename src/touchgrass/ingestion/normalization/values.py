"""Small coercion helpers shared by the field parsers."""

from __future__ import annotations

from typing import Any

_TRUE_STRINGS = {"true", "yes", "1", "y", "on"}
_FALSE_STRINGS = {"false", "no", "0", "n", "off"}


def clean_text(value: Any) -> str | None:
    """Strip a text value; anything that is not a non-blank string becomes None."""
    if not isinstance(value, str):
        return None
    cleaned = value.strip()
    return cleaned or None


def parse_bool(value: Any, default: bool = False) -> bool:
    """
    Coerce booleans stored as bools or strings ("true"/"false").

    Some ingestion paths historically wrote visibility flags as strings, so
    both forms are accepted. Unknown values fall back to ``default``.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    return default
