"""
Identity Keys.

Every stored event is keyed by a deterministic string derived from the event
itself, so re-ingesting the same source data maps onto the same key and the
store's conditional insert turns the repeat into a no-op.

Rules:
- Source-provided id present: EVENT-{SOURCE}-{external_id}, the id kept
  verbatim (source ids are opaque and case-sensitive)
- Otherwise content-based: EVENT-{title}[-{start_date}], title case-folded
  and whitespace-collapsed. The source is left out so the same happening
  scraped from two sites collapses onto one record.

Titles made of word characters and single spaces map onto a readable slug.
Anything a slug would lose (punctuation, symbols, truncated tails) is kept
as a short digest of the normalized title, so distinct titles never share a
key.
"""

from __future__ import annotations

import hashlib
import re
import unicodedata

from touchgrass.schemas.event import NormalizedEvent

KEY_PREFIX = "EVENT"
MAX_KEY_LENGTH = 200
MAX_SOURCE_LENGTH = 40
DIGEST_LENGTH = 10
UNKNOWN_SOURCE = "UNKNOWN"
GROUP_PREFIX = "GROUP#"
GROUP_INFO_SK = "GROUP_INFO"

_WORDS_ONLY = re.compile(r"\w+(?: \w+)*")


def slugify(text: str) -> str:
    """
    Reduce text to lowercase words joined by hyphens.

    Word characters of any script are kept.

    Example:
        >>> slugify("  Jazz   Night @ Blues Alley! ")
        'jazz-night-blues-alley'
    """
    folded = unicodedata.normalize("NFKC", text).casefold()
    return re.sub(r"[\W_]+", "-", folded).strip("-")


def normalize_title_for_identity(title: str) -> str:
    """Case-fold and collapse whitespace so cosmetic edits keep the same key."""
    return " ".join(unicodedata.normalize("NFKC", title).casefold().split())


def _digest(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:DIGEST_LENGTH]


def title_key(title: str, max_length: int) -> str:
    """
    Key fragment for a title, at most `max_length` characters.

    Example:
        >>> title_key("Jazz Night", 50)
        'jazz-night'
        >>> title_key("C++ Meetup", 50) != title_key("C# Meetup", 50)
        True
    """
    normalized = normalize_title_for_identity(title)
    if _WORDS_ONLY.fullmatch(normalized) and len(normalized) <= max_length:
        return normalized.replace(" ", "-")

    digest = _digest(normalized)
    slug = slugify(normalized)[: max_length - DIGEST_LENGTH - 1].rstrip("-")
    return f"{slug}-{digest}" if slug else digest


def _external_key(external_id: str, max_length: int) -> str:
    external = external_id.strip()
    if len(external) <= max_length:
        return external
    return f"{external[: max_length - DIGEST_LENGTH - 1]}-{_digest(external)}"


def generate_event_id(event: NormalizedEvent) -> str:
    """
    Derive the identity key for a normalized event.

    Args:
        event: Normalized event

    Returns:
        Deterministic key, never longer than MAX_KEY_LENGTH
    """
    if event.external_id and event.external_id.strip():
        source = slugify(event.source or "")[:MAX_SOURCE_LENGTH].strip("-")
        source = source.upper() or UNKNOWN_SOURCE
        prefix = f"{KEY_PREFIX}-{source}-"
        return prefix + _external_key(event.external_id, MAX_KEY_LENGTH - len(prefix))

    prefix = f"{KEY_PREFIX}-"
    date_suffix = f"-{event.start_date}" if event.start_date else ""
    budget = MAX_KEY_LENGTH - len(prefix) - len(date_suffix)
    return f"{prefix}{title_key(event.title, budget)}{date_suffix}"


def title_prefix(title: str) -> str:
    """First three lowercase characters of a title (prefix search key)."""
    return normalize_title_for_identity(title)[:3]


def storage_key(pk: str, sk: str | None = None) -> str:
    """
    Single storage/document key for a (pk, sk) pair.

    Events and group info rows use their pk; group schedule rows share the
    group's pk and are told apart by sk.
    """
    if not sk or sk in (pk, GROUP_INFO_SK):
        return pk
    return f"{pk}|{sk}"
