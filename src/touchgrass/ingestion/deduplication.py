"""
In-batch event deduplication strategies.

The store's conditional insert is the authoritative guard against duplicates
across batches. These strategies collapse repeats inside a single batch
before any write is attempted:
- IdentityKeyDeduplicator: same identity key
- FuzzyMatchDeduplicator: near-identical titles on the same start date
- CompositeDeduplicator: chain multiple strategies
- NoOpDeduplicator: keep everything
"""

from abc import ABC, abstractmethod
from difflib import SequenceMatcher
from enum import Enum

from touchgrass.ingestion.identity import generate_event_id, normalize_title_for_identity
from touchgrass.schemas.event import NormalizedEvent


class DeduplicationStrategy(str, Enum):
    """Available deduplication strategies."""

    IDENTITY = "identity"
    FUZZY = "fuzzy"
    COMPOSITE = "composite"
    NONE = "none"


class EventDeduplicator(ABC):
    """Abstract base for deduplication strategies."""

    @abstractmethod
    def deduplicate(self, events: list[NormalizedEvent]) -> list[NormalizedEvent]:
        """Deduplicate events and return unique set (first occurrence kept)."""
        pass


class IdentityKeyDeduplicator(EventDeduplicator):
    """Match by identity key, the same key the store writes under."""

    def deduplicate(self, events: list[NormalizedEvent]) -> list[NormalizedEvent]:
        seen = set()
        unique_events = []

        for event in events:
            key = generate_event_id(event)
            if key not in seen:
                seen.add(key)
                unique_events.append(event)

        return unique_events


class FuzzyMatchDeduplicator(EventDeduplicator):
    """
    Fuzzy title match for typos and slight variations in event names.

    Two events are duplicates when they share a start date and their
    normalized titles have a difflib similarity ratio >= threshold. Undated
    events are never fuzzy-matched.
    """

    def __init__(self, threshold: float = 0.9):
        """
        Initialize with similarity threshold.

        Args:
            threshold: Similarity threshold (0.0-1.0) for title matching
        """
        self.threshold = threshold

    def deduplicate(self, events: list[NormalizedEvent]) -> list[NormalizedEvent]:
        unique_events: list[NormalizedEvent] = []

        for event in events:
            is_duplicate = False

            if event.start_date:
                event_title = normalize_title_for_identity(event.title)
                for kept in unique_events:
                    if kept.start_date != event.start_date:
                        continue
                    kept_title = normalize_title_for_identity(kept.title)
                    ratio = SequenceMatcher(None, event_title, kept_title).ratio()
                    if ratio >= self.threshold:
                        is_duplicate = True
                        break

            if not is_duplicate:
                unique_events.append(event)

        return unique_events


class NoOpDeduplicator(EventDeduplicator):
    """Leave the batch untouched."""

    def deduplicate(self, events: list[NormalizedEvent]) -> list[NormalizedEvent]:
        return list(events)


class CompositeDeduplicator(EventDeduplicator):
    """Chain multiple deduplication strategies."""

    def __init__(self, strategies: list[EventDeduplicator] | None = None):
        """
        Initialize with list of strategies to chain.

        Args:
            strategies: List of deduplicators to apply in sequence
        """
        self.strategies = strategies or [
            IdentityKeyDeduplicator(),
            FuzzyMatchDeduplicator(),
        ]

    def deduplicate(self, events: list[NormalizedEvent]) -> list[NormalizedEvent]:
        result = events
        for strategy in self.strategies:
            result = strategy.deduplicate(result)
        return result


def get_deduplicator(
    strategy: DeduplicationStrategy | str = DeduplicationStrategy.IDENTITY,
) -> EventDeduplicator:
    """
    Create a deduplicator instance for the given strategy.

    Args:
        strategy: DeduplicationStrategy enum value or its string form

    Returns:
        Configured EventDeduplicator instance (identity for unknown values)
    """
    try:
        strategy = DeduplicationStrategy(strategy)
    except ValueError:
        return IdentityKeyDeduplicator()

    if strategy == DeduplicationStrategy.FUZZY:
        return FuzzyMatchDeduplicator()
    elif strategy == DeduplicationStrategy.COMPOSITE:
        return CompositeDeduplicator()
    elif strategy == DeduplicationStrategy.NONE:
        return NoOpDeduplicator()
    else:
        return IdentityKeyDeduplicator()
