"""
Shared pytest fixtures for the TouchGrass ingestion test suite.

Provides raw events in each source shape, normalized event factories and a
fully in-memory pipeline (store, search index, gateway, orchestrator).
"""

from typing import Optional

import pytest

from touchgrass.ingestion.orchestrator import IngestionOrchestrator
from touchgrass.ingestion.persist import EventPersistenceGateway, InMemoryEventStore
from touchgrass.ingestion.rate_limit import NoThrottle
from touchgrass.ingestion.search_index import IndexPropagator, InMemorySearchIndex
from touchgrass.schemas.event import NormalizedEvent

# =============================================================================
# RAW EVENTS
# =============================================================================


@pytest.fixture
def listing_event():
    """The listing-shaped Jazz Night event."""
    return {
        "title": "Jazz Night",
        "date": "2025-03-01",
        "time": "7:00 PM",
        "location": "Blues Alley",
        "category": "music",
        "price": "$25",
    }


@pytest.fixture
def api_event():
    """An events-API payload item."""
    return {
        "event_id": "L2F1dGh4",
        "name": "Cherry Blossom Kite Festival",
        "description": "Kites on the National Mall.",
        "start_time": "2025-03-29 10:00:00",
        "end_time": "2025-03-29 16:30:00",
        "is_virtual": False,
        "link": "https://example.com/kites",
        "thumbnail": "https://example.com/kites.jpg",
        "publisher": "example.com",
        "ticket_links": [{"source": "Eventbrite", "link": "https://tickets.example.com/1"}],
        "venue": {
            "name": "Washington Monument",
            "full_address": "2 15th St NW, Washington, DC 20024",
            "latitude": 38.8895,
            "longitude": -77.0353,
        },
    }


@pytest.fixture
def crawler_event():
    """A crawler payload item without an external id."""
    return {
        "title": "Open Mic Comedy",
        "start_date": "2025-04-05",
        "start_time": "8pm",
        "venue": {"name": "DC Improv", "address": "1140 Connecticut Ave NW"},
        "category": ["comedy", "nightlife"],
        "cost": {"type": "fixed", "currency": "usd", "amount": "$15"},
        "url": "https://dcimprov.example.com/open-mic",
        "confidence": 0.8,
        "extractionMethod": "llm",
    }


# =============================================================================
# NORMALIZED EVENTS
# =============================================================================


@pytest.fixture
def create_event():
    """
    Return a function that creates NormalizedEvent objects with sensible defaults.

    Example:
        event = create_event(title="My Event", start_date="2025-05-01")
    """

    def _create_event(
        title: str = "Test Event",
        start_date: Optional[str] = "2025-06-15",
        **kwargs,
    ) -> NormalizedEvent:
        defaults = {
            "title": title,
            "start_date": start_date,
            "start_time": "8:00 PM",
            "location": "Test Venue",
            "category": "music",
            "cost": {"type": "fixed", "currency": "USD", "amount": 10},
            "source": "test",
        }
        defaults.update(kwargs)
        return NormalizedEvent(**defaults)

    return _create_event


@pytest.fixture
def sample_event(create_event):
    """Return a single default test event."""
    return create_event()


# =============================================================================
# IN-MEMORY PIPELINE
# =============================================================================


@pytest.fixture
def store():
    return InMemoryEventStore()


@pytest.fixture
def search_index():
    return InMemorySearchIndex()


@pytest.fixture
def gateway(store):
    return EventPersistenceGateway(store=store, throttle=NoThrottle())


@pytest.fixture
def propagator(search_index):
    return IndexPropagator(client=search_index)


@pytest.fixture
def orchestrator(gateway, propagator):
    return IngestionOrchestrator(gateway=gateway, propagator=propagator)
