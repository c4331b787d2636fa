"""
Event Normalizer.

Maps raw events from each known source shape onto NormalizedEvent. The shape
is a closed set passed in by the caller (never guessed from the payload), and
each shape has exactly one mapping function:

- api-shape: third-party events API (name, "date time" start/end, nested venue)
- listing-shape: listings sites (flat date/time/location/category/price text)
- crawler-shape: site crawler (start_date, venue string/object, category
  array, nested cost)
- already-normalized: passed through; model validation still enforces the
  canonical field forms

Events without a usable title are rejected, never stored.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from pydantic import ValidationError

from touchgrass.ingestion.errors import EventRejectedError
from touchgrass.ingestion.normalization.cost import normalize_cost
from touchgrass.ingestion.normalization.dates import parse_time_range, split_datetime
from touchgrass.ingestion.normalization.location import flatten_venue
from touchgrass.ingestion.normalization.values import clean_text
from touchgrass.schemas.event import NormalizedEvent

logger = logging.getLogger(__name__)


class RawEventShape(str, Enum):
    """Known raw event shapes."""

    API = "api-shape"
    LISTING = "listing-shape"
    CRAWLER = "crawler-shape"
    NORMALIZED = "already-normalized"

    @classmethod
    def from_value(cls, value: "RawEventShape | str | None") -> "RawEventShape":
        """
        Resolve a shape tag.

        Accepts the shape values themselves and the per-source tags older
        triggers send ("openwebninja", "washingtonian", ...). Anything else
        is treated as already normalized.
        """
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return cls.NORMALIZED

        tag = value.strip().lower()
        try:
            return cls(tag)
        except ValueError:
            return LEGACY_SOURCE_SHAPES.get(tag, cls.NORMALIZED)


LEGACY_SOURCE_SHAPES = {
    "openwebninja": RawEventShape.API,
    "washingtonian": RawEventShape.LISTING,
    "clockoutdc": RawEventShape.LISTING,
    "eventbrite": RawEventShape.LISTING,
    "crawler": RawEventShape.CRAWLER,
}

DEFAULT_SOURCES = {
    RawEventShape.API: "openwebninja",
    RawEventShape.LISTING: "washingtonian",
    RawEventShape.CRAWLER: "crawler",
}


@dataclass
class Rejection:
    """A raw event that did not survive normalization."""

    index: int
    reason: str


@dataclass
class NormalizationBatch:
    """Normalized events of a batch plus the rejects."""

    events: list[NormalizedEvent] = field(default_factory=list)
    rejections: list[Rejection] = field(default_factory=list)

    @property
    def rejected_count(self) -> int:
        return len(self.rejections)


class EventNormalizer:
    """
    Pure mapping from raw source events to NormalizedEvent.

    Example:
        >>> normalizer = EventNormalizer()
        >>> event = normalizer.normalize(
        ...     {"title": "Jazz Night", "date": "2025-03-01", "price": "$25"},
        ...     RawEventShape.LISTING,
        ... )
        >>> event.cost.amount
        25.0
    """

    def __init__(self, default_currency: str = "USD"):
        self.default_currency = default_currency
        self._mappers: dict[RawEventShape, Callable[[dict], dict[str, Any]]] = {
            RawEventShape.API: self._from_api,
            RawEventShape.LISTING: self._from_listing,
            RawEventShape.CRAWLER: self._from_crawler,
            RawEventShape.NORMALIZED: self._from_normalized,
        }

    def normalize(
        self,
        raw: Any,
        shape: RawEventShape | str,
        source: str | None = None,
    ) -> NormalizedEvent:
        """
        Normalize one raw event.

        Args:
            raw: Raw event object
            shape: Shape tag (RawEventShape or its string/legacy form)
            source: Provenance tag overriding the shape's default source

        Returns:
            NormalizedEvent

        Raises:
            EventRejectedError: when the event has no usable title or fails
                validation
        """
        if not isinstance(raw, dict):
            raise EventRejectedError("raw event is not an object", raw)

        shape = RawEventShape.from_value(shape)
        data = self._mappers[shape](raw)

        keeps_own_source = shape == RawEventShape.NORMALIZED and clean_text(raw.get("source"))
        if source and not keeps_own_source:
            data["source"] = source

        title = data.get("title")
        if not isinstance(title, str) or not title.strip():
            raise EventRejectedError("missing or empty title", raw)

        try:
            return NormalizedEvent.model_validate(data)
        except ValidationError as e:
            first = e.errors()[0]
            location = ".".join(str(part) for part in first["loc"])
            raise EventRejectedError(f"invalid {location}: {first['msg']}", raw) from e

    def normalize_batch(
        self,
        raw_events: list[Any],
        shape: RawEventShape | str,
        source: str | None = None,
    ) -> NormalizationBatch:
        """
        Normalize a batch; rejects are logged and counted, never raised.
        """
        batch = NormalizationBatch()
        for index, raw in enumerate(raw_events):
            try:
                batch.events.append(self.normalize(raw, shape, source))
            except EventRejectedError as e:
                logger.warning(
                    f"Rejected event #{index}: {e.reason}",
                    extra={"source": source, "stage": "normalize"},
                )
                batch.rejections.append(Rejection(index=index, reason=e.reason))

        logger.info(
            f"Normalized {len(batch.events)}/{len(raw_events)} events "
            f"({batch.rejected_count} rejected)",
            extra={"source": source, "stage": "normalize"},
        )
        return batch

    # ------------------------------------------------------------------
    # Shape mappers
    # ------------------------------------------------------------------

    def _from_api(self, raw: dict) -> dict[str, Any]:
        start_date, start_time = split_datetime(raw.get("start_time"))
        end_date, end_time = split_datetime(raw.get("end_time"))

        venue = raw.get("venue") if isinstance(raw.get("venue"), dict) else {}
        parts = flatten_venue(venue)
        link = clean_text(raw.get("link"))

        return {
            "title": raw.get("name"),
            "description": raw.get("description"),
            "start_date": start_date,
            "end_date": end_date,
            "start_time": start_time,
            "end_time": end_time,
            "location": parts.address or parts.name,
            "venue": parts.name,
            "venue_details": {"name": parts.name, "address": parts.address},
            "coordinates": venue.get("coordinates") or venue,
            "category": raw.get("category"),
            "cost": normalize_cost(raw.get("cost"), self.default_currency),
            "is_virtual": raw.get("is_virtual"),
            "url": link,
            "socials": {"website": link} if link else None,
            "image_url": raw.get("thumbnail"),
            "publisher": raw.get("publisher"),
            "ticket_links": raw.get("ticket_links"),
            "external_id": raw.get("event_id"),
            "source": DEFAULT_SOURCES[RawEventShape.API],
        }

    def _from_listing(self, raw: dict) -> dict[str, Any]:
        start_time, end_time = parse_time_range(raw.get("time"))
        parts = flatten_venue(raw.get("venue"))
        url = clean_text(raw.get("url"))

        return {
            "title": raw.get("title"),
            "description": raw.get("description"),
            "start_date": raw.get("date") or raw.get("start_date"),
            "end_date": raw.get("end_date"),
            "start_time": start_time,
            "end_time": end_time,
            "location": clean_text(raw.get("location")) or parts.display,
            "venue": parts.display,
            "venue_details": _venue_details(raw.get("venue")),
            "category": raw.get("category"),
            "cost": normalize_cost(raw.get("price", raw.get("cost")), self.default_currency),
            "url": url,
            "socials": {"website": url} if url else None,
            "image_url": raw.get("image_url"),
            "source": DEFAULT_SOURCES[RawEventShape.LISTING],
        }

    def _from_crawler(self, raw: dict) -> dict[str, Any]:
        start_time, end_time = parse_time_range(raw.get("start_time"))
        if raw.get("end_time"):
            end_time, _ = parse_time_range(raw.get("end_time"))
        parts = flatten_venue(raw.get("venue"))
        url = clean_text(raw.get("url"))

        return {
            "title": raw.get("title"),
            "description": raw.get("description"),
            "start_date": raw.get("start_date") or raw.get("date"),
            "end_date": raw.get("end_date"),
            "start_time": start_time,
            "end_time": end_time,
            "location": clean_text(raw.get("location")) or parts.display,
            "venue": parts.display,
            "venue_details": _venue_details(raw.get("venue")),
            "coordinates": raw.get("coordinates"),
            "category": raw.get("category"),
            "cost": normalize_cost(raw.get("cost"), self.default_currency),
            "url": url,
            "socials": raw.get("socials") or ({"website": url} if url else None),
            "image_url": raw.get("image_url"),
            "is_public": raw.get("is_public"),
            "external_id": raw.get("external_id"),
            "confidence": raw.get("confidence"),
            "extraction_method": raw.get("extractionMethod", raw.get("extraction_method")),
            "source": DEFAULT_SOURCES[RawEventShape.CRAWLER],
        }

    def _from_normalized(self, raw: dict) -> dict[str, Any]:
        data = dict(raw)
        if "cost" in data:
            data["cost"] = normalize_cost(data["cost"], self.default_currency)
        return data


def _venue_details(venue: Any) -> dict[str, Any] | None:
    """Structured venue, kept only when the source sent an object."""
    if not isinstance(venue, dict):
        return None
    parts = flatten_venue(venue)
    return {"name": parts.name, "address": parts.address}
