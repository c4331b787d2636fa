"""
Canonical Event Schema for TouchGrass DC.

Events arrive from a third-party events API, listings sites, a crawler and
manual submissions. This schema is the single representation they are all
normalized into before being stored and indexed.

Field coercion lives in the validators below, so any path that builds a
NormalizedEvent (including already-normalized input) gets the same
guarantees: a non-empty title, a canonical category string and a cost
whose amount is a finite, non-negative number.
"""

import math
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from touchgrass.ingestion.normalization.category import (
    DEFAULT_CATEGORY,
    normalize_category,
)
from touchgrass.ingestion.normalization.dates import normalize_date, normalize_time
from touchgrass.ingestion.normalization.location import normalize_coordinates
from touchgrass.ingestion.normalization.values import clean_text, parse_bool

GROUP_DEFAULT_CATEGORY = "Uncategorized"


def _utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def _clean_socials(value: Any) -> Optional[Dict[str, str]]:
    """Keep platform -> URL pairs whose URL is non-blank text."""
    if not isinstance(value, dict):
        return None
    socials = {
        str(platform): link.strip()
        for platform, link in value.items()
        if isinstance(link, str) and link.strip()
    }
    return socials or None


# ============================================================================
# COST
# ============================================================================


class CostType(str, Enum):
    """How an event is priced."""

    FREE = "free"
    FIXED = "fixed"
    VARIABLE = "variable"


class Cost(BaseModel):
    """
    Tagged cost structure.

    `amount` is the single price for fixed events and the lower bound for
    variable ones.
    """

    model_config = ConfigDict(use_enum_values=True)

    type: CostType = CostType.FREE
    currency: str = Field(default="USD", description="ISO 4217 currency code")
    amount: float = Field(default=0.0, ge=0)
    raw_text: Optional[str] = Field(
        default=None,
        description="Original price text when it could not be fully parsed",
    )

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v):
        if not math.isfinite(v):
            raise ValueError("amount must be a finite number")
        return v

    @field_validator("currency", mode="before")
    @classmethod
    def normalize_currency(cls, v):
        if not isinstance(v, str) or not v.strip():
            return "USD"
        return v.strip().upper()


# ============================================================================
# NORMALIZED EVENT
# ============================================================================


class VenueDetails(BaseModel):
    """Structured venue kept alongside the flattened display text."""

    name: Optional[str] = None
    address: Optional[str] = None


class NormalizedEvent(BaseModel):
    """
    Canonical event record, independent of the source shape it came from.
    """

    model_config = ConfigDict(
        use_enum_values=True,
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "title": "Jazz Night",
                "start_date": "2025-03-01",
                "end_date": "2025-03-01",
                "start_time": "7:00 PM",
                "location": "Blues Alley",
                "category": "music",
                "cost": {"type": "fixed", "currency": "USD", "amount": 25.0},
                "source": "washingtonian",
                "is_public": True,
            }
        },
    )

    # ---- CORE ----
    title: str
    description: Optional[str] = None

    # ---- TIMING ----
    start_date: Optional[str] = Field(default=None, description="YYYY-MM-DD")
    end_date: Optional[str] = Field(default=None, description="YYYY-MM-DD")
    start_time: Optional[str] = Field(default=None, description='e.g. "7:00 PM"')
    end_time: Optional[str] = None

    # ---- PLACE ----
    location: Optional[str] = None
    venue: Optional[str] = None
    venue_details: Optional[VenueDetails] = None
    coordinates: Optional[str] = Field(default=None, description='"lat,lng"')

    # ---- CLASSIFICATION & PRICE ----
    category: str = DEFAULT_CATEGORY
    cost: Cost = Field(default_factory=Cost)

    # ---- LINKS ----
    image_url: Optional[str] = None
    url: Optional[str] = None
    socials: Optional[Dict[str, str]] = None
    ticket_links: List[str] = Field(default_factory=list)

    # ---- PROVENANCE ----
    source: Optional[str] = None
    external_id: Optional[str] = None
    is_public: bool = True
    is_virtual: Optional[bool] = None
    publisher: Optional[str] = None
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    extraction_method: Optional[str] = Field(default=None, alias="extractionMethod")

    @field_validator("title", mode="before")
    @classmethod
    def validate_title(cls, v):
        if not isinstance(v, str):
            raise ValueError("title must be a string")
        title = " ".join(v.split())
        if not title:
            raise ValueError("title must not be empty")
        return title

    @field_validator(
        "description",
        "location",
        "venue",
        "image_url",
        "url",
        "source",
        "publisher",
        "extraction_method",
        mode="before",
    )
    @classmethod
    def clean_optional_text(cls, v):
        return clean_text(v)

    @field_validator("external_id", mode="before")
    @classmethod
    def coerce_external_id(cls, v):
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return clean_text(v)

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def validate_date(cls, v):
        return normalize_date(v)

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def validate_time(cls, v):
        return normalize_time(v)

    @field_validator("coordinates", mode="before")
    @classmethod
    def validate_coordinates(cls, v):
        return normalize_coordinates(v)

    @field_validator("category", mode="before")
    @classmethod
    def validate_category(cls, v):
        return normalize_category(v)

    @field_validator("cost", mode="before")
    @classmethod
    def validate_cost(cls, v):
        # Imported lazily: the cost parser depends on this module
        from touchgrass.ingestion.normalization.cost import normalize_cost

        return normalize_cost(v)

    @field_validator("is_public", mode="before")
    @classmethod
    def validate_is_public(cls, v):
        return parse_bool(v, default=True)

    @field_validator("is_virtual", mode="before")
    @classmethod
    def validate_is_virtual(cls, v):
        if v is None:
            return None
        return parse_bool(v)

    @field_validator("venue_details", mode="before")
    @classmethod
    def validate_venue_details(cls, v):
        if not isinstance(v, dict):
            return v if isinstance(v, VenueDetails) else None
        name, address = clean_text(v.get("name")), clean_text(v.get("address"))
        if name is None and address is None:
            return None
        return {"name": name, "address": address}

    @field_validator("socials", mode="before")
    @classmethod
    def validate_socials(cls, v):
        return _clean_socials(v)

    @field_validator("ticket_links", mode="before")
    @classmethod
    def validate_ticket_links(cls, v):
        if isinstance(v, str):
            v = [v]
        if not isinstance(v, (list, tuple)):
            return []
        links = []
        for item in v:
            link = item.get("link") if isinstance(item, dict) else item
            link = clean_text(link)
            if link and link not in links:
                links.append(link)
        return links

    @field_validator("confidence", mode="before")
    @classmethod
    def validate_confidence(cls, v):
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            return None
        if not math.isfinite(v):
            return None
        return min(max(float(v), 0.0), 1.0)

    @model_validator(mode="after")
    def default_end_date(self):
        if self.end_date is None and self.start_date is not None:
            self.end_date = self.start_date
        return self


# ============================================================================
# PERSISTED FORMS
# ============================================================================


class EventRecord(NormalizedEvent):
    """
    A NormalizedEvent as written to the primary store.

    `pk` and `sk` both hold the identity key. Timestamps are kept both as epoch
    milliseconds (sortable numbers) and ISO-8601 text.
    """

    pk: str
    sk: str
    created_at_ms: int
    updated_at_ms: int
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)
    title_prefix: Optional[str] = None

    def to_item(self) -> Dict[str, Any]:
        """Serialize to a storable mapping; absent fields are left out."""
        return self.model_dump(mode="json", exclude_none=True)


class GroupRecord(BaseModel):
    """
    A recurring group (book club, run club, weekly trivia) or one of its
    schedule entries. Groups arrive pre-keyed: `pk` is "GROUP#<slug>" and
    `sk` is "GROUP_INFO" or "SCHEDULE#<day>".
    """

    model_config = ConfigDict(populate_by_name=True)

    pk: str
    sk: str = "GROUP_INFO"
    title: Optional[str] = None
    description: Optional[str] = None
    category: str = GROUP_DEFAULT_CATEGORY
    image_url: Optional[str] = None
    socials: Optional[Dict[str, str]] = None
    is_public: bool = True
    schedule_day: Optional[str] = Field(default=None, alias="scheduleDay")
    schedule_time: Optional[str] = Field(default=None, alias="scheduleTime")
    schedule_location: Optional[str] = Field(default=None, alias="scheduleLocation")
    created_at_ms: Optional[int] = None
    updated_at_ms: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("pk")
    @classmethod
    def validate_pk(cls, v):
        if not v.startswith("GROUP#"):
            raise ValueError("group pk must start with 'GROUP#'")
        return v

    @field_validator("category", mode="before")
    @classmethod
    def validate_category(cls, v):
        return normalize_category(v, default=GROUP_DEFAULT_CATEGORY)

    @field_validator("is_public", mode="before")
    @classmethod
    def validate_is_public(cls, v):
        return parse_bool(v, default=True)

    @field_validator("socials", mode="before")
    @classmethod
    def validate_socials(cls, v):
        return _clean_socials(v)

    def to_item(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


# ============================================================================
# SEARCH DOCUMENT
# ============================================================================


class SearchCost(BaseModel):
    type: str = "unknown"
    amount: float = 0.0
    currency: str = "USD"


class SearchDocument(BaseModel):
    """
    Denormalized projection of an event or group for the search index.
    """

    id: str
    type: Literal["event", "group"]
    title: str = ""
    description: str = ""
    category: List[str] = Field(default_factory=list)
    location: Optional[str] = None
    venue: Optional[str] = None
    cost: Optional[SearchCost] = None
    image_url: Optional[str] = None
    socials: Dict[str, str] = Field(default_factory=dict)
    is_public: bool = True
    created_at_ms: int

    # Events
    date: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    start_time: Optional[str] = None

    # Groups
    schedule_day: Optional[str] = None
    schedule_time: Optional[str] = None
    schedule_location: Optional[str] = None

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)
