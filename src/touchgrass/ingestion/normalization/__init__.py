"""
Field-level normalization for raw event data.

This package provides:
- dates: Date and time parsing to YYYY-MM-DD / "7:00 PM"
- category: Canonical comma-joined category strings and their reverse
- cost: Cost/price parsing with currency detection
- location: Venue flattening and coordinate normalization

Every parser is total: bad input yields None or a safe default, never an
exception.
"""

from touchgrass.ingestion.normalization.category import (
    DEFAULT_CATEGORY,
    normalize_category,
    parse_categories,
)
from touchgrass.ingestion.normalization.dates import (
    normalize_date,
    normalize_time,
    parse_time_range,
    split_datetime,
)
from touchgrass.ingestion.normalization.location import (
    VenueParts,
    flatten_venue,
    normalize_coordinates,
)
from touchgrass.ingestion.normalization.values import clean_text, parse_bool

__all__ = [
    "DEFAULT_CATEGORY",
    "VenueParts",
    "clean_text",
    "flatten_venue",
    "normalize_category",
    "normalize_coordinates",
    "normalize_date",
    "normalize_time",
    "parse_bool",
    "parse_categories",
    "parse_time_range",
    "split_datetime",
]
