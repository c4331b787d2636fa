"""
Location Normalization.

Flattens the venue shapes sources send (plain strings or {name, address}
objects) and reduces coordinates to a canonical "lat,lng" string.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any

from touchgrass.ingestion.normalization.values import clean_text

logger = logging.getLogger(__name__)

LATITUDE_RANGE = (-90.0, 90.0)
LONGITUDE_RANGE = (-180.0, 180.0)


@dataclass
class VenueParts:
    """Venue pieces extracted from a raw venue value."""

    name: str | None = None
    address: str | None = None

    @property
    def display(self) -> str | None:
        """Single-line location text: "name, address" with missing parts skipped."""
        parts = [part for part in (self.name, self.address) if part]
        if not parts:
            return None
        if len(parts) == 2 and parts[1].lower().startswith(parts[0].lower()):
            # Address already leads with the venue name
            return parts[1]
        return ", ".join(parts)


def flatten_venue(value: Any) -> VenueParts:
    """
    Extract venue name and address from a string or mapping.

    Mappings may use "name"/"venue_name" and "address"/"full_address"; a
    nested "location" mapping with "address" is also accepted.
    """
    if isinstance(value, str):
        return VenueParts(name=clean_text(value))

    if not isinstance(value, dict):
        return VenueParts()

    name = clean_text(value.get("name")) or clean_text(value.get("venue_name"))
    address = clean_text(value.get("address")) or clean_text(value.get("full_address"))

    nested = value.get("location")
    if address is None and isinstance(nested, dict):
        address = clean_text(nested.get("address"))

    return VenueParts(name=name, address=address)


def normalize_coordinates(value: Any) -> str | None:
    """
    Reduce coordinates to "lat,lng".

    Accepts "38.9,-77.0" strings, (lat, lng) pairs and mappings keyed
    latitude/longitude or lat/lng/lon. Out-of-range or unreadable values
    yield None.
    """
    if value is None or isinstance(value, bool):
        return None

    lat: Any
    lng: Any
    if isinstance(value, str):
        parts = [part.strip() for part in value.split(",")]
        if len(parts) != 2:
            return None
        lat, lng = parts
    elif isinstance(value, (list, tuple)) and len(value) == 2:
        lat, lng = value
    elif isinstance(value, dict):
        lat = value.get("latitude", value.get("lat"))
        lng = value.get("longitude", value.get("lng", value.get("lon")))
    else:
        return None

    latitude = _to_float(lat)
    longitude = _to_float(lng)
    if latitude is None or longitude is None:
        return None

    if not LATITUDE_RANGE[0] <= latitude <= LATITUDE_RANGE[1]:
        logger.debug(f"Latitude out of range: {latitude}")
        return None
    if not LONGITUDE_RANGE[0] <= longitude <= LONGITUDE_RANGE[1]:
        logger.debug(f"Longitude out of range: {longitude}")
        return None

    return f"{latitude},{longitude}"


def _to_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None
