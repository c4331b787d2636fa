"""Unit tests for venue flattening and coordinate normalization."""

import pytest

from touchgrass.ingestion.normalization.location import (
    VenueParts,
    flatten_venue,
    normalize_coordinates,
)


class TestFlattenVenue:
    """Tests for flatten_venue."""

    def test_plain_string(self):
        assert flatten_venue("  Blues Alley ") == VenueParts(name="Blues Alley")

    def test_name_and_address(self):
        parts = flatten_venue({"name": "DC Improv", "address": "1140 Connecticut Ave NW"})
        assert parts.name == "DC Improv"
        assert parts.address == "1140 Connecticut Ave NW"
        assert parts.display == "DC Improv, 1140 Connecticut Ave NW"

    def test_alternate_keys(self):
        parts = flatten_venue({"venue_name": "The Anthem", "full_address": "901 Wharf St SW"})
        assert parts == VenueParts(name="The Anthem", address="901 Wharf St SW")

    def test_nested_location_address(self):
        parts = flatten_venue({"name": "9:30 Club", "location": {"address": "815 V St NW"}})
        assert parts.address == "815 V St NW"

    def test_display_skips_repeated_name(self):
        parts = VenueParts(name="Blues Alley", address="Blues Alley, 1073 Wisconsin Ave NW")
        assert parts.display == "Blues Alley, 1073 Wisconsin Ave NW"

    def test_display_with_missing_parts(self):
        assert VenueParts(address="815 V St NW").display == "815 V St NW"
        assert VenueParts().display is None

    @pytest.mark.parametrize("value", [None, 12, ["Blues Alley"], {"name": "  "}])
    def test_unusable_values(self, value):
        assert flatten_venue(value).display is None


class TestNormalizeCoordinates:
    """Tests for normalize_coordinates."""

    def test_string(self):
        assert normalize_coordinates("38.9, -77.03") == "38.9,-77.03"

    def test_pair(self):
        assert normalize_coordinates((38.9, -77.03)) == "38.9,-77.03"

    def test_mapping_keys(self):
        assert normalize_coordinates({"latitude": 38.9, "longitude": -77.03}) == "38.9,-77.03"
        assert normalize_coordinates({"lat": "38.9", "lng": "-77.03"}) == "38.9,-77.03"
        assert normalize_coordinates({"lat": 38.9, "lon": -77.03}) == "38.9,-77.03"

    @pytest.mark.parametrize(
        "value",
        [
            None,
            "",
            "38.9",
            "north,west",
            (91, 0),
            (0, 181),
            {"lat": 38.9},
            {"lat": float("nan"), "lng": 1},
            (True, False),
            42,
        ],
    )
    def test_invalid_values(self, value):
        assert normalize_coordinates(value) is None
