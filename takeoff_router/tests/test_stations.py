# test_stations.py
"""Tests for station parsing and text normalization."""

import pytest

from takeoff_router.core.normalize import normalize_name, normalize_size, normalize_utility_name
from takeoff_router.core.stations import (
    format_station,
    is_valid_station,
    normalize_station,
    parse_station,
    station_distance,
    stations_approximately_equal,
)


class TestParseStation:
    """Test cases for station parsing."""

    @pytest.mark.parametrize(
        "station,expected",
        [
            ("12+34.56", 1234.56),
            ("0+00", 0.0),
            ("STA 24+93.06", 2493.06),
            ("Station 5+00", 500.0),
            ("24 + 93.1", 2493.1),
        ],
    )
    def test_valid_stations(self, station, expected):
        assert parse_station(station) == expected

    @pytest.mark.parametrize(
        "station",
        [
            "2+16-27 RT",
            "10+00 LT",
            "MATCH LINE 4+38.83",
            "MATCH LINE - STA 4+38.83",
            "ROAD 'A' B STA 40+45.77",
            "ROAD 12+00",
            "12+5",
            "abc",
            "",
            None,
        ],
    )
    def test_rejected_stations(self, station):
        """Offsets, road references and match-line text are not stations."""
        assert parse_station(station) is None
        assert not is_valid_station(station)


class TestStationComparison:
    """Test cases for station normalization and tolerance."""

    def test_normalize_station_canonical_form(self):
        assert normalize_station("STA 024+93.1") == "24+93.10"
        assert normalize_station("24 + 93.10") == "24+93.10"
        assert normalize_station("2+16-27 RT") is None

    def test_format_station_rolls_over(self):
        assert format_station(1234.56) == "12+34.56"
        assert format_station(99.999) == "1+00.00"

    def test_within_tolerance(self):
        assert stations_approximately_equal("10+50", "10+50.80")
        assert not stations_approximately_equal("10+50", "10+52")

    def test_missing_stations(self):
        assert stations_approximately_equal(None, "")
        assert not stations_approximately_equal(None, "10+50")

    def test_unparseable_stations_compare_as_text(self):
        assert stations_approximately_equal("see plan", "SEE PLAN")
        assert not stations_approximately_equal("see plan", "10+00")

    def test_station_distance(self):
        assert station_distance("10+00", "12+50") == 250.0
        assert station_distance("12+50", "10+00") == -250.0
        assert station_distance("10+00", "2+16-27 RT") is None


class TestNormalize:
    """Test cases for size, name and utility normalization."""

    @pytest.mark.parametrize("size", ["12 inch", "12-in", '12"', "12", "12 IN"])
    def test_size_variants(self, size):
        assert normalize_size(size) == "12-IN"

    def test_size_keeps_compound_sizes(self):
        assert normalize_size("12 x 8") == "12X8"
        assert normalize_size(None) is None

    def test_name_singularizes(self):
        assert normalize_name("Gate Valves") == "gate valve"
        assert normalize_name("CROSSES") == "cross"

    def test_utility_name(self):
        assert normalize_utility_name("Waterline 'A'") == "water line a"
        assert normalize_utility_name("WATER LINE A") == "water line a"
