"""Tests for helper functions."""
import pytest

from custom_components.daily_energy_budget.helpers import (
    convert_energy_to_kwh,
    extract_price_entries,
    parse_float,
)


@pytest.mark.parametrize(
    "value, expected",
    [("1.5", 1.5), (2, 2.0), ("unavailable", None), (None, None), (True, None), ("nan", None), ("inf", None)],
)
def test_parse_float(value, expected):
    assert parse_float(value) == expected


def test_convert_energy_to_kwh():
    assert convert_energy_to_kwh(1500.0, "Wh") == 1.5
    assert convert_energy_to_kwh(1.5, "kWh") == 1.5
    assert convert_energy_to_kwh(0.002, "MWh") == 2.0
    assert convert_energy_to_kwh(3.0, None) == 3.0
    # Unknown units are passed through
    assert convert_energy_to_kwh(3.0, "BTU") == 3.0


def test_extract_price_entries_nordpool_style():
    attributes = {
        "raw_today": [
            {"start": "2024-01-01T00:00:00+01:00", "end": "2024-01-01T01:00:00+01:00", "value": 0.42},
            {"start": "2024-01-01T01:00:00+01:00", "value": "bad"},
        ],
        "raw_tomorrow": [{"start": "2024-01-02T00:00:00+01:00", "value": 0.5}],
    }
    assert extract_price_entries(attributes) == [
        {"starts_at": "2024-01-01T00:00:00+01:00", "total": 0.42},
        {"starts_at": "2024-01-02T00:00:00+01:00", "total": 0.5},
    ]


def test_extract_price_entries_tibber_style():
    attributes = {"today": [{"startsAt": "2024-01-01T00:00:00Z", "total": 1.2}, "junk"]}
    assert extract_price_entries(attributes) == [{"starts_at": "2024-01-01T00:00:00Z", "total": 1.2}]


def test_extract_price_entries_empty():
    assert extract_price_entries(None) == []
    assert extract_price_entries({"prices": "nope"}) == []
