"""Unit conversion, rounding and formatting helpers"""

import pytest

from estimator.units import (
    apply_waste,
    cubic_feet_to_cubic_yards,
    feet_to_meters,
    format_currency,
    format_number,
    format_percent,
    parse_number,
    round_currency,
    round_half_up,
    round_quantity,
    volume_ft3,
    volume_yd3,
)


def test_slab_volume():
    # 20' x 10' x 4" slab
    assert volume_ft3(20, 10, 4) == pytest.approx(66.6667, abs=1e-4)
    assert volume_yd3(20, 10, 4) == pytest.approx(2.4691, abs=1e-4)
    assert cubic_feet_to_cubic_yards(27) == 1.0


def test_apply_waste_is_percent():
    assert apply_waste(10, 5) == pytest.approx(10.5)
    assert apply_waste(10, 0) == 10


def test_feet_to_meters():
    assert feet_to_meters(10) == pytest.approx(3.048)


def test_round_half_up_rounds_halves_away_from_zero():
    assert round_half_up(2.5) == 3.0
    assert round_half_up(-2.5) == -3.0
    assert round_half_up(1.005, 2) == 1.01
    assert round_half_up(0.125, 2) == 0.13


def test_round_half_up_handles_extreme_magnitudes():
    assert round_half_up(1e27, 2) == 1e27
    assert round_half_up(1.5e300) == 1.5e300
    assert round_half_up(123.456, -1) == 120.0
    assert round_half_up(1.5, 100) == 1.5
    assert round_half_up(0.0004, 2) == 0.0
    assert round_half_up(0.4, -1000) == 0.0
    assert round_currency(1e29) == int(1e29)


@pytest.mark.parametrize("value", [float("inf"), float("-inf"), float("nan")])
def test_round_half_up_rejects_non_finite(value):
    with pytest.raises(ValueError):
        round_half_up(value)


def test_round_currency_returns_whole_units():
    assert round_currency(871.5) == 872
    assert round_currency(871.49) == 871
    assert isinstance(round_currency(10.2), int)


def test_round_quantity_keeps_two_decimals():
    assert round_quantity(2.5925925925) == 2.59
    assert round_quantity(0.865) == 0.87


@pytest.mark.parametrize("raw, expected", [
    (12, 12.0),
    ("1,250", 1250.0),
    (" 4.5 ", 4.5),
    ("-3", -3.0),
])
def test_parse_number_accepts_numeric_text(raw, expected):
    assert parse_number(raw) == expected


@pytest.mark.parametrize("raw", [None, "", "   ", "abc", True, False, float("inf"), "nan"])
def test_parse_number_rejects_non_numbers(raw):
    assert parse_number(raw) is None


def test_format_number():
    assert format_number(1000) == "1,000"
    assert format_number(2.5) == "2.5"
    assert format_number(2.0, 2, 2) == "2.00"
    assert format_number(1234.5678, 2) == "1,234.57"


def test_format_currency():
    assert format_currency(1234.5) == "$1,234.50"
    assert format_currency(-5, 0) == "-$5"
    assert format_currency(1002, 0) == "$1,002"


def test_format_percent():
    assert format_percent(0.15) == "15.0%"
    assert format_percent(0.125, 2) == "12.50%"
