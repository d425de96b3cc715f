"""USDC amount conversion tests."""

from decimal import Decimal

import pytest

from monoma.amounts import format_usdc_amount, parse_usdc_amount, usdc_to_raw
from monoma.errors import InvalidAmount


@pytest.mark.parametrize(
    "value, expected",
    [
        ("0.001", 1000),
        ("1.0", 1_000_000),
        ("1.5", 1_500_000),
        ("1.0000019", 1_000_001),
        ("0.0000009", None),
        ("1000", 1000),
        (" 42 ", 42),
        (250, 250),
    ],
)
def test_parse_usdc_amount(value, expected):
    """Decimals are USDC truncated to 6 places, integers are raw units."""
    if expected is None:
        with pytest.raises(InvalidAmount):
            parse_usdc_amount(value)
    else:
        assert parse_usdc_amount(value) == expected


@pytest.mark.parametrize("value", ["0", "-5", "-0.5", "0.0", "abc", "1.2.3", "", "nan.", True, 0])
def test_parse_usdc_amount_rejects(value):
    """Zero, negative and malformed amounts are caller errors."""
    with pytest.raises(InvalidAmount):
        parse_usdc_amount(value)


def test_invalid_amount_is_value_error():
    with pytest.raises(ValueError):
        parse_usdc_amount("x")


def test_usdc_to_raw():
    assert usdc_to_raw(Decimal("1")) == 1_000_000
    assert usdc_to_raw(Decimal("12.34567891")) == 12_345_678
    with pytest.raises(InvalidAmount):
        usdc_to_raw(Decimal("0.0000001"))


def test_format_usdc_amount():
    assert format_usdc_amount(1_500_000) == "1.500000 USDC"
