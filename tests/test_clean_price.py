import pytest

from tools.clean_price import clean_price, normalize_price_value, parse_bare_price


@pytest.mark.parametrize(
    "text,expected",
    [
        ("$85", 85),
        ("85 dollars", 85),
        ("1,200", 1200),
        ("1.2k", 1200),
        ("84.99", 85),
        ("asking about $120 for it", 120),
        ("free", None),
        ("$0", None),
        ("", None),
        (None, None),
    ],
)
def test_clean_price(text, expected):
    assert clean_price(text)["clean_price"] == expected


@pytest.mark.parametrize("value,expected", [(85, 85), (84.6, 85), ("$90", 90), (0, None), (-5, None), (True, None), (None, None)])
def test_normalize_price_value(value, expected):
    assert normalize_price_value(value) == expected


@pytest.mark.parametrize("text,expected", [("85", 85), ("$85", 85), ("85 usd", 85), ("1.2k", 1200), ("85 for the kurta", None), ("medium", None)])
def test_parse_bare_price(text, expected):
    assert parse_bare_price(text) == expected
