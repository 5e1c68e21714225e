import pytest

from givecart.helpers import (
    clip,
    normalize_donation_cents,
    parse_cents,
    safe_currency,
    safe_int,
    to_cents,
)


@pytest.mark.parametrize(
    "raw, cents",
    [
        ("25", 2500),
        ("$1,250", 125000),
        ("10.005", 1001),
        ("2k", 200000),
        (15, 1500),
        (None, 0),
        ("", 0),
    ],
)
def test_parse_cents(raw, cents):
    assert parse_cents(raw) == cents


def test_parse_cents_rejects_junk():
    assert parse_cents("abc") is None
    assert parse_cents(True) is None
    assert to_cents("abc") == 0


def test_normalize_donation_cents():
    assert normalize_donation_cents("500") == 500
    assert normalize_donation_cents(49) == 0
    assert normalize_donation_cents(-10) == 0
    assert normalize_donation_cents("nope") == 0
    assert normalize_donation_cents(99.9) == 99
    assert normalize_donation_cents(10**12) == 10_000_000


def test_small_coercions():
    assert safe_int("7") == 7
    assert safe_int("x", 1) == 1
    assert safe_currency("EUR") == "eur"
    assert safe_currency("euro") == "usd"
    assert clip("  hello  ", 3) == "hel"
    assert clip("   ", 3) is None
