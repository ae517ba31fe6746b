import pytest

from currency import format_currency, parse_currency, to_rupiah


def test_format_groups_thousands_with_dots():
    assert format_currency(50000) == "Rp\u00a050.000"
    assert format_currency(1250000) == "Rp\u00a01.250.000"
    assert format_currency(0) == "Rp\u00a00"


def test_format_negative_amount():
    assert format_currency(-5000) == "-Rp\u00a05.000"


def test_format_rounds_fractions_half_up():
    assert format_currency(999.5) == "Rp\u00a01.000"
    assert to_rupiah(10.4) == 10


@pytest.mark.parametrize("value, expected", [
    ("Rp\u00a050.000", 50000),
    ("Rp 50.000", 50000),
    ("50000", 50000),
    ("-Rp\u00a05.000", -5000),
    (75000, 75000),
    (75000.0, 75000),
    (None, 0),
    ("", 0),
    ("Rp", 0),
])
def test_parse_currency(value, expected):
    assert parse_currency(value) == expected


@pytest.mark.parametrize("amount", [0, 1, 999, 1000, 15000, 123456789, -42000])
def test_parse_inverts_format(amount):
    assert parse_currency(format_currency(amount)) == amount
