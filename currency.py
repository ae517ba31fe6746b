"""Rupiah formatting helpers.

Amounts are whole Rupiah. Formatting follows the id-ID locale: ``.`` as the
thousands separator, no decimals, a non-breaking space after ``Rp``.
"""
import re
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Union

CURRENCY_PREFIX = "Rp\u00a0"

_NON_DIGITS = re.compile(r"[^0-9]")

Amount = Union[int, float, Decimal, str, None]


def to_rupiah(amount: Amount) -> int:
    if amount is None or amount == "":
        return 0
    if isinstance(amount, str):
        return parse_currency(amount)
    return int(Decimal(str(amount)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def format_currency(amount: Amount) -> str:
    value = to_rupiah(amount)
    grouped = f"{abs(value):,}".replace(",", ".")
    sign = "-" if value < 0 else ""
    return f"{sign}{CURRENCY_PREFIX}{grouped}"


def parse_currency(value: Optional[Union[str, int, float]]) -> int:
    """Turn ``"Rp 50.000"`` (or a plain number) back into ``50000``."""
    if value is None:
        return 0
    if not isinstance(value, str):
        return to_rupiah(value)
    text = value.strip()
    digits = _NON_DIGITS.sub("", text)
    if not digits:
        return 0
    amount = int(digits)
    return -amount if text.startswith("-") else amount
