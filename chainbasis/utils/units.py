"""
chainbasis/utils/units.py

Conversions between on-chain base units (wei, lamports, satoshis, token base
units) and human token amounts, plus tax-year bucketing.

All conversions are integer-exact: nothing here goes through float.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Union


def from_wei(amount: Union[str, int], decimals: int) -> str:
    """
    Convert a base-unit integer (string or int) into a plain decimal string
    without trailing zeros. from_wei("1500000000000000000", 18) -> "1.5"
    """
    raw = int(amount)
    sign = "-" if raw < 0 else ""
    whole, fraction = divmod(abs(raw), 10 ** decimals)
    if fraction == 0:
        return f"{sign}{whole}"
    fraction_str = str(fraction).rjust(decimals, "0").rstrip("0")
    return f"{sign}{whole}.{fraction_str}"


def to_wei(amount: str, decimals: int) -> str:
    """
    Convert a decimal string back to base units. Fractional digits beyond
    `decimals` are truncated, matching how the chain itself would round down.
    """
    amount = amount.strip()
    negative = amount.startswith("-")
    if negative or amount.startswith("+"):
        amount = amount[1:]
    whole_part, _, fractional_part = amount.partition(".")
    whole = int(whole_part or "0")
    fractional = int(fractional_part.ljust(decimals, "0")[:decimals] or "0")
    raw = whole * 10 ** decimals + fractional
    return str(-raw if negative and raw else raw)


def format_token_amount(amount: Union[str, int], decimals: int, symbol: str,
                        display_decimals: int = None) -> str:
    """
    Human display string, rounded half-up to `display_decimals` places
    (defaults to the token's own decimals). e.g. "1.50 ETH"
    """
    raw = int(amount or 0)
    precision = decimals if display_decimals is None else display_decimals
    divisor = 10 ** decimals

    if precision == 0:
        rounded = (raw + divisor // 2) // divisor
        return f"{rounded} {symbol}"

    scale = 10 ** precision
    rounded = (raw * scale + divisor // 2) // divisor
    whole, fraction = divmod(rounded, scale)
    return f"{whole}.{str(fraction).rjust(precision, '0')} {symbol}"


def to_plain_string(value: Decimal) -> str:
    """
    Normalized, non-scientific decimal string: Decimal("1000.00") -> "1000",
    Decimal("0.50") -> "0.5".
    """
    if value == 0:
        return "0"
    return format(value.normalize(), "f")


def calculate_tax_year(date: datetime, jurisdiction: str = "US") -> int:
    """
    Tax year a moment falls in.
    - US: calendar year
    - UK: year starting 6 April (2024-04-05 -> 2023, 2024-04-06 -> 2024)
    - AU: year starting 1 July
    Naive datetimes are treated as UTC.
    """
    if date.tzinfo is None:
        date = date.replace(tzinfo=timezone.utc)
    year = date.year

    code = str(getattr(jurisdiction, "value", jurisdiction)).upper()
    if code == "UK":
        start = datetime(year, 4, 6, tzinfo=date.tzinfo)
        return year if date >= start else year - 1
    if code == "AU":
        start = datetime(year, 7, 1, tzinfo=date.tzinfo)
        return year if date >= start else year - 1
    return year
