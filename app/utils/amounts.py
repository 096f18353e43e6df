# app/utils/amounts.py
"""
Integer-string amount arithmetic.

Balances are stored as decimal strings of token base units and never pass
through float. Only derived ratios (progress, contribution shares) are floats.
"""
from decimal import Decimal, ROUND_DOWN, ROUND_HALF_UP
from typing import Dict, Hashable, Mapping, Union

from app.core.errors import InvalidAmount

AmountLike = Union[str, int]

HUNDREDTH = Decimal("0.01")
PERCENT_TOLERANCE = 0.01


def parse_amount(value: AmountLike, allow_zero: bool = True) -> int:
    """Parse an integer amount, rejecting negatives, fractions and junk."""
    if isinstance(value, bool):
        raise InvalidAmount(f"Invalid amount: {value!r}")
    if isinstance(value, int):
        amount = value
    else:
        text = str(value).strip()
        if not text.isdigit():
            raise InvalidAmount(f"Invalid amount: {value!r}")
        amount = int(text)
    if amount < 0:
        raise InvalidAmount(f"Amount cannot be negative: {value!r}")
    if amount == 0 and not allow_zero:
        raise InvalidAmount("Amount must be greater than zero")
    return amount


def format_amount(value: int) -> str:
    return str(int(value))


def add_amounts(a: AmountLike, b: AmountLike) -> str:
    return format_amount(parse_amount(a) + parse_amount(b))


def compute_progress(current: AmountLike, target: AmountLike) -> float:
    """min(current / target * 100, 100), or 0 when there is no target."""
    target_value = parse_amount(target)
    if target_value == 0:
        return 0.0
    ratio = Decimal(parse_amount(current)) * 100 / Decimal(target_value)
    ratio = min(ratio, Decimal(100))
    return float(ratio.quantize(HUNDREDTH, rounding=ROUND_HALF_UP))


def daily_interest(current: AmountLike, annual_rate_percent: float) -> int:
    """floor(current * rate / 100 / 365) in base units."""
    rate = Decimal(str(annual_rate_percent)) / Decimal(100) / Decimal(365)
    interest = Decimal(parse_amount(current)) * rate
    return int(interest.to_integral_value(rounding=ROUND_DOWN))


def proportional_shares(contributions: Mapping[Hashable, AmountLike]) -> Dict[Hashable, float]:
    """
    Percent share of each contributor, rounded to hundredths with the
    largest-remainder method so the shares add up to exactly 100.00 whenever
    the total is positive. All shares are 0 when nothing was contributed.
    """
    values = {key: parse_amount(amount) for key, amount in contributions.items()}
    total = sum(values.values())
    if total == 0:
        return {key: 0.0 for key in values}

    # Work in integer hundredths of a percent
    exact = {key: Decimal(v) * 10000 / Decimal(total) for key, v in values.items()}
    floored = {key: int(x.to_integral_value(rounding=ROUND_DOWN)) for key, x in exact.items()}
    remainder = 10000 - sum(floored.values())
    by_remainder = sorted(exact, key=lambda k: (exact[k] - floored[k], values[k]), reverse=True)
    for key in by_remainder[:remainder]:
        floored[key] += 1
    return {key: hundredths / 100 for key, hundredths in floored.items()}


def shares_are_balanced(shares, total: AmountLike) -> bool:
    if parse_amount(total) == 0:
        return True
    return abs(sum(shares) - 100.0) <= PERCENT_TOLERANCE
