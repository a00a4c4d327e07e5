"""Decimal-odds helpers used by every price check.

Every function here is **pure**: no I/O, no logging, no side effects.

Prices are decimal (European) multipliers: the total returned per unit
staked, stake included.  A winning 40-coin wager at 2.0 credits 80.
"""

from __future__ import annotations

import math
from typing import Any, Optional, Final

#: Coin amounts are stored with two decimal places.
COIN_PRECISION: Final[int] = 2


def as_positive_finite(value: Any) -> Optional[float]:
    """Coerce ``value`` to a positive finite float, or return None.

    Accepts ints, floats and numeric strings (the feed and HTTP payloads
    deliver both).  Booleans are rejected even though they are ints.

    Examples::

        as_positive_finite("2.5")  → 2.5
        as_positive_finite(0)      → None
        as_positive_finite("nan")  → None
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number) or number <= 0:
        return None
    return number


def as_finite(value: Any) -> Optional[float]:
    """Coerce ``value`` to a finite float (any sign), or return None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def payout(stake: float, decimal_odds: float) -> float:
    """Total credited on a win: ``stake * odds`` rounded to coin precision.

    >>> payout(40, 2.0)
    80.0
    """
    return round(stake * decimal_odds, COIN_PRECISION)


def best_price(current: Optional[float], candidate: Optional[float]) -> Optional[float]:
    """Running maximum that treats None as "no quote yet"."""
    if candidate is None:
        return current
    if current is None:
        return candidate
    return max(current, candidate)
