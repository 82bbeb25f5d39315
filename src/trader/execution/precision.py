"""Quantity formatting for the precision-retry ladder.

Venues reject quantities that violate lot-size filters they do not disclose
to the caller. The executor therefore retries the entry at successively
coarser decimal precision while the venue's error text looks like a
precision rejection.
"""

import re
from decimal import ROUND_DOWN, Decimal

#: Default precision ladder, finest first.
DEFAULT_QUANTITY_DECIMALS = (3, 2, 1, 0)

_PRECISION_ERROR = re.compile(r"precision|step|lot|qty|quantity|filter failure", re.IGNORECASE)


def floor_to_decimals(value: Decimal, decimals: int) -> Decimal:
    """Round value down to the given number of decimal places."""
    return value.quantize(Decimal(1).scaleb(-decimals), rounding=ROUND_DOWN)


def format_quantity(value: Decimal, decimals: int) -> str | None:
    """Floor value to decimals and render it without trailing zeros.

    Returns:
        The quantity string (e.g. "1.23", "1"), or None when the floored
        value is not positive or not finite.
    """
    if not value.is_finite():
        return None
    floored = floor_to_decimals(value, decimals)
    if floored <= 0:
        return None
    text = f"{floored:f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def is_precision_error(message: str | None) -> bool:
    """Return True if a venue error message indicates a lot-size/precision rejection."""
    if not message:
        return False
    return _PRECISION_ERROR.search(message) is not None
