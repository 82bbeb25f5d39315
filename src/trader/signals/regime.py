"""Market regime detection: trend persistence and ATR-like volatility.

CRITICAL: All computations use Decimal. Never use float.
"""

from decimal import Decimal

from trader.models import Candle
from trader.signals.models import MarketRegime

_SHORT_WINDOW = 20
_LONG_WINDOW = 50
_TRENDING_MOVE_PCT = Decimal("1")
_HUNDRED = Decimal("100")


def _percent_change(current: Decimal, reference: Decimal) -> Decimal:
    if reference == 0:
        return Decimal("0")
    return (current - reference) / reference * _HUNDRED


def _sign(value: Decimal) -> int:
    return (value > 0) - (value < 0)


def analyze_regime(candles: list[Candle]) -> MarketRegime:
    """Compute the market regime for an oldest-first candle window.

    The 20- and 50-candle moves compare the latest close with the close 20
    (respectively 50) candles back; a window shorter than that compares against
    the latest close itself, i.e. a zero move. The market is trending when the
    20-candle move exceeds 1% and has the same sign as the 50-candle move.

    Args:
        candles: Oldest-first candles; must not be empty.

    Returns:
        MarketRegime snapshot.
    """
    closes = [c.close for c in candles]
    current = closes[-1]
    reference_20 = closes[-_SHORT_WINDOW] if len(closes) >= _SHORT_WINDOW else current
    reference_50 = closes[-_LONG_WINDOW] if len(closes) >= _LONG_WINDOW else current

    change_20 = _percent_change(current, reference_20)
    change_50 = _percent_change(current, reference_50)

    recent = candles[-_SHORT_WINDOW:]
    avg_range = sum((c.high - c.low for c in recent), Decimal("0")) / Decimal(len(recent))
    volatility = avg_range / current * _HUNDRED if current != 0 else Decimal("0")

    is_trending = abs(change_20) > _TRENDING_MOVE_PCT and _sign(change_20) == _sign(change_50)

    return MarketRegime(
        price_change_20=change_20,
        price_change_50=change_50,
        volatility=volatility,
        is_trending=is_trending,
    )
