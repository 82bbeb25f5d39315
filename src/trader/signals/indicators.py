"""Technical indicators over price and volume series.

Pure functions, no I/O. Every function accepts an oldest-first list and
returns an empty result (never raises) when the series is too short for the
requested period.

CRITICAL: All computations use Decimal. Never use float.
"""

from dataclasses import dataclass, field
from decimal import Decimal

#: Precision limit for intermediate results (12 decimal places).
#: Prevents Decimal division from producing arbitrarily long representations.
_QUANTIZE = Decimal("0.000000000001")

_HUNDRED = Decimal("100")


@dataclass
class MACDResult:
    """MACD line, signal line and histogram (each oldest-first)."""

    macd: list[Decimal] = field(default_factory=list)
    signal: list[Decimal] = field(default_factory=list)
    histogram: list[Decimal] = field(default_factory=list)


def ema(prices: list[Decimal], period: int) -> list[Decimal]:
    """Compute an Exponential Moving Average seeded with a simple average.

    The first value is the mean of the first ``period`` prices; each later value
    follows ``ema_i = (price_i - ema_{i-1}) * 2 / (period + 1) + ema_{i-1}``.

    Args:
        prices: Ordered list of prices (oldest first).
        period: Number of periods for smoothing.

    Returns:
        ``len(prices) - period + 1`` values, or an empty list if there are
        fewer than ``period`` prices.
    """
    if period <= 0 or len(prices) < period:
        return []

    multiplier = Decimal("2") / (Decimal(period) + Decimal("1"))
    values = [(sum(prices[:period], Decimal("0")) / Decimal(period)).quantize(_QUANTIZE)]
    for price in prices[period:]:
        previous = values[-1]
        values.append(((price - previous) * multiplier + previous).quantize(_QUANTIZE))
    return values


def rsi(prices: list[Decimal], period: int = 14) -> list[Decimal]:
    """Compute Wilder's Relative Strength Index.

    Average gain and loss are seeded from the first ``period`` price changes and
    then smoothed with ``avg = (avg * (period - 1) + new) / period``. RSI is 100
    whenever the average loss is zero.

    Returns:
        One value for the seed window plus one per later price, or an empty
        list if there are fewer than ``period + 1`` prices.
    """
    if period <= 0 or len(prices) < period + 1:
        return []

    gains: list[Decimal] = []
    losses: list[Decimal] = []
    for previous, current in zip(prices, prices[1:]):
        change = current - previous
        gains.append(change if change > 0 else Decimal("0"))
        losses.append(-change if change < 0 else Decimal("0"))

    p = Decimal(period)
    avg_gain = sum(gains[:period], Decimal("0")) / p
    avg_loss = sum(losses[:period], Decimal("0")) / p
    values = [_rsi_value(avg_gain, avg_loss)]

    for gain, loss in zip(gains[period:], losses[period:]):
        avg_gain = ((avg_gain * (p - 1) + gain) / p).quantize(_QUANTIZE)
        avg_loss = ((avg_loss * (p - 1) + loss) / p).quantize(_QUANTIZE)
        values.append(_rsi_value(avg_gain, avg_loss))

    return values


def _rsi_value(avg_gain: Decimal, avg_loss: Decimal) -> Decimal:
    if avg_loss == 0:
        return _HUNDRED
    rs = avg_gain / avg_loss
    return (_HUNDRED - _HUNDRED / (Decimal("1") + rs)).quantize(_QUANTIZE)


def macd(prices: list[Decimal], fast: int, slow: int, signal_period: int) -> MACDResult:
    """Compute MACD line, signal line and histogram.

    The fast EMA is longer than the slow one by ``slow - fast`` values, so the
    MACD line pairs ``ema_fast[i + offset]`` with ``ema_slow[i]``. The signal
    line is an EMA of the MACD line; the histogram is aligned to it by
    ``signal_period - 1``.

    Returns:
        MACDResult with empty lists for every stage that lacks data.
    """
    ema_fast = ema(prices, fast)
    ema_slow = ema(prices, slow)
    if not ema_fast or not ema_slow:
        return MACDResult()

    offset = slow - fast
    macd_line = [
        ema_fast[i + offset] - ema_slow[i]
        for i in range(len(ema_fast) - offset)
        if 0 <= i + offset < len(ema_fast) and i < len(ema_slow)
    ]
    if len(macd_line) < signal_period:
        return MACDResult(macd=macd_line)

    signal_line = ema(macd_line, signal_period)
    signal_offset = signal_period - 1
    histogram = [
        macd_line[i] - signal_line[i - signal_offset]
        for i in range(signal_offset, len(macd_line))
    ]
    return MACDResult(macd=macd_line, signal=signal_line, histogram=histogram)


def average_volume(volumes: list[Decimal], period: int = 20) -> Decimal:
    """Mean of the last ``period`` volumes (or all of them if fewer). Zero if empty."""
    if not volumes:
        return Decimal("0")
    window = volumes[-period:]
    return sum(window, Decimal("0")) / Decimal(len(window))
