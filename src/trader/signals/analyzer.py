"""Signal analyzer combining indicators and a market-regime filter.

The analyzer scores four independent confirmations for each direction:
1. EMA trend (golden/death cross, falling back to EMA ordering)
2. RSI state against oversold/overbought bands (neutral RSI counts when the
   trend agrees)
3. MACD histogram (zero cross, falling back to sign)
4. Volume spike over the 20-candle average

A direction with at least three confirmations produces a signal with
confidence = confirmations / 4. The regime filter then drops signals in
choppy or very volatile markets unless all four confirmations agree, and
boosts confidence by 10% (capped at 1) in calm trending markets.

Graceful degradation: too little data yields a neutral no-action signal.

CRITICAL: All computations use Decimal. Never use float for signal scores.
"""

from decimal import Decimal

from trader.logging import get_logger
from trader.models import Candle, SignalAction
from trader.signals.indicators import average_volume, ema, macd, rsi
from trader.signals.models import IndicatorSnapshot, RSIState, Signal, TrendState
from trader.signals.regime import analyze_regime
from trader.strategy import IndicatorParams

logger = get_logger(__name__)

#: The loosest RSI bands a strategy may use; configs can only tighten them.
_RSI_OVERSOLD_CEILING = Decimal("30")
_RSI_OVERBOUGHT_FLOOR = Decimal("70")

#: Minimum volume spike multiple required for confirmation.
_MIN_VOLUME_MULTIPLE = Decimal("2.0")
_VOLUME_MULTIPLIER_THRESHOLD = Decimal("1.5")
_VOLUME_AVERAGE_PERIOD = 20

_CONFIRMATIONS = 4
_MIN_CONFIRMATIONS = 3

_MAX_VOLATILITY_PCT = Decimal("5")
_CALM_VOLATILITY_PCT = Decimal("3")
_CONFIDENCE_BOOST = Decimal("1.1")

_NEUTRAL_RSI = Decimal("50")


def _classify_crossover(
    previous_a: Decimal, current_a: Decimal, previous_b: Decimal, current_b: Decimal
) -> TrendState:
    """Classify series a relative to series b: cross first, then ordering."""
    if previous_a < previous_b and current_a > current_b:
        return TrendState.BULLISH
    if previous_a > previous_b and current_a < current_b:
        return TrendState.BEARISH
    if current_a > current_b:
        return TrendState.BULLISH
    if current_a < current_b:
        return TrendState.BEARISH
    return TrendState.NEUTRAL


def _volume_multiple(configured: Decimal) -> Decimal:
    if configured >= _VOLUME_MULTIPLIER_THRESHOLD:
        return max(_MIN_VOLUME_MULTIPLE, configured)
    return _MIN_VOLUME_MULTIPLE


def analyze_signal(candles: list[Candle], params: IndicatorParams, symbol: str) -> Signal:
    """Derive a directional signal from an oldest-first candle window.

    Args:
        candles: Oldest-first candles (callers normally supply 50 or more).
        params: Indicator periods and thresholds.
        symbol: Symbol the candles belong to.

    Returns:
        Signal with action, confidence and per-indicator classification.
    """
    if not candles:
        return _neutral_signal(symbol, Decimal("0"), Decimal("0"), Decimal("0"))

    closes = [c.close for c in candles]
    volumes = [c.volume for c in candles]
    price = closes[-1]
    current_volume = volumes[-1]
    avg_volume = average_volume(volumes, _VOLUME_AVERAGE_PERIOD)

    ema_short = ema(closes, params.ema_short)
    ema_long = ema(closes, params.ema_long)
    if len(ema_short) < 2 or len(ema_long) < 2:
        return _neutral_signal(symbol, price, current_volume, avg_volume)

    regime = analyze_regime(candles)

    ema_trend = _classify_crossover(ema_short[-2], ema_short[-1], ema_long[-2], ema_long[-1])

    rsi_values = rsi(closes, params.rsi_period)
    rsi_value = rsi_values[-1] if rsi_values else _NEUTRAL_RSI
    oversold = min(params.rsi_oversold, _RSI_OVERSOLD_CEILING)
    overbought = max(params.rsi_overbought, _RSI_OVERBOUGHT_FLOOR)
    if rsi_value < oversold:
        rsi_signal = RSIState.OVERSOLD
    elif rsi_value > overbought:
        rsi_signal = RSIState.OVERBOUGHT
    else:
        rsi_signal = RSIState.NEUTRAL

    histogram = macd(closes, params.macd_fast, params.macd_slow, params.macd_signal).histogram
    current_hist = histogram[-1] if histogram else Decimal("0")
    previous_hist = histogram[-2] if len(histogram) >= 2 else Decimal("0")
    zero = Decimal("0")
    macd_signal = _classify_crossover(previous_hist, current_hist, zero, zero)

    volume_confirmed = current_volume > avg_volume * _volume_multiple(params.volume_multiplier)

    bullish_count = sum(
        [
            ema_trend is TrendState.BULLISH,
            rsi_signal is RSIState.OVERSOLD
            or (rsi_signal is RSIState.NEUTRAL and ema_trend is TrendState.BULLISH),
            macd_signal is TrendState.BULLISH,
            volume_confirmed,
        ]
    )
    bearish_count = sum(
        [
            ema_trend is TrendState.BEARISH,
            rsi_signal is RSIState.OVERBOUGHT
            or (rsi_signal is RSIState.NEUTRAL and ema_trend is TrendState.BEARISH),
            macd_signal is TrendState.BEARISH,
            volume_confirmed,
        ]
    )

    action = SignalAction.NONE
    confidence = Decimal("0")
    if bullish_count >= _MIN_CONFIRMATIONS:
        action = SignalAction.BUY
        confidence = Decimal(bullish_count) / Decimal(_CONFIRMATIONS)
    elif bearish_count >= _MIN_CONFIRMATIONS:
        action = SignalAction.SELL
        confidence = Decimal(bearish_count) / Decimal(_CONFIRMATIONS)

    unanimous = max(bullish_count, bearish_count) >= _CONFIRMATIONS
    if action is not SignalAction.NONE and not unanimous:
        if not regime.is_trending or regime.volatility > _MAX_VOLATILITY_PCT:
            action = SignalAction.NONE
            confidence = Decimal("0")

    if (
        action is not SignalAction.NONE
        and regime.is_trending
        and regime.volatility < _CALM_VOLATILITY_PCT
    ):
        confidence = min(Decimal("1"), confidence * _CONFIDENCE_BOOST)

    signal = Signal(
        action=action,
        symbol=symbol,
        price=price,
        confidence=confidence,
        indicators=IndicatorSnapshot(
            ema_trend=ema_trend,
            rsi_signal=rsi_signal,
            macd_signal=macd_signal,
            volume_confirmed=volume_confirmed,
        ),
        rsi_value=rsi_value,
        current_volume=current_volume,
        average_volume=avg_volume,
        bullish_count=bullish_count,
        bearish_count=bearish_count,
    )

    logger.debug(
        "signal_analyzed",
        symbol=symbol,
        action=action.value,
        confidence=str(confidence),
        ema_trend=ema_trend.value,
        rsi=str(rsi_value),
        macd=macd_signal.value,
        volume_confirmed=volume_confirmed,
        trending=regime.is_trending,
        volatility=str(regime.volatility),
    )
    return signal


def _neutral_signal(
    symbol: str, price: Decimal, current_volume: Decimal, avg_volume: Decimal
) -> Signal:
    return Signal(
        action=SignalAction.NONE,
        symbol=symbol,
        price=price,
        confidence=Decimal("0"),
        indicators=IndicatorSnapshot(
            ema_trend=TrendState.NEUTRAL,
            rsi_signal=RSIState.NEUTRAL,
            macd_signal=TrendState.NEUTRAL,
            volume_confirmed=False,
        ),
        rsi_value=_NEUTRAL_RSI,
        current_volume=current_volume,
        average_volume=avg_volume,
    )
