"""Signal analysis: technical indicators, market regime and the signal analyzer."""

from trader.signals.analyzer import analyze_signal
from trader.signals.indicators import MACDResult, average_volume, ema, macd, rsi
from trader.signals.models import (
    IndicatorSnapshot,
    MarketRegime,
    RSIState,
    Signal,
    TrendState,
)
from trader.signals.regime import analyze_regime

__all__ = [
    "IndicatorSnapshot",
    "MACDResult",
    "MarketRegime",
    "RSIState",
    "Signal",
    "TrendState",
    "analyze_regime",
    "analyze_signal",
    "average_volume",
    "ema",
    "macd",
    "rsi",
]
