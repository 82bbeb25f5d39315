"""Signal analysis data models.

CRITICAL: All price, volume and confidence values use Decimal.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any

from trader.models import SignalAction


class TrendState(str, Enum):
    """Directional classification of EMA and MACD indicators."""

    BULLISH = "bullish"
    BEARISH = "bearish"
    NEUTRAL = "neutral"


class RSIState(str, Enum):
    OVERSOLD = "oversold"
    OVERBOUGHT = "overbought"
    NEUTRAL = "neutral"


@dataclass(frozen=True)
class MarketRegime:
    """Market-condition snapshot used to filter and boost signals."""

    price_change_20: Decimal  # percent move over the last 20 candles
    price_change_50: Decimal  # percent move over the last 50 candles
    volatility: Decimal  # mean high-low range over 20 candles, percent of price
    is_trending: bool


@dataclass(frozen=True)
class IndicatorSnapshot:
    """Per-indicator classification attached to a signal."""

    ema_trend: TrendState
    rsi_signal: RSIState
    macd_signal: TrendState
    volume_confirmed: bool


@dataclass(frozen=True)
class Signal:
    """Directional trade signal. Logged, never persisted directly."""

    action: SignalAction
    symbol: str
    price: Decimal
    confidence: Decimal  # 0..1
    indicators: IndicatorSnapshot
    rsi_value: Decimal
    current_volume: Decimal
    average_volume: Decimal
    bullish_count: int = 0
    bearish_count: int = 0

    @property
    def is_actionable(self) -> bool:
        return self.action is not SignalAction.NONE

    def summary(self) -> dict[str, Any]:
        """Compact JSON-safe description used in audit payloads and tick results."""
        return {
            "action": self.action.value,
            "symbol": self.symbol,
            "price": str(self.price),
            "confidence": str(self.confidence),
        }
