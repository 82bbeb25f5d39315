"""Per-strategy trading configuration.

Strategy records are stored as loosely-shaped dicts (one per owner strategy).
StrategyConfig.from_record turns such a record into an explicit, fully
defaulted configuration exactly once, so the rest of the pipeline never has
to guess at missing fields.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

from trader.config import RiskSettings, SignalSettings
from trader.exceptions import ConfigurationError
from trader.models import Environment, ProductType, Venue

_MAX_TAKE_PROFIT_LEGS = 3

#: Trailing-stop callback rate bounds accepted by venues, in percent.
TRAILING_CALLBACK_MIN = Decimal("0.1")
TRAILING_CALLBACK_MAX = Decimal("5")


class SizingMode(str, Enum):
    """How the entry quantity is derived."""

    FIXED = "fixed"  # position_size_value is a quote-currency notional
    PERCENT = "percentage"  # position_size_value is a percent of account balance


@dataclass(frozen=True)
class IndicatorParams:
    """Indicator periods and thresholds used by the signal analyzer."""

    ema_short: int = 12
    ema_long: int = 26
    rsi_period: int = 14
    rsi_overbought: Decimal = Decimal("70")
    rsi_oversold: Decimal = Decimal("30")
    macd_fast: int = 12
    macd_slow: int = 26
    macd_signal: int = 9
    volume_multiplier: Decimal = Decimal("1.5")

    def as_dict(self) -> dict[str, Any]:
        return {k: str(v) if isinstance(v, Decimal) else v for k, v in asdict(self).items()}


@dataclass(frozen=True)
class TakeProfitLeg:
    """One enabled take-profit leg."""

    level: int  # 1..3
    percent: Decimal  # trigger offset from entry, in percent
    close_percent: Decimal  # share of the entry quantity closed by this leg, in percent


@dataclass(frozen=True)
class TrailingStop:
    callback_percent: Decimal
    activation_percent: Decimal = Decimal("0")

    @property
    def clamped_callback(self) -> Decimal:
        return min(TRAILING_CALLBACK_MAX, max(TRAILING_CALLBACK_MIN, self.callback_percent))


@dataclass(frozen=True)
class RiskTuning:
    """Optional risk and execution tuning. Zero means "not configured" for caps."""

    max_trades_per_day: int = 0
    max_daily_loss: Decimal = Decimal("0")
    max_consecutive_losses: int = 0
    cooldown_minutes: int = 0
    session_start: str | None = None  # "HH:MM" UTC
    session_end: str | None = None
    min_confidence: Decimal = Decimal("0.8")
    max_spread_percent: Decimal = Decimal("0")
    max_slippage_percent: Decimal = Decimal("0")
    risk_percent: Decimal = Decimal("0")
    require_volume_confirmed: bool = False
    trailing_stop: TrailingStop | None = None
    position_side: str = "BOTH"  # Binance hedge-mode position side
    position_idx: int = 0  # Bybit hedge-mode position index


@dataclass
class StrategyConfig:
    """Fully-resolved trading configuration for one strategy."""

    id: str
    user_id: str
    name: str
    venue: Venue
    product: ProductType
    environment: Environment
    symbols: list[str]
    indicators: IndicatorParams
    sizing_mode: SizingMode
    position_size_value: Decimal
    leverage: int
    stop_loss_percent: Decimal
    take_profits: list[TakeProfitLeg]
    max_positions: int
    risk: RiskTuning = field(default_factory=RiskTuning)
    is_active: bool = True
    signal_mode: str = "auto"
    auto_signal_enabled: bool = True
    auto_signal_interval_minutes: int = 1
    last_signal_at: datetime | None = None
    webhook_secret: str | None = None

    @property
    def is_testnet(self) -> bool:
        return self.environment is Environment.TESTNET

    @property
    def take_profit_1(self) -> TakeProfitLeg | None:
        return self.take_profits[0] if self.take_profits else None

    @classmethod
    def from_record(
        cls,
        record: dict[str, Any],
        signal_defaults: SignalSettings | None = None,
        risk_defaults: RiskSettings | None = None,
    ) -> StrategyConfig:
        """Build a StrategyConfig from a stored strategy record, applying defaults.

        Args:
            record: Stored strategy dict. Optional tuning lives under "strategy_config".
            signal_defaults: Indicator defaults (SIGNAL_ settings).
            risk_defaults: Risk defaults (RISK_ settings).

        Raises:
            ConfigurationError: If venue, product or environment is missing or unknown.
        """
        signal_defaults = signal_defaults or SignalSettings()
        risk_defaults = risk_defaults or RiskSettings()
        tuning = record.get("strategy_config") or {}
        strategy_id = str(record.get("id", ""))

        try:
            venue = Venue(record.get("exchange"))
            product = ProductType(record.get("product", ProductType.FUTURES.value))
            environment = Environment(record.get("environment", Environment.TESTNET.value))
        except ValueError as e:
            raise ConfigurationError(f"Strategy {strategy_id}: {e}") from e

        raw_indicators = record.get("auto_signal_indicators") or {}
        indicators = IndicatorParams(
            ema_short=_int(raw_indicators, "ema_short", signal_defaults.ema_short),
            ema_long=_int(raw_indicators, "ema_long", signal_defaults.ema_long),
            rsi_period=_int(raw_indicators, "rsi_period", signal_defaults.rsi_period),
            rsi_overbought=_dec(raw_indicators, "rsi_overbought", signal_defaults.rsi_overbought),
            rsi_oversold=_dec(raw_indicators, "rsi_oversold", signal_defaults.rsi_oversold),
            macd_fast=_int(raw_indicators, "macd_fast", signal_defaults.macd_fast),
            macd_slow=_int(raw_indicators, "macd_slow", signal_defaults.macd_slow),
            macd_signal=_int(raw_indicators, "macd_signal", signal_defaults.macd_signal),
            volume_multiplier=_dec(
                raw_indicators, "volume_multiplier", signal_defaults.volume_multiplier
            ),
        )

        take_profits: list[TakeProfitLeg] = []
        for n in range(1, _MAX_TAKE_PROFIT_LEGS + 1):
            # Only the first leg is enabled by default
            if not _bool(record, f"use_tp{n}", n == 1):
                continue
            take_profits.append(
                TakeProfitLeg(
                    level=n,
                    percent=_dec(
                        record,
                        f"tp{n}_percent",
                        risk_defaults.default_tp1_percent if n == 1 else Decimal("0"),
                    ),
                    close_percent=_dec(
                        record,
                        f"tp{n}_close_percent",
                        risk_defaults.default_tp1_close_percent if n == 1 else Decimal("0"),
                    ),
                )
            )

        trailing = None
        callback = _dec(tuning, "trailing_stop_callback", Decimal("0"))
        if _bool(tuning, "use_trailing_stop", False) and callback > 0:
            trailing = TrailingStop(
                callback_percent=callback,
                activation_percent=_dec(tuning, "trailing_stop_activation", Decimal("0")),
            )

        min_confidence = _dec(tuning, "min_confidence", risk_defaults.default_min_confidence)
        risk = RiskTuning(
            max_trades_per_day=_int(tuning, "max_trades_per_day", 0),
            max_daily_loss=_dec(tuning, "max_daily_loss", Decimal("0")),
            max_consecutive_losses=_int(tuning, "max_consecutive_losses", 0),
            cooldown_minutes=_int(tuning, "cooldown_minutes", 0),
            session_start=_str(tuning, "session_start"),
            session_end=_str(tuning, "session_end"),
            min_confidence=min(Decimal("1"), max(Decimal("0"), min_confidence)),
            max_spread_percent=_dec(tuning, "max_spread_percent", Decimal("0")),
            max_slippage_percent=_dec(tuning, "max_slippage_percent", Decimal("0")),
            risk_percent=_dec(tuning, "risk_percent", Decimal("0")),
            require_volume_confirmed=_bool(tuning, "require_volume_confirmed", False),
            trailing_stop=trailing,
            position_side=_str(tuning, "position_side") or "BOTH",
            position_idx=_int(tuning, "position_idx", 0),
        )

        try:
            sizing_mode = SizingMode(record.get("position_size_type", SizingMode.FIXED.value))
        except ValueError:
            sizing_mode = SizingMode.PERCENT

        last_signal_at = record.get("last_signal_at")
        if isinstance(last_signal_at, str):
            last_signal_at = datetime.fromisoformat(last_signal_at)

        return cls(
            id=strategy_id,
            user_id=str(record.get("user_id", "")),
            name=str(record.get("name") or strategy_id),
            venue=venue,
            product=product,
            environment=environment,
            symbols=list(record.get("allowed_pairs") or risk_defaults.default_symbols),
            indicators=indicators,
            sizing_mode=sizing_mode,
            position_size_value=_dec(record, "position_size_value", Decimal("0")),
            leverage=_int(record, "default_leverage", risk_defaults.default_leverage),
            stop_loss_percent=_dec(
                record, "stop_loss_percent", risk_defaults.default_stop_loss_percent
            ),
            take_profits=take_profits,
            max_positions=_int(record, "max_positions", risk_defaults.default_max_positions),
            risk=risk,
            is_active=bool(record.get("is_active", False)),
            signal_mode=str(record.get("signal_mode") or "auto"),
            auto_signal_enabled=_bool(record, "auto_signal_enabled", True),
            auto_signal_interval_minutes=_int(
                record, "auto_signal_interval", risk_defaults.default_signal_interval_minutes
            ),
            last_signal_at=last_signal_at,
            webhook_secret=_str(record, "webhook_secret"),
        )


def _dec(source: dict[str, Any], key: str, default: Decimal) -> Decimal:
    value = source.get(key)
    if value is None or isinstance(value, bool):
        return default
    try:
        result = Decimal(str(value))
    except InvalidOperation:
        return default
    return result if result.is_finite() else default


def _int(source: dict[str, Any], key: str, default: int) -> int:
    value = source.get(key)
    if value is None or isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _bool(source: dict[str, Any], key: str, default: bool) -> bool:
    value = source.get(key)
    return value if isinstance(value, bool) else default


def _str(source: dict[str, Any], key: str) -> str | None:
    value = source.get(key)
    return value if isinstance(value, str) and value else None
