"""Configuration system using pydantic-settings with environment variable loading."""

from decimal import Decimal
from typing import Literal

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class VenueSettings(BaseSettings):
    """Venue connection settings shared by all venue clients and market data."""

    model_config = SettingsConfigDict(env_prefix="VENUE_")

    request_timeout_seconds: float = 10.0  # hard upper bound for every venue call
    recv_window_ms: int = 5000
    price_decimals: int = 2  # precision of trigger prices sent to venues
    quantity_decimals: list[int] = [3, 2, 1, 0]  # precision-retry ladder, finest first


class SignalSettings(BaseSettings):
    """Candle window and default indicator parameters for the signal analyzer.

    Strategy records that omit indicator parameters fall back to these values
    when the strategy is loaded. All fields configurable via SIGNAL_ prefix.
    """

    model_config = SettingsConfigDict(env_prefix="SIGNAL_")

    candle_interval: str = "1m"
    candle_limit: int = 100
    min_candles: int = 50

    # EMA trend
    ema_short: int = 12
    ema_long: int = 26

    # RSI bands
    rsi_period: int = 14
    rsi_overbought: Decimal = Decimal("70")
    rsi_oversold: Decimal = Decimal("30")

    # MACD
    macd_fast: int = 12
    macd_slow: int = 26
    macd_signal: int = 9

    volume_multiplier: Decimal = Decimal("1.5")


class RiskSettings(BaseSettings):
    """Defaults applied once when a strategy record is loaded."""

    model_config = SettingsConfigDict(env_prefix="RISK_")

    default_min_confidence: Decimal = Decimal("0.8")
    default_symbols: list[str] = ["BTCUSDT", "ETHUSDT"]
    default_max_positions: int = 5
    default_leverage: int = 1
    default_stop_loss_percent: Decimal = Decimal("2")
    default_tp1_percent: Decimal = Decimal("3")
    default_tp1_close_percent: Decimal = Decimal("50")
    default_signal_interval_minutes: int = 1


class ProfitSharingSettings(BaseSettings):
    """Platform fee and referral commission rates (per deployment)."""

    model_config = SettingsConfigDict(env_prefix="PROFIT_")

    service_fee_rate: Decimal = Decimal("0.3")  # 30% of gross profit
    referral_rates: list[Decimal] = [
        Decimal("0.005"),  # level 1
        Decimal("0.003"),  # level 2
        Decimal("0.002"),  # level 3
    ]


class AdvisorySettings(BaseSettings):
    """External language-model signal filter (optional)."""

    model_config = SettingsConfigDict(env_prefix="ADVISORY_")

    enabled: bool = False
    api_key: SecretStr = SecretStr("")
    model: str = "gemini-1.5-flash"
    base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    timeout_seconds: float = 10.0
    unavailable_policy: Literal["fail_open", "fail_closed"] = "fail_open"


class DatabaseSettings(BaseSettings):
    """Repository backend selection."""

    model_config = SettingsConfigDict(env_prefix="DATABASE_")

    backend: Literal["sqlite", "memory"] = "sqlite"
    path: str = "data/trader.db"


class ServerSettings(BaseSettings):
    """HTTP server configuration."""

    model_config = SettingsConfigDict(env_prefix="SERVER_")

    host: str = "0.0.0.0"
    port: int = 8080


class SchedulerSettings(BaseSettings):
    """Periodic tick configuration."""

    model_config = SettingsConfigDict(env_prefix="SCHEDULER_")

    enabled: bool = True
    signal_interval_seconds: int = 60
    monitor_interval_seconds: int = 60


class AppSettings(BaseSettings):
    """Root application settings, composing all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    log_level: str = "INFO"
    log_format: str = "console"  # "json" in production
    venue: VenueSettings = VenueSettings()
    signal: SignalSettings = SignalSettings()
    risk: RiskSettings = RiskSettings()
    profit: ProfitSharingSettings = ProfitSharingSettings()
    advisory: AdvisorySettings = AdvisorySettings()
    database: DatabaseSettings = DatabaseSettings()
    server: ServerSettings = ServerSettings()
    scheduler: SchedulerSettings = SchedulerSettings()
