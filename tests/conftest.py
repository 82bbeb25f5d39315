"""Shared test fixtures for the signal-to-settlement trader."""

from collections.abc import Callable
from decimal import Decimal
from typing import Any
from unittest.mock import MagicMock

import pytest

from trader.config import AppSettings, DatabaseSettings, SchedulerSettings
from trader.data.repository import InMemoryRepository
from trader.data.store import TradingStore
from trader.exchange.client import VenueClient
from trader.exchange.types import AccountBalance, VenuePosition, VenueResponse
from trader.strategy import StrategyConfig


@pytest.fixture
def mock_settings() -> AppSettings:
    """Return AppSettings with an in-memory backend and the scheduler off."""
    return AppSettings(
        log_level="DEBUG",
        database=DatabaseSettings(backend="memory"),
        scheduler=SchedulerSettings(enabled=False),
    )


@pytest.fixture
def repository() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture
def store(repository: InMemoryRepository) -> TradingStore:
    return TradingStore(repository)


@pytest.fixture
def make_strategy_record() -> Callable[..., dict[str, Any]]:
    """Factory for stored strategy records (Binance futures testnet, fixed $100)."""

    def factory(**overrides: Any) -> dict[str, Any]:
        record: dict[str, Any] = {
            "id": "strat-1",
            "user_id": "user-1",
            "name": "BTC momentum",
            "exchange": "binance",
            "product": "futures",
            "environment": "testnet",
            "is_active": True,
            "allowed_pairs": ["BTCUSDT"],
            "position_size_type": "fixed",
            "position_size_value": "100",
            "default_leverage": 5,
            "stop_loss_percent": "2",
            "use_tp1": True,
            "tp1_percent": "3",
            "tp1_close_percent": "50",
            "max_positions": 5,
            "signal_mode": "auto",
            "auto_signal_enabled": True,
            "auto_signal_interval": 1,
            "webhook_secret": "s3cret",
            "strategy_config": {},
        }
        record.update(overrides)
        return record

    return factory


@pytest.fixture
def make_strategy(
    make_strategy_record: Callable[..., dict[str, Any]],
) -> Callable[..., StrategyConfig]:
    """Factory for loaded StrategyConfig objects."""

    def factory(**overrides: Any) -> StrategyConfig:
        return StrategyConfig.from_record(make_strategy_record(**overrides))

    return factory


@pytest.fixture
def venue_client() -> MagicMock:
    """VenueClient mock whose calls all succeed; usable with ``async with``."""
    client = MagicMock(spec=VenueClient)
    client.__aenter__.return_value = client
    client.__aexit__.return_value = False
    client.set_leverage.return_value = VenueResponse.success({})
    client.place_market_order.return_value = VenueResponse.success("ord-1")
    client.place_stop_loss.return_value = VenueResponse.success({})
    client.place_take_profit.return_value = VenueResponse.success({})
    client.place_trailing_stop.return_value = VenueResponse.success({})
    client.close_position.return_value = VenueResponse.success("close-1")
    client.fetch_balance.return_value = VenueResponse.success(
        AccountBalance(available=Decimal("1000"), total=Decimal("1000"))
    )
    client.fetch_position.return_value = VenueResponse.success(
        VenuePosition(symbol="BTCUSDT", size=Decimal("0"))
    )
    return client
