"""Tests for BybitClient and venue client construction.

All tests use a mocked ccxt exchange object to avoid real API calls.
"""

import json
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import ccxt.async_support as ccxt_async
import pytest

from trader.config import VenueSettings
from trader.exceptions import ConfigurationError
from trader.exchange.binance_client import BinanceFuturesClient
from trader.exchange.bybit_client import BybitClient
from trader.exchange.factory import create_venue_client, make_client_factory
from trader.exchange.types import FailureKind, VenueCredentials, VenueTarget
from trader.models import Environment, OrderSide, PositionSide, ProductType, Venue
from trader.strategy import RiskTuning

TARGET = VenueTarget(Venue.BYBIT, ProductType.FUTURES, Environment.MAINNET)
CREDENTIALS = VenueCredentials(api_key="bb-key", api_secret="bb-secret")


def _ok(result: dict | None = None) -> dict:
    return {"retCode": 0, "retMsg": "OK", "result": result or {}}


@pytest.fixture
def exchange() -> MagicMock:
    """ccxt bybit stand-in with the signed v5 implicit endpoints the client uses."""
    mock = MagicMock()
    mock.privatePostV5PositionSetLeverage = AsyncMock(return_value=_ok())
    mock.privatePostV5OrderCreate = AsyncMock(return_value=_ok({"orderId": "bb-order-1"}))
    mock.privatePostV5PositionTradingStop = AsyncMock(return_value=_ok())
    mock.privateGetV5AccountWalletBalance = AsyncMock(return_value=_ok({"list": []}))
    mock.privateGetV5PositionList = AsyncMock(return_value=_ok({"list": []}))
    mock.close = AsyncMock()
    return mock


def _client(exchange: MagicMock, position_idx: int = 0) -> BybitClient:
    return BybitClient(
        TARGET, CREDENTIALS, VenueSettings(), exchange=exchange, position_idx=position_idx
    )


def _sent(endpoint: AsyncMock) -> dict:
    return endpoint.await_args.args[0]


class TestOrders:
    @pytest.mark.asyncio
    async def test_market_order_returns_order_id(self, exchange: MagicMock) -> None:
        result = await _client(exchange).place_market_order("BTCUSDT", OrderSide.BUY, "0.01")

        assert result.ok
        assert result.data == "bb-order-1"
        assert _sent(exchange.privatePostV5OrderCreate) == {
            "category": "linear",
            "symbol": "BTCUSDT",
            "side": "Buy",
            "orderType": "Market",
            "qty": "0.01",
        }

    @pytest.mark.asyncio
    async def test_nonzero_ret_code_is_venue_error(self, exchange: MagicMock) -> None:
        exchange.privatePostV5OrderCreate.side_effect = ccxt_async.InsufficientFunds(
            "bybit " + json.dumps({"retCode": 110007, "retMsg": "ab not enough for new order"})
        )
        result = await _client(exchange).place_market_order("BTCUSDT", OrderSide.BUY, "1")
        assert not result.ok
        assert result.failure is FailureKind.VENUE
        assert result.error == "ab not enough for new order"

    @pytest.mark.asyncio
    async def test_network_error(self, exchange: MagicMock) -> None:
        exchange.privateGetV5AccountWalletBalance.side_effect = ccxt_async.NetworkError(
            "bybit GET https://api.bybit.com/v5/account/wallet-balance refused"
        )
        result = await _client(exchange).fetch_balance()
        assert result.failure is FailureKind.TRANSPORT

    @pytest.mark.asyncio
    async def test_reduce_only_flag(self, exchange: MagicMock) -> None:
        await _client(exchange).place_market_order(
            "BTCUSDT", OrderSide.SELL, "0.01", reduce_only=True
        )
        assert _sent(exchange.privatePostV5OrderCreate)["reduceOnly"] is True

    @pytest.mark.asyncio
    async def test_missing_order_id_is_venue_error(self, exchange: MagicMock) -> None:
        exchange.privatePostV5OrderCreate.return_value = _ok()
        result = await _client(exchange).place_market_order("BTCUSDT", OrderSide.BUY, "1")
        assert result.failure is FailureKind.VENUE


class TestProtectiveOrders:
    @pytest.mark.asyncio
    async def test_stop_loss_uses_trading_stop(self, exchange: MagicMock) -> None:
        await _client(exchange, position_idx=1).place_stop_loss(
            "BTCUSDT", OrderSide.SELL, Decimal("49000")
        )
        params = _sent(exchange.privatePostV5PositionTradingStop)
        assert params["stopLoss"] == "49000.00"
        assert params["positionIdx"] == 1
        assert params["slTriggerBy"] == "LastPrice"

    @pytest.mark.parametrize(
        ("close_side", "direction"),
        [(OrderSide.SELL, 1), (OrderSide.BUY, 2)],
    )
    @pytest.mark.asyncio
    async def test_take_profit_trigger_direction(
        self, exchange: MagicMock, close_side: OrderSide, direction: int
    ) -> None:
        await _client(exchange).place_take_profit(
            "BTCUSDT", close_side, Decimal("51500"), "0.005"
        )
        params = _sent(exchange.privatePostV5OrderCreate)
        assert params["triggerDirection"] == direction
        assert params["triggerPrice"] == "51500.00"
        assert params["qty"] == "0.005"
        assert params["reduceOnly"] is True
        assert params["closeOnTrigger"] is True

    @pytest.mark.asyncio
    async def test_trailing_stop_is_absolute_distance(self, exchange: MagicMock) -> None:
        await _client(exchange).place_trailing_stop(
            "BTCUSDT", OrderSide.SELL, Decimal("1"), Decimal("50000")
        )
        params = _sent(exchange.privatePostV5PositionTradingStop)
        # 1% of 50000
        assert params["trailingStop"] == "500.00"
        assert "activePrice" not in params

    @pytest.mark.asyncio
    async def test_set_leverage_sets_both_sides(self, exchange: MagicMock) -> None:
        await _client(exchange).set_leverage("BTCUSDT", 10)
        params = _sent(exchange.privatePostV5PositionSetLeverage)
        assert params["buyLeverage"] == "10"
        assert params["sellLeverage"] == "10"

    @pytest.mark.asyncio
    async def test_unchanged_leverage_is_success(self, exchange: MagicMock) -> None:
        exchange.privatePostV5PositionSetLeverage.side_effect = ccxt_async.BadRequest(
            "bybit " + json.dumps({"retCode": 110043, "retMsg": "leverage not modified"})
        )
        result = await _client(exchange).set_leverage("BTCUSDT", 10)
        assert result.ok


class TestAccountState:
    @pytest.mark.asyncio
    async def test_fetch_balance(self, exchange: MagicMock) -> None:
        exchange.privateGetV5AccountWalletBalance.return_value = _ok(
            {
                "list": [
                    {
                        "coin": [
                            {"coin": "BTC", "equity": "0.1"},
                            {"coin": "USDT", "equity": "2500", "availableToWithdraw": ""},
                        ]
                    }
                ]
            }
        )
        result = await _client(exchange).fetch_balance()
        assert result.ok
        assert result.data.total == Decimal("2500")
        # Empty availableToWithdraw falls back to equity
        assert result.data.available == Decimal("2500")
        assert _sent(exchange.privateGetV5AccountWalletBalance) == {"accountType": "UNIFIED"}

    @pytest.mark.asyncio
    async def test_fetch_position(self, exchange: MagicMock) -> None:
        exchange.privateGetV5PositionList.return_value = _ok(
            {
                "list": [
                    {
                        "symbol": "BTCUSDT",
                        "side": "Buy",
                        "size": "0.02",
                        "markPrice": "50100",
                        "unrealisedPnl": "2",
                        "positionIdx": 0,
                    }
                ]
            }
        )
        result = await _client(exchange).fetch_position("BTCUSDT", PositionSide.LONG)
        assert result.data.size == Decimal("0.02")
        assert result.data.mark_price == Decimal("50100")
        assert result.data.unrealized_pnl == Decimal("2")
        assert result.data.is_open
        assert _sent(exchange.privateGetV5PositionList) == {
            "category": "linear",
            "symbol": "BTCUSDT",
        }

    @pytest.mark.asyncio
    async def test_one_way_row_of_other_side_is_flat(self, exchange: MagicMock) -> None:
        exchange.privateGetV5PositionList.return_value = _ok(
            {"list": [{"symbol": "BTCUSDT", "side": "Buy", "size": "0.02", "positionIdx": 0}]}
        )
        result = await _client(exchange).fetch_position("BTCUSDT", PositionSide.SHORT)
        assert not result.data.is_open

    @pytest.mark.parametrize(
        ("side", "size"),
        [(PositionSide.LONG, Decimal("0.02")), (PositionSide.SHORT, Decimal("0"))],
    )
    @pytest.mark.asyncio
    async def test_hedge_rows_selected_by_position_idx(
        self, exchange: MagicMock, side: PositionSide, size: Decimal
    ) -> None:
        exchange.privateGetV5PositionList.return_value = _ok(
            {
                "list": [
                    {"symbol": "BTCUSDT", "side": "Buy", "size": "0.02", "positionIdx": 1},
                    {"symbol": "BTCUSDT", "side": "", "size": "0", "positionIdx": 2},
                ]
            }
        )
        result = await _client(exchange).fetch_position("BTCUSDT", side)
        assert result.data.size == size


class TestFactory:
    @pytest.mark.asyncio
    async def test_bybit_target_builds_bybit_client(self) -> None:
        client = create_venue_client(
            TARGET, CREDENTIALS, VenueSettings(), risk=RiskTuning(position_idx=1)
        )
        try:
            assert isinstance(client, BybitClient)
            assert isinstance(client.exchange, ccxt_async.bybit)
            assert client.exchange.apiKey == "bb-key"
            assert client.exchange.timeout == 10000
        finally:
            await client.aclose()

    @pytest.mark.asyncio
    async def test_bybit_testnet_uses_sandbox_urls(self) -> None:
        target = VenueTarget(Venue.BYBIT, ProductType.FUTURES, Environment.TESTNET)
        client = create_venue_client(target, CREDENTIALS, VenueSettings())
        try:
            assert "testnet" in json.dumps(client.exchange.urls["api"])
        finally:
            await client.aclose()

    @pytest.mark.asyncio
    async def test_binance_futures_builds_binance_client(self) -> None:
        target = VenueTarget(Venue.BINANCE, ProductType.FUTURES, Environment.TESTNET)
        client = make_client_factory(VenueSettings())(
            target, CREDENTIALS, RiskTuning(position_side="SHORT")
        )
        try:
            assert isinstance(client, BinanceFuturesClient)
        finally:
            await client.aclose()

    def test_binance_spot_is_unsupported(self) -> None:
        target = VenueTarget(Venue.BINANCE, ProductType.SPOT, Environment.TESTNET)
        with pytest.raises(ConfigurationError, match="Unsupported"):
            create_venue_client(target, CREDENTIALS, VenueSettings())
