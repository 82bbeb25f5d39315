"""End-to-end tests for TriggerOrchestrator with a fake venue client."""

import asyncio
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from trader.concurrency import KeyedLocks
from trader.config import AppSettings, ProfitSharingSettings
from trader.data.credentials import RepositoryCredentialStore
from trader.data.repository import InMemoryRepository
from trader.data.store import STRATEGIES, TradingStore
from trader.exceptions import (
    CredentialsNotConfigured,
    InvalidAlertError,
    StrategyNotFound,
    WebhookSecretMismatch,
)
from trader.exchange.types import BookTicker, VenuePosition, VenueResponse
from trader.execution.executor import OrderExecutor
from trader.market_data.gateway import MarketDataGateway
from trader.models import (
    BotStatus,
    Candle,
    Environment,
    OrderSide,
    Position,
    PositionSide,
    ProductType,
    TriggerSource,
    Venue,
    WebhookStatus,
)
from trader.orchestrator import Alert, AlertAction, AlertResult, TriggerOrchestrator
from trader.pnl.ledger import GasFeeLedger
from trader.pnl.profit_sharing import ProfitSharingEngine
from trader.position.reconciler import PositionReconciler
from trader.risk.gate import RiskGate

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)


def _uptrend(count: int = 60) -> list[Candle]:
    """Accelerating uptrend with a volume spike on the last bar (a BUY setup)."""
    candles = []
    for i in range(count):
        close = Decimal("100") + Decimal(i * i) / Decimal("10")
        candles.append(
            Candle(
                timestamp=1_700_000_000_000 + i * 60_000,
                open=close,
                high=close * Decimal("1.001"),
                low=close * Decimal("0.999"),
                close=close,
                volume=Decimal("1000") if i == count - 1 else Decimal("100"),
            )
        )
    return candles


@pytest.fixture
def locks() -> KeyedLocks:
    return KeyedLocks()


@pytest.fixture
async def credentials(repository: InMemoryRepository) -> RepositoryCredentialStore:
    credentials = RepositoryCredentialStore(repository)
    await credentials.add(
        "user-1", Venue.BINANCE, ProductType.FUTURES, Environment.TESTNET, "key", "secret"
    )
    return credentials


@pytest.fixture
def gateway() -> MagicMock:
    gateway = MagicMock(spec=MarketDataGateway)
    gateway.fetch_candles = AsyncMock(return_value=_uptrend())
    gateway.fetch_book_ticker = AsyncMock(return_value=None)
    return gateway


@pytest.fixture
def client_factory(venue_client: MagicMock) -> MagicMock:
    return MagicMock(return_value=venue_client)


@pytest.fixture
def ledger(store: TradingStore, locks: KeyedLocks) -> GasFeeLedger:
    return GasFeeLedger(store, locks)


@pytest.fixture
def reconciler(
    store: TradingStore,
    credentials: RepositoryCredentialStore,
    client_factory: MagicMock,
    ledger: GasFeeLedger,
    locks: KeyedLocks,
) -> PositionReconciler:
    engine = ProfitSharingEngine(store, ledger, ProfitSharingSettings(), locks)
    return PositionReconciler(store, credentials, client_factory, engine, locks)


@pytest.fixture
async def orchestrator(
    mock_settings: AppSettings,
    store: TradingStore,
    credentials: RepositoryCredentialStore,
    client_factory: MagicMock,
    gateway: MagicMock,
    reconciler: PositionReconciler,
    locks: KeyedLocks,
    make_strategy_record,
) -> TriggerOrchestrator:
    await store.add_strategy_record(make_strategy_record())
    return TriggerOrchestrator(
        mock_settings,
        store,
        credentials,
        client_factory,
        gateway,
        RiskGate(store, gateway=gateway, clock=lambda: NOW),
        OrderExecutor(),
        reconciler,
        locks,
        clock=lambda: NOW,
    )


def _buy(**overrides) -> Alert:
    fields = {
        "action": AlertAction.BUY,
        "symbol": "BTCUSDT",
        "price": Decimal("50000"),
        "strategy_id": "strat-1",
        "secret": "s3cret",
        "payload": {"action": "buy", "symbol": "BTCUSDT"},
    }
    fields.update(overrides)
    return Alert(**fields)


async def _open_position(store: TradingStore) -> Position:
    return await store.add_position(
        Position(
            user_id="user-1",
            venue=Venue.BINANCE,
            environment=Environment.TESTNET,
            symbol="BTCUSDT",
            side=PositionSide.LONG,
            size=Decimal("0.002"),
            entry_price=Decimal("50000"),
            strategy_id="strat-1",
        )
    )


class TestAlertResult:
    def test_response_omits_empty_fields(self) -> None:
        assert AlertResult(success=True, message="No position to close").to_response() == {
            "success": True,
            "message": "No position to close",
        }

    def test_response_uses_camel_case_ids(self) -> None:
        body = AlertResult(success=True, order_id="o", trade_id="t").to_response()
        assert body == {"success": True, "orderId": "o", "tradeId": "t"}


class TestHandleAlertEntry:
    @pytest.mark.asyncio
    async def test_buy_alert_executes_and_records(
        self,
        orchestrator: TriggerOrchestrator,
        store: TradingStore,
        venue_client: MagicMock,
    ) -> None:
        result = await orchestrator.handle_alert(_buy())

        assert result.success
        assert result.status is WebhookStatus.EXECUTED
        assert result.order_id == "ord-1"
        assert result.message == "Trade executed successfully"
        venue_client.set_leverage.assert_awaited_once_with("BTCUSDT", 5)
        venue_client.place_market_order.assert_awaited_once_with(
            "BTCUSDT", OrderSide.BUY, "0.002"
        )

        trade = await store.get_trade(result.trade_id)
        assert trade.quantity == Decimal("0.002")
        assert trade.price == Decimal("50000")
        assert trade.triggered_by is TriggerSource.TRADINGVIEW_WEBHOOK
        assert trade.order_id == "ord-1"

        [position] = await store.list_open_positions("user-1")
        assert position.side is PositionSide.LONG
        assert position.entry_price == Decimal("50000")
        assert position.size == Decimal("0.002")
        assert position.leverage == 5
        assert position.stop_loss == Decimal("49000")
        assert position.take_profit == Decimal("51500")

        [log] = await store.list_webhook_logs("strat-1")
        assert log.status is WebhookStatus.EXECUTED
        assert log.payload == {"action": "buy", "symbol": "BTCUSDT", "orderId": "ord-1"}

    @pytest.mark.asyncio
    async def test_sell_alert_opens_short(
        self, orchestrator: TriggerOrchestrator, store: TradingStore
    ) -> None:
        await orchestrator.handle_alert(_buy(action=AlertAction.SELL))
        [position] = await store.list_open_positions("user-1")
        assert position.side is PositionSide.SHORT

    @pytest.mark.asyncio
    async def test_alert_overrides(
        self, orchestrator: TriggerOrchestrator, store: TradingStore, venue_client: MagicMock
    ) -> None:
        result = await orchestrator.handle_alert(
            _buy(
                quantity=Decimal("0.01"),
                leverage=10,
                stop_loss=Decimal("48000"),
                take_profits={1: Decimal("53000")},
            )
        )

        venue_client.set_leverage.assert_awaited_once_with("BTCUSDT", 10)
        venue_client.place_market_order.assert_awaited_once_with(
            "BTCUSDT", OrderSide.BUY, "0.01"
        )
        venue_client.place_stop_loss.assert_awaited_once_with(
            "BTCUSDT", OrderSide.SELL, Decimal("48000")
        )
        position = (await store.list_open_positions("user-1"))[0]
        assert position.stop_loss == Decimal("48000")
        assert position.take_profit == Decimal("53000")
        assert position.leverage == 10
        assert result.success

    @pytest.mark.asyncio
    async def test_missing_price_uses_book_mid(
        self, orchestrator: TriggerOrchestrator, gateway: MagicMock, venue_client: MagicMock
    ) -> None:
        gateway.fetch_book_ticker.return_value = BookTicker(
            bid=Decimal("49900"), ask=Decimal("50100")
        )

        result = await orchestrator.handle_alert(_buy(price=None))

        assert result.success
        venue_client.place_market_order.assert_awaited_once_with(
            "BTCUSDT", OrderSide.BUY, "0.002"
        )

    @pytest.mark.asyncio
    async def test_secret_only_lookup(self, orchestrator: TriggerOrchestrator) -> None:
        result = await orchestrator.handle_alert(_buy(strategy_id=None))
        assert result.success

    @pytest.mark.asyncio
    async def test_risk_rejection_is_logged_without_orders(
        self,
        orchestrator: TriggerOrchestrator,
        store: TradingStore,
        venue_client: MagicMock,
        make_strategy_record,
    ) -> None:
        await store.add_strategy_record(make_strategy_record(id="strat-2", max_positions=1))
        await _open_position(store)

        result = await orchestrator.handle_alert(_buy(strategy_id="strat-2"))

        assert not result.success
        assert result.status is WebhookStatus.REJECTED
        assert result.error == "Max positions reached"
        venue_client.place_market_order.assert_not_awaited()
        [log] = await store.list_webhook_logs("strat-2")
        assert log.status is WebhookStatus.REJECTED
        assert log.error_message == "Max positions reached"

    @pytest.mark.asyncio
    async def test_execution_failure_is_logged(
        self, orchestrator: TriggerOrchestrator, store: TradingStore, venue_client: MagicMock
    ) -> None:
        venue_client.place_market_order.return_value = VenueResponse.venue_error(
            "Margin is insufficient."
        )

        result = await orchestrator.handle_alert(_buy())

        assert not result.success
        assert result.status is WebhookStatus.FAILED
        assert result.error == "Margin is insufficient."
        assert await store.list_trades("user-1") == []
        assert await store.list_open_positions("user-1") == []
        [log] = await store.list_webhook_logs("strat-1")
        assert log.status is WebhookStatus.FAILED

    @pytest.mark.asyncio
    async def test_protective_failure_still_records_entry(
        self, orchestrator: TriggerOrchestrator, store: TradingStore, venue_client: MagicMock
    ) -> None:
        venue_client.place_stop_loss.return_value = VenueResponse.venue_error("Order would trigger")

        result = await orchestrator.handle_alert(_buy())

        assert result.success
        assert result.error == "Order would trigger"
        assert result.to_response()["error"] == "Order would trigger"
        assert len(await store.list_open_positions("user-1")) == 1

    @pytest.mark.asyncio
    async def test_cancelled_alert_still_records_filled_entry(
        self, orchestrator: TriggerOrchestrator, store: TradingStore, venue_client: MagicMock
    ) -> None:
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow_stop_loss(*args) -> VenueResponse:
            started.set()
            await release.wait()
            return VenueResponse.success({})

        venue_client.place_stop_loss.side_effect = slow_stop_loss
        task = asyncio.create_task(orchestrator.handle_alert(_buy()))
        await started.wait()
        task.cancel()
        await asyncio.sleep(0)
        release.set()

        with pytest.raises(asyncio.CancelledError):
            await task

        [trade] = await store.list_trades("user-1")
        assert trade.order_id == "ord-1"
        [position] = await store.list_open_positions("user-1")
        assert position.size == Decimal("0.002")
        assert position.stop_loss == Decimal("49000")


class TestHandleAlertErrors:
    @pytest.mark.parametrize(
        ("overrides", "message"),
        [
            ({"strategy_id": None, "secret": None}, "Either strategy_id or secret is required"),
            ({"symbol": ""}, "Alert symbol is required"),
        ],
    )
    @pytest.mark.asyncio
    async def test_malformed_alert_is_rejected_before_lookup(
        self,
        orchestrator: TriggerOrchestrator,
        venue_client: MagicMock,
        overrides: dict,
        message: str,
    ) -> None:
        with pytest.raises(InvalidAlertError, match=message):
            await orchestrator.handle_alert(_buy(**overrides))
        venue_client.place_market_order.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_strategy(self, orchestrator: TriggerOrchestrator) -> None:
        with pytest.raises(StrategyNotFound, match="Strategy not found or inactive"):
            await orchestrator.handle_alert(_buy(strategy_id="nope"))

    @pytest.mark.asyncio
    async def test_inactive_strategy(
        self, orchestrator: TriggerOrchestrator, store: TradingStore, make_strategy_record
    ) -> None:
        await store.add_strategy_record(make_strategy_record(id="strat-off", is_active=False))
        with pytest.raises(StrategyNotFound):
            await orchestrator.handle_alert(_buy(strategy_id="strat-off"))

    @pytest.mark.asyncio
    async def test_unknown_secret(self, orchestrator: TriggerOrchestrator) -> None:
        with pytest.raises(StrategyNotFound):
            await orchestrator.handle_alert(_buy(strategy_id=None, secret="wrong"))

    @pytest.mark.asyncio
    async def test_secret_mismatch(self, orchestrator: TriggerOrchestrator) -> None:
        with pytest.raises(WebhookSecretMismatch, match="Invalid webhook secret"):
            await orchestrator.handle_alert(_buy(secret="wrong"))

    @pytest.mark.asyncio
    async def test_missing_credentials(
        self, orchestrator: TriggerOrchestrator, store: TradingStore, make_strategy_record
    ) -> None:
        await store.add_strategy_record(make_strategy_record(id="strat-bybit", exchange="bybit"))
        with pytest.raises(CredentialsNotConfigured, match="API keys not configured"):
            await orchestrator.handle_alert(_buy(strategy_id="strat-bybit"))


class TestHandleAlertClose:
    @pytest.mark.asyncio
    async def test_close_without_position(
        self, orchestrator: TriggerOrchestrator, store: TradingStore, venue_client: MagicMock
    ) -> None:
        result = await orchestrator.handle_alert(_buy(action=AlertAction.CLOSE))

        assert result.success
        assert result.status is None
        assert result.message == "No position to close"
        venue_client.close_position.assert_not_awaited()
        assert await store.list_webhook_logs("strat-1") == []

    @pytest.mark.asyncio
    async def test_close_open_position(
        self, orchestrator: TriggerOrchestrator, store: TradingStore, venue_client: MagicMock
    ) -> None:
        position = await _open_position(store)
        venue_client.fetch_position.return_value = VenueResponse.success(
            VenuePosition(
                symbol="BTCUSDT",
                size=Decimal("0.002"),
                mark_price=Decimal("51000"),
                unrealized_pnl=Decimal("2"),
            )
        )

        result = await orchestrator.handle_alert(_buy(action=AlertAction.CLOSE))

        assert result.success
        assert result.message == "Position closed"
        assert result.order_id == "close-1"
        venue_client.close_position.assert_awaited_once_with(
            "BTCUSDT", PositionSide.LONG, "0.002"
        )
        assert not (await store.get_position(position.id)).is_open

        trade = await store.get_trade(result.trade_id)
        assert trade.triggered_by is TriggerSource.MANUAL_CLOSE
        assert trade.side is OrderSide.SELL
        assert trade.realized_pnl == Decimal("2")
        assert trade.order_id == "close-1"
        assert await store.get_settlement(trade.id) is not None

        [log] = await store.list_webhook_logs("strat-1")
        assert log.status is WebhookStatus.EXECUTED

    @pytest.mark.asyncio
    async def test_close_order_failure(
        self, orchestrator: TriggerOrchestrator, store: TradingStore, venue_client: MagicMock
    ) -> None:
        position = await _open_position(store)
        venue_client.fetch_position.return_value = VenueResponse.success(
            VenuePosition(symbol="BTCUSDT", size=Decimal("0.002"))
        )
        venue_client.close_position.return_value = VenueResponse.venue_error("reduce only")

        result = await orchestrator.handle_alert(_buy(action=AlertAction.CLOSE))

        assert not result.success
        assert result.status is WebhookStatus.FAILED
        assert result.error == "reduce only"
        assert (await store.get_position(position.id)).is_open

    @pytest.mark.asyncio
    async def test_already_flat_on_venue_closes_locally(
        self, orchestrator: TriggerOrchestrator, store: TradingStore, venue_client: MagicMock
    ) -> None:
        position = await _open_position(store)

        result = await orchestrator.handle_alert(_buy(action=AlertAction.CLOSE))

        assert result.success
        assert result.order_id is None
        venue_client.close_position.assert_not_awaited()
        assert not (await store.get_position(position.id)).is_open


class TestSignalTick:
    @pytest.fixture
    async def eligible(self, store: TradingStore, ledger: GasFeeLedger) -> None:
        await store.add_bot_status(
            BotStatus(user_id="user-1", environment=Environment.TESTNET, is_running=True)
        )
        await ledger.deposit("user-1", Environment.TESTNET, Decimal("10"))

    @pytest.mark.asyncio
    async def test_executes_generated_signal(
        self,
        eligible: None,
        orchestrator: TriggerOrchestrator,
        store: TradingStore,
        gateway: MagicMock,
    ) -> None:
        result = await orchestrator.run_signal_tick()

        assert result["processed"] == 1
        assert result["mode"] == "direct_execution"
        assert result["summary"] == {
            "executed": 1,
            "totalSignals": 1,
            "timestamp": NOW.isoformat(),
        }
        [item] = result["results"]
        assert item["strategy"] == "BTC momentum"
        assert item["pair"] == "BTCUSDT"
        assert item["executed"] is True
        assert item["signal"]["action"] == "buy"

        trade = await store.get_trade(item["tradeId"])
        assert trade.triggered_by is TriggerSource.AUTO_STRATEGY
        assert trade.side is OrderSide.BUY

        record = await store.get_strategy_record("strat-1")
        assert record["last_signal_at"] == NOW.isoformat()

        [log] = await store.list_webhook_logs("strat-1")
        assert log.status is WebhookStatus.EXECUTED
        assert log.payload["source"] == "auto_strategy_direct"
        assert log.payload["filter"]["provider"] == "engine_only"

        gateway.fetch_candles.assert_awaited_once_with(
            Venue.BINANCE, "BTCUSDT", "1m", True, ProductType.FUTURES, 100
        )

    @pytest.mark.asyncio
    async def test_low_confidence_signal_is_filtered(
        self, eligible: None, orchestrator: TriggerOrchestrator, store: TradingStore
    ) -> None:
        await store.repository.update(
            STRATEGIES, "strat-1", {"strategy_config": {"min_confidence": "0.95"}}
        )

        result = await orchestrator.run_signal_tick()

        [item] = result["results"]
        assert item["executed"] is False
        assert item["reason"] == "Confidence below threshold"
        assert result["summary"]["totalSignals"] == 1
        [log] = await store.list_webhook_logs("strat-1")
        assert log.status is WebhookStatus.FILTERED
        assert await store.list_trades("user-1") == []

    @pytest.mark.asyncio
    async def test_bot_not_running(
        self, orchestrator: TriggerOrchestrator, ledger: GasFeeLedger, venue_client: MagicMock
    ) -> None:
        await ledger.deposit("user-1", Environment.TESTNET, Decimal("10"))
        result = await orchestrator.run_signal_tick()
        assert result["processed"] == 1
        assert result["results"] == []
        venue_client.place_market_order.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_gas_balance(
        self, orchestrator: TriggerOrchestrator, store: TradingStore, gateway: MagicMock
    ) -> None:
        await store.add_bot_status(
            BotStatus(user_id="user-1", environment=Environment.TESTNET, is_running=True)
        )
        result = await orchestrator.run_signal_tick()
        assert result["results"] == []
        gateway.fetch_candles.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_interval_not_elapsed(
        self,
        eligible: None,
        orchestrator: TriggerOrchestrator,
        store: TradingStore,
        gateway: MagicMock,
    ) -> None:
        await store.mark_signal_time("strat-1", NOW - timedelta(seconds=30))
        result = await orchestrator.run_signal_tick()
        assert result["results"] == []
        gateway.fetch_candles.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_too_few_candles(
        self, eligible: None, orchestrator: TriggerOrchestrator, gateway: MagicMock
    ) -> None:
        gateway.fetch_candles.return_value = _uptrend(30)
        result = await orchestrator.run_signal_tick()
        assert result["results"] == []
        assert result["summary"]["totalSignals"] == 0

    @pytest.mark.asyncio
    async def test_webhook_mode_strategies_ignored(
        self, eligible: None, orchestrator: TriggerOrchestrator, store: TradingStore
    ) -> None:
        await store.repository.update(STRATEGIES, "strat-1", {"signal_mode": "webhook"})
        result = await orchestrator.run_signal_tick()
        assert result["processed"] == 0

    @pytest.mark.asyncio
    async def test_invalid_strategy_skipped(
        self,
        eligible: None,
        orchestrator: TriggerOrchestrator,
        store: TradingStore,
        make_strategy_record,
    ) -> None:
        await store.add_strategy_record(make_strategy_record(id="strat-bad", exchange="kraken"))
        result = await orchestrator.run_signal_tick()
        assert result["processed"] == 1

    @pytest.mark.asyncio
    async def test_overlapping_tick_is_skipped(
        self, orchestrator: TriggerOrchestrator, locks: KeyedLocks
    ) -> None:
        async with locks.hold(("tick", "signal")):
            result = await orchestrator.run_signal_tick()
        assert result == {"skipped": True, "reason": "tick_in_progress"}

    @pytest.mark.asyncio
    async def test_busy_strategy_is_skipped(
        self, eligible: None, orchestrator: TriggerOrchestrator, locks: KeyedLocks
    ) -> None:
        async with locks.hold(("strategy", "strat-1")):
            result = await orchestrator.run_signal_tick()
        assert result["results"] == [
            {
                "strategy": "BTC momentum",
                "pair": None,
                "signal": None,
                "executed": False,
                "reason": "tick_in_progress",
            }
        ]
        assert result["summary"]["executed"] == 0


class TestPositionTick:
    @pytest.mark.asyncio
    async def test_delegates_to_reconciler(
        self, orchestrator: TriggerOrchestrator, store: TradingStore
    ) -> None:
        await _open_position(store)
        result = await orchestrator.run_position_tick()
        assert result["monitored"] == 1
        assert result["closed"] == 1

    @pytest.mark.asyncio
    async def test_overlapping_tick_is_skipped(
        self, orchestrator: TriggerOrchestrator, locks: KeyedLocks
    ) -> None:
        async with locks.hold(("tick", "position")):
            result = await orchestrator.run_position_tick()
        assert result == {"skipped": True, "reason": "tick_in_progress"}
