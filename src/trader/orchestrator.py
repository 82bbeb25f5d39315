"""Trigger orchestrator -- sequences the signal-to-settlement pipeline.

Three entry points:
  - handle_alert: one inbound alert executed immediately against its strategy
  - run_signal_tick: generate and execute signals for every eligible strategy
  - run_position_tick: reconcile all open positions and settle realized profit

Serialization policy:
  - Each tick type runs under its own lock; an overlapping invocation of the
    same tick returns immediately with skipped=True.
  - One in-flight unit of work per strategy: the signal tick skips a strategy
    whose lock is held (reason "tick_in_progress"), alerts wait for it.
  - Settlement and balance mutations hold per-trade and per-balance locks
    (see ProfitSharingEngine and GasFeeLedger).

Every generated actionable signal and every alert leaves one WebhookLog row.
A failure in one unit of work (one symbol of one strategy) is logged and the
tick moves on.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any

from trader.concurrency import KeyedLocks
from trader.config import AppSettings
from trader.exceptions import (
    ConfigurationError,
    CredentialsNotConfigured,
    InvalidAlertError,
    StrategyNotFound,
    WebhookSecretMismatch,
)
from trader.exchange.types import VenuePosition, VenueTarget
from trader.execution.executor import (
    EntryFill,
    EntryRecorder,
    ExecutionRequest,
    ExecutionResult,
    OrderExecutor,
)
from trader.logging import get_logger, unit_context
from trader.models import (
    OrderSide,
    Position,
    PositionSide,
    SignalAction,
    Trade,
    TradeStatus,
    TriggerSource,
    WebhookLog,
    WebhookStatus,
    utc_now,
)
from trader.risk.gate import RiskDecision, RiskGate
from trader.signals.analyzer import analyze_signal
from trader.strategy import StrategyConfig

if TYPE_CHECKING:
    from trader.data.credentials import CredentialStore
    from trader.data.store import TradingStore
    from trader.exchange.client import VenueClient
    from trader.exchange.factory import VenueClientFactory
    from trader.exchange.types import VenueCredentials
    from trader.market_data.gateway import MarketDataGateway
    from trader.position.reconciler import PositionReconciler
    from trader.signals.models import Signal

logger = get_logger(__name__)

_SIGNAL_TICK = ("tick", "signal")
_POSITION_TICK = ("tick", "position")


class AlertAction(str, Enum):
    BUY = "buy"
    SELL = "sell"
    CLOSE = "close"


@dataclass
class Alert:
    """Validated inbound alert. Prices for sl/tp legs are absolute."""

    action: AlertAction
    symbol: str
    price: Decimal | None = None
    quantity: Decimal | None = None
    leverage: int | None = None
    stop_loss: Decimal | None = None
    take_profits: dict[int, Decimal] = field(default_factory=dict)
    strategy_id: str | None = None
    secret: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)  # audit copy, secret removed


@dataclass
class AlertResult:
    """Outcome of handle_alert.

    status is the recorded audit status; None when nothing was logged
    (e.g. close with no open position).
    """

    success: bool
    status: WebhookStatus | None = None
    order_id: str | None = None
    trade_id: str | None = None
    error: str | None = None
    message: str | None = None

    def to_response(self) -> dict[str, Any]:
        body: dict[str, Any] = {"success": self.success}
        if self.order_id is not None:
            body["orderId"] = self.order_id
        if self.trade_id is not None:
            body["tradeId"] = self.trade_id
        if self.error:
            body["error"] = self.error
        if self.message:
            body["message"] = self.message
        return body


def _plain(value: Decimal) -> str:
    return format(value.normalize(), "f")


class TriggerOrchestrator:
    """Entry point for alerts and periodic ticks.

    Args:
        settings: Application settings (signal window, strategy defaults).
        store: Trading store.
        credentials: Venue credential store.
        client_factory: Builds venue clients.
        gateway: Public market data.
        gate: Risk gate.
        executor: Order executor.
        reconciler: Position reconciler used by the position tick and by
            close alerts.
        locks: Keyed locks shared with the settlement components.
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        settings: AppSettings,
        store: TradingStore,
        credentials: CredentialStore,
        client_factory: VenueClientFactory,
        gateway: MarketDataGateway,
        gate: RiskGate,
        executor: OrderExecutor,
        reconciler: PositionReconciler,
        locks: KeyedLocks | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._settings = settings
        self._store = store
        self._credentials = credentials
        self._client_factory = client_factory
        self._gateway = gateway
        self._gate = gate
        self._executor = executor
        self._reconciler = reconciler
        self._locks = locks or KeyedLocks()
        self._clock = clock

    def _load_strategy(self, record: dict[str, Any]) -> StrategyConfig:
        return StrategyConfig.from_record(record, self._settings.signal, self._settings.risk)

    async def _credentials_for(self, strategy: StrategyConfig) -> VenueCredentials | None:
        return await self._credentials.get(
            strategy.user_id, strategy.venue, strategy.product, strategy.environment
        )

    def _client_for(self, strategy: StrategyConfig, credentials: VenueCredentials) -> VenueClient:
        target = VenueTarget(strategy.venue, strategy.product, strategy.environment)
        return self._client_factory(target, credentials, strategy.risk)

    async def _log(
        self,
        strategy: StrategyConfig,
        status: WebhookStatus,
        payload: dict[str, Any],
        error: str | None = None,
    ) -> None:
        await self._store.add_webhook_log(
            WebhookLog(
                strategy_id=strategy.id,
                user_id=strategy.user_id,
                status=status,
                payload=payload,
                error_message=error,
            )
        )

    def _entry_recorder(
        self,
        strategy: StrategyConfig,
        symbol: str,
        side: OrderSide,
        price: Decimal,
        trigger: TriggerSource,
    ) -> EntryRecorder:
        """Build the on_filled callback that records a filled entry.

        The Trade and its open Position are written once the protective legs
        are in place, and the trade id is stored on the ExecutionResult.
        """

        async def record(fill: EntryFill, result: ExecutionResult) -> None:
            trade, _ = await self._record_entry(
                strategy, symbol, side, price, fill, result, trigger
            )
            result.trade_id = trade.id

        return record

    async def _record_entry(
        self,
        strategy: StrategyConfig,
        symbol: str,
        side: OrderSide,
        price: Decimal,
        fill: EntryFill,
        result: ExecutionResult,
        trigger: TriggerSource,
    ) -> tuple[Trade, Position]:
        trade = await self._store.add_trade(
            Trade(
                user_id=strategy.user_id,
                venue=strategy.venue,
                environment=strategy.environment,
                symbol=symbol,
                side=side,
                price=price,
                quantity=fill.quantity,
                status=TradeStatus.FILLED,
                triggered_by=trigger,
                strategy_id=strategy.id,
                order_id=fill.order_id,
            )
        )
        position = await self._store.add_position(
            Position(
                user_id=strategy.user_id,
                venue=strategy.venue,
                environment=strategy.environment,
                symbol=symbol,
                side=PositionSide.LONG if side is OrderSide.BUY else PositionSide.SHORT,
                size=fill.quantity,
                entry_price=price,
                leverage=result.leverage or strategy.leverage,
                strategy_id=strategy.id,
                current_price=price,
                stop_loss=result.stop_loss_price,
                take_profit=result.take_profit_price,
            )
        )
        return trade, position

    # ──────────────────────────────────────────────
    # Alerts
    # ──────────────────────────────────────────────

    async def _resolve_alert_strategy(self, alert: Alert) -> dict[str, Any]:
        if not alert.symbol:
            raise InvalidAlertError("Alert symbol is required")
        if not alert.strategy_id and not alert.secret:
            raise InvalidAlertError("Either strategy_id or secret is required")
        record = None
        if alert.strategy_id:
            record = await self._store.get_strategy_record(alert.strategy_id)
        elif alert.secret:
            record = await self._store.find_strategy_by_secret(alert.secret)
        if record is None or not record.get("is_active"):
            raise StrategyNotFound("Strategy not found or inactive")
        if alert.secret and record.get("webhook_secret") != alert.secret:
            raise WebhookSecretMismatch("Invalid webhook secret")
        return record

    async def handle_alert(self, alert: Alert) -> AlertResult:
        """Execute one alert against its strategy.

        Raises:
            InvalidAlertError: No symbol, or neither strategy_id nor secret.
            StrategyNotFound: Unknown or inactive strategy.
            WebhookSecretMismatch: Secret does not match the strategy.
            ConfigurationError: Unusable strategy, missing credentials
                (CredentialsNotConfigured) or unsupported venue/product.
        """
        record = await self._resolve_alert_strategy(alert)
        strategy = self._load_strategy(record)
        credentials = await self._credentials_for(strategy)
        if credentials is None:
            raise CredentialsNotConfigured("API keys not configured")

        log = logger.bind(strategy_id=strategy.id, symbol=alert.symbol, action=alert.action.value)
        log.info("alert_received")

        context = unit_context(
            strategy_id=strategy.id,
            symbol=alert.symbol,
            venue=strategy.venue.value,
            trigger=TriggerSource.TRADINGVIEW_WEBHOOK.value,
        )
        async with self._locks.hold(("strategy", strategy.id)):
            async with self._client_for(strategy, credentials) as client:
                with context:
                    if alert.action is AlertAction.CLOSE:
                        return await self._close_from_alert(strategy, alert, client)
                    return await self._enter_from_alert(strategy, alert, client)

    async def _enter_from_alert(
        self, strategy: StrategyConfig, alert: Alert, client: VenueClient
    ) -> AlertResult:
        decision = await self._gate.admit(strategy, TriggerSource.TRADINGVIEW_WEBHOOK)
        if decision.approved:
            allowed, reason = await self._gate.check_market(strategy, alert.symbol, alert.price)
            if not allowed:
                decision = RiskDecision.reject(reason)
        if not decision.approved:
            await self._log(strategy, WebhookStatus.REJECTED, alert.payload, decision.reason)
            return AlertResult(
                success=False, status=WebhookStatus.REJECTED, error=decision.reason
            )

        price = alert.price
        if price is None or price <= 0:
            book = await self._gateway.fetch_book_ticker(
                strategy.venue, strategy.product, alert.symbol, strategy.is_testnet
            )
            price = book.mid if book is not None else Decimal("0")

        side = OrderSide.BUY if alert.action is AlertAction.BUY else OrderSide.SELL
        request = ExecutionRequest(
            symbol=alert.symbol,
            side=side,
            price=price,
            quantity=alert.quantity,
            leverage=alert.leverage,
            stop_loss_price=alert.stop_loss,
            take_profit_prices=dict(alert.take_profits),
        )
        recorder = self._entry_recorder(
            strategy, alert.symbol, side, price, TriggerSource.TRADINGVIEW_WEBHOOK
        )
        result = await self._executor.execute(strategy, request, client, on_filled=recorder)
        if not result.success:
            error = result.error or "Trade execution failed"
            await self._log(strategy, WebhookStatus.FAILED, alert.payload, error)
            return AlertResult(success=False, status=WebhookStatus.FAILED, error=error)
        await self._log(
            strategy,
            WebhookStatus.EXECUTED,
            {**alert.payload, "orderId": result.order_id},
            result.error,
        )
        logger.info(
            "alert_executed",
            strategy_id=strategy.id,
            symbol=alert.symbol,
            side=side.value,
            order_id=result.order_id,
            trade_id=result.trade_id,
            quantity=str(result.quantity),
        )
        return AlertResult(
            success=True,
            status=WebhookStatus.EXECUTED,
            order_id=result.order_id,
            trade_id=result.trade_id,
            error=result.error,
            message="Trade executed successfully",
        )

    async def _close_from_alert(
        self, strategy: StrategyConfig, alert: Alert, client: VenueClient
    ) -> AlertResult:
        position = await self._store.find_open_position(
            strategy.user_id, alert.symbol, strategy.venue, strategy.environment
        )
        if position is None:
            return AlertResult(success=True, message="No position to close")

        state = await client.fetch_position(alert.symbol, position.side)
        if state.ok:
            venue_position: VenuePosition = state.data
        else:
            venue_position = VenuePosition(
                symbol=position.symbol,
                size=position.size,
                mark_price=position.current_price or Decimal("0"),
                unrealized_pnl=position.unrealized_pnl,
            )

        order_id = None
        if venue_position.is_open:
            order = await client.close_position(
                alert.symbol, position.side, _plain(venue_position.size)
            )
            if not order.ok:
                error = order.error or "Failed to close position"
                await self._log(strategy, WebhookStatus.FAILED, alert.payload, error)
                return AlertResult(success=False, status=WebhookStatus.FAILED, error=error)
            order_id = str(order.data)

        item = await self._reconciler.close_position(
            position,
            venue_position,
            trigger=TriggerSource.MANUAL_CLOSE,
            order_id=order_id,
        )
        trade_id = item["trade_id"] if item is not None else None
        await self._log(
            strategy, WebhookStatus.EXECUTED, {**alert.payload, "orderId": order_id}
        )
        return AlertResult(
            success=True,
            status=WebhookStatus.EXECUTED,
            order_id=order_id,
            trade_id=trade_id,
            message="Position closed",
        )

    # ──────────────────────────────────────────────
    # Signal tick
    # ──────────────────────────────────────────────

    async def _is_eligible(self, strategy: StrategyConfig, now: datetime) -> bool:
        if strategy.last_signal_at is not None:
            wait = timedelta(minutes=strategy.auto_signal_interval_minutes)
            if now - strategy.last_signal_at < wait:
                logger.debug("strategy_deferred", strategy_id=strategy.id)
                return False
        if not await self._store.is_bot_running(
            strategy.user_id, strategy.environment, strategy.venue
        ):
            logger.info("bot_not_running", strategy_id=strategy.id)
            return False
        if await self._store.gas_balance_amount(strategy.user_id, strategy.environment) <= 0:
            logger.info("insufficient_gas_balance", strategy_id=strategy.id)
            return False
        return True

    async def run_signal_tick(self) -> dict[str, Any]:
        """Generate and execute signals for every eligible strategy."""
        if self._locks.is_held(_SIGNAL_TICK):
            logger.info("signal_tick_skipped")
            return {"skipped": True, "reason": "tick_in_progress"}

        async with self._locks.hold(_SIGNAL_TICK):
            now = self._clock()
            results: list[dict[str, Any]] = []
            strategies: list[StrategyConfig] = []
            for record in await self._store.list_active_strategy_records():
                try:
                    strategy = self._load_strategy(record)
                except ConfigurationError as e:
                    logger.warning(
                        "strategy_config_invalid", strategy_id=record.get("id"), error=str(e)
                    )
                    continue
                if strategy.signal_mode == "auto" and strategy.auto_signal_enabled:
                    strategies.append(strategy)

            for strategy in strategies:
                if self._locks.is_held(("strategy", strategy.id)):
                    results.append(
                        {
                            "strategy": strategy.name,
                            "pair": None,
                            "signal": None,
                            "executed": False,
                            "reason": "tick_in_progress",
                        }
                    )
                    continue
                async with self._locks.hold(("strategy", strategy.id)):
                    try:
                        results.extend(await self._run_strategy(strategy, now))
                    except Exception as e:
                        logger.error(
                            "strategy_tick_failed",
                            strategy_id=strategy.id,
                            error=str(e),
                            exc_info=True,
                        )

            executed = sum(1 for r in results if r["executed"])
            total_signals = sum(1 for r in results if r["signal"] is not None)
            timestamp = self._clock().isoformat()
            logger.info(
                "signal_tick_complete",
                processed=len(strategies),
                executed=executed,
                total_signals=total_signals,
            )
            return {
                "processed": len(strategies),
                "results": results,
                "summary": {
                    "executed": executed,
                    "totalSignals": total_signals,
                    "timestamp": timestamp,
                },
                "timestamp": timestamp,
                "mode": "direct_execution",
            }

    async def _run_strategy(self, strategy: StrategyConfig, now: datetime) -> list[dict[str, Any]]:
        if not await self._is_eligible(strategy, now):
            return []
        credentials = await self._credentials_for(strategy)
        if credentials is None:
            logger.warning("credentials_missing", strategy_id=strategy.id)
            return []
        admission = await self._gate.admit(strategy, TriggerSource.AUTO_STRATEGY, now)
        if not admission.approved:
            return []

        client = self._client_for(strategy, credentials)
        results: list[dict[str, Any]] = []
        async with client:
            for symbol in strategy.symbols:
                try:
                    with unit_context(
                        strategy_id=strategy.id,
                        symbol=symbol,
                        venue=strategy.venue.value,
                        trigger=TriggerSource.AUTO_STRATEGY.value,
                    ):
                        item = await self._run_symbol(strategy, symbol, client)
                except Exception as e:
                    logger.error(
                        "symbol_tick_failed",
                        strategy_id=strategy.id,
                        symbol=symbol,
                        error=str(e),
                        exc_info=True,
                    )
                    continue
                if item is not None:
                    results.append(item)
        return results

    async def _run_symbol(
        self, strategy: StrategyConfig, symbol: str, client: VenueClient
    ) -> dict[str, Any] | None:
        signal_settings = self._settings.signal
        candles = await self._gateway.fetch_candles(
            strategy.venue,
            symbol,
            signal_settings.candle_interval,
            strategy.is_testnet,
            strategy.product,
            signal_settings.candle_limit,
        )
        if len(candles) < signal_settings.min_candles:
            logger.info(
                "insufficient_candles",
                strategy_id=strategy.id,
                symbol=symbol,
                count=len(candles),
                required=signal_settings.min_candles,
            )
            return None

        signal = analyze_signal(candles, strategy.indicators, symbol)
        if not signal.is_actionable:
            return None
        logger.info(
            "signal_generated",
            strategy_id=strategy.id,
            symbol=symbol,
            action=signal.action.value,
            confidence=str(signal.confidence),
            price=str(signal.price),
        )

        decision = await self._gate.screen(strategy, signal)
        if decision.approved:
            allowed, reason = await self._gate.check_open_positions(strategy)
            if not allowed:
                decision = RiskDecision.reject(reason)

        payload: dict[str, Any] = {
            "source": "auto_strategy_direct",
            "signal": signal.summary(),
            "filter": self._filter_summary(decision),
        }
        if not decision.approved:
            status = decision.status or WebhookStatus.FILTERED
            await self._log(strategy, status, payload, decision.reason or "Signal filtered")
            return self._result_item(strategy, signal, executed=False, reason=decision.reason)

        side = OrderSide.BUY if signal.action is SignalAction.BUY else OrderSide.SELL
        request = ExecutionRequest(symbol=symbol, side=side, price=signal.price)
        recorder = self._entry_recorder(
            strategy, symbol, side, signal.price, TriggerSource.AUTO_STRATEGY
        )
        result = await self._executor.execute(strategy, request, client, on_filled=recorder)
        if not result.success:
            await self._log(
                strategy,
                WebhookStatus.FAILED,
                payload,
                result.error or "Trade execution failed",
            )
            return self._result_item(
                strategy, signal, executed=False, reason="Trade execution failed"
            )
        executed_at = self._clock()
        await self._store.mark_signal_time(strategy.id, executed_at)
        strategy.last_signal_at = executed_at
        payload["orderId"] = result.order_id
        await self._log(strategy, WebhookStatus.EXECUTED, payload, result.error)
        logger.info(
            "signal_executed",
            strategy_id=strategy.id,
            symbol=symbol,
            side=side.value,
            order_id=result.order_id,
            trade_id=result.trade_id,
        )
        return self._result_item(strategy, signal, executed=True, trade_id=result.trade_id)

    @staticmethod
    def _filter_summary(decision: RiskDecision) -> dict[str, Any]:
        if decision.advisory is not None:
            return decision.advisory.summary()
        return {
            "provider": "engine_only",
            "reason": decision.note or decision.reason or "engine_confidence",
        }

    @staticmethod
    def _result_item(
        strategy: StrategyConfig,
        signal: Signal,
        executed: bool,
        trade_id: str | None = None,
        reason: str | None = None,
    ) -> dict[str, Any]:
        item: dict[str, Any] = {
            "strategy": strategy.name,
            "pair": signal.symbol,
            "signal": signal.summary(),
            "executed": executed,
        }
        if trade_id is not None:
            item["tradeId"] = trade_id
        if reason:
            item["reason"] = reason
        return item

    # ──────────────────────────────────────────────
    # Position tick
    # ──────────────────────────────────────────────

    async def run_position_tick(self) -> dict[str, Any]:
        """Reconcile all open positions and settle realized profit."""
        if self._locks.is_held(_POSITION_TICK):
            logger.info("position_tick_skipped")
            return {"skipped": True, "reason": "tick_in_progress"}
        async with self._locks.hold(_POSITION_TICK):
            return await self._reconciler.run()
