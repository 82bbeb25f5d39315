"""Order execution: entry with precision retry, then protective legs.

Execution flow for one signal or alert:
1. Resolve the raw quantity (alert override or PositionSizer)
2. Set leverage -- a failure aborts before any order is placed
3. Place the market entry, walking the precision ladder (3, 2, 1, 0 decimals)
   while the venue rejects the quantity for lot-size/precision reasons
4. On a filled entry with a positive reference price, place the stop-loss,
   every enabled take-profit leg and the optional trailing stop

Protective-leg failures do not undo the entry: the result is still a
success and the joined leg errors are reported alongside it, so the filled
entry is recorded as an open position and stays visible to reconciliation.
Once the entry is filled, the legs and the caller's on_filled recorder run
to completion even if the calling task is cancelled; the cancellation is
re-raised afterwards.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING

from trader.exceptions import InsufficientSizeError
from trader.execution.precision import (
    DEFAULT_QUANTITY_DECIMALS,
    floor_to_decimals,
    format_quantity,
    is_precision_error,
)
from trader.logging import get_logger
from trader.models import OrderSide
from trader.position.sizing import PositionSizer
from trader.strategy import StrategyConfig

if TYPE_CHECKING:
    from trader.exchange.client import VenueClient

logger = get_logger(__name__)

_HUNDRED = Decimal("100")


def offset_price(price: Decimal, percent: Decimal, side: OrderSide, favorable: bool) -> Decimal:
    """Shift price by percent in the entry's favorable or adverse direction.

    For a buy entry the favorable direction is up (take-profit, trailing
    activation) and the adverse direction is down (stop-loss); a sell entry
    mirrors this.
    """
    upward = (side is OrderSide.BUY) == favorable
    factor = Decimal("1") + percent / _HUNDRED if upward else Decimal("1") - percent / _HUNDRED
    return price * factor


@dataclass
class ExecutionRequest:
    """One entry to execute, with optional alert overrides."""

    symbol: str
    side: OrderSide
    price: Decimal  # entry reference price (signal price or alert price)
    quantity: Decimal | None = None  # bypasses sizing when set
    leverage: int | None = None
    stop_loss_price: Decimal | None = None  # absolute, replaces the percent-derived price
    take_profit_prices: dict[int, Decimal] = field(default_factory=dict)  # by leg level


@dataclass(frozen=True)
class EntryFill:
    """Accepted market entry."""

    order_id: str
    quantity: Decimal
    decimals: int  # precision rung that was accepted


@dataclass
class ExecutionResult:
    """Outcome of execute().

    success is True once the entry order is filled, even when protective
    legs failed; error then carries the joined leg errors.
    """

    success: bool
    order_id: str | None = None
    error: str | None = None
    quantity: Decimal | None = None  # accepted entry quantity
    quantity_decimals: int | None = None
    leverage: int | None = None
    stop_loss_price: Decimal | None = None
    take_profit_price: Decimal | None = None  # first take-profit leg trigger
    protective_errors: list[str] = field(default_factory=list)
    trade_id: str | None = None  # set by the on_filled recorder


#: Awaited with the fill and result once an entry is filled and protected.
EntryRecorder = Callable[[EntryFill, ExecutionResult], Awaitable[None]]


class OrderExecutor:
    """Places entries and protective orders through a VenueClient.

    Args:
        sizer: Position sizer used when the request carries no quantity.
        quantity_decimals: Precision ladder, finest first.
    """

    def __init__(
        self,
        sizer: PositionSizer | None = None,
        quantity_decimals: tuple[int, ...] | list[int] = DEFAULT_QUANTITY_DECIMALS,
    ) -> None:
        self._sizer = sizer or PositionSizer()
        self._quantity_decimals = tuple(quantity_decimals)

    async def execute(
        self,
        strategy: StrategyConfig,
        request: ExecutionRequest,
        client: VenueClient,
        on_filled: EntryRecorder | None = None,
    ) -> ExecutionResult:
        """Execute one entry for strategy on client's venue.

        Args:
            on_filled: Awaited with the result once the entry is filled and
                its protective legs have been placed. It runs to completion
                even if the calling task is cancelled, after which the
                cancellation propagates.
        """
        leverage = request.leverage or strategy.leverage
        log = logger.bind(
            strategy_id=strategy.id,
            symbol=request.symbol,
            side=request.side.value,
            venue=strategy.venue.value,
        )

        if request.quantity is not None and request.quantity > 0:
            raw_quantity = request.quantity
        else:
            try:
                raw_quantity = await self._sizer.resolve_quantity(strategy, request.price, client)
            except InsufficientSizeError as e:
                return ExecutionResult(success=False, error=str(e))

        leverage_result = await client.set_leverage(request.symbol, leverage)
        if not leverage_result.ok:
            log.warning("set_leverage_failed", leverage=leverage, error=leverage_result.error)
            return ExecutionResult(
                success=False, error=leverage_result.error or "Failed to set leverage"
            )

        fill, entry_error = await self._place_entry(request, raw_quantity, client)
        if fill is None:
            log.warning("entry_order_failed", quantity=str(raw_quantity), error=entry_error)
            return ExecutionResult(success=False, error=entry_error)

        log.info(
            "entry_order_filled",
            order_id=fill.order_id,
            quantity=str(fill.quantity),
            decimals=fill.decimals,
            price=str(request.price),
            leverage=leverage,
        )
        result = ExecutionResult(
            success=True,
            order_id=fill.order_id,
            quantity=fill.quantity,
            quantity_decimals=fill.decimals,
            leverage=leverage,
        )

        # The entry is live; protection and recording must not be abandoned half-way
        completion = asyncio.ensure_future(
            self._complete_fill(strategy, request, client, fill, result, on_filled)
        )
        try:
            await asyncio.shield(completion)
        except asyncio.CancelledError:
            log.warning("execution_cancelled_after_fill", order_id=fill.order_id)
            await asyncio.shield(completion)
            raise
        return result

    async def _complete_fill(
        self,
        strategy: StrategyConfig,
        request: ExecutionRequest,
        client: VenueClient,
        fill: EntryFill,
        result: ExecutionResult,
        on_filled: EntryRecorder | None,
    ) -> None:
        if request.price > 0:
            await self._place_protection(strategy, request, client, fill, result)
        if result.protective_errors:
            result.error = " | ".join(result.protective_errors)
            logger.warning(
                "protective_orders_incomplete",
                strategy_id=strategy.id,
                symbol=request.symbol,
                error=result.error,
            )
        if on_filled is not None:
            await on_filled(fill, result)

    async def _place_entry(
        self,
        request: ExecutionRequest,
        raw_quantity: Decimal,
        client: VenueClient,
    ) -> tuple[EntryFill | None, str]:
        """Walk the precision ladder until an attempt fills or fails for another reason.

        Returns:
            (fill, last_error); fill is None when no attempt was accepted.
        """
        last_error: str | None = None
        for decimals in self._quantity_decimals:
            quantity_text = format_quantity(raw_quantity, decimals)
            if quantity_text is None:
                continue
            attempt = await client.place_market_order(request.symbol, request.side, quantity_text)
            if attempt.ok:
                return EntryFill(str(attempt.data), Decimal(quantity_text), decimals), ""
            last_error = attempt.error
            if not is_precision_error(attempt.error):
                break
            logger.info(
                "entry_precision_retry",
                symbol=request.symbol,
                quantity=quantity_text,
                decimals=decimals,
                error=attempt.error,
            )
        return None, last_error or "Invalid position size calculated"

    async def _place_protection(
        self,
        strategy: StrategyConfig,
        request: ExecutionRequest,
        client: VenueClient,
        fill: EntryFill,
        result: ExecutionResult,
    ) -> None:
        side = request.side
        close_side = side.opposite
        price = request.price
        quantity = fill.quantity
        decimals = fill.decimals

        stop_price = request.stop_loss_price
        if stop_price is None and strategy.stop_loss_percent > 0:
            stop_price = offset_price(price, strategy.stop_loss_percent, side, favorable=False)
        if stop_price is not None and stop_price > 0:
            result.stop_loss_price = stop_price
            sl = await client.place_stop_loss(request.symbol, close_side, stop_price)
            if not sl.ok:
                result.protective_errors.append(sl.error or "Stop loss failed")

        for leg in strategy.take_profits:
            trigger = request.take_profit_prices.get(leg.level)
            if trigger is None:
                trigger = offset_price(price, leg.percent, side, favorable=True)
            if result.take_profit_price is None:
                result.take_profit_price = trigger
            leg_quantity = format_quantity(
                floor_to_decimals(quantity * leg.close_percent / _HUNDRED, decimals), decimals
            )
            if leg_quantity is None:
                continue
            tp = await client.place_take_profit(request.symbol, close_side, trigger, leg_quantity)
            if not tp.ok:
                result.protective_errors.append(tp.error or f"TP{leg.level} failed")

        trailing = strategy.risk.trailing_stop
        if trailing is not None and trailing.callback_percent > 0:
            activation = None
            if trailing.activation_percent > 0:
                activation = offset_price(price, trailing.activation_percent, side, favorable=True)
            ts = await client.place_trailing_stop(
                request.symbol,
                close_side,
                trailing.clamped_callback,
                price,
                activation,
            )
            if not ts.ok:
                result.protective_errors.append(ts.error or "Trailing stop failed")
