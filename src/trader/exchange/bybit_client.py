"""Bybit v5 linear client via ccxt async.

Wraps ccxt.async_support.bybit and calls its signed v5 implicit endpoints
(order/create, position/trading-stop, position/set-leverage, ...) so Bybit
specific fields such as positionIdx and triggerDirection pass through
unchanged. ccxt raises on any ``retCode`` other than 0; the venue's
``retMsg`` becomes the error text.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

import ccxt.async_support as ccxt_async

from trader.exchange.client import VenueClient
from trader.exchange.types import AccountBalance, VenuePosition, VenueResponse
from trader.logging import get_logger
from trader.models import OrderSide, PositionSide, ProductType

logger = get_logger(__name__)

_QUOTE_ASSET = "USDT"
_ACCOUNT_TYPE = "UNIFIED"
_TRIGGER_BY = "LastPrice"
_LEVERAGE_NOT_MODIFIED = "leverage not modified"

#: Bybit conditional-order trigger direction.
_TRIGGER_RISES = 1
_TRIGGER_FALLS = 2

#: Hedge-mode position index per direction; 0 is one-way mode.
_HEDGE_INDEX = {PositionSide.LONG: 1, PositionSide.SHORT: 2}
_ROW_SIDE = {PositionSide.LONG: "Buy", PositionSide.SHORT: "Sell"}


def _dec(value: Any) -> Decimal:
    if value in (None, ""):
        return Decimal("0")
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return Decimal("0")


def _row_matches(entry: dict[str, Any], side: PositionSide) -> bool:
    """True if a position/list row belongs to a position in direction side."""
    try:
        index = int(entry.get("positionIdx") or 0)
    except (TypeError, ValueError):
        index = 0
    if index:
        return index == _HEDGE_INDEX[side]
    if _dec(entry.get("size")) == 0:
        return True
    return entry.get("side") == _ROW_SIDE[side]


class BybitClient(VenueClient):
    """Concrete Bybit client.

    Args:
        position_idx: Hedge-mode position index (0 for one-way mode).
    """

    def __init__(self, *args: Any, position_idx: int = 0, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._position_idx = position_idx

    def _create_exchange(self, config: dict[str, Any]) -> ccxt_async.bybit:
        config["options"] = {**config.get("options", {}), "defaultType": "swap"}
        exchange = ccxt_async.bybit(config)
        if self._target.is_testnet:
            exchange.set_sandbox_mode(True)
        return exchange

    @property
    def _category(self) -> str:
        return "spot" if self._target.product is ProductType.SPOT else "linear"

    async def set_leverage(self, symbol: str, leverage: int) -> VenueResponse:
        result = await self._call(
            "privatePostV5PositionSetLeverage",
            {
                "category": self._category,
                "symbol": symbol,
                "buyLeverage": str(leverage),
                "sellLeverage": str(leverage),
            },
        )
        if not result.ok and _LEVERAGE_NOT_MODIFIED in (result.error or "").lower():
            return VenueResponse.success()
        return result

    async def place_market_order(
        self,
        symbol: str,
        side: OrderSide,
        quantity: str,
        reduce_only: bool = False,
    ) -> VenueResponse:
        params: dict[str, Any] = {
            "category": self._category,
            "symbol": symbol,
            "side": side.value.capitalize(),
            "orderType": "Market",
            "qty": quantity,
        }
        if reduce_only:
            params["reduceOnly"] = True
        result = await self._call("privatePostV5OrderCreate", params)
        if not result.ok:
            return result
        order_id = (result.data.get("result") or {}).get("orderId")
        if not order_id:
            return VenueResponse.venue_error("Bybit order response missing orderId")
        return VenueResponse.success(str(order_id))

    async def place_stop_loss(
        self, symbol: str, close_side: OrderSide, stop_price: Decimal
    ) -> VenueResponse:
        return await self._call(
            "privatePostV5PositionTradingStop",
            {
                "category": self._category,
                "symbol": symbol,
                "positionIdx": self._position_idx,
                "stopLoss": self.format_price(stop_price),
                "slTriggerBy": _TRIGGER_BY,
            },
        )

    async def place_take_profit(
        self,
        symbol: str,
        close_side: OrderSide,
        trigger_price: Decimal,
        quantity: str,
    ) -> VenueResponse:
        # Selling closes a long, whose take-profit triggers on a rising price
        direction = _TRIGGER_RISES if close_side is OrderSide.SELL else _TRIGGER_FALLS
        return await self._call(
            "privatePostV5OrderCreate",
            {
                "category": self._category,
                "symbol": symbol,
                "side": close_side.value.capitalize(),
                "orderType": "Market",
                "qty": quantity,
                "reduceOnly": True,
                "closeOnTrigger": True,
                "triggerPrice": self.format_price(trigger_price),
                "triggerDirection": direction,
                "triggerBy": _TRIGGER_BY,
            },
        )

    async def place_trailing_stop(
        self,
        symbol: str,
        close_side: OrderSide,
        callback_percent: Decimal,
        reference_price: Decimal,
        activation_price: Decimal | None = None,
    ) -> VenueResponse:
        distance = reference_price * callback_percent / Decimal("100")
        params: dict[str, Any] = {
            "category": self._category,
            "symbol": symbol,
            "positionIdx": self._position_idx,
            "trailingStop": self.format_price(distance),
        }
        if activation_price is not None and activation_price > 0:
            params["activePrice"] = self.format_price(activation_price)
        return await self._call("privatePostV5PositionTradingStop", params)

    async def fetch_balance(self) -> VenueResponse:
        result = await self._call(
            "privateGetV5AccountWalletBalance", {"accountType": _ACCOUNT_TYPE}
        )
        if not result.ok:
            return result
        accounts = (result.data.get("result") or {}).get("list") or []
        coins = (accounts[0].get("coin") or []) if accounts else []
        for coin in coins:
            if coin.get("coin") == _QUOTE_ASSET:
                total = _dec(coin.get("equity"))
                available = _dec(coin.get("availableToWithdraw")) or total
                return VenueResponse.success(AccountBalance(available=available, total=total))
        return VenueResponse.success(AccountBalance())

    async def fetch_position(self, symbol: str, side: PositionSide) -> VenueResponse:
        result = await self._call(
            "privateGetV5PositionList", {"category": self._category, "symbol": symbol}
        )
        if not result.ok:
            return result
        entries = [
            p for p in (result.data.get("result") or {}).get("list") or []
            if p.get("symbol", symbol) == symbol and _row_matches(p, side)
        ]
        entries.sort(key=lambda p: _dec(p.get("size")) == 0)
        if not entries:
            return VenueResponse.success(VenuePosition(symbol=symbol, size=Decimal("0")))

        entry = entries[0]
        return VenueResponse.success(
            VenuePosition(
                symbol=symbol,
                size=abs(_dec(entry.get("size"))),
                mark_price=_dec(entry.get("markPrice")),
                unrealized_pnl=_dec(entry.get("unrealisedPnl")),
            )
        )
