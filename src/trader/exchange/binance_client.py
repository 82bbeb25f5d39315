"""Binance USD-M futures client via ccxt async.

Wraps ccxt.async_support.binanceusdm and calls its signed /fapi implicit
endpoints, so the order parameters (positionSide, closePosition,
callbackRate) reach the venue exactly as given. ccxt raises on a non-2xx
status or a negative ``code``; the venue's ``msg`` becomes the error text.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

import ccxt.async_support as ccxt_async

from trader.exchange.client import VenueClient
from trader.exchange.types import AccountBalance, VenuePosition, VenueResponse, base_url
from trader.logging import get_logger
from trader.models import OrderSide, PositionSide

logger = get_logger(__name__)

_QUOTE_ASSET = "USDT"
_ONE_WAY_POSITION_SIDE = "BOTH"


def _dec(value: Any) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return Decimal("0")


def _row_matches(entry: dict[str, Any], side: PositionSide) -> bool:
    """True if a positionRisk row belongs to a position in direction side.

    Hedge-mode rows are labelled LONG/SHORT; one-way rows are labelled BOTH
    and carry the direction in the sign of positionAmt.
    """
    row_side = entry.get("positionSide") or _ONE_WAY_POSITION_SIDE
    if row_side != _ONE_WAY_POSITION_SIDE:
        return row_side == side.value.upper()
    amount = _dec(entry.get("positionAmt"))
    return amount == 0 or (amount > 0) == (side is PositionSide.LONG)


class BinanceFuturesClient(VenueClient):
    """Concrete Binance futures client.

    Args:
        position_side: Hedge-mode position side ("LONG"/"SHORT"); "BOTH" for
            one-way mode, in which case no positionSide parameter is sent.
    """

    def __init__(
        self, *args: Any, position_side: str = _ONE_WAY_POSITION_SIDE, **kwargs: Any
    ) -> None:
        super().__init__(*args, **kwargs)
        self._position_side = position_side

    def _create_exchange(self, config: dict[str, Any]) -> ccxt_async.binanceusdm:
        if self._target.is_testnet:
            root = base_url(self._target)
            config["urls"] = {
                "api": {
                    "fapiPublic": f"{root}/fapi/v1",
                    "fapiPrivate": f"{root}/fapi/v1",
                    "fapiPrivateV2": f"{root}/fapi/v2",
                },
            }
        return ccxt_async.binanceusdm(config)

    def _with_position_side(self, params: dict[str, Any]) -> dict[str, Any]:
        if self._position_side != _ONE_WAY_POSITION_SIDE:
            params["positionSide"] = self._position_side
        return params

    async def set_leverage(self, symbol: str, leverage: int) -> VenueResponse:
        return await self._call(
            "fapiPrivatePostLeverage", {"symbol": symbol, "leverage": str(leverage)}
        )

    async def place_market_order(
        self,
        symbol: str,
        side: OrderSide,
        quantity: str,
        reduce_only: bool = False,
    ) -> VenueResponse:
        params = self._with_position_side(
            {"symbol": symbol, "side": side.value.upper(), "type": "MARKET"}
        )
        params["quantity"] = quantity
        # reduceOnly is rejected in hedge mode, where positionSide already scopes the order
        if reduce_only and self._position_side == _ONE_WAY_POSITION_SIDE:
            params["reduceOnly"] = "true"

        result = await self._call("fapiPrivatePostOrder", params)
        if not result.ok:
            return result
        order_id = result.data.get("orderId") if isinstance(result.data, dict) else None
        if order_id is None:
            return VenueResponse.venue_error("Binance order response missing orderId")
        return VenueResponse.success(str(order_id))

    async def place_stop_loss(
        self, symbol: str, close_side: OrderSide, stop_price: Decimal
    ) -> VenueResponse:
        params = {
            "symbol": symbol,
            "side": close_side.value.upper(),
            "type": "STOP_MARKET",
            "stopPrice": self.format_price(stop_price),
            "closePosition": "true",
        }
        return await self._call("fapiPrivatePostOrder", self._with_position_side(params))

    async def place_take_profit(
        self,
        symbol: str,
        close_side: OrderSide,
        trigger_price: Decimal,
        quantity: str,
    ) -> VenueResponse:
        params = self._with_position_side(
            {
                "symbol": symbol,
                "side": close_side.value.upper(),
                "type": "TAKE_PROFIT_MARKET",
                "stopPrice": self.format_price(trigger_price),
            }
        )
        params["quantity"] = quantity
        return await self._call("fapiPrivatePostOrder", params)

    async def place_trailing_stop(
        self,
        symbol: str,
        close_side: OrderSide,
        callback_percent: Decimal,
        reference_price: Decimal,
        activation_price: Decimal | None = None,
    ) -> VenueResponse:
        params: dict[str, Any] = {
            "symbol": symbol,
            "side": close_side.value.upper(),
            "type": "TRAILING_STOP_MARKET",
            "callbackRate": str(callback_percent.normalize()),
        }
        if activation_price is not None and activation_price > 0:
            params["activationPrice"] = self.format_price(activation_price)
        return await self._call("fapiPrivatePostOrder", self._with_position_side(params))

    async def fetch_balance(self) -> VenueResponse:
        result = await self._call("fapiPrivateV2GetBalance")
        if not result.ok:
            return result
        for entry in result.data if isinstance(result.data, list) else []:
            if entry.get("asset") == _QUOTE_ASSET:
                return VenueResponse.success(
                    AccountBalance(
                        available=_dec(entry.get("availableBalance")),
                        total=_dec(entry.get("balance")),
                    )
                )
        return VenueResponse.success(AccountBalance())

    async def fetch_position(self, symbol: str, side: PositionSide) -> VenueResponse:
        result = await self._call("fapiPrivateV2GetPositionRisk", {"symbol": symbol})
        if not result.ok:
            return result
        entries = [
            p for p in (result.data if isinstance(result.data, list) else [])
            if p.get("symbol") == symbol and _row_matches(p, side)
        ]
        entries.sort(key=lambda p: _dec(p.get("positionAmt")) == 0)
        if not entries:
            return VenueResponse.success(VenuePosition(symbol=symbol, size=Decimal("0")))

        entry = entries[0]
        return VenueResponse.success(
            VenuePosition(
                symbol=symbol,
                size=abs(_dec(entry.get("positionAmt"))),
                mark_price=_dec(entry.get("markPrice")),
                unrealized_pnl=_dec(entry.get("unRealizedProfit")),
            )
        )
