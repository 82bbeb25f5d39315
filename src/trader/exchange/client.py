"""Abstract venue client interface.

Defines the contract for all venue implementations. Execution, sizing and
reconciliation code depends only on this interface, keeping the
venue-specific endpoints isolated in the concrete implementations.

Concrete clients wrap a ccxt async exchange and call its signed implicit
endpoints directly. Every method returns a VenueResponse instead of raising;
ccxt network errors and venue-reported errors are both turned into failed
responses here.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Self

import ccxt.async_support as ccxt_async

from trader.config import VenueSettings
from trader.exchange.types import VenueCredentials, VenueResponse, VenueTarget
from trader.logging import get_logger
from trader.models import OrderSide, PositionSide

logger = get_logger(__name__)


def error_message(error: Exception) -> str:
    """Extract the venue's own message from a ccxt exception.

    ccxt formats venue errors as "<exchange id> <raw JSON body>"; the body's
    msg (Binance) or retMsg (Bybit) is returned when present.
    """
    text = str(error)
    _, _, body = text.partition(" ")
    try:
        decoded = json.loads(body)
    except ValueError:
        return text or type(error).__name__
    if isinstance(decoded, dict):
        message = decoded.get("msg") or decoded.get("retMsg")
        if message:
            return str(message)
    return text


class VenueClient(ABC):
    """Abstract base class for ccxt-backed venue clients.

    Args:
        target: Venue, product and environment this client trades on.
        credentials: Decoded API key pair.
        settings: Venue settings (timeout, recv window, price precision).
        exchange: Prebuilt ccxt exchange; built from credentials when omitted.
    """

    def __init__(
        self,
        target: VenueTarget,
        credentials: VenueCredentials,
        settings: VenueSettings,
        exchange: ccxt_async.Exchange | None = None,
    ) -> None:
        self._target = target
        self._settings = settings
        if exchange is None:
            exchange = self._create_exchange(
                {
                    "apiKey": credentials.api_key,
                    "secret": credentials.api_secret,
                    "enableRateLimit": True,
                    "timeout": int(settings.request_timeout_seconds * 1000),
                    "options": {"recvWindow": settings.recv_window_ms},
                }
            )
        self._exchange = exchange

    @abstractmethod
    def _create_exchange(self, config: dict[str, Any]) -> ccxt_async.Exchange:
        """Build the ccxt exchange for this venue and environment."""
        ...

    @property
    def target(self) -> VenueTarget:
        return self._target

    @property
    def exchange(self) -> ccxt_async.Exchange:
        """Access the underlying ccxt exchange instance."""
        return self._exchange

    async def aclose(self) -> None:
        """Release the ccxt session. Must be called to avoid leaking connections."""
        await self._exchange.close()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        await self.aclose()

    def format_price(self, value: Decimal) -> str:
        """Format a trigger price half-up to the configured price precision."""
        quantum = Decimal(1).scaleb(-self._settings.price_decimals)
        return str(value.quantize(quantum, rounding=ROUND_HALF_UP))

    async def _call(self, endpoint: str, params: dict[str, Any] | None = None) -> VenueResponse:
        """Invoke a signed ccxt implicit endpoint, e.g. "fapiPrivatePostOrder".

        On success data is the decoded response body.
        """
        method = getattr(self._exchange, endpoint)
        try:
            body = await method(params or {})
        except ccxt_async.NetworkError as e:
            error = str(e) or type(e).__name__
            logger.warning(
                "venue_transport_error",
                venue=self._target.venue.value,
                endpoint=endpoint,
                error=error,
            )
            return VenueResponse.transport_error(error)
        except ccxt_async.BaseError as e:
            message = error_message(e)
            logger.warning(
                "venue_request_failed",
                venue=self._target.venue.value,
                endpoint=endpoint,
                error_type=type(e).__name__,
                error=message,
            )
            return VenueResponse.venue_error(message)
        return VenueResponse.success(body)

    # ──────────────────────────────────────────────
    # Trading contract
    # ──────────────────────────────────────────────

    @abstractmethod
    async def set_leverage(self, symbol: str, leverage: int) -> VenueResponse:
        """Set the symbol's leverage before placing an entry."""
        ...

    @abstractmethod
    async def place_market_order(
        self,
        symbol: str,
        side: OrderSide,
        quantity: str,
        reduce_only: bool = False,
    ) -> VenueResponse:
        """Place a market order. On success data is the venue order id (str)."""
        ...

    @abstractmethod
    async def place_stop_loss(
        self, symbol: str, close_side: OrderSide, stop_price: Decimal
    ) -> VenueResponse:
        """Attach a stop-loss closing the whole position at stop_price."""
        ...

    @abstractmethod
    async def place_take_profit(
        self,
        symbol: str,
        close_side: OrderSide,
        trigger_price: Decimal,
        quantity: str,
    ) -> VenueResponse:
        """Place a reduce-only take-profit closing quantity at trigger_price."""
        ...

    @abstractmethod
    async def place_trailing_stop(
        self,
        symbol: str,
        close_side: OrderSide,
        callback_percent: Decimal,
        reference_price: Decimal,
        activation_price: Decimal | None = None,
    ) -> VenueResponse:
        """Place a trailing stop.

        Args:
            callback_percent: Trailing distance in percent, already clamped.
            reference_price: Entry price, used by venues that express the
                trail as an absolute distance.
            activation_price: Optional price at which trailing starts.
        """
        ...

    @abstractmethod
    async def fetch_balance(self) -> VenueResponse:
        """Fetch the USDT balance. On success data is an AccountBalance."""
        ...

    @abstractmethod
    async def fetch_position(self, symbol: str, side: PositionSide) -> VenueResponse:
        """Fetch the symbol's position in the given direction.

        Only venue rows for that direction are considered, so the opposite
        leg of a hedge-mode account is never mistaken for this one. On
        success data is a VenuePosition (size zero when flat).
        """
        ...

    async def close_position(
        self, symbol: str, side: PositionSide, quantity: str
    ) -> VenueResponse:
        """Close quantity of an open position with a reduce-only market order."""
        return await self.place_market_order(
            symbol, side.closing_side, quantity, reduce_only=True
        )
