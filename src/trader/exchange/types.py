"""Venue-level result and state types.

Venue calls never raise across the client boundary. Every call returns a
VenueResponse that distinguishes success, a transport failure (network,
timeout, unparseable body) and a failure reported by the venue itself.

All monetary values use Decimal. Never use float for prices, quantities, or balances.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any

from trader.models import Environment, ProductType, Venue


class FailureKind(str, Enum):
    """Why a venue call did not succeed."""

    TRANSPORT = "transport"
    VENUE = "venue"


@dataclass(frozen=True)
class VenueResponse:
    """Typed outcome of one venue call."""

    ok: bool
    data: Any = None
    error: str | None = None
    failure: FailureKind | None = None

    @classmethod
    def success(cls, data: Any = None) -> VenueResponse:
        return cls(ok=True, data=data)

    @classmethod
    def venue_error(cls, message: str) -> VenueResponse:
        return cls(ok=False, error=message, failure=FailureKind.VENUE)

    @classmethod
    def transport_error(cls, message: str) -> VenueResponse:
        return cls(ok=False, error=message, failure=FailureKind.TRANSPORT)


@dataclass(frozen=True)
class AccountBalance:
    """Quote-currency (USDT) account balance."""

    available: Decimal = Decimal("0")
    total: Decimal = Decimal("0")


@dataclass(frozen=True)
class VenuePosition:
    """Venue-reported state of one symbol's position."""

    symbol: str
    size: Decimal  # absolute contract quantity, zero when flat
    mark_price: Decimal = Decimal("0")
    unrealized_pnl: Decimal = Decimal("0")

    @property
    def is_open(self) -> bool:
        return self.size != 0


@dataclass(frozen=True)
class BookTicker:
    """Best bid and ask for one symbol."""

    bid: Decimal
    ask: Decimal

    @property
    def mid(self) -> Decimal:
        return (self.bid + self.ask) / Decimal("2")


@dataclass(frozen=True)
class VenueCredentials:
    """Decoded API key pair for one (user, venue, product, environment)."""

    api_key: str
    api_secret: str = field(repr=False)


@dataclass(frozen=True)
class VenueTarget:
    """Which venue endpoint family a client talks to."""

    venue: Venue
    product: ProductType
    environment: Environment

    @property
    def is_testnet(self) -> bool:
        return self.environment is Environment.TESTNET


_BINANCE_BASE_URLS: dict[tuple[ProductType, bool], str] = {
    (ProductType.FUTURES, False): "https://fapi.binance.com",
    (ProductType.FUTURES, True): "https://testnet.binancefuture.com",
    (ProductType.SPOT, False): "https://api.binance.com",
    (ProductType.SPOT, True): "https://testnet.binance.vision",
}

_BYBIT_BASE_URLS: dict[bool, str] = {
    False: "https://api.bybit.com",
    True: "https://api-testnet.bybit.com",
}


def base_url(target: VenueTarget) -> str:
    """Return the REST base URL for a venue, product and environment."""
    if target.venue is Venue.BINANCE:
        return _BINANCE_BASE_URLS[(target.product, target.is_testnet)]
    return _BYBIT_BASE_URLS[target.is_testnet]
