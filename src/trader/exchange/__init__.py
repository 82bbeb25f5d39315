"""Venue client layer -- ccxt-backed clients for Binance futures and Bybit linear."""

from trader.exchange.binance_client import BinanceFuturesClient
from trader.exchange.bybit_client import BybitClient
from trader.exchange.client import VenueClient
from trader.exchange.factory import VenueClientFactory, create_venue_client, make_client_factory
from trader.exchange.types import (
    AccountBalance,
    BookTicker,
    FailureKind,
    VenueCredentials,
    VenuePosition,
    VenueResponse,
    VenueTarget,
)

__all__ = [
    "AccountBalance",
    "BinanceFuturesClient",
    "BookTicker",
    "BybitClient",
    "FailureKind",
    "VenueClient",
    "VenueClientFactory",
    "VenueCredentials",
    "VenuePosition",
    "VenueResponse",
    "VenueTarget",
    "create_venue_client",
    "make_client_factory",
]
