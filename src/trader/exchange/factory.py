"""Venue client construction from a target and credentials."""

from __future__ import annotations

from collections.abc import Callable

from trader.config import VenueSettings
from trader.exceptions import ConfigurationError
from trader.exchange.binance_client import BinanceFuturesClient
from trader.exchange.bybit_client import BybitClient
from trader.exchange.client import VenueClient
from trader.exchange.types import VenueCredentials, VenueTarget
from trader.models import ProductType, Venue
from trader.strategy import RiskTuning

#: Signature of the callable the orchestrator uses to obtain venue clients.
VenueClientFactory = Callable[[VenueTarget, VenueCredentials, RiskTuning | None], VenueClient]


def create_venue_client(
    target: VenueTarget,
    credentials: VenueCredentials,
    settings: VenueSettings,
    risk: RiskTuning | None = None,
) -> VenueClient:
    """Build the venue-specific client for target.

    Each client owns its ccxt session and must be closed after use (it is an
    async context manager).

    Raises:
        ConfigurationError: For venue/product combinations with no trading client.
    """
    risk = risk or RiskTuning()
    if target.venue is Venue.BINANCE:
        if target.product is not ProductType.FUTURES:
            raise ConfigurationError("Unsupported exchange or product")
        return BinanceFuturesClient(
            target, credentials, settings, position_side=risk.position_side
        )
    if target.venue is Venue.BYBIT:
        return BybitClient(target, credentials, settings, position_idx=risk.position_idx)
    raise ConfigurationError(f"Unsupported exchange: {target.venue}")


def make_client_factory(settings: VenueSettings) -> VenueClientFactory:
    """Bind venue settings into a VenueClientFactory."""

    def factory(
        target: VenueTarget, credentials: VenueCredentials, risk: RiskTuning | None = None
    ) -> VenueClient:
        return create_venue_client(target, credentials, settings, risk)

    return factory
