"""Public market data gateway: candle windows and best bid/ask.

Normalizes both venues' kline shapes to a single ascending-by-time list of
Candle. Bybit returns klines newest-first and is reversed here.

Degrade-to-no-signal policy: any transport, status or shape error yields an
empty candle list (or None for the book ticker) and a warning log, never an
exception. Callers treat an empty window as "no signal this tick".
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

import httpx

from trader.config import VenueSettings
from trader.exchange.types import BookTicker, VenueTarget, base_url
from trader.logging import get_logger
from trader.models import Candle, Environment, ProductType, Venue

logger = get_logger(__name__)

#: Binance interval names mapped to Bybit v5 kline intervals.
_BYBIT_INTERVALS: dict[str, str] = {
    "1m": "1",
    "3m": "3",
    "5m": "5",
    "15m": "15",
    "30m": "30",
    "1h": "60",
    "2h": "120",
    "4h": "240",
    "6h": "360",
    "12h": "720",
    "1d": "D",
    "1w": "W",
    "1M": "M",
}

#: Transport and payload-shape errors that degrade to an empty result.
_FETCH_ERRORS = (
    httpx.HTTPError,
    ValueError,
    TypeError,
    IndexError,
    AttributeError,
    InvalidOperation,
)


def bybit_interval(interval: str) -> str:
    """Translate a Binance-style interval ("1m", "1h") to Bybit's ("1", "60")."""
    return _BYBIT_INTERVALS.get(interval, interval)


def _candle(row: list[Any]) -> Candle:
    return Candle(
        timestamp=int(row[0]),
        open=Decimal(str(row[1])),
        high=Decimal(str(row[2])),
        low=Decimal(str(row[3])),
        close=Decimal(str(row[4])),
        volume=Decimal(str(row[5])),
    )


class MarketDataGateway:
    """Fetches public market data over httpx.

    Args:
        http_client: Shared async HTTP client.
        settings: Venue settings (request timeout).
    """

    def __init__(self, http_client: httpx.AsyncClient, settings: VenueSettings) -> None:
        self._http = http_client
        self._timeout = settings.request_timeout_seconds

    async def _get_json(self, url: str, params: dict[str, Any]) -> Any:
        response = await self._http.get(url, params=params, timeout=self._timeout)
        response.raise_for_status()
        return response.json()

    async def fetch_candles(
        self,
        venue: Venue,
        symbol: str,
        interval: str,
        testnet: bool,
        product: ProductType = ProductType.FUTURES,
        limit: int = 100,
    ) -> list[Candle]:
        """Fetch the latest ``limit`` candles, oldest first.

        Args:
            venue: Venue to query.
            symbol: Venue symbol (e.g. "BTCUSDT").
            interval: Binance-style interval ("1m"); translated for Bybit.
            testnet: Whether to use the testnet endpoint.
            product: Futures or spot market (Binance only; Bybit uses linear).
            limit: Number of candles.

        Returns:
            Ascending candles, or an empty list on any error.
        """
        environment = Environment.TESTNET if testnet else Environment.MAINNET
        root = base_url(VenueTarget(venue, product, environment))
        try:
            if venue is Venue.BINANCE:
                path = "/fapi/v1/klines" if product is ProductType.FUTURES else "/api/v3/klines"
                data = await self._get_json(
                    f"{root}{path}", {"symbol": symbol, "interval": interval, "limit": limit}
                )
                if not isinstance(data, list):
                    logger.warning("invalid_kline_payload", venue=venue.value, symbol=symbol)
                    return []
                candles = [_candle(row) for row in data]
            else:
                data = await self._get_json(
                    f"{root}/v5/market/kline",
                    {
                        "category": "linear",
                        "symbol": symbol,
                        "interval": bybit_interval(interval),
                        "limit": limit,
                    },
                )
                rows = (data.get("result") or {}).get("list") if isinstance(data, dict) else None
                if data.get("retCode") != 0 or not isinstance(rows, list):
                    logger.warning(
                        "invalid_kline_payload",
                        venue=venue.value,
                        symbol=symbol,
                        ret_code=data.get("retCode"),
                        ret_msg=data.get("retMsg"),
                    )
                    return []
                candles = [_candle(row) for row in reversed(rows)]
        except _FETCH_ERRORS as e:
            logger.warning(
                "kline_fetch_failed",
                venue=venue.value,
                symbol=symbol,
                error=str(e) or type(e).__name__,
            )
            return []

        if not candles:
            logger.warning("no_kline_data", venue=venue.value, symbol=symbol)
        return candles

    async def fetch_book_ticker(
        self,
        venue: Venue,
        product: ProductType,
        symbol: str,
        testnet: bool,
    ) -> BookTicker | None:
        """Fetch best bid/ask. Returns None on any error or a non-positive side."""
        environment = Environment.TESTNET if testnet else Environment.MAINNET
        root = base_url(VenueTarget(venue, product, environment))
        try:
            if venue is Venue.BINANCE:
                path = (
                    "/fapi/v1/ticker/bookTicker"
                    if product is ProductType.FUTURES
                    else "/api/v3/ticker/bookTicker"
                )
                data = await self._get_json(f"{root}{path}", {"symbol": symbol})
                bid = Decimal(str(data.get("bidPrice") or "0"))
                ask = Decimal(str(data.get("askPrice") or "0"))
            else:
                data = await self._get_json(
                    f"{root}/v5/market/orderbook",
                    {"category": "linear", "symbol": symbol, "limit": 1},
                )
                book = data.get("result") or {}
                bids = book.get("b") or []
                asks = book.get("a") or []
                bid = Decimal(str(bids[0][0])) if bids else Decimal("0")
                ask = Decimal(str(asks[0][0])) if asks else Decimal("0")
        except _FETCH_ERRORS as e:
            logger.warning(
                "book_ticker_fetch_failed",
                venue=venue.value,
                symbol=symbol,
                error=str(e) or type(e).__name__,
            )
            return None

        if bid <= 0 or ask <= 0:
            return None
        return BookTicker(bid=bid, ask=ask)
