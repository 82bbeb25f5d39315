"""Market data layer -- public candle windows and best bid/ask."""

from trader.market_data.gateway import MarketDataGateway, bybit_interval

__all__ = ["MarketDataGateway", "bybit_interval"]
