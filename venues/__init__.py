"""Venue adapters: one short/close surface per trading venue."""
from venues.base import HttpVenueAdapter
from venues.binance import BinanceMarginAdapter
from venues.bybit import BybitLinearAdapter
from venues.cme import CMEFuturesAdapter
from venues.hyperliquid import HyperliquidAdapter

__all__ = [
    "HttpVenueAdapter",
    "BinanceMarginAdapter",
    "BybitLinearAdapter",
    "CMEFuturesAdapter",
    "HyperliquidAdapter",
]
