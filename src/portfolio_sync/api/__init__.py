"""
API package for the trading API.

This package provides:
- TradingApiClient: authenticated aiohttp JSON client with retries and timeouts
- PortfolioFetcher: per-entity fetch operations and the candle worker pool
- Credential-level entry points: fetch_portfolio, fetch_trade_history, fetch_all_candles
"""

from .fetcher import (
    CANDLE_CONCURRENCY,
    CandleBatch,
    PortfolioFetcher,
    fetch_all_candles,
    fetch_portfolio,
    fetch_trade_history,
)
from .http_client import REQUEST_PRIMARY, REQUEST_SECONDARY, TradingApiClient

__all__ = [
    'CANDLE_CONCURRENCY',
    'CandleBatch',
    'PortfolioFetcher',
    'fetch_all_candles',
    'fetch_portfolio',
    'fetch_trade_history',
    'REQUEST_PRIMARY',
    'REQUEST_SECONDARY',
    'TradingApiClient',
]
