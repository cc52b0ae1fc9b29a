"""
Portfolio sync service.

Fetches a trading account's portfolio and trade history, normalizes the
upstream responses, values open positions against live rates, caches the
last good snapshot locally and assigns each symbol a display color.
"""

from .api import fetch_all_candles, fetch_portfolio, fetch_trade_history
from .cache import LocalCache
from .colors import build_logo_color_map, symbol_color
from .config import PortfolioSyncConfig, load_config
from .exceptions import (
    ApiResponseError,
    MissingCredentialsError,
    NetworkError,
    PortfolioSyncError,
)
from .models import ApiKeys, PortfolioData
from .sync import PortfolioStore, StoreState

__version__ = '1.0.0'

__all__ = [
    'fetch_all_candles',
    'fetch_portfolio',
    'fetch_trade_history',
    'LocalCache',
    'build_logo_color_map',
    'symbol_color',
    'PortfolioSyncConfig',
    'load_config',
    'ApiResponseError',
    'MissingCredentialsError',
    'NetworkError',
    'PortfolioSyncError',
    'ApiKeys',
    'PortfolioData',
    'PortfolioStore',
    'StoreState',
]
