"""
Cache package: storage backends and the versioned local snapshot cache.
"""

from .local_cache import (
    ALL_KEYS,
    API_KEYS_KEY,
    LAST_SYNCED_KEY,
    PORTFOLIO_KEY,
    TRADES_KEY,
    CachedSnapshot,
    LocalCache,
)
from .storage import JsonFileStorage, MemoryStorage, Storage

__all__ = [
    'ALL_KEYS',
    'API_KEYS_KEY',
    'LAST_SYNCED_KEY',
    'PORTFOLIO_KEY',
    'TRADES_KEY',
    'CachedSnapshot',
    'LocalCache',
    'JsonFileStorage',
    'MemoryStorage',
    'Storage',
]
