"""
Local snapshot cache.

Three correlated slots live under fixed, versioned keys:
- credentials (api key pair)
- the last successful {portfolio, trades} snapshot
- the last-synchronized timestamp (ISO-8601)

The portfolio slot anchors the snapshot: without it, a trades-only payload
is never served as cached data. Writes that fail (quota exceeded, disk
unavailable) are logged and the cache continues in memory-only mode for the
rest of the session.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

from dateutil import parser as date_parser

from ..exceptions import StorageError
from ..models.entities import ApiKeys, EnrichedTrade, PortfolioData
from ..utils import get_logger
from .storage import MemoryStorage, Storage

logger = get_logger(__name__)

KEY_PREFIX = 'portfolio-sync'
CACHE_VERSION = 'v1'

API_KEYS_KEY = f'{KEY_PREFIX}:api-keys'
PORTFOLIO_KEY = f'{KEY_PREFIX}:{CACHE_VERSION}:portfolio'
TRADES_KEY = f'{KEY_PREFIX}:{CACHE_VERSION}:trades'
LAST_SYNCED_KEY = f'{KEY_PREFIX}:{CACHE_VERSION}:last-synced'

SNAPSHOT_KEYS = (PORTFOLIO_KEY, TRADES_KEY, LAST_SYNCED_KEY)
ALL_KEYS = (API_KEYS_KEY,) + SNAPSHOT_KEYS


@dataclass(frozen=True)
class CachedSnapshot:
    """A portfolio/trades snapshot read back from storage."""
    portfolio: PortfolioData
    trades: List[EnrichedTrade] = field(default_factory=list)
    last_synced: Optional[datetime] = None


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = date_parser.isoparse(value)
    except (ValueError, OverflowError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class LocalCache:
    """
    Read-through cache over a Storage backend.

    Example:
        ```python
        cache = LocalCache(JsonFileStorage('~/.portfolio_sync/storage.json'))
        cache.save_keys(ApiKeys.create(api_key, user_key))
        cache.write_snapshot(portfolio, trades)
        snapshot = cache.read_snapshot()
        ```
    """

    def __init__(self, storage: Optional[Storage] = None):
        self._storage: Storage = storage if storage is not None else MemoryStorage()
        self._memory_only = False

    @property
    def memory_only(self) -> bool:
        """True once a write failed and persistence was abandoned for this session."""
        return self._memory_only

    # ==================== Write plumbing ====================

    def _fall_back_to_memory(self, error: Exception) -> None:
        """Switch to an in-memory copy of the cache slots."""
        current = {}
        for key in ALL_KEYS:
            try:
                value = self._storage.get_item(key)
            except (StorageError, OSError):
                value = None
            if value is not None:
                current[key] = value
        self._storage = MemoryStorage(initial=current)
        self._memory_only = True
        logger.log_cache_event(
            {'event_type': 'memory_only', 'error': str(error)},
            msg=f"Local storage write failed, caching in memory for this session: {error}",
            level=logging.WARNING,
        )

    def _set(self, items: Dict[str, str]) -> bool:
        try:
            self._storage.set_items(items)
            return not self._memory_only
        except (StorageError, OSError) as e:
            self._fall_back_to_memory(e)
            self._storage.set_items(items)
            return False

    def _remove(self, keys: Iterable[str]) -> bool:
        keys = list(keys)
        try:
            self._storage.remove_items(keys)
            return not self._memory_only
        except (StorageError, OSError) as e:
            self._fall_back_to_memory(e)
            self._storage.remove_items(keys)
            return False

    def _get_json(self, key: str) -> Any:
        raw = self._storage.get_item(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.log_cache_event({'event_type': 'corrupt_slot', 'key': key},
                                   msg=f"Ignoring corrupt cache slot {key}", level=logging.WARNING)
            return None

    # ==================== Credentials ====================

    def read_keys(self) -> Optional[ApiKeys]:
        return ApiKeys.from_dict(self._get_json(API_KEYS_KEY))

    def save_keys(self, keys: ApiKeys) -> bool:
        """Persist credentials as {apiKey, userKey}. Returns False in memory-only mode."""
        return self._set({API_KEYS_KEY: json.dumps(keys.to_dict())})

    # ==================== Snapshot ====================

    def read_snapshot(self) -> Optional[CachedSnapshot]:
        """
        Read the cached snapshot.

        Returns:
            CachedSnapshot, or None unless the portfolio slot is present and parseable
        """
        portfolio_raw = self._get_json(PORTFOLIO_KEY)
        if not isinstance(portfolio_raw, dict):
            return None
        try:
            portfolio = PortfolioData.from_dict(portfolio_raw)
        except (AttributeError, TypeError, ValueError) as e:
            logger.log_cache_event({'event_type': 'corrupt_snapshot'},
                                   msg=f"Ignoring unreadable cached portfolio: {e}", level=logging.WARNING)
            return None

        trades: List[EnrichedTrade] = []
        trades_raw = self._get_json(TRADES_KEY)
        if isinstance(trades_raw, list):
            try:
                trades = [EnrichedTrade.from_dict(t) for t in trades_raw if isinstance(t, dict)]
            except (AttributeError, TypeError, ValueError) as e:
                logger.log_cache_event({'event_type': 'corrupt_trades'},
                                       msg=f"Ignoring unreadable cached trades: {e}", level=logging.WARNING)
                trades = []

        snapshot = CachedSnapshot(
            portfolio=portfolio,
            trades=trades,
            last_synced=self.read_last_synced(),
        )
        logger.log_cache_event({
            'event_type': 'snapshot_read',
            'positions': len(portfolio.positions),
            'trades': len(trades),
        })
        return snapshot

    def write_snapshot(
        self,
        portfolio: PortfolioData,
        trades: List[EnrichedTrade],
        synced_at: Optional[datetime] = None
    ) -> bool:
        """
        Replace portfolio, trades and timestamp in one batch.

        Returns:
            True if persisted, False if the cache is now memory-only
        """
        synced_at = synced_at or datetime.now(timezone.utc)
        persisted = self._set({
            PORTFOLIO_KEY: json.dumps(portfolio.to_dict()),
            TRADES_KEY: json.dumps([t.to_dict() for t in trades]),
            LAST_SYNCED_KEY: synced_at.isoformat(),
        })
        logger.log_cache_event({
            'event_type': 'snapshot_written',
            'positions': len(portfolio.positions),
            'trades': len(trades),
            'persisted': persisted,
        })
        return persisted

    def clear_snapshot(self) -> bool:
        return self._remove(SNAPSHOT_KEYS)

    # ==================== Timestamp ====================

    def read_last_synced(self) -> Optional[datetime]:
        return _parse_timestamp(self._storage.get_item(LAST_SYNCED_KEY))

    def write_last_synced(self, when: Optional[datetime] = None) -> bool:
        when = when or datetime.now(timezone.utc)
        return self._set({LAST_SYNCED_KEY: when.isoformat()})

    def age(self, now: Optional[datetime] = None) -> Optional[timedelta]:
        """Time since the last sync, or None if never synced."""
        last_synced = self.read_last_synced()
        if last_synced is None:
            return None
        return (now or datetime.now(timezone.utc)) - last_synced

    def is_stale(self, max_age: timedelta, now: Optional[datetime] = None) -> bool:
        age = self.age(now)
        return age is None or age > max_age

    # ==================== Reset ====================

    def clear_all(self) -> bool:
        """Remove credentials, snapshot and timestamp together."""
        cleared = self._remove(ALL_KEYS)
        logger.log_cache_event({'event_type': 'cleared', 'persisted': cleared})
        return cleared
