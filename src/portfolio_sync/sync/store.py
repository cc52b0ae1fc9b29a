"""
Portfolio sync store.

Holds the current credentials, portfolio snapshot and trade history in an
explicit StoreState and notifies subscribers after every change. The store
owns the local cache, the logo sampler and the settings, and hands them to
the fetch pipeline and the color engine.

Cache policy:
- load() on cold start serves a cached snapshot when one exists and does
  not touch the network; only an empty cache triggers a fetch.
- refresh() always fetches. Success replaces the snapshot and timestamp;
  failure leaves the previous data in place and records the error.
- clear_keys() removes credentials, snapshot and timestamp in one batch.
"""

import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

import aiohttp

from ..api import PortfolioFetcher, TradingApiClient
from ..cache import JsonFileStorage, LocalCache
from ..colors import LogoSampler, build_logo_color_map
from ..config import PortfolioSyncConfig
from ..exceptions import MissingCredentialsError, PortfolioSyncError
from ..models.entities import ApiKeys, EnrichedTrade, PortfolioData
from ..utils import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class StoreState:
    """Snapshot of everything the store exposes."""
    keys: Optional[ApiKeys] = None
    portfolio: Optional[PortfolioData] = None
    trades: List[EnrichedTrade] = field(default_factory=list)
    colors: Dict[str, str] = field(default_factory=dict)
    loading: bool = False
    error: Optional[str] = None
    last_synced: Optional[datetime] = None
    from_cache: bool = False

    @property
    def has_keys(self) -> bool:
        return self.keys is not None


Listener = Callable[[StoreState], None]


class PortfolioStore:
    """
    Stateful front door to the sync pipeline.

    Example:
        ```python
        store = PortfolioStore(load_config())
        store.subscribe(lambda state: print(state.loading, state.error))
        await store.load()
        print(store.state.portfolio.total_pnl)
        await store.close()
        ```
    """

    def __init__(
        self,
        config: Optional[PortfolioSyncConfig] = None,
        cache: Optional[LocalCache] = None,
        sampler: Optional[LogoSampler] = None,
        session: Optional[aiohttp.ClientSession] = None
    ):
        """
        Initialize the store and restore any persisted credentials.

        Args:
            config: Service configuration. Uses defaults if not provided.
            cache: Local cache; defaults to the configured JSON file
            sampler: Logo sampler; defaults to one built from the color settings
            session: Optional shared aiohttp session for API calls
        """
        self.config = config or PortfolioSyncConfig()
        self.cache = cache or LocalCache(
            JsonFileStorage(self.config.cache.resolved_path, self.config.cache.quota_bytes)
        )
        self.sampler = sampler or LogoSampler(self.config.colors, session=session)
        self._session = session
        self._listeners: List[Listener] = []
        # Bumped on every credential change; a sync started under an older
        # generation discards its result
        self._generation = 0
        self._state = StoreState(keys=self.cache.read_keys())

    @property
    def state(self) -> StoreState:
        return self._state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register a listener called with the new state after every change.

        Returns:
            A function that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _update(self, **changes) -> None:
        self._state = replace(self._state, **changes)
        for listener in list(self._listeners):
            listener(self._state)

    # ==================== Credentials ====================

    def save_keys(self, api_key: str, user_key: str) -> ApiKeys:
        """
        Trim and persist a credential pair.

        A different pair invalidates the cached snapshot and any sync still
        running for the previous credentials.

        Raises:
            MissingCredentialsError: If either key is blank after trimming
        """
        keys = ApiKeys.create(api_key, user_key)
        if not keys.is_complete:
            raise MissingCredentialsError("Both an API key and a user key are required")

        if keys == self._state.keys:
            self.cache.save_keys(keys)
            self._update(error=None)
            return keys

        self._generation += 1
        self.cache.clear_snapshot()
        self.cache.save_keys(keys)
        self._update(
            keys=keys, portfolio=None, trades=[], colors={}, loading=False,
            error=None, last_synced=None, from_cache=False,
        )
        logger.log_sync_event({'event_type': 'keys_saved'})
        return keys

    def clear_keys(self) -> None:
        """Forget credentials and all data derived from them, including in-flight syncs."""
        self._generation += 1
        self.cache.clear_all()
        self._update(
            keys=None, portfolio=None, trades=[], colors={}, loading=False,
            error=None, last_synced=None, from_cache=False,
        )
        logger.log_sync_event({'event_type': 'keys_cleared'})

    # ==================== Load / refresh ====================

    async def load(self) -> None:
        """Cold start: serve the cached snapshot, fetching only when there is none."""
        keys = self._state.keys
        if keys is None:
            return

        snapshot = self.cache.read_snapshot()
        if snapshot is not None:
            self._update(
                portfolio=snapshot.portfolio,
                trades=list(snapshot.trades),
                last_synced=snapshot.last_synced,
                from_cache=True,
                error=None,
            )
            logger.log_sync_event({
                'event_type': 'served_from_cache',
                'positions': len(snapshot.portfolio.positions),
            })
            return

        await self._sync(keys)

    async def refresh(self) -> None:
        """
        Re-run the full pipeline regardless of cache state.

        Raises:
            MissingCredentialsError: If no credentials are configured
        """
        keys = self._state.keys
        if keys is None:
            raise MissingCredentialsError()
        await self._sync(keys)

    def _is_current(self, generation: int) -> bool:
        if generation == self._generation:
            return True
        logger.log_sync_event(
            {'event_type': 'sync_discarded'},
            msg="Credentials changed during sync, discarding result",
            level=logging.WARNING,
        )
        return False

    async def _sync(self, keys: ApiKeys) -> None:
        generation = self._generation
        with logger.correlation_context() as correlation_id:
            self._update(loading=True, error=None)
            logger.log_sync_event({'event_type': 'sync_started', 'correlation_id': correlation_id})
            try:
                portfolio, trades = await self._run_pipeline(keys)
            except PortfolioSyncError as e:
                if not self._is_current(generation):
                    return
                logger.log_sync_event(
                    {'event_type': 'sync_failed', 'error': str(e)},
                    msg=f"Sync failed: {e}",
                    level=logging.ERROR,
                )
                if self._state.portfolio is None:
                    self._update(loading=False, error=str(e), trades=[])
                else:
                    self._update(loading=False, error=str(e))
                return
            except Exception:
                if self._is_current(generation):
                    self._update(loading=False)
                raise

            if not self._is_current(generation):
                return

            synced_at = datetime.now(timezone.utc)
            self.cache.write_snapshot(portfolio, trades, synced_at)
            self._update(
                portfolio=portfolio,
                trades=trades,
                loading=False,
                error=None,
                last_synced=synced_at,
                from_cache=False,
            )
            logger.log_sync_event({
                'event_type': 'sync_completed',
                'positions': len(portfolio.positions),
                'trades': len(trades),
            })

    async def _run_pipeline(self, keys: ApiKeys):
        async with TradingApiClient(keys, self.config.api, session=self._session) as client:
            fetcher = PortfolioFetcher(client)
            results = await asyncio.gather(
                fetcher.fetch_portfolio(),
                fetcher.fetch_trade_history(),
                return_exceptions=True,
            )
        for result in results:
            if isinstance(result, BaseException):
                raise result
        portfolio, trades = results
        return portfolio, trades

    # ==================== Colors ====================

    async def build_colors(self) -> Dict[str, str]:
        """Symbol -> color map for the current portfolio's logos."""
        portfolio = self._state.portfolio
        if portfolio is None:
            return {}
        colors = await build_logo_color_map(portfolio.positions, self.sampler, self.config.colors)
        self._update(colors=colors)
        return colors

    async def close(self) -> None:
        await self.sampler.close()
