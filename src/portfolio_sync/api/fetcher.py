"""
Fetch orchestrator.

Issues one request per entity class and runs the results through the schema
normalizer and the enrichment engine.

Failure policy:
- Portfolio and trade-history requests are primary. Their failures are
  fatal and propagate as ApiResponseError (message names the operation)
  or NetworkError.
- Every other request is secondary. Failures are logged at WARNING and the
  collection resolves to empty, so enrichment treats each lookup as a miss.
"""

import asyncio
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

import aiohttp

from ..config import ApiSettings
from ..exceptions import ApiResponseError, NetworkError
from ..models.enrichment import build_instrument_snapshots, enrich_positions, enrich_trades
from ..models.entities import (
    ApiKeys,
    Candle,
    EnrichedTrade,
    Instrument,
    InstrumentSnapshot,
    PortfolioData,
    Rate,
    Watchlist,
)
from ..models.normalizer import (
    extract_candle_items,
    normalize_candle,
    normalize_collection,
    normalize_instrument,
    normalize_portfolio_response,
    normalize_rate,
    normalize_stocks_industries,
    normalize_trade,
    normalize_watchlists,
)
from ..utils import get_logger
from .http_client import REQUEST_PRIMARY, REQUEST_SECONDARY, TradingApiClient

logger = get_logger(__name__)

# Outbound candle requests in flight at once, independent of portfolio size
CANDLE_CONCURRENCY = 5

PORTFOLIO_PATH = '/trading/info/portfolio'
TRADE_HISTORY_PATH = '/trading/info/trade/history'
INSTRUMENTS_PATH = '/market-data/instruments'
RATES_PATH = '/market-data/instruments/rates'
CANDLES_PATH = '/market-data/instruments/{instrument_id}/history/candles/{direction}/{interval}/{count}'
STOCKS_INDUSTRIES_PATH = '/market-data/stocks-industries'
WATCHLISTS_PATH = '/watchlists'

WATCHLIST_PAGE_SIZE = 200


@dataclass
class CandleBatch:
    """
    Result of a bulk candle fetch.

    candles holds only instruments that returned at least one candle;
    empty lists the ids fetched successfully with no data, and failed maps
    ids whose request failed to the error message.
    """
    candles: Dict[int, List[Candle]] = field(default_factory=dict)
    empty: List[int] = field(default_factory=list)
    failed: Dict[int, str] = field(default_factory=dict)


def _id_param(ids: Sequence[int]) -> Dict[str, str]:
    return {'instrumentIds': ','.join(str(i) for i in ids)}


def _unique(ids) -> List[int]:
    return list(dict.fromkeys(ids))


class PortfolioFetcher:
    """
    Entity-level operations over a TradingApiClient.

    Example:
        ```python
        async with TradingApiClient(keys, settings.api) as client:
            fetcher = PortfolioFetcher(client)
            portfolio = await fetcher.fetch_portfolio()
            candles = await fetcher.fetch_all_candles(portfolio.instrument_ids)
        ```
    """

    def __init__(self, client: TradingApiClient, settings: Optional[ApiSettings] = None):
        self.client = client
        self.settings = settings or client.settings

    # ==================== Primary calls ====================

    async def fetch_portfolio(self) -> PortfolioData:
        """
        Fetch and enrich the portfolio snapshot.

        Instrument metadata and rates are requested concurrently once the
        position set is known; an empty portfolio skips both.

        Raises:
            ApiResponseError: If the portfolio request fails
            NetworkError: On transport failure
        """
        try:
            data = await self.client.get_json(PORTFOLIO_PATH, request_class=REQUEST_PRIMARY)
        except ApiResponseError as e:
            raise e.with_context('eToro portfolio') from e

        positions, credit = normalize_portfolio_response(data)
        if not positions:
            return PortfolioData(positions=(), credit=credit)

        instrument_ids = _unique(p.instrument_id for p in positions)
        instruments, rates = await asyncio.gather(
            self.fetch_instruments(instrument_ids),
            self.fetch_rates(instrument_ids),
        )

        result = enrich_positions(positions, instruments, rates)
        logger.debug(
            f"Portfolio: {len(result.positions)} positions, "
            f"{len(instruments)} instruments, {len(rates)} rates"
        )
        return PortfolioData(
            positions=result.positions,
            credit=credit,
            total_invested=result.total_invested,
            total_pnl=result.total_pnl,
        )

    async def fetch_trade_history(self, days: Optional[int] = None) -> List[EnrichedTrade]:
        """
        Fetch closed trades opened within the last `days` days.

        Args:
            days: Window size; defaults to the configured trade_history_days

        Raises:
            ApiResponseError: If the trade-history request fails
            NetworkError: On transport failure
        """
        days = self.settings.trade_history_days if days is None else days
        min_date = (datetime.now(timezone.utc) - timedelta(days=days)).date().isoformat()
        params = {'minDate': min_date, 'pageSize': str(self.settings.trade_history_page_size)}

        try:
            data = await self.client.get_json(
                TRADE_HISTORY_PATH, params=params, request_class=REQUEST_PRIMARY
            )
        except ApiResponseError as e:
            raise e.with_context('eToro trade history') from e

        trades = normalize_collection(data, normalize_trade)
        if not trades:
            return []

        instruments = await self.fetch_instruments(_unique(t.instrument_id for t in trades))
        return enrich_trades(trades, instruments)

    # ==================== Secondary calls ====================

    async def _get_secondary(self, path: str, label: str, params: Optional[Dict[str, Any]] = None) -> Any:
        try:
            return await self.client.get_json(path, params=params, request_class=REQUEST_SECONDARY)
        except (ApiResponseError, NetworkError) as e:
            logger.warning(f"{label} unavailable, continuing without it: {e}")
            return None

    async def fetch_instruments(self, ids: Sequence[int]) -> List[Instrument]:
        if not ids:
            return []
        data = await self._get_secondary(INSTRUMENTS_PATH, 'Instrument metadata', _id_param(ids))
        return normalize_collection(data, normalize_instrument)

    async def fetch_rates(self, ids: Sequence[int]) -> List[Rate]:
        if not ids:
            return []
        data = await self._get_secondary(RATES_PATH, 'Rates', _id_param(ids))
        return normalize_collection(data, normalize_rate)

    async def _request_candles(
        self,
        instrument_id: int,
        count: int,
        direction: str = 'asc',
        interval: str = 'OneDay'
    ) -> List[Candle]:
        path = CANDLES_PATH.format(
            instrument_id=instrument_id, direction=direction, interval=interval, count=count
        )
        data = await self.client.get_json(path, request_class=REQUEST_SECONDARY)
        candles = normalize_collection(extract_candle_items(data), normalize_candle)
        # Candle records rarely carry their own instrument id
        return [
            c if c.instrument_id else replace(c, instrument_id=instrument_id)
            for c in candles
        ]

    async def fetch_candles(
        self,
        instrument_id: int,
        count: Optional[int] = None,
        direction: str = 'asc',
        interval: str = 'OneDay'
    ) -> List[Candle]:
        """
        Fetch OHLCV history for one instrument.

        Args:
            instrument_id: Instrument to fetch
            count: Number of candles; defaults to the configured candle_count
            direction: 'asc' or 'desc'
            interval: Candle interval, e.g. 'OneDay'

        Returns:
            Candles, or an empty list if the request failed
        """
        count = self.settings.candle_count if count is None else count
        try:
            return await self._request_candles(instrument_id, count, direction, interval)
        except (ApiResponseError, NetworkError) as e:
            logger.warning(f"Candles for instrument {instrument_id} unavailable: {e}")
            return []

    async def fetch_all_candles_detailed(
        self,
        ids: Sequence[int],
        count: Optional[int] = None
    ) -> CandleBatch:
        """
        Fetch candles for many instruments through a bounded worker pool.

        A shared FIFO queue of ids is drained by min(CANDLE_CONCURRENCY, N)
        workers; each worker pulls the next id once its previous request
        completes, so at most CANDLE_CONCURRENCY requests are in flight.

        Args:
            ids: Instrument ids; duplicates are fetched once
            count: Candles per instrument

        Returns:
            CandleBatch separating populated, empty and failed instruments
        """
        count = self.settings.candle_count if count is None else count
        queue: asyncio.Queue = asyncio.Queue()
        for instrument_id in _unique(ids):
            queue.put_nowait(instrument_id)

        batch = CandleBatch()

        async def worker() -> None:
            while True:
                try:
                    instrument_id = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                try:
                    candles = await self._request_candles(instrument_id, count)
                except (ApiResponseError, NetworkError) as e:
                    logger.warning(f"Candles for instrument {instrument_id} unavailable: {e}")
                    batch.failed[instrument_id] = str(e)
                    continue
                if candles:
                    batch.candles[instrument_id] = candles
                else:
                    batch.empty.append(instrument_id)

        worker_count = min(CANDLE_CONCURRENCY, queue.qsize())
        await asyncio.gather(*(worker() for _ in range(worker_count)))

        logger.debug(
            f"Candles: {len(batch.candles)} populated, {len(batch.empty)} empty, "
            f"{len(batch.failed)} failed"
        )
        return batch

    async def fetch_all_candles(
        self,
        ids: Sequence[int],
        count: Optional[int] = None
    ) -> Dict[int, List[Candle]]:
        """Candles keyed by instrument id; instruments with no candles are omitted."""
        batch = await self.fetch_all_candles_detailed(ids, count)
        return batch.candles

    async def fetch_stocks_industries(self) -> Dict[int, str]:
        data = await self._get_secondary(STOCKS_INDUSTRIES_PATH, 'Stocks industries')
        return normalize_stocks_industries(data)

    async def fetch_watchlists(self) -> List[Watchlist]:
        data = await self._get_secondary(
            WATCHLISTS_PATH, 'Watchlists', {'itemsPerPageForSingle': str(WATCHLIST_PAGE_SIZE)}
        )
        return normalize_watchlists(data)

    async def fetch_watchlist_instruments(self, ids: Sequence[int]) -> List[InstrumentSnapshot]:
        """Metadata and current bid for each id, in the order given."""
        if not ids:
            return []
        instruments, rates = await asyncio.gather(
            self.fetch_instruments(ids),
            self.fetch_rates(ids),
        )
        return build_instrument_snapshots(ids, instruments, rates)


# ==================== Credential-level entry points ====================

async def fetch_portfolio(
    keys: Optional[ApiKeys],
    settings: Optional[ApiSettings] = None,
    session: Optional[aiohttp.ClientSession] = None
) -> PortfolioData:
    """Fetch the enriched portfolio for a credential pair."""
    async with TradingApiClient(keys, settings, session=session) as client:
        return await PortfolioFetcher(client).fetch_portfolio()


async def fetch_trade_history(
    keys: Optional[ApiKeys],
    days: Optional[int] = None,
    settings: Optional[ApiSettings] = None,
    session: Optional[aiohttp.ClientSession] = None
) -> List[EnrichedTrade]:
    """Fetch enriched trade history for a credential pair."""
    async with TradingApiClient(keys, settings, session=session) as client:
        return await PortfolioFetcher(client).fetch_trade_history(days)


async def fetch_all_candles(
    keys: Optional[ApiKeys],
    ids: Sequence[int],
    count: Optional[int] = None,
    settings: Optional[ApiSettings] = None,
    session: Optional[aiohttp.ClientSession] = None
) -> Dict[int, List[Candle]]:
    """Fetch candles for many instruments with bounded concurrency."""
    async with TradingApiClient(keys, settings, session=session) as client:
        return await PortfolioFetcher(client).fetch_all_candles(ids, count)
