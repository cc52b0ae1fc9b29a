# tests/test_fetcher.py
import asyncio
import re
from datetime import datetime, timedelta, timezone

import pytest

from portfolio_sync.api import (
    CANDLE_CONCURRENCY,
    PortfolioFetcher,
    TradingApiClient,
    fetch_all_candles,
    fetch_portfolio,
    fetch_trade_history,
)
from portfolio_sync.exceptions import ApiResponseError, MissingCredentialsError
from portfolio_sync.models import ApiKeys

from fakes import FakeResponse, FakeSession, json_response, static

CANDLE_ROUTE = r'/market-data/instruments/(\d+)/history/candles/asc/OneDay/(\d+)'


def _fetcher(session, settings):
    client = TradingApiClient(ApiKeys.create('k', 'u'), settings, session=session)
    return PortfolioFetcher(client)


@pytest.mark.asyncio
async def test_fetch_portfolio_enriches_positions(keys, api_settings, session):
    portfolio = await fetch_portfolio(keys, api_settings, session=session)

    assert portfolio.credit == 250.5
    assert portfolio.total_invested == 1200
    long_position, short_position = portfolio.positions
    assert long_position.symbol == 'ABC'
    assert long_position.logo_url == 'https://logo/abc-50.png'
    assert long_position.pnl == pytest.approx(100)
    # Short, leverage 2: (46 - 50) * 4 * -1 * 2
    assert short_position.current_rate == 46
    assert short_position.pnl == pytest.approx(32)
    assert short_position.symbol == 'XYZ.RTH'
    assert portfolio.total_pnl == pytest.approx(132)

    instrument_call = next(c for c in session.calls if c['path'] == '/market-data/instruments')
    assert instrument_call['params'] == {'instrumentIds': '5,7'}


@pytest.mark.asyncio
async def test_portfolio_failure_is_fatal(keys, api_settings):
    session = FakeSession({r'/trading/info/portfolio': static(FakeResponse(500, 'boom'))})

    with pytest.raises(ApiResponseError) as exc_info:
        await fetch_portfolio(keys, api_settings, session=session)

    assert str(exc_info.value) == 'eToro portfolio error 500: boom'
    assert exc_info.value.status == 500


@pytest.mark.asyncio
async def test_secondary_failures_degrade_to_empty(keys, api_settings, portfolio_payload):
    session = FakeSession({
        r'/trading/info/portfolio': static(json_response(portfolio_payload)),
        r'/market-data/instruments': static(FakeResponse(500, 'down')),
        r'/market-data/instruments/rates': static(FakeResponse(403, 'forbidden')),
    })

    portfolio = await fetch_portfolio(keys, api_settings, session=session)

    assert len(portfolio.positions) == 2
    assert all(p.symbol is None and p.pnl is None for p in portfolio.positions)
    assert portfolio.total_invested == 1200
    assert portfolio.total_pnl == 0


@pytest.mark.asyncio
async def test_undecodable_instrument_body_degrades(keys, api_settings, portfolio_payload, rates_payload):
    session = FakeSession({
        r'/trading/info/portfolio': static(json_response(portfolio_payload)),
        r'/market-data/instruments': static(FakeResponse(200, b'\xff\xfe{"instrumentDisplayDatas": []}')),
        r'/market-data/instruments/rates': static(json_response(rates_payload)),
    })

    portfolio = await fetch_portfolio(keys, api_settings, session=session)

    assert len(portfolio.positions) == 2
    assert all(p.symbol is None for p in portfolio.positions)
    assert portfolio.positions[0].pnl == pytest.approx(100)
    assert portfolio.total_pnl == pytest.approx(132)


@pytest.mark.asyncio
async def test_empty_portfolio_skips_secondary_calls(keys, api_settings):
    session = FakeSession({
        r'/trading/info/portfolio': static(json_response({'clientPortfolio': {'positions': [], 'credit': 10}})),
    })

    portfolio = await fetch_portfolio(keys, api_settings, session=session)

    assert portfolio.positions == ()
    assert portfolio.credit == 10
    assert session.paths() == ['/trading/info/portfolio']


@pytest.mark.asyncio
async def test_trade_history_window_and_enrichment(keys, api_settings, session):
    trades = await fetch_trade_history(keys, 30, api_settings, session=session)

    assert len(trades) == 1
    assert trades[0].symbol == 'ABC'
    assert trades[0].net_profit == 27.5

    history_call = next(c for c in session.calls if c['path'] == '/trading/info/trade/history')
    expected = (datetime.now(timezone.utc) - timedelta(days=30)).date()
    min_date = datetime.strptime(history_call['params']['minDate'], '%Y-%m-%d').date()
    assert abs((min_date - expected).days) <= 1
    assert history_call['params']['pageSize'] == '500'


@pytest.mark.asyncio
async def test_trade_history_failure_is_fatal(keys, api_settings):
    session = FakeSession({r'/trading/info/trade/history': static(FakeResponse(400, 'bad date'))})

    with pytest.raises(ApiResponseError, match='eToro trade history error 400: bad date'):
        await fetch_trade_history(keys, 90, api_settings, session=session)


@pytest.mark.asyncio
async def test_entry_points_require_credentials(api_settings):
    session = FakeSession()
    with pytest.raises(MissingCredentialsError):
        await fetch_portfolio(None, api_settings, session=session)
    assert session.calls == []


@pytest.mark.asyncio
async def test_candle_worker_pool_is_bounded(keys, api_settings):
    in_flight = 0
    peak = 0

    async def candle_handler(path, params):
        nonlocal in_flight, peak
        instrument_id = int(re.fullmatch(CANDLE_ROUTE, path).group(1))
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.01)
        in_flight -= 1
        if instrument_id % 7 == 0:
            return json_response({'candles': [{'instrumentId': instrument_id, 'candles': []}]})
        return json_response({'candles': [{'instrumentId': instrument_id, 'candles': [
            {'fromDate': '2024-01-01T00:00:00Z', 'close': instrument_id},
        ]}]})

    session = FakeSession({CANDLE_ROUTE: candle_handler})
    ids = list(range(1, 24))

    result = await fetch_all_candles(keys, ids, 30, api_settings, session=session)

    assert peak <= CANDLE_CONCURRENCY
    assert peak == CANDLE_CONCURRENCY
    assert len(session.calls) == 23
    assert sorted(result) == [i for i in ids if i % 7 != 0]
    assert result[1][0].close == 1
    assert result[1][0].instrument_id == 1
    assert all(call['path'].endswith('/30') for call in session.calls)


@pytest.mark.asyncio
async def test_small_batches_use_fewer_workers(keys, api_settings):
    in_flight = 0
    peak = 0

    async def candle_handler(path, params):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.01)
        in_flight -= 1
        return json_response({'candles': [{'close': 1}]})

    session = FakeSession({CANDLE_ROUTE: candle_handler})
    result = await fetch_all_candles(keys, [10, 11], 5, api_settings, session=session)

    assert peak == 2
    assert sorted(result) == [10, 11]


@pytest.mark.asyncio
async def test_candle_batch_separates_empty_from_failed(api_settings):
    def candle_handler(path, params):
        instrument_id = int(re.fullmatch(CANDLE_ROUTE, path).group(1))
        if instrument_id == 1:
            return json_response({'candles': [{'candles': [{'close': 5}]}]})
        if instrument_id == 2:
            return json_response({'candles': []})
        return FakeResponse(404, 'unknown instrument')

    fetcher = _fetcher(FakeSession({CANDLE_ROUTE: candle_handler}), api_settings)
    batch = await fetcher.fetch_all_candles_detailed([1, 2, 3, 1], 10)

    assert list(batch.candles) == [1]
    assert batch.empty == [2]
    assert list(batch.failed) == [3]
    assert '404' in batch.failed[3]


@pytest.mark.asyncio
async def test_single_candle_fetch_degrades(api_settings):
    fetcher = _fetcher(FakeSession(), api_settings)
    assert await fetcher.fetch_candles(123) == []


@pytest.mark.asyncio
async def test_stocks_industries_and_watchlists(api_settings, instruments_payload, rates_payload):
    session = FakeSession({
        r'/market-data/stocks-industries': static(json_response(
            {'stocksIndustries': [{'industryID': 3, 'industryName': 'Technology'}]}
        )),
        r'/watchlists': static(json_response({'watchlists': [
            {'WatchlistId': 11, 'Name': 'Favourites', 'Items': [
                {'ItemType': 'Instrument', 'ItemId': 7},
                {'ItemType': 'Instrument', 'ItemId': 5},
            ]},
        ]})),
        r'/market-data/instruments': static(json_response(instruments_payload)),
        r'/market-data/instruments/rates': static(json_response(rates_payload)),
    })
    fetcher = _fetcher(session, api_settings)

    assert await fetcher.fetch_stocks_industries() == {3: 'Technology'}

    watchlists = await fetcher.fetch_watchlists()
    assert watchlists[0].name == 'Favourites'
    watchlist_call = next(c for c in session.calls if c['path'] == '/watchlists')
    assert watchlist_call['params'] == {'itemsPerPageForSingle': '200'}

    rows = await fetcher.fetch_watchlist_instruments(watchlists[0].instrument_ids)
    assert [r.instrument_id for r in rows] == [7, 5]
    assert rows[0].current_rate == 45
    assert rows[1].symbol == 'ABC'


@pytest.mark.asyncio
async def test_secondary_metadata_failures_are_empty(api_settings):
    fetcher = _fetcher(FakeSession({r'.*': static(FakeResponse(503, 'down'))}), api_settings)

    assert await fetcher.fetch_stocks_industries() == {}
    assert await fetcher.fetch_watchlists() == []
    assert await fetcher.fetch_instruments([1]) == []
    assert await fetcher.fetch_rates([]) == []
