# tests/test_store.py
import asyncio
from datetime import datetime, timezone

import pytest

from portfolio_sync.cache import ALL_KEYS, LocalCache, MemoryStorage
from portfolio_sync.exceptions import MissingCredentialsError
from portfolio_sync.models import ApiKeys, EnrichedPosition, PortfolioData
from portfolio_sync.sync import PortfolioStore, StoreState

from fakes import FakeResponse, json_response, static

CACHED_PORTFOLIO = PortfolioData(
    positions=(EnrichedPosition(position_id=77, instrument_id=5, amount=10.0, symbol='OLD'),),
    credit=1.0,
    total_invested=10.0,
)


@pytest.fixture
def store(config, memory_cache, session):
    return PortfolioStore(config, cache=memory_cache, session=session)


def _with_keys(cache):
    cache.save_keys(ApiKeys.create('test-api-key', 'test-user-key'))
    return cache


@pytest.mark.asyncio
async def test_load_without_keys_does_nothing(store, session):
    await store.load()

    assert store.state == StoreState()
    assert session.calls == []


@pytest.mark.asyncio
async def test_load_serves_cache_without_network(config, memory_cache, session):
    synced_at = datetime(2024, 3, 1, tzinfo=timezone.utc)
    _with_keys(memory_cache).write_snapshot(CACHED_PORTFOLIO, [], synced_at)
    store = PortfolioStore(config, cache=memory_cache, session=session)

    await store.load()

    assert store.state.portfolio == CACHED_PORTFOLIO
    assert store.state.from_cache is True
    assert store.state.last_synced == synced_at
    assert session.calls == []


@pytest.mark.asyncio
async def test_load_with_empty_cache_fetches_and_persists(config, memory_cache, session):
    store = PortfolioStore(config, cache=_with_keys(memory_cache), session=session)

    await store.load()

    state = store.state
    assert state.loading is False
    assert state.error is None
    assert state.from_cache is False
    assert len(state.portfolio.positions) == 2
    assert state.trades[0].symbol == 'ABC'
    assert state.last_synced is not None

    snapshot = memory_cache.read_snapshot()
    assert snapshot.portfolio == state.portfolio
    assert snapshot.trades == state.trades


@pytest.mark.asyncio
async def test_refresh_ignores_cache(config, memory_cache, session):
    _with_keys(memory_cache).write_snapshot(CACHED_PORTFOLIO, [])
    store = PortfolioStore(config, cache=memory_cache, session=session)

    await store.refresh()

    assert store.state.portfolio != CACHED_PORTFOLIO
    assert '/trading/info/portfolio' in session.paths()
    assert memory_cache.read_snapshot().portfolio == store.state.portfolio


@pytest.mark.asyncio
async def test_refresh_failure_keeps_previous_data(config, memory_cache, session):
    store = PortfolioStore(config, cache=_with_keys(memory_cache), session=session)
    await store.refresh()
    before = store.state

    session.routes[r'/trading/info/portfolio'] = static(FakeResponse(500, 'Internal'))
    await store.refresh()

    assert store.state.portfolio == before.portfolio
    assert store.state.trades == before.trades
    assert store.state.last_synced == before.last_synced
    assert store.state.error == 'eToro portfolio error 500: Internal'
    assert store.state.loading is False
    assert memory_cache.read_snapshot().portfolio == before.portfolio


@pytest.mark.asyncio
async def test_initial_failure_leaves_no_portfolio(config, memory_cache, session):
    session.routes[r'/trading/info/trade/history'] = static(FakeResponse(401, 'Unauthorized'))
    store = PortfolioStore(config, cache=_with_keys(memory_cache), session=session)

    await store.load()

    assert store.state.portfolio is None
    assert store.state.trades == []
    assert store.state.error == 'eToro trade history error 401: Unauthorized'
    assert memory_cache.read_snapshot() is None


@pytest.mark.asyncio
async def test_refresh_without_keys_raises(store, session):
    with pytest.raises(MissingCredentialsError):
        await store.refresh()
    assert session.calls == []


def test_save_keys_trims_and_persists(store, memory_cache):
    keys = store.save_keys('  abc ', ' def  ')

    assert keys == ApiKeys('abc', 'def')
    assert store.state.keys == keys
    assert memory_cache.read_keys() == keys


@pytest.mark.parametrize('api_key,user_key', [('', 'u'), ('a', '   ')])
def test_save_keys_rejects_blank(store, memory_cache, api_key, user_key):
    with pytest.raises(MissingCredentialsError):
        store.save_keys(api_key, user_key)
    assert memory_cache.read_keys() is None


@pytest.mark.asyncio
async def test_clear_keys_wipes_everything(config, session):
    storage = MemoryStorage()
    cache = _with_keys(LocalCache(storage))
    store = PortfolioStore(config, cache=cache, session=session)
    await store.load()

    store.clear_keys()

    assert store.state == StoreState()
    assert all(storage.get_item(key) is None for key in ALL_KEYS)


@pytest.mark.asyncio
async def test_subscribers_see_loading_transitions(config, memory_cache, session):
    store = PortfolioStore(config, cache=_with_keys(memory_cache), session=session)
    seen = []
    unsubscribe = store.subscribe(lambda state: seen.append(state.loading))

    await store.refresh()
    assert seen[0] is True
    assert seen[-1] is False

    unsubscribe()
    count = len(seen)
    await store.refresh()
    assert len(seen) == count


@pytest.mark.asyncio
async def test_build_colors_without_portfolio_is_empty(store):
    assert await store.build_colors() == {}


@pytest.mark.asyncio
async def test_close_leaves_shared_session_open(store, session):
    await store.close()
    assert session.closed is False


def _gated(response, gate):
    async def handler(path, params):
        await gate.wait()
        return response
    return handler


async def _until_requested(session, path):
    while path not in session.paths():
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_clear_keys_during_sync_discards_result(config, portfolio_payload, session):
    storage = MemoryStorage()
    cache = LocalCache(storage)
    gate = asyncio.Event()
    session.routes[r'/trading/info/portfolio'] = _gated(json_response(portfolio_payload), gate)
    store = PortfolioStore(config, cache=cache, session=session)
    store.save_keys('first', 'account')

    task = asyncio.ensure_future(store.refresh())
    await _until_requested(session, '/trading/info/portfolio')
    store.clear_keys()
    gate.set()
    await task

    assert store.state == StoreState()
    assert all(storage.get_item(key) is None for key in ALL_KEYS)
    assert cache.read_snapshot() is None

    store.save_keys('second', 'account')
    await store.load()
    assert store.state.from_cache is False
    assert store.state.portfolio is not None
    assert session.paths().count('/trading/info/portfolio') == 2


@pytest.mark.asyncio
async def test_switching_keys_during_sync_keeps_new_account_clean(config, memory_cache, session):
    gate = asyncio.Event()
    session.routes[r'/trading/info/trade/history'] = _gated(FakeResponse(401, 'Unauthorized'), gate)
    store = PortfolioStore(config, cache=memory_cache, session=session)
    store.save_keys('first', 'account')

    task = asyncio.ensure_future(store.refresh())
    await _until_requested(session, '/trading/info/trade/history')
    store.save_keys('second', 'account')
    gate.set()
    await task

    assert store.state.keys == ApiKeys('second', 'account')
    assert store.state.error is None
    assert store.state.loading is False
    assert store.state.portfolio is None


def test_switching_keys_drops_previous_snapshot(config, memory_cache, session):
    _with_keys(memory_cache).write_snapshot(CACHED_PORTFOLIO, [])
    store = PortfolioStore(config, cache=memory_cache, session=session)

    store.save_keys('test-api-key', 'test-user-key')
    assert memory_cache.read_snapshot().portfolio == CACHED_PORTFOLIO

    store.save_keys('other-key', 'other-user')
    assert memory_cache.read_snapshot() is None
    assert store.state.portfolio is None
    assert memory_cache.read_keys() == ApiKeys('other-key', 'other-user')


@pytest.mark.asyncio
async def test_unexpected_failure_still_clears_loading(config, memory_cache, session):
    def explode(path, params):
        raise RuntimeError('decoder crashed')

    session.routes[r'/trading/info/portfolio'] = explode
    store = PortfolioStore(config, cache=_with_keys(memory_cache), session=session)

    with pytest.raises(RuntimeError):
        await store.refresh()

    assert store.state.loading is False
    assert memory_cache.read_snapshot() is None
