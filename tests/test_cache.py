# tests/test_cache.py
import json
from datetime import datetime, timedelta, timezone

import pytest

from portfolio_sync.cache import (
    ALL_KEYS,
    API_KEYS_KEY,
    LAST_SYNCED_KEY,
    PORTFOLIO_KEY,
    TRADES_KEY,
    JsonFileStorage,
    LocalCache,
    MemoryStorage,
)
from portfolio_sync.exceptions import StorageError, StorageQuotaExceededError
from portfolio_sync.models import ApiKeys, EnrichedPosition, EnrichedTrade, PortfolioData


@pytest.fixture
def portfolio():
    return PortfolioData(
        positions=(
            EnrichedPosition(position_id=1, instrument_id=5, amount=1000.0, symbol='ABC',
                             current_rate=110.0, pnl=100.0, pnl_percent=10.0),
            EnrichedPosition(position_id=2, instrument_id=6, amount=50.0),
        ),
        credit=12.0,
        total_invested=1050.0,
        total_pnl=100.0,
    )


@pytest.fixture
def trades():
    return [EnrichedTrade(position_id=9, instrument_id=5, net_profit=4.5, symbol='ABC')]


class FailingStorage(MemoryStorage):
    """Reads work, every write fails."""

    def set_items(self, items):
        raise StorageError("disk full")

    def remove_items(self, keys):
        raise StorageError("disk full")


def test_versioned_keys():
    assert API_KEYS_KEY == 'portfolio-sync:api-keys'
    assert PORTFOLIO_KEY == 'portfolio-sync:v1:portfolio'
    assert TRADES_KEY == 'portfolio-sync:v1:trades'
    assert LAST_SYNCED_KEY == 'portfolio-sync:v1:last-synced'


def test_keys_round_trip_and_format(memory_cache):
    memory_cache.save_keys(ApiKeys.create(' api ', ' user '))
    assert memory_cache.read_keys() == ApiKeys('api', 'user')

    stored = json.loads(memory_cache._storage.get_item(API_KEYS_KEY))
    assert stored == {'apiKey': 'api', 'userKey': 'user'}


def test_incomplete_stored_keys_are_ignored():
    storage = MemoryStorage(initial={API_KEYS_KEY: json.dumps({'apiKey': 'a', 'userKey': ''})})
    assert LocalCache(storage).read_keys() is None


def test_snapshot_round_trip(memory_cache, portfolio, trades):
    synced_at = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    assert memory_cache.write_snapshot(portfolio, trades, synced_at) is True

    snapshot = memory_cache.read_snapshot()
    assert snapshot.portfolio == portfolio
    assert snapshot.trades == trades
    assert snapshot.last_synced == synced_at
    assert snapshot.portfolio.positions[1].pnl is None


def test_trades_without_portfolio_are_not_a_snapshot(trades):
    storage = MemoryStorage(initial={
        TRADES_KEY: json.dumps([t.to_dict() for t in trades]),
        LAST_SYNCED_KEY: '2024-01-01T00:00:00+00:00',
    })
    assert LocalCache(storage).read_snapshot() is None


def test_corrupt_portfolio_slot_reads_as_missing():
    storage = MemoryStorage(initial={PORTFOLIO_KEY: '{not json'})
    assert LocalCache(storage).read_snapshot() is None


def test_clear_all_removes_every_slot(memory_cache, portfolio, trades):
    memory_cache.save_keys(ApiKeys.create('a', 'u'))
    memory_cache.write_snapshot(portfolio, trades)

    memory_cache.clear_all()

    assert all(memory_cache._storage.get_item(key) is None for key in ALL_KEYS)
    assert memory_cache.read_keys() is None
    assert memory_cache.read_snapshot() is None
    assert memory_cache.read_last_synced() is None


def test_clear_snapshot_keeps_credentials(memory_cache, portfolio, trades):
    memory_cache.save_keys(ApiKeys.create('a', 'u'))
    memory_cache.write_snapshot(portfolio, trades)

    memory_cache.clear_snapshot()

    assert memory_cache.read_keys() is not None
    assert memory_cache.read_snapshot() is None


def test_freshness_helpers(memory_cache):
    now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    assert memory_cache.age(now) is None
    assert memory_cache.is_stale(timedelta(minutes=5), now) is True

    memory_cache.write_last_synced(now - timedelta(minutes=2))
    assert memory_cache.age(now) == timedelta(minutes=2)
    assert memory_cache.is_stale(timedelta(minutes=5), now) is False
    assert memory_cache.is_stale(timedelta(minutes=1), now) is True


def test_write_failure_switches_to_memory_only(portfolio, trades):
    cache = LocalCache(FailingStorage())

    assert cache.write_snapshot(portfolio, trades) is False
    assert cache.memory_only is True
    # The session still sees its own data
    assert cache.read_snapshot().portfolio == portfolio
    assert cache.save_keys(ApiKeys.create('a', 'u')) is False


def test_quota_exceeded_is_not_fatal(portfolio, trades):
    cache = LocalCache(MemoryStorage(quota_bytes=64))

    assert cache.write_snapshot(portfolio, trades) is False
    assert cache.memory_only is True
    assert cache.read_snapshot() is not None


def test_memory_storage_quota_rejects_whole_batch():
    storage = MemoryStorage(quota_bytes=40)
    storage.set_items({'a': 'x'})
    with pytest.raises(StorageQuotaExceededError):
        storage.set_items({'b': 'y' * 100, 'c': 'z'})
    assert storage.get_item('b') is None
    assert storage.get_item('c') is None
    assert storage.get_item('a') == 'x'


def test_json_file_storage_persists_across_instances(tmp_path, portfolio, trades):
    path = tmp_path / 'nested' / 'storage.json'
    LocalCache(JsonFileStorage(path)).write_snapshot(portfolio, trades)

    reopened = LocalCache(JsonFileStorage(path))
    assert reopened.read_snapshot().portfolio == portfolio
    assert list(tmp_path.joinpath('nested').iterdir()) == [path]


def test_json_file_storage_quota(tmp_path):
    storage = JsonFileStorage(tmp_path / 'storage.json', quota_bytes=32)
    storage.set_items({'k': 'v'})
    with pytest.raises(StorageQuotaExceededError):
        storage.set_items({'big': 'x' * 64})
    assert storage.get_item('k') == 'v'
    assert storage.get_item('big') is None


def test_json_file_storage_tolerates_corrupt_file(tmp_path):
    path = tmp_path / 'storage.json'
    path.write_text('[1, 2', encoding='utf-8')
    storage = JsonFileStorage(path)

    assert storage.get_item('anything') is None
    storage.set_items({'k': 'v'})
    assert json.loads(path.read_text(encoding='utf-8')) == {'k': 'v'}


def test_json_file_storage_remove_batch(tmp_path):
    storage = JsonFileStorage(tmp_path / 'storage.json')
    storage.set_items({'a': '1', 'b': '2', 'c': '3'})
    storage.remove_items(['a', 'b', 'missing'])
    assert storage.get_item('a') is None
    assert storage.get_item('b') is None
    assert storage.get_item('c') == '3'
