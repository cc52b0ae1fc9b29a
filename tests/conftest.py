# tests/conftest.py
import pytest

from portfolio_sync.cache import LocalCache, MemoryStorage
from portfolio_sync.config import ApiSettings, PortfolioSyncConfig
from portfolio_sync.models import ApiKeys

from fakes import FakeSession, json_response, static


@pytest.fixture
def keys():
    return ApiKeys.create('test-api-key', 'test-user-key')


@pytest.fixture
def api_settings():
    return ApiSettings(retry_delay_base=0, retry_delay_max=0)


@pytest.fixture
def config(api_settings):
    return PortfolioSyncConfig(api=api_settings)


@pytest.fixture
def memory_cache():
    return LocalCache(MemoryStorage())


@pytest.fixture
def portfolio_payload():
    return {
        'clientPortfolio': {
            'credit': 250.5,
            'positions': [
                {'positionID': 1, 'instrumentID': 5, 'OpenRate': 100, 'Units': 10,
                 'Amount': 1000, 'IsBuy': True, 'Leverage': 1,
                 'openDateTime': '2024-01-02T10:00:00Z'},
                {'positionId': 2, 'InstrumentId': 7, 'openRate': 50, 'units': 4,
                 'amount': 200, 'isBuy': False, 'leverage': 2},
            ],
        }
    }


@pytest.fixture
def instruments_payload():
    return {
        'instrumentDisplayDatas': [
            {'instrumentID': 5, 'symbolFull': 'ABC', 'instrumentDisplayName': 'ABC Corp',
             'images': [{'width': 35, 'uri': 'https://logo/abc-35.png'},
                        {'width': 50, 'uri': 'https://logo/abc-50.png'}]},
            {'InstrumentId': 7, 'SymbolFull': 'XYZ.RTH', 'InstrumentDisplayName': 'XYZ Inc',
             'stocksIndustryId': 3},
        ]
    }


@pytest.fixture
def rates_payload():
    return {
        'rates': [
            {'instrumentID': 5, 'bid': 110, 'ask': 111},
            {'InstrumentID': 7, 'Bid': 45, 'Ask': 46},
        ]
    }


@pytest.fixture
def trades_payload():
    return [
        {'positionId': 90, 'instrumentId': 5, 'isBuy': True, 'openRate': 90, 'closeRate': 95,
         'openTimestamp': '2024-01-01T00:00:00Z', 'closeTimestamp': '2024-02-01T00:00:00Z',
         'investment': 500, 'netProfit': 27.5, 'units': 5.5, 'leverage': 1, 'fees': 0},
    ]


@pytest.fixture
def api_routes(portfolio_payload, instruments_payload, rates_payload, trades_payload):
    return {
        r'/trading/info/portfolio': static(json_response(portfolio_payload)),
        r'/market-data/instruments': static(json_response(instruments_payload)),
        r'/market-data/instruments/rates': static(json_response(rates_payload)),
        r'/trading/info/trade/history': static(json_response(trades_payload)),
    }


@pytest.fixture
def session(api_routes):
    return FakeSession(api_routes)
