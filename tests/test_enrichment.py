# tests/test_enrichment.py
import pytest

from portfolio_sync.models import (
    Instrument,
    Position,
    Rate,
    Trade,
    build_instrument_snapshots,
    enrich_positions,
    enrich_trades,
)
from portfolio_sync.models.normalizer import normalize_position


def _position(**overrides):
    fields = dict(position_id=1, instrument_id=5, open_rate=100.0, units=10.0,
                  amount=1000.0, is_buy=True, leverage=1.0)
    fields.update(overrides)
    return Position(**fields)


INSTRUMENTS = [Instrument(instrument_id=5, symbol='ABC', display_name='ABC Corp',
                          logo_url='abc.png', stocks_industry_id=2)]
RATES = [Rate(instrument_id=5, bid=110.0, ask=111.0)]


def test_long_position_marks_against_bid():
    raw = {'instrumentID': 5, 'OpenRate': 100, 'Units': 10, 'Amount': 1000,
           'IsBuy': True, 'Leverage': 1}
    result = enrich_positions([normalize_position(raw)], INSTRUMENTS, RATES)

    position = result.positions[0]
    assert position.current_rate == 110
    assert position.pnl == pytest.approx(100)
    assert position.pnl_percent == pytest.approx(10)
    assert position.symbol == 'ABC'
    assert position.display_name == 'ABC Corp'
    assert position.logo_url == 'abc.png'
    assert position.stocks_industry_id == 2
    assert result.total_invested == 1000
    assert result.total_pnl == pytest.approx(100)


def test_short_position_marks_against_ask():
    result = enrich_positions([_position(is_buy=False)], INSTRUMENTS, RATES)
    position = result.positions[0]
    assert position.current_rate == 111
    assert position.pnl == pytest.approx(-110)
    assert position.pnl_percent == pytest.approx(-11)


@pytest.mark.parametrize('bid,ask', [(120.0, 120.0), (80.0, 80.0), (100.5, 100.5)])
def test_short_pnl_sign_is_opposite_to_long(bid, ask):
    rates = [Rate(instrument_id=5, bid=bid, ask=ask)]
    long_pnl = enrich_positions([_position(is_buy=True)], (), rates).positions[0].pnl
    short_pnl = enrich_positions([_position(is_buy=False)], (), rates).positions[0].pnl
    assert long_pnl == pytest.approx(-short_pnl)
    assert long_pnl != 0


def test_leverage_scales_pnl():
    result = enrich_positions([_position(leverage=5.0)], (), RATES)
    assert result.positions[0].pnl == pytest.approx(500)
    assert result.positions[0].pnl_percent == pytest.approx(50)


def test_zero_amount_gives_zero_percent():
    result = enrich_positions([_position(amount=0.0)], (), RATES)
    assert result.positions[0].pnl == pytest.approx(100)
    assert result.positions[0].pnl_percent == 0


def test_missing_rate_leaves_valuation_undefined():
    result = enrich_positions([_position(instrument_id=99)], INSTRUMENTS, RATES)
    position = result.positions[0]
    assert position.current_rate is None
    assert position.pnl is None
    assert position.pnl_percent is None
    assert position.has_rate is False
    assert position.symbol is None


def test_totals_count_all_amounts_but_only_resolved_pnl():
    positions = [
        _position(position_id=1, amount=1000.0),
        _position(position_id=2, instrument_id=99, amount=400.0),
        _position(position_id=3, amount=600.0, is_buy=False),
    ]
    result = enrich_positions(positions, INSTRUMENTS, RATES)

    assert result.total_invested == 2000
    resolved = [p.pnl for p in result.positions if p.pnl is not None]
    assert len(resolved) == 2
    assert result.total_pnl == pytest.approx(sum(resolved))


def test_lookups_accept_mappings():
    result = enrich_positions(
        [_position()],
        {5: INSTRUMENTS[0]},
        {5: RATES[0]},
    )
    assert result.positions[0].symbol == 'ABC'
    assert result.positions[0].current_rate == 110


def test_enrichment_is_idempotent():
    positions = [_position(), _position(position_id=2, is_buy=False)]
    assert enrich_positions(positions, INSTRUMENTS, RATES) == enrich_positions(positions, INSTRUMENTS, RATES)


def test_enrich_trades_attaches_metadata():
    trades = [Trade(position_id=1, instrument_id=5, net_profit=3.0),
              Trade(position_id=2, instrument_id=6)]
    enriched = enrich_trades(trades, INSTRUMENTS)
    assert enriched[0].symbol == 'ABC'
    assert enriched[0].net_profit == 3.0
    assert enriched[1].symbol is None
    assert enriched[1].logo_url is None


def test_instrument_snapshots_use_bid_and_keep_order():
    snapshots = build_instrument_snapshots([7, 5], INSTRUMENTS, RATES)
    assert [s.instrument_id for s in snapshots] == [7, 5]
    assert snapshots[0].symbol is None
    assert snapshots[0].current_rate is None
    assert snapshots[1].symbol == 'ABC'
    assert snapshots[1].current_rate == 110
