"""
Enrichment engine.

Joins normalized positions and trades with instrument metadata and live
rates. Every function here is pure: the same inputs always yield the same
outputs and nothing is cached between calls.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, TypeVar, Union

from .entities import (
    EnrichedPosition,
    EnrichedTrade,
    Instrument,
    InstrumentSnapshot,
    Position,
    Rate,
    Trade,
)

T = TypeVar('T', Instrument, Rate)

Lookup = Union[Mapping[int, T], Iterable[T]]


@dataclass(frozen=True)
class EnrichmentResult:
    """Enriched positions plus portfolio-level totals."""
    positions: Tuple[EnrichedPosition, ...]
    total_invested: float
    total_pnl: float


def index_by_instrument(items: Lookup) -> Dict[int, T]:
    """Accept either an id-keyed mapping or a sequence of entities."""
    if isinstance(items, Mapping):
        return dict(items)
    # Last record wins for duplicate ids
    return {item.instrument_id: item for item in items or ()}


def mark_to_market(position: Position, rate: Rate) -> Tuple[float, float, float]:
    """
    Value a position against a quote.

    Longs mark against the bid, shorts against the ask (the price to buy
    back).

    Returns:
        (current_rate, pnl, pnl_percent)
    """
    current_rate = rate.bid if position.is_buy else rate.ask
    direction = 1 if position.is_buy else -1
    pnl = (current_rate - position.open_rate) * position.units * direction * position.leverage
    pnl_percent = pnl / position.amount * 100 if position.amount > 0 else 0.0
    return current_rate, pnl, pnl_percent


def enrich_position(
    position: Position,
    instrument: Optional[Instrument],
    rate: Optional[Rate]
) -> EnrichedPosition:
    fields = position.to_dict()
    if instrument is not None:
        fields.update(
            symbol=instrument.symbol,
            display_name=instrument.display_name,
            logo_url=instrument.logo_url,
            stocks_industry_id=instrument.stocks_industry_id,
        )
    if rate is not None:
        current_rate, pnl, pnl_percent = mark_to_market(position, rate)
        fields.update(current_rate=current_rate, pnl=pnl, pnl_percent=pnl_percent)
    return EnrichedPosition(**fields)


def enrich_positions(
    positions: Sequence[Position],
    instruments: Lookup = (),
    rates: Lookup = ()
) -> EnrichmentResult:
    """
    Enrich positions and compute totals.

    Missing instruments or rates are not errors: the affected optional
    fields stay None. total_invested includes every position's amount;
    total_pnl includes only positions whose pnl was resolved.

    Args:
        positions: Normalized positions
        instruments: Instrument lookup, mapping or sequence
        rates: Rate lookup, mapping or sequence

    Returns:
        EnrichmentResult with positions in input order
    """
    instrument_index = index_by_instrument(instruments)
    rate_index = index_by_instrument(rates)

    enriched: List[EnrichedPosition] = []
    total_invested = 0.0
    total_pnl = 0.0

    for position in positions:
        item = enrich_position(
            position,
            instrument_index.get(position.instrument_id),
            rate_index.get(position.instrument_id),
        )
        enriched.append(item)
        total_invested += position.amount
        if item.pnl is not None:
            total_pnl += item.pnl

    return EnrichmentResult(
        positions=tuple(enriched),
        total_invested=total_invested,
        total_pnl=total_pnl,
    )


def enrich_trades(trades: Sequence[Trade], instruments: Lookup = ()) -> List[EnrichedTrade]:
    """Attach symbol, display name and logo to closed trades."""
    instrument_index = index_by_instrument(instruments)
    enriched = []
    for trade in trades:
        instrument = instrument_index.get(trade.instrument_id)
        fields = trade.to_dict()
        if instrument is not None:
            fields.update(
                symbol=instrument.symbol,
                display_name=instrument.display_name,
                logo_url=instrument.logo_url,
            )
        enriched.append(EnrichedTrade(**fields))
    return enriched


def build_instrument_snapshots(
    instrument_ids: Sequence[int],
    instruments: Lookup = (),
    rates: Lookup = ()
) -> List[InstrumentSnapshot]:
    """Watchlist rows: metadata plus the current bid, in the order of instrument_ids."""
    instrument_index = index_by_instrument(instruments)
    rate_index = index_by_instrument(rates)

    snapshots = []
    for instrument_id in instrument_ids:
        instrument = instrument_index.get(instrument_id)
        rate = rate_index.get(instrument_id)
        snapshots.append(InstrumentSnapshot(
            instrument_id=instrument_id,
            symbol=instrument.symbol if instrument else None,
            display_name=instrument.display_name if instrument else None,
            logo_url=instrument.logo_url if instrument else None,
            current_rate=rate.bid if rate else None,
        ))
    return snapshots
