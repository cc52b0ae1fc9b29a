"""
Models package: canonical entities, the schema normalizer and enrichment.
"""

from .entities import (
    ApiKeys,
    Candle,
    EnrichedPosition,
    EnrichedTrade,
    Instrument,
    InstrumentSnapshot,
    PortfolioData,
    Position,
    Rate,
    Trade,
    Watchlist,
)
from .enrichment import (
    EnrichmentResult,
    build_instrument_snapshots,
    enrich_positions,
    enrich_trades,
)
from .normalizer import (
    FieldSpec,
    extract_collection,
    normalize_candle,
    normalize_collection,
    normalize_instrument,
    normalize_position,
    normalize_rate,
    normalize_trade,
    pick,
)

__all__ = [
    'ApiKeys',
    'Candle',
    'EnrichedPosition',
    'EnrichedTrade',
    'Instrument',
    'InstrumentSnapshot',
    'PortfolioData',
    'Position',
    'Rate',
    'Trade',
    'Watchlist',
    'EnrichmentResult',
    'build_instrument_snapshots',
    'enrich_positions',
    'enrich_trades',
    'FieldSpec',
    'extract_collection',
    'normalize_candle',
    'normalize_collection',
    'normalize_instrument',
    'normalize_position',
    'normalize_rate',
    'normalize_trade',
    'pick',
]
