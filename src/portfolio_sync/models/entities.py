"""
Canonical entities for the portfolio sync pipeline.

Every upstream response is normalized into these frozen dataclasses. They
are created fresh on each pipeline run and never mutated; enrichment builds
new EnrichedPosition/EnrichedTrade instances instead of updating in place.

The optional valuation fields of EnrichedPosition (current_rate, pnl,
pnl_percent) are None when no rate was returned for the instrument. That is
an expected state and must not be confused with a zero P&L.
"""

from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, List, Optional, Tuple


def _known_fields(cls, data: Dict[str, Any]) -> Dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in names}


@dataclass(frozen=True)
class ApiKeys:
    """Opaque credential pair for the trading API."""

    api_key: str
    user_key: str

    @classmethod
    def create(cls, api_key: str, user_key: str) -> 'ApiKeys':
        return cls(api_key=(api_key or '').strip(), user_key=(user_key or '').strip())

    @property
    def is_complete(self) -> bool:
        return bool(self.api_key) and bool(self.user_key)

    def to_dict(self) -> Dict[str, str]:
        """Persisted credential format: exactly apiKey and userKey."""
        return {'apiKey': self.api_key, 'userKey': self.user_key}

    @classmethod
    def from_dict(cls, data: Any) -> Optional['ApiKeys']:
        if not isinstance(data, dict):
            return None
        api_key = data.get('apiKey')
        user_key = data.get('userKey')
        if not isinstance(api_key, str) or not isinstance(user_key, str):
            return None
        keys = cls.create(api_key, user_key)
        return keys if keys.is_complete else None

    def __repr__(self) -> str:
        return "ApiKeys(api_key='***', user_key='***')"

    __str__ = __repr__


@dataclass(frozen=True)
class Position:
    """An open brokerage holding."""

    position_id: int = 0
    instrument_id: int = 0
    open_rate: float = 0.0
    units: float = 0.0
    amount: float = 0.0
    is_buy: bool = True
    open_date_time: str = ''
    leverage: float = 1.0
    total_fees: float = 0.0
    initial_amount_in_dollars: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Position':
        return cls(**_known_fields(cls, data))


@dataclass(frozen=True)
class Instrument:
    """Reference metadata for a tradable asset."""

    instrument_id: int = 0
    display_name: Optional[str] = None
    symbol: Optional[str] = None
    logo_url: Optional[str] = None
    stocks_industry_id: Optional[int] = None


@dataclass(frozen=True)
class Rate:
    """Point-in-time quote. Consumed during enrichment, never persisted."""

    instrument_id: int = 0
    ask: float = 0.0
    bid: float = 0.0


@dataclass(frozen=True)
class Trade:
    """A closed position."""

    position_id: int = 0
    instrument_id: int = 0
    is_buy: bool = True
    open_rate: float = 0.0
    close_rate: float = 0.0
    open_timestamp: str = ''
    close_timestamp: str = ''
    investment: float = 0.0
    net_profit: float = 0.0
    units: float = 0.0
    leverage: float = 1.0
    fees: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Trade':
        return cls(**_known_fields(cls, data))


@dataclass(frozen=True)
class Candle:
    """One time-bucketed OHLCV sample."""

    instrument_id: int = 0
    date: str = ''
    open: float = 0.0
    high: float = 0.0
    low: float = 0.0
    close: float = 0.0
    volume: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class EnrichedPosition(Position):
    """Position joined with instrument metadata and marked to market."""

    symbol: Optional[str] = None
    display_name: Optional[str] = None
    logo_url: Optional[str] = None
    stocks_industry_id: Optional[int] = None
    current_rate: Optional[float] = None
    pnl: Optional[float] = None
    pnl_percent: Optional[float] = None

    @property
    def has_rate(self) -> bool:
        return self.current_rate is not None


@dataclass(frozen=True)
class EnrichedTrade(Trade):
    """Trade joined with instrument metadata."""

    symbol: Optional[str] = None
    display_name: Optional[str] = None
    logo_url: Optional[str] = None


@dataclass(frozen=True)
class PortfolioData:
    """
    Enriched portfolio snapshot.

    total_invested sums every position's amount; total_pnl sums only the
    positions whose pnl could be resolved.
    """

    positions: Tuple[EnrichedPosition, ...] = ()
    credit: float = 0.0
    total_invested: float = 0.0
    total_pnl: float = 0.0

    @property
    def instrument_ids(self) -> List[int]:
        return list(dict.fromkeys(p.instrument_id for p in self.positions))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'positions': [p.to_dict() for p in self.positions],
            'credit': self.credit,
            'total_invested': self.total_invested,
            'total_pnl': self.total_pnl,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PortfolioData':
        return cls(
            positions=tuple(EnrichedPosition.from_dict(p) for p in data.get('positions', [])),
            credit=data.get('credit', 0.0),
            total_invested=data.get('total_invested', 0.0),
            total_pnl=data.get('total_pnl', 0.0),
        )


@dataclass(frozen=True)
class Watchlist:
    """A named list of instrument ids."""

    id: str
    name: str
    instrument_ids: Tuple[int, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class InstrumentSnapshot:
    """Instrument metadata plus the current bid, used for watchlist rows."""

    instrument_id: int
    symbol: Optional[str] = None
    display_name: Optional[str] = None
    logo_url: Optional[str] = None
    current_rate: Optional[float] = None
