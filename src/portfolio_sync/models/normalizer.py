"""
Schema normalizer for trading API responses.

The upstream API is inconsistent about key casing (instrumentID,
instrumentId, InstrumentID, ...) and about envelopes (bare arrays versus an
object wrapping one array). Each canonical field is described once in an
alias table; adding a new upstream spelling is a one-line change to the
table, not a new branch.

Resolution rules:
- Aliases are tried in order; the first key that is present with a non-null
  value wins.
- When no alias is present the field takes its documented default
  (0 for ids and amounts, '' for timestamps, True for direction, 1 for
  leverage, None for optional metadata).
- A present value that cannot be coerced to the field's kind raises
  NormalizationError. Batch helpers drop such records and keep going.
"""

import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, TypeVar

from ..exceptions import NormalizationError
from ..utils import get_logger
from .entities import Candle, Instrument, Position, Rate, Trade, Watchlist

logger = get_logger(__name__)

T = TypeVar('T')

_MISSING = object()


@dataclass(frozen=True)
class FieldSpec:
    """One canonical field: its upstream spellings, default and value kind."""
    aliases: Tuple[str, ...]
    default: Any
    kind: str = 'float'


ID_ALIASES = {
    'instrument': ('instrumentID', 'instrumentId', 'InstrumentID', 'InstrumentId'),
    'position': ('positionID', 'positionId', 'PositionID', 'PositionId'),
}

POSITION_FIELDS: Dict[str, FieldSpec] = {
    'position_id': FieldSpec(ID_ALIASES['position'], 0, 'int'),
    'instrument_id': FieldSpec(ID_ALIASES['instrument'], 0, 'int'),
    'open_rate': FieldSpec(('openRate', 'OpenRate'), 0.0),
    'units': FieldSpec(('units', 'Units'), 0.0),
    'amount': FieldSpec(('amount', 'Amount'), 0.0),
    'is_buy': FieldSpec(('isBuy', 'IsBuy'), True, 'bool'),
    'open_date_time': FieldSpec(('openDateTime', 'OpenDateTime'), '', 'str'),
    'leverage': FieldSpec(('leverage', 'Leverage'), 1.0),
    'total_fees': FieldSpec(('totalFees', 'TotalFees'), 0.0),
    'initial_amount_in_dollars': FieldSpec(
        ('initialAmountInDollars', 'InitialAmountInDollars'), 0.0
    ),
}

INSTRUMENT_FIELDS: Dict[str, FieldSpec] = {
    'instrument_id': FieldSpec(ID_ALIASES['instrument'], 0, 'int'),
    'display_name': FieldSpec(
        ('instrumentDisplayName', 'InstrumentDisplayName'), None, 'opt_str'
    ),
    'symbol': FieldSpec(
        ('symbolFull', 'SymbolFull', 'internalSymbolFull', 'InternalSymbolFull'),
        None, 'opt_str'
    ),
    'stocks_industry_id': FieldSpec(
        ('stocksIndustryID', 'stocksIndustryId', 'StocksIndustryID', 'StocksIndustryId'),
        None, 'opt_int'
    ),
}

RATE_FIELDS: Dict[str, FieldSpec] = {
    'instrument_id': FieldSpec(ID_ALIASES['instrument'], 0, 'int'),
    'ask': FieldSpec(('ask', 'Ask'), 0.0),
    'bid': FieldSpec(('bid', 'Bid'), 0.0),
}

TRADE_FIELDS: Dict[str, FieldSpec] = {
    'position_id': FieldSpec(ID_ALIASES['position'], 0, 'int'),
    'instrument_id': FieldSpec(ID_ALIASES['instrument'], 0, 'int'),
    'is_buy': FieldSpec(('isBuy', 'IsBuy'), True, 'bool'),
    'open_rate': FieldSpec(('openRate', 'OpenRate'), 0.0),
    'close_rate': FieldSpec(('closeRate', 'CloseRate'), 0.0),
    'open_timestamp': FieldSpec(('openTimestamp', 'OpenTimestamp'), '', 'str'),
    'close_timestamp': FieldSpec(('closeTimestamp', 'CloseTimestamp'), '', 'str'),
    'investment': FieldSpec(('investment', 'Investment'), 0.0),
    'net_profit': FieldSpec(('netProfit', 'NetProfit'), 0.0),
    'units': FieldSpec(('units', 'Units'), 0.0),
    'leverage': FieldSpec(('leverage', 'Leverage'), 1.0),
    'fees': FieldSpec(('fees', 'Fees'), 0.0),
}

CANDLE_FIELDS: Dict[str, FieldSpec] = {
    'instrument_id': FieldSpec(ID_ALIASES['instrument'], 0, 'int'),
    'date': FieldSpec(('fromDate', 'FromDate'), '', 'str'),
    'open': FieldSpec(('open', 'Open'), 0.0),
    'high': FieldSpec(('high', 'High'), 0.0),
    'low': FieldSpec(('low', 'Low'), 0.0),
    'close': FieldSpec(('close', 'Close'), 0.0),
    'volume': FieldSpec(('volume', 'Volume'), 0.0),
}

IMAGE_LIST_ALIASES = ('images', 'Images')
IMAGE_URI_ALIASES = ('uri', 'Uri', 'URI')
IMAGE_WIDTH_ALIASES = ('width', 'Width')
# Standard logo resolution first, then the smaller one, then anything
LOGO_WIDTH_PREFERENCE = (50, 35)

PORTFOLIO_ENVELOPE_ALIASES = ('clientPortfolio', 'ClientPortfolio')
PORTFOLIO_POSITIONS_ALIASES = ('positions', 'Positions')
PORTFOLIO_CREDIT_ALIASES = ('credit', 'Credit')
CANDLE_LIST_ALIASES = ('candles', 'Candles')
INDUSTRY_LIST_ALIASES = ('stocksIndustries', 'StocksIndustries')
INDUSTRY_ID_ALIASES = ('industryID', 'industryId', 'IndustryID', 'IndustryId')
INDUSTRY_NAME_ALIASES = ('industryName', 'IndustryName')
WATCHLIST_LIST_ALIASES = ('watchlists', 'Watchlists')
WATCHLIST_ID_ALIASES = ('WatchlistId', 'watchlistId', 'WatchlistID', 'watchlistID', 'id')
WATCHLIST_NAME_ALIASES = ('Name', 'name', 'displayName', 'DisplayName')
WATCHLIST_ITEMS_ALIASES = ('Items', 'items')
WATCHLIST_ITEM_TYPE_ALIASES = ('ItemType', 'itemType')
WATCHLIST_ITEM_ID_ALIASES = ('ItemId', 'itemId', 'ItemID', 'itemID')


def pick(raw: Mapping[str, Any], keys: Sequence[str], default: Any = None) -> Any:
    """Return the value of the first key present with a non-null value."""
    for key in keys:
        value = raw.get(key)
        if value is not None:
            return value
    return default


def _coerce_int(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError("boolean is not an id")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError(f"non-integral id {value}")
        return int(value)
    if isinstance(value, str):
        return int(value.strip())
    raise ValueError(f"cannot convert {type(value).__name__} to int")


def _coerce_float(value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError("boolean is not a number")
    if isinstance(value, (int, float)):
        result = float(value)
    elif isinstance(value, str):
        result = float(value.strip())
    else:
        raise ValueError(f"cannot convert {type(value).__name__} to float")
    if not math.isfinite(result):
        raise ValueError(f"non-finite number {value!r}")
    return result


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)) and value in (0, 1):
        return bool(value)
    if isinstance(value, str) and value.strip().lower() in ('true', 'false'):
        return value.strip().lower() == 'true'
    raise ValueError(f"cannot convert {value!r} to bool")


def _coerce_str(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    raise ValueError(f"cannot convert {type(value).__name__} to str")


COERCERS: Dict[str, Callable[[Any], Any]] = {
    'int': _coerce_int,
    'float': _coerce_float,
    'bool': _coerce_bool,
    'str': _coerce_str,
    'opt_int': _coerce_int,
    'opt_str': _coerce_str,
}


def resolve_fields(raw: Any, spec: Mapping[str, FieldSpec], entity: str) -> Dict[str, Any]:
    """
    Resolve every canonical field of an entity from a raw upstream record.

    Args:
        raw: Upstream JSON object
        spec: Alias table for the entity
        entity: Entity name, used in error messages

    Returns:
        Dictionary of canonical field name to coerced value

    Raises:
        NormalizationError: If raw is not an object or a value has the wrong shape
    """
    if not isinstance(raw, Mapping):
        raise NormalizationError(
            f"{entity} record must be an object, got {type(raw).__name__}",
            entity=entity
        )

    resolved = {}
    for name, field_spec in spec.items():
        value = pick(raw, field_spec.aliases, _MISSING)
        if value is _MISSING:
            resolved[name] = field_spec.default
            continue
        try:
            resolved[name] = COERCERS[field_spec.kind](value)
        except (TypeError, ValueError) as e:
            raise NormalizationError(
                f"{entity}.{name}: {e}", entity=entity, field=name
            ) from e
    return resolved


def select_logo_url(raw: Mapping[str, Any]) -> Optional[str]:
    """
    Choose the logo image for an instrument.

    Prefers the image tagged width 50, then width 35, then the first image.
    """
    images = pick(raw, IMAGE_LIST_ALIASES, [])
    if not isinstance(images, list):
        return None
    images = [img for img in images if isinstance(img, Mapping)]
    if not images:
        return None

    def width_of(img: Mapping[str, Any]) -> Optional[float]:
        try:
            return _coerce_float(pick(img, IMAGE_WIDTH_ALIASES))
        except (TypeError, ValueError):
            return None

    def uri_of(img: Mapping[str, Any]) -> Optional[str]:
        uri = pick(img, IMAGE_URI_ALIASES)
        return uri if isinstance(uri, str) and uri else None

    for width in LOGO_WIDTH_PREFERENCE:
        for img in images:
            if width_of(img) == width:
                return uri_of(img)
    return uri_of(images[0])


def normalize_position(raw: Any) -> Position:
    return Position(**resolve_fields(raw, POSITION_FIELDS, 'Position'))


def normalize_instrument(raw: Any) -> Instrument:
    fields = resolve_fields(raw, INSTRUMENT_FIELDS, 'Instrument')
    return Instrument(logo_url=select_logo_url(raw), **fields)


def normalize_rate(raw: Any) -> Rate:
    return Rate(**resolve_fields(raw, RATE_FIELDS, 'Rate'))


def normalize_trade(raw: Any) -> Trade:
    return Trade(**resolve_fields(raw, TRADE_FIELDS, 'Trade'))


def normalize_candle(raw: Any) -> Candle:
    return Candle(**resolve_fields(raw, CANDLE_FIELDS, 'Candle'))


def extract_collection(data: Any) -> List[Any]:
    """
    Return the list of records held by an upstream response.

    A bare array is returned as-is; for an object, its first array-valued
    member is the collection. Anything else yields an empty list.
    """
    if isinstance(data, list):
        return data
    if isinstance(data, Mapping):
        for value in data.values():
            if isinstance(value, list):
                return value
    return []


def normalize_collection(data: Any, normalizer: Callable[[Any], T]) -> List[T]:
    """
    Normalize every record of a collection, dropping malformed ones.

    Args:
        data: Bare array or object wrapping one array
        normalizer: Per-record normalizer, e.g. normalize_rate

    Returns:
        Normalized records in upstream order
    """
    results: List[T] = []
    dropped = 0
    for item in extract_collection(data):
        try:
            results.append(normalizer(item))
        except NormalizationError as e:
            dropped += 1
            logger.debug(f"Dropping malformed record: {e}")

    if dropped:
        logger.debug(f"{normalizer.__name__}: dropped {dropped} malformed record(s)")
    return results


def normalize_portfolio_response(data: Any) -> Tuple[List[Position], float]:
    """
    Normalize the portfolio snapshot envelope.

    Returns:
        (positions, credit); a missing envelope yields ([], 0.0)
    """
    if not isinstance(data, Mapping):
        logger.warning(f"Portfolio response is not an object ({type(data).__name__}); treating as empty")
        return [], 0.0

    portfolio = pick(data, PORTFOLIO_ENVELOPE_ALIASES, {})
    if not isinstance(portfolio, Mapping):
        return [], 0.0

    positions_raw = pick(portfolio, PORTFOLIO_POSITIONS_ALIASES, [])
    positions = normalize_collection(positions_raw if isinstance(positions_raw, list) else [],
                                     normalize_position)

    try:
        credit = _coerce_float(pick(portfolio, PORTFOLIO_CREDIT_ALIASES, 0.0))
    except ValueError:
        logger.warning("Portfolio credit is not numeric; defaulting to 0")
        credit = 0.0

    return positions, credit


def extract_candle_items(data: Any) -> Any:
    """
    Locate the candle array in a candle-history response.

    The API nests the samples as candles[0].candles; older shapes return
    candles directly.
    """
    if not isinstance(data, Mapping):
        return data
    outer = pick(data, CANDLE_LIST_ALIASES)
    if isinstance(outer, list) and outer and isinstance(outer[0], Mapping):
        inner = pick(outer[0], CANDLE_LIST_ALIASES)
        if inner is not None:
            return inner
    return outer if outer is not None else []


def normalize_stocks_industries(data: Any) -> Dict[int, str]:
    """Map industry id to industry name; entries without both are skipped."""
    if not isinstance(data, Mapping):
        return {}
    items = pick(data, INDUSTRY_LIST_ALIASES, [])
    if not isinstance(items, list):
        return {}

    industries: Dict[int, str] = {}
    for item in items:
        if not isinstance(item, Mapping):
            continue
        raw_id = pick(item, INDUSTRY_ID_ALIASES)
        name = pick(item, INDUSTRY_NAME_ALIASES)
        if raw_id is None or not isinstance(name, str) or not name:
            continue
        try:
            industries[_coerce_int(raw_id)] = name
        except ValueError:
            continue
    return industries


def normalize_watchlist(raw: Any) -> Optional[Watchlist]:
    """
    Normalize one watchlist.

    Returns None for watchlists without an id, a name, or any instrument item.
    """
    if not isinstance(raw, Mapping):
        return None

    raw_id = pick(raw, WATCHLIST_ID_ALIASES)
    name = pick(raw, WATCHLIST_NAME_ALIASES)
    if raw_id is None or not isinstance(name, str) or not name:
        return None

    items = pick(raw, WATCHLIST_ITEMS_ALIASES, [])
    instrument_ids = []
    for item in items if isinstance(items, list) else []:
        if not isinstance(item, Mapping):
            continue
        if pick(item, WATCHLIST_ITEM_TYPE_ALIASES) != 'Instrument':
            continue
        try:
            item_id = _coerce_int(pick(item, WATCHLIST_ITEM_ID_ALIASES, 0))
        except ValueError:
            continue
        if item_id > 0:
            instrument_ids.append(item_id)

    if not instrument_ids:
        return None
    return Watchlist(id=str(raw_id), name=name, instrument_ids=tuple(instrument_ids))


def normalize_watchlists(data: Any) -> List[Watchlist]:
    lists = pick(data, WATCHLIST_LIST_ALIASES, data) if isinstance(data, Mapping) else data
    if not isinstance(lists, list):
        return []
    return [w for w in (normalize_watchlist(raw) for raw in lists) if w is not None]
