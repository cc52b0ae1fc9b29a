"""
Symbol color assignment.

Each symbol with a logo gets a color sampled from that logo, re-expressed at
a fixed OKLCH lightness and a clamped chroma so every color carries the same
visual weight. Only the sampled hue survives; hues that sit too close
together are pushed apart before conversion back to sRGB. Symbols without a
usable logo fall back to a categorical palette.
"""

import asyncio
import re
import zlib
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from ..config import ColorSettings
from ..models.entities import EnrichedPosition
from ..utils import LogCategory, get_logger
from .oklch import oklch_to_rgb, rgb_string, rgb_to_oklch
from .sampler import LogoSampler

logger = get_logger(__name__)

# Tableau 10
CATEGORY_COLORS = (
    '#4e79a7', '#f28e2c', '#e15759', '#76b7b2', '#59a14f',
    '#edc949', '#af7aa1', '#ff9da7', '#9c755f', '#bab0ab',
)

# Added to each half-deficit so a pushed pair clears the gap
HUE_PUSH_EPSILON = 0.1

_RTH_SUFFIX = re.compile(r'\.RTH$', re.IGNORECASE)


def normalize_symbol(symbol: str) -> str:
    """Strip the regular-trading-hours suffix, e.g. 'AAPL.RTH' -> 'AAPL'."""
    return _RTH_SUFFIX.sub('', symbol)


@dataclass(frozen=True)
class SymbolSummary:
    """Positions sharing one normalized symbol."""
    symbol: str
    logo_url: Optional[str]
    total_amount: float
    total_pnl: float
    avg_pnl_pct: float
    positions: Tuple[EnrichedPosition, ...] = ()


def group_by_symbol(positions: Sequence[EnrichedPosition]) -> List[SymbolSummary]:
    """
    Group positions by normalized symbol, in order of first appearance.

    Positions without a symbol are grouped under '#<instrument_id>'. A
    position without a resolved pnl contributes 0 to its group's total.
    """
    groups: Dict[str, List[EnrichedPosition]] = {}
    for position in positions:
        symbol = normalize_symbol(position.symbol or f"#{position.instrument_id}")
        groups.setdefault(symbol, []).append(position)

    summaries = []
    for symbol, members in groups.items():
        total_amount = sum(p.amount for p in members)
        total_pnl = sum(p.pnl or 0.0 for p in members)
        summaries.append(SymbolSummary(
            symbol=symbol,
            logo_url=next((p.logo_url for p in members if p.logo_url), None),
            total_amount=total_amount,
            total_pnl=total_pnl,
            avg_pnl_pct=total_pnl / total_amount * 100 if total_amount > 0 else 0.0,
            positions=tuple(members),
        ))
    return summaries


@dataclass
class HueEntry:
    symbol: str
    lightness: float
    chroma: float
    hue: float


def circular_gap(from_hue: float, to_hue: float) -> float:
    """Clockwise distance from one hue to the next, in [0, 360)."""
    return (to_hue - from_hue + 360) % 360


def deconflict_hues(
    entries: List[HueEntry],
    min_gap: float = 50.0,
    max_passes: int = 12
) -> List[HueEntry]:
    """
    Push apart hues that sit closer than the separation target.

    The target is min(min_gap, 360 / N). Each pass sorts entries by hue and
    walks every adjacent pair, wrapping from the last entry to the first;
    a pair closer than the target moves apart by half the deficit plus
    HUE_PUSH_EPSILON on each side. Stops after a pass with no adjustment or
    after max_passes.

    Entries are updated in place and left sorted by hue.
    """
    n = len(entries)
    if n <= 1:
        return entries

    target = min(min_gap, 360 / n)
    for _ in range(max_passes):
        entries.sort(key=lambda e: e.hue)
        moved = False
        for i in range(n):
            j = (i + 1) % n
            gap = circular_gap(entries[i].hue, entries[j].hue)
            if gap < target:
                push = (target - gap) / 2 + HUE_PUSH_EPSILON
                entries[i].hue = (entries[i].hue - push) % 360
                entries[j].hue = (entries[j].hue + push) % 360
                moved = True
        if not moved:
            break
    return entries


async def build_logo_color_map(
    positions: Sequence[EnrichedPosition],
    sampler: LogoSampler,
    settings: Optional[ColorSettings] = None
) -> Dict[str, str]:
    """
    Build the symbol -> 'rgb(r,g,b)' map for symbols with a usable logo.

    Args:
        positions: Enriched positions (for symbols and logo URLs)
        sampler: Logo sampler; its cache persists across calls
        settings: Color settings. Uses the sampler's if not provided.

    Returns:
        Colors for every symbol whose logo produced a sample
    """
    settings = settings or sampler.settings
    groups = [g for g in group_by_symbol(positions) if g.logo_url]

    samples = await asyncio.gather(*(sampler.sample(g.logo_url) for g in groups))

    entries = []
    for group, rgb in zip(groups, samples):
        if rgb is None:
            continue
        lightness, chroma, hue = rgb_to_oklch(*rgb)
        entries.append(HueEntry(group.symbol, lightness, chroma, hue))

    deconflict_hues(entries, min_gap=settings.min_hue_gap, max_passes=settings.max_passes)

    color_map = {}
    for entry in entries:
        chroma = min(max(entry.chroma, settings.min_chroma), settings.max_chroma)
        color_map[entry.symbol] = rgb_string(
            oklch_to_rgb(settings.target_lightness, chroma, entry.hue)
        )

    logger.info(
        f"Assigned logo colors to {len(color_map)} of {len(groups)} symbols with logos",
        extra={'category': LogCategory.COLORS.value}
    )
    return color_map


def category_color(symbol: str) -> str:
    """Stable categorical color for a symbol."""
    return CATEGORY_COLORS[zlib.crc32(symbol.encode('utf-8')) % len(CATEGORY_COLORS)]


def symbol_color(symbol: str, color_map: Optional[Mapping[str, str]] = None) -> str:
    """Logo-derived color when available, else the categorical fallback."""
    if color_map and symbol in color_map:
        return color_map[symbol]
    return category_color(symbol)
