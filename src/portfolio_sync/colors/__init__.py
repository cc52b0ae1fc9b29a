"""
Symbol color engine: OKLCH conversion, logo sampling and hue deconfliction.
"""

from .oklch import linear_to_srgb, oklch_to_rgb, rgb_string, rgb_to_oklch, srgb_to_linear
from .palette import (
    CATEGORY_COLORS,
    HueEntry,
    SymbolSummary,
    build_logo_color_map,
    category_color,
    deconflict_hues,
    group_by_symbol,
    normalize_symbol,
    symbol_color,
)
from .sampler import LogoSampler, sample_image_bytes

__all__ = [
    'linear_to_srgb',
    'oklch_to_rgb',
    'rgb_string',
    'rgb_to_oklch',
    'srgb_to_linear',
    'CATEGORY_COLORS',
    'HueEntry',
    'SymbolSummary',
    'build_logo_color_map',
    'category_color',
    'deconflict_hues',
    'group_by_symbol',
    'normalize_symbol',
    'symbol_color',
    'LogoSampler',
    'sample_image_bytes',
]
