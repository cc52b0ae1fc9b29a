"""
sRGB <-> OKLCH conversion.

Forward path: sRGB (0-255) -> linear light -> LMS (M1) -> cube root ->
OKLab (M2) -> polar (L, C, H). The inverse runs the inverse matrices in the
opposite order and clamps each output channel to [0, 255].
"""

import math
from typing import Tuple

import numpy as np

# Linear sRGB -> LMS
M1 = np.array([
    [0.4122214708, 0.5363325363, 0.0514459929],
    [0.2119034982, 0.6806995451, 0.1073969566],
    [0.0883024619, 0.2817188376, 0.6299787005],
])

# Cube-rooted LMS -> OKLab
M2 = np.array([
    [0.2104542553, 0.7936177850, -0.0040720468],
    [1.9779984951, -2.4285922050, 0.4505937099],
    [0.0259040371, 0.7827717662, -0.8086757660],
])

# OKLab -> cube-rooted LMS
M2_INV = np.array([
    [1.0, 0.3963377774, 0.2158037573],
    [1.0, -0.1055613458, -0.0638541728],
    [1.0, -0.0894841775, -1.2914855480],
])

# LMS -> linear sRGB
M1_INV = np.array([
    [4.0767416621, -3.3077115913, 0.2309699292],
    [-1.2684380046, 2.6097574011, -0.3413193965],
    [-0.0041960863, -0.7034186147, 1.7076147010],
])

RGB = Tuple[int, int, int]
OKLCH = Tuple[float, float, float]


def srgb_to_linear(c: float) -> float:
    """Channel in 0-255 to linear light in 0-1."""
    s = c / 255
    return s / 12.92 if s <= 0.04045 else ((s + 0.055) / 1.055) ** 2.4


def linear_to_srgb(c: float) -> float:
    """Linear light to gamma-encoded 0-1 (not clamped)."""
    if c <= 0.0031308:
        return 12.92 * c
    return 1.055 * c ** (1 / 2.4) - 0.055


def rgb_to_oklch(r: float, g: float, b: float) -> OKLCH:
    """
    Convert an sRGB color to OKLCH.

    Args:
        r, g, b: Channels in 0-255 (floats allowed, e.g. averaged samples)

    Returns:
        (L, C, H) with H in degrees within [0, 360)
    """
    linear = np.array([srgb_to_linear(r), srgb_to_linear(g), srgb_to_linear(b)])
    lms = np.cbrt(M1 @ linear)
    lightness, a, b_ = M2 @ lms
    chroma = math.hypot(a, b_)
    hue = (math.degrees(math.atan2(b_, a)) + 360) % 360
    return float(lightness), float(chroma), float(hue)


def oklch_to_rgb(lightness: float, chroma: float, hue: float) -> RGB:
    """Convert OKLCH to sRGB, clamping each channel to 0-255 and rounding half up."""
    h_rad = math.radians(hue)
    lab = np.array([lightness, chroma * math.cos(h_rad), chroma * math.sin(h_rad)])
    lms = (M2_INV @ lab) ** 3
    linear = M1_INV @ lms
    return tuple(
        math.floor(min(255.0, max(0.0, linear_to_srgb(float(c)) * 255)) + 0.5)
        for c in linear
    )


def rgb_string(rgb: RGB) -> str:
    r, g, b = rgb
    return f"rgb({r},{g},{b})"
