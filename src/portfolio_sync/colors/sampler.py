"""
Logo color sampling.

Each logo is downscaled to a small RGBA grid and the surviving pixels are
averaged: pixels below the opacity floor are skipped, as are near-black and
near-white pixels (mean channel value outside the luminance bounds), which
mostly come from backgrounds and letterform edges.
"""

import asyncio
import io
from typing import Dict, Optional, Tuple

import aiohttp
import numpy as np
from PIL import Image, UnidentifiedImageError

from ..config import ColorSettings
from ..utils import get_logger

logger = get_logger(__name__)

RGBSample = Tuple[float, float, float]


def sample_image_bytes(
    data: bytes,
    size: int = 16,
    min_alpha: int = 100,
    min_luminance: float = 25.0,
    max_luminance: float = 230.0
) -> Optional[RGBSample]:
    """
    Average the representative pixels of an encoded image.

    Args:
        data: Encoded image (PNG, JPEG, ...)
        size: Edge of the square sampling grid
        min_alpha: Pixels with alpha below this are ignored
        min_luminance: Lower bound (inclusive) on the mean channel value
        max_luminance: Upper bound (inclusive) on the mean channel value

    Returns:
        Average (r, g, b) in 0-255, or None when no pixel survives

    Raises:
        UnidentifiedImageError: If data is not a decodable image
    """
    with Image.open(io.BytesIO(data)) as img:
        grid = img.convert('RGBA').resize((size, size), Image.Resampling.BILINEAR)
        pixels = np.asarray(grid, dtype=np.float64).reshape(-1, 4)

    rgb = pixels[:, :3]
    alpha = pixels[:, 3]
    luminance = rgb.mean(axis=1)
    mask = (alpha >= min_alpha) & (luminance >= min_luminance) & (luminance <= max_luminance)
    if not mask.any():
        return None

    r, g, b = rgb[mask].mean(axis=0)
    return float(r), float(g), float(b)


class LogoSampler:
    """
    Downloads and samples logos, caching results by URL.

    A failed download or an image with no usable pixels is cached as None
    too, so each URL is decoded at most once for the sampler's lifetime.
    Concurrent requests for the same URL share one in-flight task.
    """

    def __init__(
        self,
        settings: Optional[ColorSettings] = None,
        session: Optional[aiohttp.ClientSession] = None
    ):
        self.settings = settings or ColorSettings()
        self._session = session
        self._owns_session = session is None
        self._cache: Dict[str, Optional[RGBSample]] = {}
        self._pending: Dict[str, asyncio.Task] = {}

    async def __aenter__(self) -> 'LogoSampler':
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    def cached(self, url: str) -> bool:
        return url in self._cache

    async def sample(self, url: str) -> Optional[RGBSample]:
        """Return the average logo color for url, or None if unavailable."""
        if url in self._cache:
            return self._cache[url]

        task = self._pending.get(url)
        if task is None:
            task = asyncio.ensure_future(self._load(url))
            self._pending[url] = task
        return await task

    async def _load(self, url: str) -> Optional[RGBSample]:
        try:
            data = await self._download(url)
            result = None
            if data is not None:
                # Pillow decoding runs off the event loop
                result = await asyncio.to_thread(self._decode, url, data)
            self._cache[url] = result
            return result
        finally:
            self._pending.pop(url, None)

    async def _download(self, url: str) -> Optional[bytes]:
        if self._session is None:
            self._session = aiohttp.ClientSession()
            self._owns_session = True

        timeout = aiohttp.ClientTimeout(total=self.settings.download_timeout_seconds)
        try:
            async with self._session.get(url, timeout=timeout) as response:
                if response.status != 200:
                    logger.debug(f"Logo {url} returned {response.status}")
                    return None
                return await response.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.debug(f"Logo {url} could not be downloaded: {e}")
            return None

    def _decode(self, url: str, data: bytes) -> Optional[RGBSample]:
        try:
            return sample_image_bytes(
                data,
                size=self.settings.sample_size,
                min_alpha=self.settings.min_alpha,
                min_luminance=self.settings.min_luminance,
                max_luminance=self.settings.max_luminance,
            )
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
            logger.debug(f"Logo {url} could not be decoded: {e}")
            return None
