"""Asset loading for slideshow rendering.

Resolves image and watermark locators into decoded Pillow images as one
atomic batch. Any single failure fails the batch. Reloading with a new
locator set invalidates the previous batch through a generation counter, so
a slow stale load can never overwrite the current one.

Supported locators:
- local paths and file:// URLs
- http(s):// URLs (fetched with httpx)
- data: URLs with base64 payloads
- "builtin:watermark" (or None) for the built-in watermark
"""

import asyncio
import base64
import binascii
import logging
from dataclasses import dataclass
from enum import Enum
from io import BytesIO
from pathlib import Path
from typing import Optional, Sequence
from urllib.parse import unquote, urlparse

import httpx
from PIL import Image, ImageDraw, ImageOps

from slidecast.config import Settings, get_settings
from slidecast.exceptions import AssetAccessError, AssetLoadError
from slidecast.render.compositor import load_caption_font
from slidecast.utils.media_info import AudioInfo, get_audio_info

logger = logging.getLogger(__name__)

BUILTIN_WATERMARK = "builtin:watermark"


class AssetKind(Enum):
    """Kinds of media assets."""

    IMAGE = "image"
    WATERMARK = "watermark"


@dataclass
class MediaAsset:
    """A loadable media reference and its decoded handle once loaded."""

    locator: str
    kind: AssetKind
    handle: Optional[Image.Image] = None


@dataclass(frozen=True)
class LoadedAssets:
    """A complete, decoded asset batch. Read-only once built."""

    images: tuple[Image.Image, ...]
    watermark: Image.Image
    generation: int

    @property
    def image_count(self) -> int:
        return len(self.images)

    def image_at(self, index: int) -> Optional[Image.Image]:
        if 0 <= index < len(self.images):
            return self.images[index]
        return None


# ============================================================================
# Built-in watermark
# ============================================================================


def render_builtin_watermark(height: int = 200) -> Image.Image:
    """Draw the default two-band badge watermark (RGBA)."""
    width = round(height * 225 / 110)
    scale = height / 110
    img = Image.new("RGBA", (width, height), (0, 0, 0, 0))
    draw = ImageDraw.Draw(img)

    def s(*values: float) -> list[int]:
        return [round(v * scale) for v in values]

    draw.rounded_rectangle(s(0, 0, 225, 110), radius=round(15 * scale), fill="#1f2937")
    draw.rounded_rectangle(s(5, 5, 220, 55), radius=round(10 * scale), fill="#facc15")
    draw.rounded_rectangle(s(5, 55, 220, 105), radius=round(10 * scale), fill="#000000")

    font = load_caption_font(tuple(get_settings().caption_font_candidates), round(36 * scale))
    draw.text((width / 2, 30 * scale), "SLIDE", font=font, anchor="mm", fill="#000000")
    draw.text((width / 2, 80 * scale), "CAST", font=font, anchor="mm", fill="#facc15")
    return img


# ============================================================================
# Reading and decoding
# ============================================================================


def _decode_data_url(locator: str) -> bytes:
    header, _, payload = locator.partition(",")
    if not payload:
        raise AssetLoadError(f"Empty data URL: {locator[:40]}...", locator=locator[:64])
    if header.endswith(";base64"):
        try:
            return base64.b64decode(payload, validate=True)
        except binascii.Error as e:
            raise AssetLoadError(f"Invalid base64 data URL: {e}", locator=locator[:64])
    return unquote(payload).encode("latin-1")


def local_path(locator: str) -> Optional[Path]:
    """Filesystem path behind ``locator``, or None for data, remote and built-in locators."""
    if locator.startswith("data:") or locator == BUILTIN_WATERMARK:
        return None
    parsed = urlparse(locator)
    if parsed.scheme in ("http", "https"):
        return None
    return Path(unquote(parsed.path)) if parsed.scheme == "file" else Path(locator)


def check_locator_access(locator: str, root: str, index: Optional[int] = None) -> None:
    """Reject local locators that resolve outside ``root``.

    Symlinks and ``..`` segments are resolved before the check.

    Raises:
        AssetAccessError: If the path escapes the media root
    """
    path = local_path(locator)
    if path is None:
        return
    if not path.resolve().is_relative_to(Path(root).resolve()):
        raise AssetAccessError(f"Asset is outside the media root: {locator}", locator=locator, index=index)


async def read_locator(locator: str, client: Optional[httpx.AsyncClient] = None) -> bytes:
    """Read the raw bytes behind ``locator``.

    Raises:
        AssetLoadError: If the locator cannot be read
    """
    if locator.startswith("data:"):
        return _decode_data_url(locator)

    path = local_path(locator)
    if path is None:
        if client is None:
            raise AssetLoadError("No HTTP client available for remote asset", locator=locator)
        try:
            response = await client.get(locator)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise AssetLoadError(f"Failed to fetch {locator}: {e}", locator=locator) from e
        return response.content

    try:
        return await asyncio.to_thread(path.read_bytes)
    except OSError as e:
        raise AssetLoadError(f"Failed to read {locator}: {e}", locator=locator) from e


def decode_image(data: bytes, kind: AssetKind, locator: str = "") -> Image.Image:
    """Decode image bytes into a draw-ready Pillow image.

    Slide images are flattened onto black (RGB); watermarks keep alpha (RGBA).
    """
    try:
        with Image.open(BytesIO(data)) as img:
            img.load()
            img = ImageOps.exif_transpose(img)
            rgba = img.convert("RGBA")
    except (OSError, ValueError, Image.DecompressionBombError) as e:
        raise AssetLoadError(f"Failed to decode image {locator}: {e}", locator=locator) from e

    if rgba.width == 0 or rgba.height == 0:
        raise AssetLoadError(f"Image has no pixels: {locator}", locator=locator)

    if kind == AssetKind.WATERMARK:
        return rgba
    flattened = Image.new("RGB", rgba.size, (0, 0, 0))
    flattened.paste(rgba.convert("RGB"), (0, 0), rgba.getchannel("A"))
    return flattened


async def load_audio_info(audio_path: str) -> AudioInfo:
    """Probe the audio asset for its duration.

    Raises:
        AssetLoadError: If the file cannot be probed or has no audio stream
    """
    try:
        info = await asyncio.to_thread(get_audio_info, audio_path)
    except RuntimeError as e:
        raise AssetLoadError(f"Failed to load audio {audio_path}: {e}", locator=audio_path) from e
    if info is None:
        raise AssetLoadError(f"No audio track found in: {audio_path}", locator=audio_path)
    if info.duration <= 0:
        raise AssetLoadError(f"Audio has zero duration: {audio_path}", locator=audio_path)
    return info


# ============================================================================
# Loader
# ============================================================================


class AssetLoader:
    """Loads image + watermark batches with stale-result protection."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self._generation = 0
        self._task: Optional[asyncio.Task] = None
        self.current: Optional[LoadedAssets] = None
        self.assets: list[MediaAsset] = []

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def ready(self) -> bool:
        """True while a completed batch for the current generation is held."""
        return self.current is not None and self.current.generation == self._generation

    def invalidate(self) -> None:
        """Drop loaded handles and cancel any in-flight batch."""
        self._generation += 1
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        self.current = None
        self.assets = []

    async def load(
        self,
        image_locators: Sequence[str],
        watermark_locator: Optional[str] = None,
    ) -> Optional[LoadedAssets]:
        """Load a new asset batch, replacing any previous one.

        Returns:
            The loaded batch, or None if a newer load superseded this one

        Raises:
            AssetLoadError: If any asset fails to load
        """
        self.invalidate()
        generation = self._generation

        if not image_locators:
            raise AssetLoadError("At least one image is required")

        assets = [MediaAsset(locator, AssetKind.IMAGE) for locator in image_locators]
        assets.append(MediaAsset(watermark_locator or BUILTIN_WATERMARK, AssetKind.WATERMARK))
        self.assets = assets

        logger.info(f"[ASSETS] Loading {len(image_locators)} images + watermark (generation {generation})")
        task = asyncio.create_task(self._load_batch(assets))
        self._task = task
        try:
            await task
        except asyncio.CancelledError:
            if generation != self._generation:
                logger.info(f"[ASSETS] Load generation {generation} superseded")
                return None
            raise
        finally:
            if self._task is task:
                self._task = None

        if generation != self._generation:
            logger.info(f"[ASSETS] Discarding stale load generation {generation}")
            return None

        loaded = LoadedAssets(
            images=tuple(asset.handle for asset in assets[:-1]),
            watermark=assets[-1].handle,
            generation=generation,
        )
        self.current = loaded
        logger.info(f"[ASSETS] Generation {generation} ready")
        return loaded

    async def _load_batch(self, assets: list[MediaAsset]) -> None:
        needs_http = any(urlparse(a.locator).scheme in ("http", "https") for a in assets)
        client = (
            httpx.AsyncClient(timeout=self.settings.asset_fetch_timeout_s, follow_redirects=True)
            if needs_http
            else None
        )
        try:
            tasks = [
                asyncio.create_task(self._load_one(asset, index, client))
                for index, asset in enumerate(assets)
            ]
            try:
                await asyncio.gather(*tasks)
            except BaseException:
                for t in tasks:
                    t.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                for asset in assets:
                    asset.handle = None
                raise
        finally:
            if client is not None:
                await client.aclose()

    async def _load_one(
        self,
        asset: MediaAsset,
        index: int,
        client: Optional[httpx.AsyncClient],
    ) -> None:
        if asset.kind == AssetKind.WATERMARK and asset.locator == BUILTIN_WATERMARK:
            asset.handle = await asyncio.to_thread(render_builtin_watermark)
            return

        try:
            data = await read_locator(asset.locator, client)
            asset.handle = await asyncio.to_thread(decode_image, data, asset.kind, asset.locator)
        except AssetLoadError as e:
            if e.location is not None and e.location.index is None:
                e.location.index = index
            logger.error(f"[ASSETS] {e.message}")
            raise
