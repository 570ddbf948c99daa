"""Single-frame compositing with Pillow.

Frame structure (bottom to top):
1. Black background
2. Slide image (cover or contain fit)
3. Watermark (top-right, reduced opacity)
4. Active caption word (outline, then fill, centered)

Geometry is defined against a 1080px wide reference canvas and scaled to the
actual surface width, so a preview frame and an export frame differ only in
resolution. Nothing here reads the clock or any global mutable state.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from typing import Optional

from PIL import Image, ImageColor, ImageDraw, ImageFont

from slidecast.config import Settings, get_settings
from slidecast.schemas.captions import CaptionWord

logger = logging.getLogger(__name__)

REFERENCE_WIDTH = 1080
RESAMPLE = Image.Resampling.LANCZOS


class FitMode(Enum):
    """How the slide image is placed on the canvas."""

    COVER = "cover"  # fill the canvas, crop overflow
    CONTAIN = "contain"  # fit inside the canvas, letterbox


@dataclass(frozen=True)
class CompositorStyle:
    """Visual configuration for frame compositing."""

    fit_mode: FitMode = FitMode.COVER
    background_color: str = "#000000"
    # Caption
    font_candidates: tuple[str, ...] = field(default_factory=tuple)
    font_size: int = 96
    min_font_size: int = 12
    caption_color: str = "#FFFF00"
    outline_color: str = "#000000"
    stroke_width: int = 4
    margin_x: int = 20
    margin_top: int = 40
    margin_bottom: int = 20
    # Watermark
    watermark_margin_right: int = 40
    watermark_margin_top: int = 120
    watermark_height: int = 100
    watermark_opacity: float = 0.8

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        fit_mode: Optional[FitMode] = None,
    ) -> "CompositorStyle":
        s = settings or get_settings()
        return cls(
            fit_mode=fit_mode or FitMode(s.fit_mode),
            font_candidates=tuple(s.caption_font_candidates),
            font_size=s.caption_font_size,
            min_font_size=s.caption_min_font_size,
            caption_color=s.caption_color,
            outline_color=s.caption_outline_color,
            stroke_width=s.caption_stroke_width,
            margin_x=s.caption_margin_x,
            margin_top=s.caption_margin_top,
            margin_bottom=s.caption_margin_bottom,
            watermark_margin_right=s.watermark_margin_right,
            watermark_margin_top=s.watermark_margin_top,
            watermark_height=s.watermark_height,
            watermark_opacity=s.watermark_opacity,
        )


@dataclass(frozen=True)
class Placement:
    """Where a source image lands on the canvas."""

    box: tuple[float, float, float, float]  # source region (left, top, right, bottom)
    size: tuple[int, int]  # drawn size on canvas
    offset: tuple[int, int]  # top-left on canvas


# ============================================================================
# Geometry
# ============================================================================


def compute_placement(
    image_size: tuple[int, int],
    canvas_size: tuple[int, int],
    fit_mode: FitMode,
) -> Placement:
    """Compute where an image of ``image_size`` is drawn on the canvas.

    Cover scales uniformly until the canvas is filled and center-crops the
    overflowing axis. Contain scales uniformly until the image fits and
    centers it, leaving black bars.
    """
    iw, ih = image_size
    cw, ch = canvas_size
    image_aspect = iw / ih
    canvas_aspect = cw / ch

    if fit_mode == FitMode.COVER:
        if image_aspect > canvas_aspect:
            # Wider than canvas: fit height, crop the sides
            src_w = ih * canvas_aspect
            left = (iw - src_w) / 2
            box = (left, 0.0, left + src_w, float(ih))
        else:
            # Taller (or equal): fit width, crop top and bottom
            src_h = iw / canvas_aspect
            top = (ih - src_h) / 2
            box = (0.0, top, float(iw), top + src_h)
        return Placement(box=box, size=(cw, ch), offset=(0, 0))

    if image_aspect > canvas_aspect:
        dw, dh = cw, max(1, round(cw / image_aspect))
    else:
        dw, dh = max(1, round(ch * image_aspect)), ch
    return Placement(
        box=(0.0, 0.0, float(iw), float(ih)),
        size=(dw, dh),
        offset=((cw - dw) // 2, (ch - dh) // 2),
    )


def scale_factor(surface: Image.Image) -> float:
    return surface.width / REFERENCE_WIDTH


# ============================================================================
# Fonts
# ============================================================================


@lru_cache(maxsize=512)
def load_caption_font(candidates: tuple[str, ...], size: int) -> ImageFont.FreeTypeFont:
    """Load the first usable font from ``candidates`` at ``size`` pixels."""
    for candidate_path in candidates:
        try:
            return ImageFont.truetype(candidate_path, size)
        except OSError:
            continue
    logger.debug(f"[CAPTION] No candidate font usable at size {size}, using Pillow default")
    return ImageFont.load_default(size=size)


def fit_caption_font(
    draw: ImageDraw.ImageDraw,
    text: str,
    surface_size: tuple[int, int],
    style: CompositorStyle,
    scale: float = 1.0,
) -> tuple[ImageFont.FreeTypeFont, int]:
    """Pick the largest font size at which ``text`` fits the caption box.

    Starts at the base size and decrements by one pixel until the stroked
    text fits ``(W - 2*margin_x, H - margin_top - margin_bottom)`` or the
    minimum size is reached.

    Returns:
        (font, stroke_width) to draw with
    """
    width, height = surface_size
    max_w = width - 2 * style.margin_x * scale
    max_h = height - (style.margin_top + style.margin_bottom) * scale
    stroke = max(1, round(style.stroke_width * scale)) if style.stroke_width > 0 else 0

    size = max(1, round(style.font_size * scale))
    floor_size = max(1, min(size, round(style.min_font_size * scale)))

    while True:
        font = load_caption_font(style.font_candidates, size)
        left, top, right, bottom = draw.textbbox(
            (0, 0), text, font=font, anchor="mm", stroke_width=stroke
        )
        if (right - left <= max_w and bottom - top <= max_h) or size <= floor_size:
            return font, stroke
        size -= 1


# ============================================================================
# Layers
# ============================================================================


def draw_background(surface: Image.Image, style: CompositorStyle) -> None:
    surface.paste(ImageColor.getrgb(style.background_color), (0, 0, *surface.size))


def place_image(
    image: Image.Image,
    canvas_size: tuple[int, int],
    fit_mode: FitMode,
) -> tuple[Image.Image, tuple[int, int]]:
    """Resample ``image`` to its on-canvas size.

    Returns:
        (resampled image, top-left position on the canvas)
    """
    placement = compute_placement(image.size, canvas_size, fit_mode)
    return image.resize(placement.size, RESAMPLE, box=placement.box), placement.offset


def draw_image(surface: Image.Image, image: Image.Image, fit_mode: FitMode) -> None:
    _paste(surface, *place_image(image, surface.size, fit_mode))


def prepare_watermark(
    watermark: Image.Image,
    surface_size: tuple[int, int],
    style: CompositorStyle,
) -> tuple[Image.Image, tuple[int, int]]:
    """Scale the watermark and apply opacity.

    Returns:
        (RGBA watermark ready to paste, top-left position)
    """
    scale = surface_size[0] / REFERENCE_WIDTH
    target_h = max(1, round(style.watermark_height * scale))
    target_w = max(1, round(watermark.width * target_h / watermark.height))

    wm = watermark.convert("RGBA").resize((target_w, target_h), RESAMPLE)
    opacity = style.watermark_opacity
    wm.putalpha(wm.getchannel("A").point(lambda a: round(a * opacity)))

    x = surface_size[0] - target_w - round(style.watermark_margin_right * scale)
    y = round(style.watermark_margin_top * scale)
    return wm, (x, y)


def draw_watermark(surface: Image.Image, watermark: Image.Image, style: CompositorStyle) -> None:
    wm, position = prepare_watermark(watermark, surface.size, style)
    _paste(surface, wm, position)


def draw_caption(surface: Image.Image, text: str, style: CompositorStyle) -> None:
    """Draw ``text`` centered on the canvas, outline first then fill."""
    if not text:
        return
    draw = ImageDraw.Draw(surface)
    font, stroke = fit_caption_font(draw, text, surface.size, style, scale_factor(surface))
    center = (surface.width / 2, surface.height / 2)
    outline = ImageColor.getrgb(style.outline_color)

    if stroke > 0:
        draw.text(center, text, font=font, anchor="mm", fill=outline,
                  stroke_width=stroke, stroke_fill=outline)
    draw.text(center, text, font=font, anchor="mm", fill=ImageColor.getrgb(style.caption_color))


def _paste(surface: Image.Image, layer: Image.Image, position: tuple[int, int]) -> None:
    if layer.mode == "RGBA":
        surface.paste(layer.convert("RGB"), position, layer.getchannel("A"))
    else:
        surface.paste(layer.convert("RGB") if layer.mode != "RGB" else layer, position)


# ============================================================================
# Frame
# ============================================================================


def compose_frame(
    surface: Image.Image,
    image: Optional[Image.Image],
    watermark: Optional[Image.Image],
    word: Optional[CaptionWord],
    style: Optional[CompositorStyle] = None,
) -> Image.Image:
    """Draw one complete frame onto ``surface`` and return it.

    Args:
        surface: RGB drawing surface of the output size
        image: Slide image for the current time (None draws only background)
        watermark: Watermark image (None skips the watermark)
        word: Active caption word (None draws no caption)
        style: Compositing style (defaults from settings)

    Returns:
        The same surface, for chaining
    """
    style = style or CompositorStyle.from_settings()
    draw_background(surface, style)
    if image is not None:
        draw_image(surface, image, style.fit_mode)
    if watermark is not None:
        draw_watermark(surface, watermark, style)
    if word is not None:
        draw_caption(surface, word.word, style)
    return surface


class FrameCompositor:
    """Frame compositor bound to one surface size and style.

    Keeps the last scaled slide and watermark so consecutive frames showing
    the same image skip resampling. Output is identical to ``compose_frame``.
    """

    def __init__(self, size: tuple[int, int], style: Optional[CompositorStyle] = None):
        self.size = size
        self.style = style or CompositorStyle.from_settings()
        self._slide_key: Optional[Image.Image] = None
        self._slide: Optional[tuple[Image.Image, tuple[int, int]]] = None
        self._watermark_key: Optional[Image.Image] = None
        self._watermark: Optional[tuple[Image.Image, tuple[int, int]]] = None

    def new_surface(self) -> Image.Image:
        return Image.new("RGB", self.size, ImageColor.getrgb(self.style.background_color))

    def compose(
        self,
        surface: Image.Image,
        image: Optional[Image.Image],
        watermark: Optional[Image.Image],
        word: Optional[CaptionWord],
    ) -> Image.Image:
        if surface.size != self.size:
            raise ValueError(f"Surface size {surface.size} does not match compositor size {self.size}")

        draw_background(surface, self.style)

        if image is not None:
            if image is not self._slide_key:
                self._slide = place_image(image, self.size, self.style.fit_mode)
                self._slide_key = image
            _paste(surface, *self._slide)

        if watermark is not None:
            if watermark is not self._watermark_key:
                self._watermark = prepare_watermark(watermark, self.size, self.style)
                self._watermark_key = watermark
            _paste(surface, *self._watermark)

        if word is not None:
            draw_caption(surface, word.word, self.style)
        return surface

    def render(
        self,
        image: Optional[Image.Image],
        watermark: Optional[Image.Image],
        word: Optional[CaptionWord],
    ) -> Image.Image:
        """Compose onto a fresh surface."""
        return self.compose(self.new_surface(), image, watermark, word)
