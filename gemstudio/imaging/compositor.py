"""
Watermark compositor: overlays store text or a logo onto a generated photo.

Layout is deterministic and depends only on the canvas size and the
WatermarkSpec:

    padding    = floor(W * 0.03)
    font size  = max(20, floor(W * text_size / 1000))
    logo box   = fit inside 25% of W and 15% of H, aspect ratio preserved

The source image is never modified; every call renders onto a copy and
returns PNG bytes.
"""
from __future__ import annotations

import asyncio
import io
import math
import re
from functools import lru_cache
from typing import Optional, Tuple, Union

from PIL import Image, ImageColor, ImageDraw, ImageFilter, ImageFont, UnidentifiedImageError

from gemstudio.core.errors import EncodingError, FetchError, LogoLoadError, RenderContextUnavailable
from gemstudio.core.models import (
    CompositedImage,
    SourceAsset,
    WatermarkKind,
    WatermarkPosition,
    WatermarkSpec,
)
from gemstudio.imaging import prep
from gemstudio.utils.logger import get_logger

logger = get_logger("compositor")

PADDING_RATIO = 0.03
MIN_FONT_SIZE = 20
DEFAULT_TEXT_SIZE = 50
DEFAULT_TEXT_COLOR = (255, 255, 255, 230)

TEXT_SHADOW_COLOR = (0, 0, 0, 179)
TEXT_SHADOW_OFFSET = (2, 2)
SHADOW_BLUR = 4

LOGO_MAX_WIDTH_RATIO = 0.25
LOGO_MAX_HEIGHT_RATIO = 0.15
LOGO_OPACITY = 0.9
LOGO_SHADOW_OPACITY = 0.3

_SERIF_FONTS = [
    "/usr/share/fonts/truetype/dejavu/DejaVuSerif-Bold.ttf",
    "/usr/share/fonts/truetype/liberation/LiberationSerif-Bold.ttf",
    "/System/Library/Fonts/Supplemental/Times New Roman Bold.ttf",
    "DejaVuSerif-Bold.ttf",
]
_SANS_FONTS = [
    "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
    "/usr/share/fonts/truetype/liberation/LiberationSans-Bold.ttf",
    "/System/Library/Fonts/Supplemental/Arial Bold.ttf",
    "DejaVuSans-Bold.ttf",
]

# CSS rgba() with a fractional alpha, which ImageColor does not accept
_CSS_RGBA = re.compile(
    r"^rgba\(\s*(\d{1,3})\s*,\s*(\d{1,3})\s*,\s*(\d{1,3})\s*,\s*([01]?(?:\.\d+)?)\s*\)$", re.IGNORECASE
)

ImageInput = Union[SourceAsset, bytes, Image.Image]


# ── Layout ────────────────────────────────────────────────────────────────────

def compute_padding(width: int) -> int:
    return math.floor(width * PADDING_RATIO)


def text_font_size(width: int, text_size: Optional[int] = None) -> int:
    scale = (text_size or DEFAULT_TEXT_SIZE) / 1000
    return max(MIN_FONT_SIZE, math.floor(width * scale))


def text_anchor(width: int, height: int, position: WatermarkPosition, padding: int) -> Tuple[Tuple[float, float], str]:
    """
    Returns the anchor point and the Pillow text anchor for a text watermark.
    Top rows hang from the ascender, bottom rows sit on the descender.
    """
    if position is WatermarkPosition.TOP_LEFT:
        return (padding, padding), "la"
    if position is WatermarkPosition.TOP_RIGHT:
        return (width - padding, padding), "ra"
    if position is WatermarkPosition.BOTTOM_LEFT:
        return (padding, height - padding), "ld"
    if position is WatermarkPosition.BOTTOM_RIGHT:
        return (width - padding, height - padding), "rd"
    return (width / 2, height / 2), "mm"


def overlay_origin(
    width: int,
    height: int,
    obj_width: float,
    obj_height: float,
    position: WatermarkPosition,
    padding: int,
) -> Tuple[float, float]:
    """Top-left corner of an overlay box of (obj_width, obj_height) on the canvas."""
    if position is WatermarkPosition.TOP_LEFT:
        return padding, padding
    if position is WatermarkPosition.TOP_RIGHT:
        return width - obj_width - padding, padding
    if position is WatermarkPosition.BOTTOM_LEFT:
        return padding, height - obj_height - padding
    if position is WatermarkPosition.BOTTOM_RIGHT:
        return width - obj_width - padding, height - obj_height - padding
    return (width - obj_width) / 2, (height - obj_height) / 2


def fit_logo(logo_width: int, logo_height: int, canvas_width: int, canvas_height: int) -> Tuple[int, int]:
    """
    Shrinks (never enlarges) a logo to fit within 25% of the canvas width and
    15% of the canvas height. Returns (0, 0) when nothing visible would remain.
    """
    max_w = canvas_width * LOGO_MAX_WIDTH_RATIO
    max_h = canvas_height * LOGO_MAX_HEIGHT_RATIO
    ratio = logo_width / logo_height

    w, h = float(logo_width), float(logo_height)
    if w > max_w:
        w = max_w
        h = w / ratio
    if h > max_h:
        h = max_h
        w = h * ratio

    w_px, h_px = math.floor(w), math.floor(h)
    if w_px < 1 or h_px < 1:
        return 0, 0
    return w_px, h_px


# ── Resources ─────────────────────────────────────────────────────────────────

def parse_color(color: Optional[str]) -> Tuple[int, int, int, int]:
    if not color:
        return DEFAULT_TEXT_COLOR
    match = _CSS_RGBA.match(color.strip())
    if match:
        r, g, b, a = match.groups()
        return int(r), int(g), int(b), round(float(a or 1) * 255)
    try:
        return ImageColor.getcolor(color.strip(), "RGBA")
    except ValueError:
        logger.warning(f"⚠️ Unrecognised watermark color '{color}', using default.")
        return DEFAULT_TEXT_COLOR


@lru_cache(maxsize=32)
def load_font(family: Optional[str], size: int) -> ImageFont.ImageFont:
    """Resolves a bold face for the requested family, falling back to Pillow's default."""
    family = (family or "serif").strip()
    candidates = []
    if family.lower().endswith((".ttf", ".otf", ".ttc")):
        candidates.append(family)
    sans_first = "sans" in family.lower()
    candidates += (_SANS_FONTS + _SERIF_FONTS) if sans_first else (_SERIF_FONTS + _SANS_FONTS)

    for path in candidates:
        try:
            return ImageFont.truetype(path, size)
        except OSError:
            continue
    return ImageFont.load_default(size=size)


def _open_image(image: ImageInput) -> Tuple[Image.Image, bytes, str]:
    """Decodes the source into a drawing surface. Returns (image, original bytes, media type)."""
    if isinstance(image, Image.Image):
        buffer = io.BytesIO()
        image.save(buffer, format="PNG")
        return image.copy(), buffer.getvalue(), "image/png"

    if isinstance(image, SourceAsset):
        data, media_type = image.data, image.media_type
    else:
        data, media_type = bytes(image), "image/png"

    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as e:
        raise RenderContextUnavailable(f"Could not decode source image: {e}") from e

    if img.width < 1 or img.height < 1:
        raise RenderContextUnavailable("Source image has no pixels")
    return img, data, media_type


def _decode_logo(data: bytes) -> Image.Image:
    try:
        logo = Image.open(io.BytesIO(data))
        logo.load()
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise LogoLoadError(f"Could not decode logo: {e}") from e
    if logo.width < 1 or logo.height < 1:
        raise LogoLoadError("Logo has no pixels")
    return logo.convert("RGBA")


def load_logo_sync(spec: WatermarkSpec) -> Image.Image:
    """Loads the logo from inline bytes or its URL. Raises LogoLoadError."""
    if spec.logo:
        return _decode_logo(spec.logo)
    if spec.logo_url:
        if spec.logo_url.startswith("data:"):
            try:
                return _decode_logo(prep.decode(spec.logo_url))
            except EncodingError as e:
                raise LogoLoadError(str(e)) from e
        try:
            asset = prep.fetch_as_file(spec.logo_url, "watermark-logo")
        except FetchError as e:
            raise LogoLoadError(str(e)) from e
        return _decode_logo(asset.data)
    raise LogoLoadError("Watermark has no logo")


async def load_logo(spec: WatermarkSpec) -> Image.Image:
    return await asyncio.to_thread(load_logo_sync, spec)


# ── Rendering ─────────────────────────────────────────────────────────────────

def _encode_png(img: Image.Image, keep_alpha: bool) -> bytes:
    buffer = io.BytesIO()
    out = img if keep_alpha else img.convert("RGB")
    out.save(buffer, format="PNG")
    return buffer.getvalue()


def _draw_text(canvas: Image.Image, spec: WatermarkSpec) -> Image.Image:
    width, height = canvas.size
    padding = compute_padding(width)
    font = load_font(spec.font, text_font_size(width, spec.text_size))
    (x, y), anchor = text_anchor(width, height, spec.position, padding)

    shadow = Image.new("RGBA", canvas.size, (0, 0, 0, 0))
    ImageDraw.Draw(shadow).text(
        (x + TEXT_SHADOW_OFFSET[0], y + TEXT_SHADOW_OFFSET[1]),
        spec.text, font=font, fill=TEXT_SHADOW_COLOR, anchor=anchor,
    )
    shadow = shadow.filter(ImageFilter.GaussianBlur(SHADOW_BLUR / 2))

    layer = Image.new("RGBA", canvas.size, (0, 0, 0, 0))
    ImageDraw.Draw(layer).text((x, y), spec.text, font=font, fill=parse_color(spec.color), anchor=anchor)

    return Image.alpha_composite(Image.alpha_composite(canvas, shadow), layer)


def _draw_logo(canvas: Image.Image, logo: Image.Image, position: WatermarkPosition) -> Optional[Image.Image]:
    width, height = canvas.size
    logo_w, logo_h = fit_logo(logo.width, logo.height, width, height)
    if not logo_w:
        return None

    padding = compute_padding(width)
    x, y = overlay_origin(width, height, logo_w, logo_h, position, padding)
    dest = (max(0, int(x)), max(0, int(y)))

    scaled = logo.resize((logo_w, logo_h), Image.LANCZOS)
    alpha = scaled.getchannel("A")

    shadow = Image.new("RGBA", canvas.size, (0, 0, 0, 0))
    shadow_tile = Image.new("RGBA", scaled.size, (0, 0, 0, 0))
    shadow_tile.putalpha(alpha.point(lambda a: round(a * LOGO_SHADOW_OPACITY)))
    shadow.alpha_composite(shadow_tile, dest=dest)
    shadow = shadow.filter(ImageFilter.GaussianBlur(SHADOW_BLUR / 2))

    scaled.putalpha(alpha.point(lambda a: round(a * LOGO_OPACITY)))

    out = Image.alpha_composite(canvas, shadow)
    out.alpha_composite(scaled, dest=dest)
    return out


def composite(image: ImageInput, spec: WatermarkSpec, logo: Optional[Image.Image] = None) -> CompositedImage:
    """
    Applies the watermark described by `spec` to `image`.

    Disabled specs and specs without a payload return the original bytes
    untouched (applied=False). A logo that cannot be loaded degrades the same
    way instead of failing.

    Raises:
        RenderContextUnavailable: if the source image cannot be decoded.
    """
    source, original, media_type = _open_image(image)
    width, height = source.size

    def unchanged() -> CompositedImage:
        return CompositedImage(data=original, media_type=media_type, width=width, height=height, applied=False)

    if not spec.is_active:
        return unchanged()

    keep_alpha = source.mode in ("RGBA", "LA", "PA") or "transparency" in source.info
    canvas = source.convert("RGBA")

    if spec.kind is WatermarkKind.TEXT:
        rendered = _draw_text(canvas, spec)
    else:
        if logo is None:
            try:
                logo = load_logo_sync(spec)
            except LogoLoadError as e:
                logger.warning(f"⚠️ Could not load logo image for watermark: {e}")
                return unchanged()
        rendered = _draw_logo(canvas, logo.convert("RGBA"), spec.position)
        if rendered is None:
            logger.warning("⚠️ Logo would shrink below one pixel, skipping watermark.")
            return unchanged()

    return CompositedImage(
        data=_encode_png(rendered, keep_alpha),
        media_type="image/png",
        width=width,
        height=height,
        applied=True,
    )


async def watermark(image: ImageInput, spec: WatermarkSpec) -> CompositedImage:
    """
    Async entry point: resolves the logo first (degrading on LogoLoadError),
    then renders in a worker thread.
    """
    logo = None
    if spec.is_active and spec.kind is WatermarkKind.LOGO:
        try:
            logo = await load_logo(spec)
        except LogoLoadError as e:
            logger.warning(f"⚠️ Could not load logo image for watermark: {e}")
            spec = WatermarkSpec(enabled=False)
    return await asyncio.to_thread(composite, image, spec, logo)
