import asyncio
import io
from unittest.mock import patch

import pytest
from PIL import Image

from gemstudio.core.errors import FetchError, RenderContextUnavailable
from gemstudio.core.models import SourceAsset, WatermarkKind, WatermarkPosition, WatermarkSpec
from gemstudio.imaging import compositor


def _open(data: bytes) -> Image.Image:
    img = Image.open(io.BytesIO(data))
    img.load()
    return img


def test_text_layout_for_1000px_canvas():
    padding = compositor.compute_padding(1000)
    assert padding == 30
    assert compositor.text_font_size(1000, 50) == 50
    assert compositor.text_anchor(1000, 1000, WatermarkPosition.BOTTOM_RIGHT, padding) == ((970, 970), "rd")


def test_font_size_has_a_floor():
    assert compositor.text_font_size(200, 50) == 20
    assert compositor.text_font_size(2000, 10) == 20
    assert compositor.text_font_size(2000, 100) == 200


@pytest.mark.parametrize(
    "position, expected",
    [
        (WatermarkPosition.TOP_LEFT, ((30, 30), "la")),
        (WatermarkPosition.TOP_RIGHT, ((970, 30), "ra")),
        (WatermarkPosition.BOTTOM_LEFT, ((30, 770), "ld")),
        (WatermarkPosition.CENTER, ((500, 400), "mm")),
    ],
)
def test_text_anchor_positions(position, expected):
    assert compositor.text_anchor(1000, 800, position, 30) == expected


def test_fit_logo_stays_inside_bounds():
    assert compositor.fit_logo(1000, 500, 1000, 1000) == (250, 125)
    assert compositor.fit_logo(400, 1000, 1000, 1000) == (60, 150)


def test_fit_logo_never_enlarges():
    assert compositor.fit_logo(100, 100, 1000, 1000) == (100, 100)


def test_fit_logo_collapses_below_one_pixel():
    assert compositor.fit_logo(1000, 10, 2, 2) == (0, 0)


def test_parse_color():
    assert compositor.parse_color("#ffffff") == (255, 255, 255, 255)
    assert compositor.parse_color("rgba(255, 255, 255, 0.9)") == (255, 255, 255, 230)
    assert compositor.parse_color(None) == compositor.DEFAULT_TEXT_COLOR
    assert compositor.parse_color("not-a-color") == compositor.DEFAULT_TEXT_COLOR


def test_disabled_watermark_returns_original_bytes(make_png):
    data = make_png()
    result = compositor.composite(data, WatermarkSpec(enabled=False, text="My Store"))
    assert result.applied is False
    assert result.data == data


def test_blank_text_is_a_no_op(make_png):
    data = make_png()
    result = compositor.composite(data, WatermarkSpec(enabled=True, text="   "))
    assert result.applied is False
    assert result.data == data


def test_text_watermark_draws_in_bottom_right(make_png):
    data = make_png(size=(1000, 1000))
    spec = WatermarkSpec(enabled=True, text="My Store", color="#ffffff", text_size=50)

    result = compositor.composite(SourceAsset(data=data, media_type="image/png"), spec)

    assert result.applied is True
    assert result.media_type == "image/png"
    assert (result.width, result.height) == (1000, 1000)

    out = _open(result.data)
    assert out.size == (1000, 1000)
    assert out.mode == "RGB"
    assert out.getpixel((5, 5)) == (40, 40, 40)
    red_band_max = out.crop((500, 850, 1000, 1000)).getextrema()[0][1]
    assert red_band_max > 100


def test_source_alpha_is_preserved(make_png):
    data = make_png(size=(300, 300), color=(10, 10, 10, 128), mode="RGBA")
    result = compositor.composite(data, WatermarkSpec(enabled=True, text="Shop"))
    assert _open(result.data).mode == "RGBA"


def test_logo_watermark_bounds(make_png):
    canvas = make_png(size=(1000, 1000), color=(0, 0, 0))
    logo = make_png(size=(400, 200), color=(255, 0, 0))
    spec = WatermarkSpec(enabled=True, kind=WatermarkKind.LOGO, position=WatermarkPosition.BOTTOM_RIGHT, logo=logo)

    result = compositor.composite(canvas, spec)
    out = _open(result.data)

    # 250x125 box at (720, 845)
    r, g, b = out.getpixel((845, 907))
    assert r > 150 and g < 100
    assert out.getpixel((600, 907)) == (0, 0, 0)
    assert out.getpixel((10, 10)) == (0, 0, 0)


def test_logo_load_failure_degrades_to_no_op(make_png):
    data = make_png()
    spec = WatermarkSpec(enabled=True, kind=WatermarkKind.LOGO, logo_url="https://example.com/logo.png")

    with patch("gemstudio.imaging.compositor.prep.fetch_as_file", side_effect=FetchError("offline")):
        result = compositor.composite(data, spec)

    assert result.applied is False
    assert result.data == data


def test_async_watermark_degrades_on_bad_logo(make_png):
    data = make_png()
    spec = WatermarkSpec(enabled=True, kind=WatermarkKind.LOGO, logo=b"definitely not an image")

    result = asyncio.run(compositor.watermark(data, spec))

    assert result.applied is False
    assert result.data == data


def test_undecodable_source_raises():
    with pytest.raises(RenderContextUnavailable):
        compositor.composite(b"not an image", WatermarkSpec(enabled=True, text="My Store"))


def test_spec_from_stored_config():
    spec = WatermarkSpec.from_config(
        {"enabled": True, "type": "text", "text": "My Jewelry Store", "textSize": 40, "textPosition": "top-left"}
    )
    assert spec.is_active
    assert spec.text_size == 40
    assert spec.position is WatermarkPosition.TOP_LEFT


@pytest.mark.parametrize("size", ["large", None, [40]])
def test_spec_with_unparseable_text_size_uses_default(size):
    spec = WatermarkSpec.from_config({"enabled": True, "text": "Shop", "textSize": size})
    assert spec.text_size == 50
    assert spec.is_active
