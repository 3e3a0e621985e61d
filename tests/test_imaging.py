from __future__ import annotations

import io
from pathlib import Path

import pytest
from PIL import Image

from einkframe.display.file import FileDriver, sanitize_device_id
from einkframe.display.imaging import apply_brightness, save_jpeg
from einkframe.exceptions import DisplayRenderError


def _png(value: int = 100, mode: str = "L") -> bytes:
    out = io.BytesIO()
    Image.new(mode, (4, 4), value if mode == "L" else (value, value, value)).save(out, format="PNG")
    return out.getvalue()


def _first_pixel(payload: bytes) -> int:
    with Image.open(io.BytesIO(payload)) as image:
        return image.convert("L").getpixel((0, 0))


def test_unit_brightness_returns_payload_untouched() -> None:
    payload = _png()

    assert apply_brightness(payload, 1.0) is payload


def test_brightness_scales_pixels_and_keeps_format() -> None:
    brighter = apply_brightness(_png(100), 1.5)
    darker = apply_brightness(_png(100), 0.5)

    assert _first_pixel(brighter) == 150
    assert _first_pixel(darker) == 50
    with Image.open(io.BytesIO(brighter)) as image:
        assert image.format == "PNG"


def test_undecodable_payload_is_returned_as_is() -> None:
    payload = b"\x01\x02\x03"

    assert apply_brightness(payload, 1.5) == payload


def test_save_jpeg(tmp_path: Path) -> None:
    target = save_jpeg(_png(mode="RGB"), tmp_path / "out.jpg")

    with Image.open(target) as image:
        assert image.format == "JPEG"


def test_sanitize_device_id() -> None:
    assert sanitize_device_id("b8:27:eb:12:34:56") == "b8_27_eb_12_34_56"


@pytest.mark.asyncio
async def test_file_driver_writes_latest_image(tmp_path: Path) -> None:
    driver = FileDriver(base_path=tmp_path, device_id="aa:bb")
    await driver.init()
    driver.set_brightness(0.5)

    await driver.render(_png(200, mode="RGB"))

    assert driver.image_path == tmp_path.resolve() / "aa_bb" / "latest_image.jpg"
    with Image.open(driver.image_path) as image:
        assert image.format == "JPEG"
        assert abs(image.convert("L").getpixel((0, 0)) - 100) <= 3


@pytest.mark.asyncio
async def test_file_driver_rejects_non_images(tmp_path: Path) -> None:
    driver = FileDriver(base_path=tmp_path, device_id="abc")
    await driver.init()

    with pytest.raises(DisplayRenderError):
        await driver.render(b"\x01\x02\x03")
