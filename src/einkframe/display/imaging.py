"""Pillow helpers shared by the drawing drivers."""

from __future__ import annotations

import io
import logging
from pathlib import Path

from PIL import Image, ImageEnhance

_logger = logging.getLogger(__name__)

_ENHANCEABLE_MODES = frozenset({"L", "RGB", "RGBA"})


def apply_brightness(payload: bytes, factor: float) -> bytes:
    """Return *payload* re-encoded with its brightness scaled by *factor*.

    A factor of 1.0 returns the bytes untouched. If the image cannot be
    decoded or encoded the original bytes are returned.
    """
    if factor == 1.0:
        return payload
    try:
        with Image.open(io.BytesIO(payload)) as image:
            fmt = image.format or "PNG"
            working = image if image.mode in _ENHANCEABLE_MODES else image.convert("RGB")
            adjusted = ImageEnhance.Brightness(working).enhance(factor)
            if fmt == "JPEG" and adjusted.mode == "RGBA":
                adjusted = adjusted.convert("RGB")
            out = io.BytesIO()
            adjusted.save(out, format=fmt)
            return out.getvalue()
    except (OSError, ValueError) as exc:
        _logger.error("Error processing image brightness, using original: %s", exc)
        return payload


def save_jpeg(payload: bytes, path: Path, *, quality: int = 90) -> Path:
    """Decode *payload* and write it to *path* as a JPEG."""
    with Image.open(io.BytesIO(payload)) as image:
        image.convert("RGB").save(path, format="JPEG", quality=quality)
    return path
