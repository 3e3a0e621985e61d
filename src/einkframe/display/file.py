"""Development driver that writes each image to disk instead of a panel."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from einkframe.display.imaging import apply_brightness, save_jpeg
from einkframe.exceptions import DisplayInitError, DisplayRenderError

_logger = logging.getLogger(__name__)


def sanitize_device_id(device_id: str) -> str:
    """Make a device id (often a MAC address) safe as a directory name."""
    return device_id.replace(":", "_")


class FileDriver:
    name = "file"

    def __init__(self, *, base_path: str | Path, device_id: str, filename: str = "latest_image.jpg") -> None:
        self._device_dir = Path(base_path).resolve() / sanitize_device_id(device_id)
        self._filename = filename
        self._brightness = 1.0

    @property
    def image_path(self) -> Path:
        return self._device_dir / self._filename

    async def init(self) -> None:
        try:
            await asyncio.to_thread(self._device_dir.mkdir, parents=True, exist_ok=True)
        except OSError as exc:
            raise DisplayInitError(f"Cannot create image directory {self._device_dir}: {exc}") from exc
        _logger.info("Image directory prepared: %s", self._device_dir)

    async def render(self, payload: bytes) -> None:
        data = await asyncio.to_thread(apply_brightness, payload, self._brightness)
        try:
            await asyncio.to_thread(save_jpeg, data, self.image_path)
        except (OSError, ValueError) as exc:
            raise DisplayRenderError(f"Error saving image: {exc}") from exc
        _logger.info("Image saved to %s", self.image_path)

    def set_brightness(self, value: float) -> None:
        self._brightness = value

    async def clear(self) -> None:
        return None

    def close(self) -> None:
        return None
