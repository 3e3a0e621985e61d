"""Output device: controller, driver protocol and the bundled drivers."""

from __future__ import annotations

from einkframe.config import FrameConfig
from einkframe.display.base import DisplayDriver, NullDriver
from einkframe.display.controller import DisplayController
from einkframe.display.file import FileDriver
from einkframe.display.it8951 import IT8951Driver


def create_driver(config: FrameConfig) -> DisplayDriver:
    """Build the driver selected by ``config.display_driver``."""
    if config.display_driver == "it8951":
        return IT8951Driver(command=config.it8951_command, vcom=config.it8951_vcom)
    if config.display_driver == "file":
        return FileDriver(base_path=config.image_save_path, device_id=config.device_id)
    return NullDriver()


__all__ = [
    "DisplayController",
    "DisplayDriver",
    "FileDriver",
    "IT8951Driver",
    "NullDriver",
    "create_driver",
]
