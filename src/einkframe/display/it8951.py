"""IT8951 e-paper driver backed by the ``it8951`` command line tool."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import re
import tempfile
import time
from pathlib import Path

from einkframe._constants import DEFAULT_PANEL_SIZE, DEFAULT_VCOM_MV
from einkframe.display.imaging import apply_brightness
from einkframe.exceptions import DisplayInitError, DisplayRenderError

_logger = logging.getLogger(__name__)

_WIDTH_RE = re.compile(r"width\s*=\s*(\d+)")
_HEIGHT_RE = re.compile(r"height\s*=\s*(\d+)")
_VCOM_RE = re.compile(r"VCOM\s*=\s*-?([\d.]+)\s*v", re.IGNORECASE)


def parse_panel_info(text: str) -> tuple[int | None, int | None, int | None]:
    """Extract width, height and VCOM (millivolts, negative) from ``it8951 info``."""
    width = _WIDTH_RE.search(text)
    height = _HEIGHT_RE.search(text)
    vcom = _VCOM_RE.search(text)
    return (
        int(width.group(1)) if width else None,
        int(height.group(1)) if height else None,
        -round(float(vcom.group(1)) * 1000) if vcom else None,
    )


def _default_scratch_dir() -> Path:
    shm = Path("/dev/shm")
    return shm if shm.is_dir() else Path(tempfile.gettempdir())


class IT8951Driver:
    """Draws images by writing them to a RAM-backed file and calling ``it8951 display``."""

    name = "it8951"

    def __init__(
        self,
        *,
        command: str = "it8951",
        vcom: int = DEFAULT_VCOM_MV,
        scratch_dir: Path | None = None,
    ) -> None:
        self._command = command
        self._scratch_dir = scratch_dir or _default_scratch_dir()
        self._brightness = 1.0
        self._initialized = False
        self.width, self.height = DEFAULT_PANEL_SIZE
        self.vcom = vcom

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def _run(self, *args: str) -> tuple[int, str, str]:
        process = await asyncio.create_subprocess_exec(
            self._command,
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await process.communicate()
        returncode = process.returncode if process.returncode is not None else -1
        return returncode, stdout.decode(errors="replace"), stderr.decode(errors="replace")

    async def init(self) -> None:
        if self._initialized:
            return
        try:
            returncode, stdout, stderr = await self._run("info")
        except OSError as exc:
            raise DisplayInitError(f"Cannot run {self._command}: {exc}") from exc
        if returncode != 0:
            raise DisplayInitError(f"Display initialization failed with code {returncode}: {stderr.strip()}")

        width, height, vcom = parse_panel_info(stdout)
        if width is not None:
            self.width = width
        if height is not None:
            self.height = height
        if vcom is not None:
            self.vcom = vcom
        self._initialized = True
        _logger.info("IT8951 panel %dx%d vcom=%dmV", self.width, self.height, self.vcom)

    async def render(self, payload: bytes) -> None:
        if not self._initialized:
            raise DisplayRenderError("IT8951 display not initialized")

        data = await asyncio.to_thread(apply_brightness, payload, self._brightness)
        image_path = self._scratch_dir / f"einkframe_{time.time_ns()}.img"
        await asyncio.to_thread(image_path.write_bytes, data)
        _logger.debug("Drawing image (%dx%d) size=%d", self.width, self.height, len(data))
        try:
            returncode, _stdout, stderr = await self._run("display", str(image_path), "-v", str(self.vcom))
        except OSError as exc:
            raise DisplayRenderError(f"Cannot run {self._command}: {exc}") from exc
        finally:
            with contextlib.suppress(OSError):
                image_path.unlink()
        if returncode != 0:
            raise DisplayRenderError(
                f"Display image failed with code {returncode}: {stderr.strip()}",
                returncode=returncode,
            )

    def set_brightness(self, value: float) -> None:
        self._brightness = value

    async def clear(self) -> None:
        if not self._initialized:
            _logger.debug("Display not initialized, skipping clear")
            return
        try:
            returncode, _stdout, stderr = await self._run("clear")
        except OSError as exc:
            raise DisplayRenderError(f"Cannot run {self._command}: {exc}") from exc
        if returncode != 0:
            raise DisplayRenderError(
                f"Clear display failed with code {returncode}: {stderr.strip()}",
                returncode=returncode,
            )

    def close(self) -> None:
        self._initialized = False
