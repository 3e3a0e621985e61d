"""Output device controller.

Owns the ``ready``/``busy`` flags of the display and the hand-off between
incoming assets and the single-slot buffer.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from einkframe._retry import retry_async
from einkframe.buffer import AssetSlot
from einkframe.display.base import DisplayDriver, NullDriver
from einkframe.models.messages import AssetMessage
from einkframe.state.store import ConfigStore

_logger = logging.getLogger(__name__)


class DisplayController:
    """Renders one asset at a time; everything else waits in the slot.

    While the display is initializing or busy, new assets go to the
    :class:`AssetSlot` (latest wins). The slot is drained once when the
    display becomes ready and after every finished render. Initialization
    failures degrade to a :class:`NullDriver`; render failures drop the
    asset. Neither propagates.
    """

    def __init__(
        self,
        *,
        driver: DisplayDriver,
        store: ConfigStore,
        slot: AssetSlot | None = None,
        on_rendered: Callable[[AssetMessage], None] | None = None,
        init_attempts: int = 3,
        init_delay: float = 0.5,
        logger: logging.Logger | None = None,
    ) -> None:
        self._driver: DisplayDriver = driver
        self._store = store
        self._slot = slot if slot is not None else AssetSlot()
        self._on_rendered = on_rendered
        self._init_attempts = init_attempts
        self._init_delay = init_delay
        self._logger = logger or _logger

        self._ready = False
        self._busy = False
        self._degraded = False
        self._closed = False
        self._applied_brightness: float | None = None
        self._render_count = 0
        self._init_task: asyncio.Task[None] | None = None
        self._render_task: asyncio.Task[None] | None = None
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def ready(self) -> bool:
        return self._ready

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def degraded(self) -> bool:
        return self._degraded

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def driver(self) -> DisplayDriver:
        return self._driver

    @property
    def slot(self) -> AssetSlot:
        return self._slot

    @property
    def render_count(self) -> int:
        """Number of successful renders."""
        return self._render_count

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def init(self) -> None:
        """Initialize the driver; concurrent callers share one attempt."""
        if self._init_task is None:
            self._init_task = asyncio.create_task(self._init_once())
        await asyncio.shield(self._init_task)

    async def _init_once(self) -> None:
        self._logger.info("Initializing display driver=%s", self._driver.name)
        try:
            await retry_async(
                self._driver.init,
                attempts=self._init_attempts,
                delay=self._init_delay,
                label="Display initialization",
                logger=self._logger,
            )
        except Exception as exc:
            self._logger.error(
                "Display initialization failed after %d attempts, continuing without a display: %s",
                self._init_attempts,
                exc,
            )
            try:
                self._driver.close()
            except Exception:
                self._logger.warning("Closing the failed display driver failed", exc_info=True)
            self._driver = NullDriver()
            self._degraded = True

        if self._closed:
            return
        self._ready = True
        self._apply_brightness(self._store.brightness)
        self._logger.info("Display ready for rendering (degraded=%s)", self._degraded)
        self.drain()

    def close(self) -> None:
        """Release the driver. Safe to call repeatedly or before init."""
        if self._closed:
            return
        self._closed = True
        self._ready = False
        self._slot.clear()
        try:
            self._driver.close()
        except Exception:
            self._logger.warning("Display driver close failed", exc_info=True)
        self._logger.info("Display closed")

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def submit(self, asset: AssetMessage) -> None:
        """Render *asset* now, or park it in the slot if the display cannot."""
        if self._closed:
            self._logger.debug("Display closed, ignoring image size=%d", asset.size)
            return
        if not self._ready:
            self._logger.info("Display not ready - buffering image size=%d", asset.size)
            self._slot.put(asset)
            return
        if self._busy:
            self._logger.info("Render in progress - buffering latest image size=%d", asset.size)
            self._slot.put(asset)
            return
        self._start_render(asset)

    def drain(self) -> bool:
        """Start rendering the buffered asset if the display is free.

        Returns ``True`` when a render was started.
        """
        if not self._ready or self._busy or self._closed or not self._slot:
            return False
        asset = self._slot.take()
        if asset is None:
            return False
        self._logger.info("Rendering buffered image received at %s", asset.arrival_time.isoformat())
        self._start_render(asset)
        return True

    async def clear(self) -> None:
        """Blank the panel. Skipped while not ready or while a render is running."""
        if not self._ready or self._busy or self._closed:
            self._logger.debug("Display not idle, skipping clear")
            return
        self._busy = True
        self._idle.clear()
        try:
            await self._driver.clear()
        except Exception as exc:
            self._logger.error("Error clearing display: %s", exc)
        finally:
            self._busy = False
            self._idle.set()
        self.drain()

    async def wait_idle(self) -> None:
        """Wait until no render is in flight."""
        await self._idle.wait()

    def _start_render(self, asset: AssetMessage) -> None:
        self._busy = True
        self._idle.clear()
        self._render_task = asyncio.create_task(self._render_loop(asset))

    async def _render_loop(self, asset: AssetMessage) -> None:
        current: AssetMessage | None = asset
        try:
            while current is not None and not self._closed:
                await self._render_one(current)
                current = self._slot.take()
        finally:
            self._busy = False
            self._idle.set()

    async def _render_one(self, asset: AssetMessage) -> None:
        if self._applied_brightness != self._store.brightness:
            self._apply_brightness(self._store.brightness)
        try:
            await self._driver.render(asset.payload)
        except Exception as exc:
            self._logger.error("Error displaying image, dropping it: %s", exc)
            self._logger.debug("Render failure detail", exc_info=True)
            return

        self._render_count += 1
        self._logger.info("Image displayed successfully size=%d", asset.size)
        if self._on_rendered is not None:
            try:
                self._on_rendered(asset)
            except Exception:
                self._logger.exception("Render listener failed")

    # ------------------------------------------------------------------
    # Brightness
    # ------------------------------------------------------------------

    def set_brightness(self, value: float) -> None:
        """Record *value* in the config store and apply it if ready."""
        stored = self._store.record_brightness(value)
        if self._ready and not self._closed:
            self._apply_brightness(stored)

    def apply_settings(self) -> None:
        """Re-apply the stored brightness to the driver if ready."""
        if self._ready and not self._closed:
            self._apply_brightness(self._store.brightness)

    def _apply_brightness(self, value: float) -> None:
        try:
            self._driver.set_brightness(value)
        except Exception:
            self._logger.warning("Display driver rejected brightness=%s", value, exc_info=True)
            return
        self._applied_brightness = value
        self._logger.debug("Display brightness set to %s", value)
