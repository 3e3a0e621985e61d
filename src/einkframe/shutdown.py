"""Single-fire shutdown gate.

The gate tracks four independent signals and starts the shutdown
sequence the first time they are all true at once. The latch is closed
before any awaiting happens, so re-entrant evaluations while the
sequence runs can never start a second one.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from einkframe.models.state import GateState

_logger = logging.getLogger(__name__)

ShutdownSequence = Callable[[bool], Awaitable[None]]
"""Coroutine function run once; the argument says whether to power off."""


class ShutdownGate:
    def __init__(
        self,
        *,
        sequence: ShutdownSequence,
        grace_delay: float = 2.0,
        logger: logging.Logger | None = None,
    ) -> None:
        self._sequence = sequence
        self._grace_delay = grace_delay
        self._logger = logger or _logger

        self._connected = False
        self._asset_rendered = False
        self._config_processed = False
        self._auto_shutdown_enabled = False
        self._started = False
        self._reason: str | None = None
        self._task: asyncio.Task[None] | None = None
        self._finished = asyncio.Event()

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def asset_rendered(self) -> bool:
        return self._asset_rendered

    @property
    def config_processed(self) -> bool:
        return self._config_processed

    @property
    def auto_shutdown_enabled(self) -> bool:
        return self._auto_shutdown_enabled

    @property
    def started(self) -> bool:
        return self._started

    @property
    def reason(self) -> str | None:
        return self._reason

    @property
    def state(self) -> GateState:
        if self._started:
            return GateState.FIRED
        if self._auto_shutdown_enabled:
            return GateState.ARMED
        return GateState.IDLE

    # ------------------------------------------------------------------
    # Signals
    # ------------------------------------------------------------------

    def set_connected(self, connected: bool) -> None:
        self._connected = connected
        if connected:
            self.evaluate()

    def mark_asset_rendered(self) -> None:
        self._asset_rendered = True
        self.evaluate()

    def mark_config_processed(self, auto_shutdown_enabled: bool) -> None:
        self._config_processed = True
        self._auto_shutdown_enabled = auto_shutdown_enabled
        self.evaluate()

    # ------------------------------------------------------------------
    # Firing
    # ------------------------------------------------------------------

    def evaluate(self) -> bool:
        """Fire if every condition holds; returns ``True`` only on the firing call."""
        if self._started:
            return False
        if not (self._connected and self._asset_rendered and self._config_processed and self._auto_shutdown_enabled):
            return False
        self._logger.info("Auto-shutdown conditions met")
        return self.trigger("auto-shutdown", power_off=True)

    def trigger(self, reason: str, *, power_off: bool, delay: float | None = None) -> bool:
        """Start the shutdown sequence unless it already started."""
        if self._started:
            self._logger.debug("Shutdown already started, ignoring %s", reason)
            return False
        self._started = True
        self._reason = reason
        wait = self._grace_delay if delay is None else delay
        self._logger.info("%s initiated - shutting down in %.1fs", reason, wait)
        self._task = asyncio.create_task(self._run(wait, power_off))
        return True

    async def _run(self, delay: float, power_off: bool) -> None:
        try:
            if delay > 0:
                await asyncio.sleep(delay)
            await self._sequence(power_off)
        except Exception:
            self._logger.exception("Shutdown sequence failed")
        finally:
            self._finished.set()

    async def wait_finished(self) -> None:
        await self._finished.wait()
