"""Auxiliary hardware: the GPIO shutdown switch and platform power-off."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable, Sequence
from typing import Any

from gpiozero import Button
from gpiozero.exc import GPIOZeroError

from einkframe._constants import DEFAULT_SHUTDOWN_COMMAND

_logger = logging.getLogger(__name__)


class ShutdownSwitch:
    """Switch between a GPIO pin and ground, read through gpiozero.

    The pin uses the internal pull-up, so a closed switch reads as pressed.
    Any failure to claim the pin disables the switch instead of raising.
    """

    def __init__(
        self,
        *,
        pin: int = 27,
        enabled: bool = True,
        button_factory: Callable[..., Any] = Button,
    ) -> None:
        self._pin = pin
        self._enabled = enabled
        self._button_factory = button_factory
        self._button: Any = None

    @property
    def enabled(self) -> bool:
        return self._enabled and self._button is not None

    def init(self) -> bool:
        if not self._enabled:
            _logger.info("GPIO shutdown switch feature is disabled")
            return False
        try:
            self._button = self._button_factory(self._pin, pull_up=True, bounce_time=0.01)
        except (GPIOZeroError, OSError, RuntimeError) as exc:
            _logger.error("Failed to initialize GPIO pin %d: %s", self._pin, exc)
            self._enabled = False
            return False
        _logger.info("GPIO shutdown switch initialized on pin %d", self._pin)
        return True

    def is_closed(self) -> bool:
        button = self._button
        if not self._enabled or button is None:
            return False
        try:
            return bool(button.is_pressed)
        except (GPIOZeroError, OSError) as exc:
            _logger.error("Failed to read GPIO state: %s", exc)
            return False

    def close(self) -> None:
        button = self._button
        self._button = None
        if button is not None:
            with contextlib.suppress(GPIOZeroError, OSError):
                button.close()


class AuxiliaryHardware:
    """Non-critical hardware, started after the display and the broker.

    Polls the shutdown switch and runs the platform power-off command.
    """

    def __init__(
        self,
        *,
        switch: ShutdownSwitch,
        poll_interval: float = 1.0,
        power_off_enabled: bool = True,
        shutdown_command: Sequence[str] = DEFAULT_SHUTDOWN_COMMAND,
    ) -> None:
        self._switch = switch
        self._poll_interval = poll_interval
        self._power_off_enabled = power_off_enabled
        self._shutdown_command = tuple(shutdown_command)
        self._poll_task: asyncio.Task[None] | None = None
        self._started = False
        self._closed = False
        self._shutdown_requested = False

    @property
    def started(self) -> bool:
        return self._started

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown_requested

    def start(self, on_switch_closed: Callable[[], None]) -> None:
        """Claim the switch and start polling it."""
        if self._started or self._closed:
            return
        self._started = True
        if self._switch.init():
            self._poll_task = asyncio.create_task(self._poll(on_switch_closed))

    async def _poll(self, on_switch_closed: Callable[[], None]) -> None:
        while not self._closed:
            if self._switch.is_closed():
                _logger.warning("Shutdown switch is ON - requesting shutdown")
                on_switch_closed()
                return
            await asyncio.sleep(self._poll_interval)

    def close(self) -> None:
        """Stop polling and release the GPIO pin. Idempotent."""
        if self._closed:
            return
        self._closed = True
        task = self._poll_task
        self._poll_task = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
        self._switch.close()

    async def request_shutdown(self) -> None:
        """Power the host off (once)."""
        if self._shutdown_requested:
            return
        self._shutdown_requested = True
        if not self._power_off_enabled:
            _logger.info("Power-off disabled - shutdown simulated")
            return

        _logger.info("Executing system shutdown command: %s", " ".join(self._shutdown_command))
        try:
            process = await asyncio.create_subprocess_exec(
                *self._shutdown_command,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
            _stdout, stderr = await process.communicate()
        except OSError as exc:
            _logger.error("Failed to execute shutdown command: %s", exc)
            return
        if process.returncode != 0:
            _logger.error(
                "Shutdown command exited with %s: %s",
                process.returncode,
                stderr.decode(errors="replace").strip(),
            )
