"""Application wiring and startup orchestration.

Owns:
- constructing every component once and passing it where it is needed
- racing display initialization against the broker connection
- routing asset/config messages and readiness signals to the gate
- the shutdown sequence (auto-shutdown, switch, signals)
"""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import logging
import signal
from collections.abc import Mapping

from einkframe._constants import ASSET_QOS, CONFIG_QOS
from einkframe._redact import redact_for_log
from einkframe._transport import PahoTransport, Transport
from einkframe.buffer import AssetSlot
from einkframe.config import resolve_device_identity
from einkframe.connection import ConnectionManager
from einkframe.display import DisplayController, DisplayDriver, create_driver
from einkframe.hardware import AuxiliaryHardware, ShutdownSwitch
from einkframe.models.messages import AssetMessage, ConfigUpdate
from einkframe.models.state import ConnectionState
from einkframe.shutdown import ShutdownGate
from einkframe.state.store import ConfigStore

_logger = logging.getLogger(__name__)


class FrameApp:
    """The picture frame runtime.

    Usage::

        app = FrameApp.from_env()
        await app.run()

    Collaborators (transport, display driver, auxiliary hardware) may be
    injected; otherwise they are built from the store's configuration.
    The store must be fully loaded before construction.
    """

    def __init__(
        self,
        store: ConfigStore,
        *,
        transport: Transport | None = None,
        driver: DisplayDriver | None = None,
        aux: AuxiliaryHardware | None = None,
    ) -> None:
        config = store.config
        self._store = store
        self._slot = AssetSlot()
        self._display = DisplayController(
            driver=driver if driver is not None else create_driver(config),
            store=store,
            slot=self._slot,
            on_rendered=self._handle_rendered,
            init_attempts=config.display_init_attempts,
            init_delay=config.display_init_delay,
        )

        if transport is None and config.broker_configured:
            transport = PahoTransport(config)
        self._connection: ConnectionManager | None = None
        if transport is not None:
            self._connection = ConnectionManager(
                transport=transport,
                device_id=store.device_id,
                topics=[(config.asset_topic, ASSET_QOS), (config.config_topic, CONFIG_QOS)],
                asset_topic=config.asset_topic,
                on_asset=self._handle_asset,
                on_config=self._handle_config,
                on_state_change=self._handle_connection_state,
                connect_timeout=config.connect_timeout,
                disconnect_grace=config.disconnect_grace,
            )

        self._aux = aux or AuxiliaryHardware(
            switch=ShutdownSwitch(pin=config.gpio_shutdown_pin, enabled=config.enable_shutdown_switch),
            poll_interval=config.switch_poll_interval,
            power_off_enabled=config.power_off_enabled,
            shutdown_command=config.shutdown_command,
        )
        self._gate = ShutdownGate(sequence=self._shutdown_sequence, grace_delay=config.shutdown_grace)
        self._aux_timer: asyncio.TimerHandle | None = None
        self._background: set[asyncio.Task[object]] = set()
        self._stopped = asyncio.Event()

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> FrameApp:
        """Two-phase load: identity first, then the full configuration."""
        store = ConfigStore(resolve_device_identity(env))
        store.load_full(env=env)
        return cls(store)

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def store(self) -> ConfigStore:
        return self._store

    @property
    def display(self) -> DisplayController:
        return self._display

    @property
    def connection(self) -> ConnectionManager | None:
        return self._connection

    @property
    def gate(self) -> ShutdownGate:
        return self._gate

    @property
    def aux(self) -> AuxiliaryHardware:
        return self._aux

    @property
    def slot(self) -> AssetSlot:
        return self._slot

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Bring up the display and the broker connection concurrently.

        Returns when both are up or the startup timeout elapsed; whatever is
        still initializing carries on in the background.
        """
        config = self._store.config
        _logger.info("Starting einkframe client for device: %s", config.device_id)
        _logger.debug("Configuration %s", redact_for_log(dataclasses.asdict(config)))

        loop = asyncio.get_running_loop()
        critical: list[asyncio.Task[object]] = [
            asyncio.create_task(self._display.init(), name="display-init"),
        ]
        if self._connection is not None:
            critical.append(asyncio.create_task(self._connection.connect(), name="mqtt-connect"))
        else:
            _logger.warning("No MQTT broker configured - running display only")

        self._aux_timer = loop.call_later(config.aux_init_delay, self._start_aux)

        done, pending = await asyncio.wait(critical, timeout=config.startup_timeout)
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                _logger.error("Startup task %s failed: %s", task.get_name(), task.exception())
        if pending:
            _logger.warning(
                "Startup safety timeout after %.1fs - continuing while %s finish in the background",
                config.startup_timeout,
                ", ".join(sorted(task.get_name() for task in pending)),
            )
            for task in pending:
                self._background.add(task)
                task.add_done_callback(self._background.discard)

        self._display.drain()
        _logger.info("Application startup complete - ready for image display")

    def _start_aux(self) -> None:
        self._aux_timer = None
        if self._gate.started:
            return
        self._aux.start(self._handle_switch_closed)

    # ------------------------------------------------------------------
    # Message and readiness handlers
    # ------------------------------------------------------------------

    def _handle_asset(self, asset: AssetMessage) -> None:
        self._display.submit(asset)

    def _handle_config(self, payload: bytes, topic: str) -> None:
        try:
            update = ConfigUpdate.from_payload(payload)
        except ValueError as exc:
            _logger.error("Error processing configuration message topic=%s: %s", topic, exc)
            return

        settings = self._store.update_config(update)
        self._display.apply_settings()
        self._gate.mark_config_processed(settings.auto_shutdown_enabled)

    def _handle_connection_state(self, state: ConnectionState) -> None:
        self._gate.set_connected(state is ConnectionState.CONNECTED)

    def _handle_rendered(self, _asset: AssetMessage) -> None:
        self._gate.mark_asset_rendered()

    def _handle_switch_closed(self) -> None:
        self._gate.trigger("Shutdown switch", power_off=True)

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    def request_stop(self) -> None:
        """Graceful exit without powering off (SIGINT/SIGTERM)."""
        self._gate.trigger("Graceful shutdown", power_off=False, delay=0.0)

    async def _shutdown_sequence(self, power_off: bool) -> None:
        _logger.info("Closing MQTT connection and e-ink display")
        if self._aux_timer is not None:
            self._aux_timer.cancel()
            self._aux_timer = None

        if self._connection is not None:
            try:
                await self._connection.disconnect()
            except Exception:
                _logger.exception("Error disconnecting from MQTT broker")

        try:
            self._display.close()
        except Exception:
            _logger.exception("Error closing display")

        try:
            self._aux.close()
        except Exception:
            _logger.exception("Error releasing auxiliary hardware")

        if power_off:
            try:
                await self._aux.request_shutdown()
            except Exception:
                _logger.exception("Error requesting platform shutdown")

        for task in list(self._background):
            task.cancel()
        self._stopped.set()

    async def wait_stopped(self) -> None:
        await self._stopped.wait()

    async def run(self) -> None:
        """Start, then block until a shutdown sequence has completed."""
        loop = asyncio.get_running_loop()
        installed: list[signal.Signals] = []
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError, RuntimeError):
                loop.add_signal_handler(sig, self.request_stop)
                installed.append(sig)
        try:
            await self.start()
            await self._stopped.wait()
        finally:
            for sig in installed:
                loop.remove_signal_handler(sig)
