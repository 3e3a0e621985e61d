from __future__ import annotations

import asyncio
from collections.abc import Callable

import pytest

from einkframe._transport import EventSink, TransportEvent, TransportEventKind
from einkframe.app import FrameApp
from einkframe.models.state import ConnectionState, GateState
from einkframe.state.store import ConfigStore

ASSET_TOPIC = "device/abc/image/display"
CONFIG_TOPIC = "device/abc/config"


class _FakeTransport:
    def __init__(self, calls: list[str]) -> None:
        self.calls = calls
        self.sink: EventSink | None = None
        self.subscriptions: list[tuple[str, int]] = []

    async def start(self, sink: EventSink) -> None:
        self.sink = sink
        asyncio.get_running_loop().call_soon(sink, TransportEvent(kind=TransportEventKind.CONNECTED))

    async def subscribe(self, topic: str, qos: int) -> None:
        self.subscriptions.append((topic, qos))

    async def stop(self, timeout: float) -> None:
        self.calls.append("transport.stop")

    def publish(self, topic: str, payload: bytes) -> None:
        assert self.sink is not None
        self.sink(TransportEvent(kind=TransportEventKind.MESSAGE, topic=topic, payload=payload))


class _FakeDriver:
    name = "fake"

    def __init__(self, calls: list[str]) -> None:
        self.calls = calls
        self.rendered: list[bytes] = []
        self.brightness: list[float] = []
        self.init_gate: asyncio.Event | None = None

    async def init(self) -> None:
        if self.init_gate is not None:
            await self.init_gate.wait()

    async def render(self, payload: bytes) -> None:
        self.rendered.append(payload)

    def set_brightness(self, value: float) -> None:
        self.brightness.append(value)

    async def clear(self) -> None:
        return None

    def close(self) -> None:
        self.calls.append("driver.close")


class _FakeAux:
    def __init__(self, calls: list[str]) -> None:
        self.calls = calls
        self.on_switch_closed: Callable[[], None] | None = None
        self.started = False

    def start(self, on_switch_closed: Callable[[], None]) -> None:
        self.started = True
        self.on_switch_closed = on_switch_closed

    def close(self) -> None:
        self.calls.append("aux.close")

    async def request_shutdown(self) -> None:
        self.calls.append("aux.request_shutdown")


def _build(**overrides: object) -> tuple[FrameApp, _FakeTransport, _FakeDriver, _FakeAux, list[str]]:
    calls: list[str] = []
    store = ConfigStore("abc")
    kwargs: dict[str, object] = {
        "display_driver": "null",
        "connect_timeout": 0.5,
        "startup_timeout": 1.0,
        "aux_init_delay": 0.0,
        "shutdown_grace": 0.0,
        "disconnect_grace": 0.1,
    }
    kwargs.update(overrides)
    store.load_full(env={}, **kwargs)  # type: ignore[arg-type]
    transport = _FakeTransport(calls)
    driver = _FakeDriver(calls)
    aux = _FakeAux(calls)
    app = FrameApp(store, transport=transport, driver=driver, aux=aux)  # type: ignore[arg-type]
    return app, transport, driver, aux, calls


async def _settle(rounds: int = 20) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_asset_received_before_display_ready_is_rendered_once() -> None:
    app, transport, driver, _aux, _calls = _build()
    driver.init_gate = asyncio.Event()

    start = asyncio.create_task(app.start())
    while app.connection is None or not app.connection.is_connected:
        await asyncio.sleep(0)
    transport.publish(ASSET_TOPIC, bytes([0x01, 0x02, 0x03]))
    await _settle()

    assert driver.rendered == []
    assert app.slot.pending is not None

    driver.init_gate.set()
    await start
    await app.display.wait_idle()

    assert driver.rendered == [bytes([0x01, 0x02, 0x03])]
    assert not app.slot
    assert app.gate.state is GateState.IDLE


@pytest.mark.asyncio
async def test_auto_shutdown_runs_ordered_sequence() -> None:
    app, transport, driver, aux, calls = _build()

    await app.start()
    await _settle()
    assert app.connection is not None
    assert app.connection.state is ConnectionState.CONNECTED
    assert sorted(transport.subscriptions) == [(CONFIG_TOPIC, 0), (ASSET_TOPIC, 1)]
    assert aux.started

    transport.publish(ASSET_TOPIC, b"\x01")
    await _settle()
    await app.display.wait_idle()
    assert driver.rendered == [b"\x01"]
    assert not app.gate.started

    transport.publish(CONFIG_TOPIC, b'{"enableAutoShutdown": true, "displayBrightness": 1.5}')
    await asyncio.wait_for(app.wait_stopped(), timeout=5.0)

    assert app.store.brightness == 1.5
    assert driver.brightness[-1] == 1.5
    assert app.gate.reason == "auto-shutdown"
    assert calls == ["transport.stop", "driver.close", "aux.close", "aux.request_shutdown"]


@pytest.mark.asyncio
async def test_config_without_auto_shutdown_keeps_running() -> None:
    app, transport, driver, _aux, calls = _build()
    await app.start()
    await _settle()

    transport.publish(ASSET_TOPIC, b"\x01")
    transport.publish(CONFIG_TOPIC, b'{"displayBrightness": 0.5}')
    await _settle()
    await app.display.wait_idle()

    assert driver.rendered == [b"\x01"]
    assert app.store.brightness == 0.5
    assert not app.gate.started
    assert calls == []

    app.request_stop()
    await asyncio.wait_for(app.wait_stopped(), timeout=5.0)
    assert calls == ["transport.stop", "driver.close", "aux.close"]


@pytest.mark.asyncio
async def test_malformed_config_is_ignored() -> None:
    app, transport, _driver, _aux, _calls = _build()
    await app.start()
    await _settle()

    transport.publish(CONFIG_TOPIC, b"{not json")
    await _settle()

    assert not app.store.config_processed
    assert not app.gate.config_processed
    app.request_stop()
    await app.wait_stopped()


@pytest.mark.asyncio
async def test_shutdown_switch_powers_off_once() -> None:
    app, _transport, _driver, aux, calls = _build()
    await app.start()
    await _settle()

    assert aux.on_switch_closed is not None
    aux.on_switch_closed()
    app.request_stop()
    await asyncio.wait_for(app.wait_stopped(), timeout=5.0)

    assert app.gate.reason == "Shutdown switch"
    assert calls == ["transport.stop", "driver.close", "aux.close", "aux.request_shutdown"]


@pytest.mark.asyncio
async def test_offline_mode_runs_display_only() -> None:
    calls: list[str] = []
    store = ConfigStore("abc")
    store.load_full(env={}, display_driver="null", aux_init_delay=0.0, startup_timeout=1.0)
    driver = _FakeDriver(calls)
    app = FrameApp(store, driver=driver, aux=_FakeAux(calls))  # type: ignore[arg-type]

    await app.start()

    assert app.connection is None
    assert app.display.ready
    app.request_stop()
    await app.wait_stopped()
    assert calls == ["driver.close", "aux.close"]


@pytest.mark.asyncio
async def test_from_env_builds_loaded_app() -> None:
    app = FrameApp.from_env({"EINKFRAME_DEVICE_ID": "frame-9", "EINKFRAME_DISPLAY_DRIVER": "null"})

    assert app.store.device_id == "frame-9"
    assert app.store.is_loaded
    assert app.connection is None


@pytest.mark.asyncio
async def test_startup_timeout_is_soft() -> None:
    app, transport, driver, _aux, _calls = _build(startup_timeout=0.2)
    driver.init_gate = asyncio.Event()

    await asyncio.wait_for(app.start(), timeout=2.0)

    assert not app.display.ready
    assert app.connection is not None
    assert app.connection.is_connected

    transport.publish(ASSET_TOPIC, b"\x07")
    await _settle()
    assert driver.rendered == []

    driver.init_gate.set()
    await _settle()
    await app.display.wait_idle()

    assert app.display.ready
    assert driver.rendered == [b"\x07"]
    app.request_stop()
    await app.wait_stopped()


@pytest.mark.asyncio
async def test_custom_image_topic_is_rendered() -> None:
    app, transport, driver, _aux, _calls = _build(image_topic="frames/abc/latest")
    await app.start()
    await _settle()

    assert ("frames/abc/latest", 1) in transport.subscriptions
    transport.publish("frames/abc/latest", b"\x01")
    await _settle()
    await app.display.wait_idle()

    assert driver.rendered == [b"\x01"]
    app.request_stop()
    await app.wait_stopped()
