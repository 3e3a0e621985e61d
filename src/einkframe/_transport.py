"""MQTT transport: the broker-facing seam of the connection manager.

The connection manager only ever talks to the :class:`Transport` protocol.
:class:`PahoTransport` is the production implementation: a threaded
paho-mqtt client whose callbacks are marshalled onto the asyncio loop.
Tests pass fakes implementing the same protocol.
"""

from __future__ import annotations

import asyncio
import contextlib
import enum
import logging
import secrets
import ssl
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol, cast

import paho.mqtt.client as mqtt

from einkframe.config import FrameConfig
from einkframe.exceptions import (
    FrameAuthenticationError,
    FrameSubscribeError,
    FrameTransportError,
    TransportErrorKind,
)

_logger = logging.getLogger(__name__)

# MQTT v5 CONNACK reason codes (v3.1.1 return codes 4/5 map onto the same meaning).
_AUTH_REASON_CODES: frozenset[int] = frozenset({4, 5, 0x86, 0x87, 0x8C})
_NETWORK_REASON_CODES: frozenset[int] = frozenset({3, 0x88, 0x89, 0x9C, 0x9D})


class TransportEventKind(enum.StrEnum):
    CONNECTED = "connected"
    CONNECT_FAILED = "connect_failed"
    DISCONNECTED = "disconnected"
    MESSAGE = "message"


@dataclass(frozen=True)
class TransportEvent:
    """A single notification from the transport, delivered on the event loop."""

    kind: TransportEventKind
    topic: str = ""
    payload: bytes = b""
    error: FrameTransportError | None = None


EventSink = Callable[[TransportEvent], None]


class Transport(Protocol):
    """Structural transport interface used by the connection manager.

    ``start`` begins connecting and returns without waiting for the broker;
    reconnection after failures is the transport's own business. Every
    state change and inbound message is reported through *sink*, always
    called on the event loop thread.
    """

    async def start(self, sink: EventSink) -> None: ...

    async def subscribe(self, topic: str, qos: int) -> None: ...

    async def stop(self, timeout: float) -> None: ...


def classify_reason_code(value: int) -> TransportErrorKind:
    if value in _AUTH_REASON_CODES:
        return TransportErrorKind.AUTH
    if value in _NETWORK_REASON_CODES:
        return TransportErrorKind.NETWORK
    return TransportErrorKind.UNKNOWN


def classify_exception(exc: BaseException) -> TransportErrorKind:
    if isinstance(exc, FrameTransportError):
        return exc.kind
    if isinstance(exc, ssl.SSLError):
        return TransportErrorKind.TLS
    if isinstance(exc, TimeoutError):
        return TransportErrorKind.TIMEOUT
    if isinstance(exc, OSError):
        return TransportErrorKind.NETWORK
    return TransportErrorKind.UNKNOWN


def connect_error_from_reason(reason_code: Any) -> FrameTransportError:
    """Build the exception for a failed CONNACK."""
    value = int(getattr(reason_code, "value", reason_code))
    message = f"Broker refused connection: {reason_code}"
    if classify_reason_code(value) is TransportErrorKind.AUTH:
        return FrameAuthenticationError(message, reason_code=value)
    return FrameTransportError(message, kind=classify_reason_code(value), reason_code=value)


def build_client_id(config: FrameConfig) -> str:
    return f"{config.client_id_prefix}-{secrets.token_hex(3)}"


class PahoTransport:
    """Threaded paho-mqtt client bridged onto an asyncio loop."""

    def __init__(
        self,
        config: FrameConfig,
        *,
        reconnect_min_delay: int = 1,
        reconnect_max_delay: int = 30,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._reconnect_min_delay = reconnect_min_delay
        self._reconnect_max_delay = reconnect_max_delay
        self._logger = logger or _logger
        self._loop: asyncio.AbstractEventLoop | None = None
        self._client: mqtt.Client | None = None
        self._sink: EventSink | None = None
        self._lock = threading.Lock()
        self._pending_subscribes: dict[int, tuple[str, asyncio.Future[None]]] = {}
        self._early_subacks: dict[int, list[Any]] = {}
        self._disconnected: asyncio.Future[None] | None = None

    @property
    def client(self) -> mqtt.Client | None:
        return self._client

    def _emit(self, event: TransportEvent) -> None:
        loop = self._loop
        sink = self._sink
        if loop is None or sink is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(sink, event)

    def _build_client(self) -> mqtt.Client:
        config = self._config
        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=build_client_id(config),
            protocol=mqtt.MQTTv5,
        )
        client.enable_logger(self._logger)
        if config.username:
            client.username_pw_set(config.username, config.password)
        if config.tls_enabled:
            client.tls_set()
            if config.tls_insecure:
                client.tls_insecure_set(True)
        client.reconnect_delay_set(
            min_delay=self._reconnect_min_delay,
            max_delay=self._reconnect_max_delay,
        )

        def on_connect(
            _c: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if reason_code.is_failure:
                self._emit(
                    TransportEvent(
                        kind=TransportEventKind.CONNECT_FAILED,
                        error=connect_error_from_reason(reason_code),
                    )
                )
                return
            self._logger.debug("MQTT connected reason=%s", reason_code)
            self._emit(TransportEvent(kind=TransportEventKind.CONNECTED))

        def on_connect_fail(_c: mqtt.Client, _userdata: Any) -> None:
            self._emit(
                TransportEvent(
                    kind=TransportEventKind.CONNECT_FAILED,
                    error=FrameTransportError(
                        f"Could not reach broker {config.broker_host}:{config.broker_port}",
                        kind=TransportErrorKind.NETWORK,
                    ),
                )
            )

        def on_message(_c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            self._emit(
                TransportEvent(
                    kind=TransportEventKind.MESSAGE,
                    topic=msg.topic,
                    payload=bytes(msg.payload),
                )
            )

        def on_subscribe(
            _c: mqtt.Client,
            _userdata: Any,
            mid: int,
            reason_codes: list[Any],
            _properties: Any,
        ) -> None:
            with self._lock:
                entry = self._pending_subscribes.pop(mid, None)
                if entry is None:
                    self._early_subacks[mid] = list(reason_codes)
                    return
            topic, future = entry
            self._settle_subscribe(topic, future, list(reason_codes))

        def on_disconnect(
            _c: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            self._logger.debug("MQTT disconnected: %s", reason_code)
            self._fail_pending_subscribes(FrameTransportError("Disconnected before SUBACK", kind=TransportErrorKind.NETWORK))
            self._emit(TransportEvent(kind=TransportEventKind.DISCONNECTED))
            loop = self._loop
            waiter = self._disconnected
            if loop is not None and waiter is not None and not loop.is_closed():
                loop.call_soon_threadsafe(_set_future_result, waiter)

        client.on_connect = on_connect
        client.on_connect_fail = on_connect_fail
        client.on_message = on_message
        client.on_subscribe = on_subscribe
        client.on_disconnect = on_disconnect
        return client

    def _settle_subscribe(self, topic: str, future: asyncio.Future[None], reason_codes: list[Any]) -> None:
        failed = [rc for rc in reason_codes if getattr(rc, "is_failure", False)]
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        if failed:
            error = FrameSubscribeError(
                f"Broker rejected subscription to {topic}: {failed[0]}",
                topic=topic,
                reason_code=int(getattr(failed[0], "value", 0)),
            )
            loop.call_soon_threadsafe(_set_future_exception, future, error)
        else:
            loop.call_soon_threadsafe(_set_future_result, future)

    def _fail_pending_subscribes(self, error: FrameTransportError) -> None:
        with self._lock:
            pending = list(self._pending_subscribes.values())
            self._pending_subscribes.clear()
            self._early_subacks.clear()
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        for _topic, future in pending:
            loop.call_soon_threadsafe(_set_future_exception, future, error)

    def _start_blocking(self) -> None:
        client = self._build_client()
        client.connect_async(
            self._config.broker_host,
            self._config.broker_port,
            keepalive=self._config.keepalive,
            clean_start=True,
        )
        client.loop_start()
        self._client = client

    async def start(self, sink: EventSink) -> None:
        """Start the network thread; connecting continues in the background."""
        if self._client is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._sink = sink
        self._logger.debug(
            "MQTT start requested host=%s port=%s tls=%s",
            self._config.broker_host,
            self._config.broker_port,
            self._config.tls_enabled,
        )
        await self._loop.run_in_executor(None, self._start_blocking)

    async def subscribe(self, topic: str, qos: int) -> None:
        client = self._client
        loop = self._loop
        if client is None or loop is None:
            raise FrameTransportError("Transport not started", kind=TransportErrorKind.NETWORK)

        result, mid = client.subscribe(topic, qos=qos)
        if result != mqtt.MQTT_ERR_SUCCESS:
            raise FrameSubscribeError(
                f"Subscribe to {topic} not sent: {mqtt.error_string(result)}",
                topic=topic,
                reason_code=int(result),
            )

        future: asyncio.Future[None] = loop.create_future()
        with self._lock:
            early = self._early_subacks.pop(mid, None)
            if early is None:
                self._pending_subscribes[mid] = (topic, future)
        if early is not None:
            self._settle_subscribe(topic, future, early)
        await future

    async def stop(self, timeout: float) -> None:
        """Disconnect and stop the network thread.

        Waits at most *timeout* seconds for the broker to confirm.
        """
        client = self._client
        loop = self._loop
        self._client = None
        if client is None or loop is None:
            return

        self._disconnected = loop.create_future()
        try:
            if client.is_connected():
                client.disconnect()
                with contextlib.suppress(TimeoutError):
                    await asyncio.wait_for(asyncio.shield(self._disconnected), timeout)
        finally:
            self._sink = None
            await loop.run_in_executor(None, client.loop_stop)
            self._logger.debug("MQTT network loop stopped")


def _set_future_result(future: asyncio.Future[None]) -> None:
    if not future.done():
        future.set_result(None)


def _set_future_exception(future: asyncio.Future[None], error: BaseException) -> None:
    if not future.done():
        future.set_exception(error)
