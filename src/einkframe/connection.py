"""Broker connection management and inbound demultiplexing.

Owns:
- the single logical broker connection and its :class:`ConnectionState`
- the subscription set (idempotent subscribe)
- the event channel fed by the transport and the demux pump draining it
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable, Iterable, Sequence
from datetime import datetime

from einkframe._retry import retry_async
from einkframe._transport import Transport, TransportEvent, TransportEventKind, classify_exception
from einkframe.exceptions import FrameTransportError, TransportErrorKind
from einkframe.ingestion.topics import route_topic
from einkframe.models.messages import AssetMessage, MessageKind
from einkframe.models.state import ConnectionState

_logger = logging.getLogger(__name__)

# Extra time granted to a transport that ignores its own stop timeout.
_STOP_SLACK_S = 3.0

_FAILURE_HINTS: dict[TransportErrorKind, str] = {
    TransportErrorKind.AUTH: "Authentication failed. Check the MQTT username and password.",
    TransportErrorKind.NETWORK: "Connection refused or broker unreachable. Check the broker URL and port.",
    TransportErrorKind.TLS: "TLS handshake failed. Check the broker certificate settings.",
    TransportErrorKind.TIMEOUT: "Broker did not answer in time.",
}


class ConnectionManager:
    """Single owner of the broker connection.

    Asset messages for this device are handed to *on_asset* synchronously
    from the demux pump. Config messages are handed to *on_config* on the
    next loop iteration so they never run ahead of a pending render.
    Messages for other devices are dropped with a debug trace only.
    Images on *asset_topic* are recognized even when it lies outside the
    ``device/<deviceId>/`` tree.
    """

    def __init__(
        self,
        *,
        transport: Transport,
        device_id: str,
        topics: Sequence[tuple[str, int]],
        asset_topic: str | None = None,
        on_asset: Callable[[AssetMessage], None],
        on_config: Callable[[bytes, str], None],
        on_state_change: Callable[[ConnectionState], None] | None = None,
        connect_timeout: float = 3.0,
        disconnect_grace: float = 2.0,
        start_attempts: int = 3,
        start_retry_delay: float = 1.0,
        channel_limit: int = 32,
        logger: logging.Logger | None = None,
    ) -> None:
        self._transport = transport
        self._device_id = device_id
        self._topics = list(topics)
        self._asset_topic = asset_topic
        self._on_asset = on_asset
        self._on_config = on_config
        self._on_state_change = on_state_change
        self._connect_timeout = connect_timeout
        self._disconnect_grace = disconnect_grace
        self._start_attempts = start_attempts
        self._start_retry_delay = start_retry_delay
        self._channel_limit = channel_limit
        self._logger = logger or _logger

        self._state = ConnectionState.DISCONNECTED
        self._subscriptions: set[tuple[str, int]] = set()
        self._inflight_subscribes: dict[str, asyncio.Task[None]] = {}
        self._connect_task: asyncio.Task[None] | None = None
        self._connected_waiter: asyncio.Future[None] | None = None
        self._channel: asyncio.Queue[TransportEvent] = asyncio.Queue()
        self._pump_task: asyncio.Task[None] | None = None
        self._resubscribe_task: asyncio.Task[None] | None = None
        self._last_error: FrameTransportError | None = None
        self._latest_asset_at: datetime | None = None

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def subscriptions(self) -> frozenset[tuple[str, int]]:
        return frozenset(self._subscriptions)

    @property
    def last_error(self) -> FrameTransportError | None:
        return self._last_error

    @property
    def has_received_asset(self) -> bool:
        return self._latest_asset_at is not None

    @property
    def latest_asset_time(self) -> datetime | None:
        return self._latest_asset_at

    # ------------------------------------------------------------------
    # Connect / disconnect
    # ------------------------------------------------------------------

    async def connect(self) -> ConnectionState:
        """Connect once; concurrent and repeated calls share the same attempt.

        Returns when the broker confirmed the connection, refused it, or the
        connect timeout elapsed, whichever comes first. In the last two
        cases the transport keeps trying in the background.
        """
        if self._connect_task is None:
            self._connect_task = asyncio.create_task(self._connect_once())
        await asyncio.shield(self._connect_task)
        return self._state

    async def _connect_once(self) -> None:
        loop = asyncio.get_running_loop()
        self._set_state(ConnectionState.CONNECTING)
        self._ensure_pump()
        waiter: asyncio.Future[None] = loop.create_future()
        self._connected_waiter = waiter

        try:
            await retry_async(
                lambda: self._transport.start(self.deliver),
                attempts=self._start_attempts,
                delay=self._start_retry_delay,
                backoff=2.0,
                retry_on=(OSError,),
                label="MQTT transport start",
                logger=self._logger,
            )
        except Exception as exc:
            kind = classify_exception(exc)
            self._record_failure(
                exc if isinstance(exc, FrameTransportError) else FrameTransportError(str(exc), kind=kind)
            )
            self._set_state(ConnectionState.DISCONNECTED)
            return

        done, _pending = await asyncio.wait({waiter}, timeout=self._connect_timeout)
        if not done:
            self._logger.warning(
                "MQTT connection taking longer than %.1fs - proceeding, transport keeps retrying",
                self._connect_timeout,
            )

    async def disconnect(self) -> None:
        """End the session; waits at most the disconnect grace period."""
        if self._state is ConnectionState.CLOSED:
            return
        self._set_state(ConnectionState.CLOSED)
        try:
            await asyncio.wait_for(
                self._transport.stop(self._disconnect_grace),
                timeout=self._disconnect_grace + _STOP_SLACK_S,
            )
            self._logger.info("MQTT client disconnected")
        except TimeoutError:
            self._logger.warning("MQTT transport did not stop within %.1fs", self._disconnect_grace)
        except Exception:
            self._logger.warning("MQTT transport stop failed", exc_info=True)
        finally:
            self._subscriptions.clear()
            self._connect_task = None
            for task in list(self._inflight_subscribes.values()):
                task.cancel()
            self._inflight_subscribes.clear()
            await self._stop_pump()

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    async def subscribe(self, topics: Iterable[tuple[str, int]] | None = None) -> None:
        """Subscribe to every topic not yet in the subscription set.

        Topics already subscribed are skipped; topics with a subscribe in
        flight are awaited rather than requested again. Before the broker
        confirmed the connection this is a no-op: the configured topics
        are subscribed on every ``CONNECTED`` event.
        """
        wanted = list(self._topics if topics is None else topics)
        if self._state is not ConnectionState.CONNECTED:
            self._logger.debug("Subscribe deferred until connected topics=%s", [t for t, _ in wanted])
            return

        tasks: list[asyncio.Task[None]] = []
        for topic, qos in wanted:
            if (topic, qos) in self._subscriptions:
                continue
            task = self._inflight_subscribes.get(topic)
            if task is None:
                task = asyncio.create_task(self._subscribe_one(topic, qos))
                self._inflight_subscribes[topic] = task
            tasks.append(task)
        if tasks:
            await asyncio.gather(*tasks)

    async def _subscribe_one(self, topic: str, qos: int) -> None:
        try:
            await self._transport.subscribe(topic, qos)
        except FrameTransportError as exc:
            self._logger.error("Error subscribing to %s: %s", topic, exc)
        else:
            self._subscriptions.add((topic, qos))
            self._logger.info("Subscribed to %s (qos=%d)", topic, qos)
        finally:
            self._inflight_subscribes.pop(topic, None)

    # ------------------------------------------------------------------
    # Event channel
    # ------------------------------------------------------------------

    def deliver(self, event: TransportEvent) -> None:
        """Transport sink; must be called on the event loop thread."""
        if event.kind is TransportEventKind.MESSAGE and self._channel.qsize() >= self._channel_limit:
            self._logger.warning("Inbound channel full, dropping message topic=%s", event.topic)
            return
        self._channel.put_nowait(event)

    def _ensure_pump(self) -> None:
        if self._pump_task is None or self._pump_task.done():
            self._pump_task = asyncio.create_task(self._pump())

    async def _stop_pump(self) -> None:
        task = self._pump_task
        self._pump_task = None
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _pump(self) -> None:
        while True:
            event = await self._channel.get()
            try:
                self._handle_event(event)
            except Exception:
                self._logger.exception("Unhandled error processing transport event kind=%s", event.kind)

    def _handle_event(self, event: TransportEvent) -> None:
        if event.kind is TransportEventKind.MESSAGE:
            self._dispatch(event.topic, event.payload)
        elif event.kind is TransportEventKind.CONNECTED:
            self._handle_connected()
        elif event.kind is TransportEventKind.CONNECT_FAILED:
            self._handle_connect_failed(event.error)
        elif event.kind is TransportEventKind.DISCONNECTED:
            self._handle_disconnected()

    def _handle_connected(self) -> None:
        if self._state is ConnectionState.CLOSED:
            return
        self._last_error = None
        self._resolve_waiter()
        self._logger.info("Connected to MQTT broker - ready for image messages")
        self._set_state(ConnectionState.CONNECTED)
        self._resubscribe_task = asyncio.create_task(self.subscribe())

    def _handle_connect_failed(self, error: FrameTransportError | None) -> None:
        if self._state is ConnectionState.CLOSED:
            return
        self._record_failure(error or FrameTransportError("Connection failed"))
        self._resolve_waiter()
        self._set_state(ConnectionState.RECONNECTING)

    def _handle_disconnected(self) -> None:
        self._subscriptions.clear()
        if self._state is ConnectionState.CLOSED:
            return
        self._logger.warning("MQTT connection lost - transport is reconnecting")
        self._set_state(ConnectionState.RECONNECTING)

    def _dispatch(self, topic: str, payload: bytes) -> None:
        route = route_topic(topic, asset_filter=self._asset_topic)
        if route.device_id is not None and route.device_id != self._device_id:
            self._logger.debug("Ignoring message for other device topic=%s", topic)
            return

        if route.kind is MessageKind.ASSET:
            asset = AssetMessage(payload=payload, source_topic=topic)
            self._latest_asset_at = asset.arrival_time
            self._logger.info("Received image message topic=%s size=%d", topic, asset.size)
            self._on_asset(asset)
        elif route.kind is MessageKind.CONFIG:
            self._logger.info("Received config message topic=%s", topic)
            asyncio.get_running_loop().call_soon(self._deliver_config, payload, topic)
        else:
            self._logger.debug("Ignoring message on unhandled topic=%s", topic)

    def _deliver_config(self, payload: bytes, topic: str) -> None:
        try:
            self._on_config(payload, topic)
        except Exception:
            self._logger.exception("Unhandled error in config handler topic=%s", topic)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _resolve_waiter(self) -> None:
        waiter = self._connected_waiter
        self._connected_waiter = None
        if waiter is not None and not waiter.done():
            waiter.set_result(None)

    def _record_failure(self, error: FrameTransportError) -> None:
        self._last_error = error
        self._logger.error("MQTT connection error (%s): %s", error.kind.value, error)
        hint = _FAILURE_HINTS.get(error.kind)
        if hint:
            self._logger.error(hint)

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        previous = self._state
        self._state = state
        self._logger.debug("Connection state %s -> %s", previous.value, state.value)
        if self._on_state_change is not None:
            try:
                self._on_state_change(state)
            except Exception:
                self._logger.exception("Connection state listener failed")
