"""Runtime state enums."""

from __future__ import annotations

from enum import IntEnum, StrEnum


class ConnectionState(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


class GateState(StrEnum):
    IDLE = "idle"
    ARMED = "armed"
    FIRED = "fired"


class QoS(IntEnum):
    AT_MOST_ONCE = 0
    AT_LEAST_ONCE = 1
