"""einkframe - MQTT-driven e-paper picture frame runtime."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("einkframe")
except PackageNotFoundError:
    __version__ = "0+local"
from einkframe.app import FrameApp
from einkframe.buffer import AssetSlot
from einkframe.config import FrameConfig, resolve_device_identity
from einkframe.connection import ConnectionManager
from einkframe.display import DisplayController
from einkframe.exceptions import (
    DisplayError,
    DisplayInitError,
    DisplayRenderError,
    FrameAuthenticationError,
    FrameConfigError,
    FrameError,
    FrameSubscribeError,
    FrameTransportError,
    TransportErrorKind,
)
from einkframe.models import AssetMessage, ConfigUpdate, ConnectionState, GateState
from einkframe.shutdown import ShutdownGate
from einkframe.state.store import ConfigStore, RuntimeSettings

__all__ = [
    "__version__",
    "AssetMessage",
    "AssetSlot",
    "ConfigStore",
    "ConfigUpdate",
    "ConnectionManager",
    "ConnectionState",
    "DisplayController",
    "DisplayError",
    "DisplayInitError",
    "DisplayRenderError",
    "FrameApp",
    "FrameAuthenticationError",
    "FrameConfig",
    "FrameConfigError",
    "FrameError",
    "FrameSubscribeError",
    "FrameTransportError",
    "GateState",
    "RuntimeSettings",
    "ShutdownGate",
    "TransportErrorKind",
    "resolve_device_identity",
]
