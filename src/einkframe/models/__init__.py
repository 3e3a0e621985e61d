"""Data models for messages and runtime state."""

from einkframe.models._base import FrameBaseModel
from einkframe.models.messages import AssetMessage, ConfigUpdate, MessageKind
from einkframe.models.state import ConnectionState, GateState, QoS

__all__ = [
    "AssetMessage",
    "ConfigUpdate",
    "ConnectionState",
    "FrameBaseModel",
    "GateState",
    "MessageKind",
    "QoS",
]
