"""Internal constants shared across the package."""

from __future__ import annotations

from einkframe.models.state import QoS

DEFAULT_BROKER_PORT = 8883

# Topic layout: device/<deviceId>/image/display and device/<deviceId>/config
TOPIC_ROOT = "device"
ASSET_TOPIC_SUFFIX = "/image/display"
CONFIG_TOPIC_SUFFIX = "/config"

# QoS per topic class.
ASSET_QOS = QoS.AT_LEAST_ONCE
CONFIG_QOS = QoS.AT_MOST_ONCE

BRIGHTNESS_MIN = 0.0
BRIGHTNESS_MAX = 2.0
BRIGHTNESS_DEFAULT = 1.0

# it8951 CLI reports VCOM as "-2.27v"; the display command takes millivolts.
DEFAULT_VCOM_MV = -2270
DEFAULT_PANEL_SIZE = (1600, 1200)

DEFAULT_SHUTDOWN_COMMAND: tuple[str, ...] = ("sudo", "shutdown", "-h", "now")


def asset_topic(device_id: str) -> str:
    return f"{TOPIC_ROOT}/{device_id}{ASSET_TOPIC_SUFFIX}"


def config_topic(device_id: str) -> str:
    return f"{TOPIC_ROOT}/{device_id}{CONFIG_TOPIC_SUFFIX}"
