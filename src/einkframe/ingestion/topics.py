"""Topic parsing for device-scoped MQTT topics."""

from __future__ import annotations

from dataclasses import dataclass

import paho.mqtt.client as mqtt

from einkframe._constants import ASSET_TOPIC_SUFFIX, CONFIG_TOPIC_SUFFIX, TOPIC_ROOT
from einkframe.models.messages import MessageKind


@dataclass(frozen=True)
class TopicRoute:
    """Device segment and message class extracted from a topic."""

    device_id: str | None
    kind: MessageKind


def extract_device_id(topic: str) -> str | None:
    """Return the ``<deviceId>`` segment of ``device/<deviceId>/...``."""
    parts = topic.split("/")
    if len(parts) < 3 or parts[0] != TOPIC_ROOT or not parts[1]:
        return None
    return parts[1]


def classify_topic(topic: str) -> MessageKind:
    if topic.endswith(ASSET_TOPIC_SUFFIX):
        return MessageKind.ASSET
    if topic.endswith(CONFIG_TOPIC_SUFFIX):
        return MessageKind.CONFIG
    return MessageKind.UNKNOWN


def route_topic(topic: str, *, asset_filter: str | None = None) -> TopicRoute:
    """Classify *topic* for the demux step.

    A topic matching *asset_filter* (the configured image subscription,
    wildcards allowed) is an asset wherever it lives. Otherwise only
    topics under ``device/<deviceId>/`` are classified, by suffix.
    """
    device_id = extract_device_id(topic)
    if asset_filter and mqtt.topic_matches_sub(asset_filter, topic):
        return TopicRoute(device_id=device_id, kind=MessageKind.ASSET)
    if device_id is None:
        return TopicRoute(device_id=None, kind=MessageKind.UNKNOWN)
    return TopicRoute(device_id=device_id, kind=classify_topic(topic))
