from __future__ import annotations

import pytest

from einkframe._constants import asset_topic, config_topic
from einkframe.ingestion.topics import classify_topic, extract_device_id, route_topic
from einkframe.models.messages import MessageKind


def test_topic_builders() -> None:
    assert asset_topic("abc") == "device/abc/image/display"
    assert config_topic("abc") == "device/abc/config"


@pytest.mark.parametrize(
    ("topic", "expected"),
    [
        ("device/abc/image/display", "abc"),
        ("device/aa:bb:cc/config", "aa:bb:cc"),
        ("device//config", None),
        ("device/abc", None),
        ("frames/abc/config", None),
        ("", None),
    ],
)
def test_extract_device_id(topic: str, expected: str | None) -> None:
    assert extract_device_id(topic) == expected


def test_classify_topic() -> None:
    assert classify_topic("device/abc/image/display") is MessageKind.ASSET
    assert classify_topic("device/abc/config") is MessageKind.CONFIG
    assert classify_topic("device/abc/status") is MessageKind.UNKNOWN


def test_route_topic() -> None:
    route = route_topic("device/xyz/config")

    assert route.device_id == "xyz"
    assert route.kind is MessageKind.CONFIG


def test_route_topic_outside_device_tree_is_unknown() -> None:
    route = route_topic("frames/abc/image/display")

    assert route.device_id is None
    assert route.kind is MessageKind.UNKNOWN


def test_route_topic_matches_configured_asset_filter() -> None:
    assert route_topic("frames/abc/latest", asset_filter="frames/abc/latest").kind is MessageKind.ASSET
    assert route_topic("frames/abc/latest", asset_filter="frames/+/latest").kind is MessageKind.ASSET
    assert route_topic("frames/abc/other", asset_filter="frames/abc/latest").kind is MessageKind.UNKNOWN
    assert route_topic("device/abc/config", asset_filter="frames/abc/latest").kind is MessageKind.CONFIG
