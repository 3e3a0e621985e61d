from __future__ import annotations

from einkframe.buffer import AssetSlot
from einkframe.models.messages import AssetMessage


def _asset(payload: bytes) -> AssetMessage:
    return AssetMessage(payload=payload, source_topic="device/abc/image/display")


def test_empty_slot_is_falsy() -> None:
    slot = AssetSlot()

    assert not slot
    assert slot.pending is None
    assert slot.take() is None


def test_latest_asset_wins() -> None:
    slot = AssetSlot()
    first, second, third = _asset(b"\x01"), _asset(b"\x02"), _asset(b"\x03")

    assert slot.put(first) is None
    assert slot.put(second) is first
    assert slot.put(third) is second

    assert slot.replaced_count == 2
    assert slot.take() is third
    assert not slot


def test_clear_discards_pending_asset() -> None:
    slot = AssetSlot()
    slot.put(_asset(b"\x01"))

    slot.clear()

    assert slot.take() is None
    assert slot.replaced_count == 0
