"""Single-slot, latest-wins buffer for assets waiting on the display."""

from __future__ import annotations

import logging

from einkframe.models.messages import AssetMessage

_logger = logging.getLogger(__name__)


class AssetSlot:
    """Holds at most one pending asset.

    A newer asset replaces the pending one instead of queueing behind it,
    so intermediate images may never be drawn.
    """

    def __init__(self) -> None:
        self._pending: AssetMessage | None = None
        self._replaced = 0

    def __bool__(self) -> bool:
        return self._pending is not None

    @property
    def pending(self) -> AssetMessage | None:
        return self._pending

    @property
    def replaced_count(self) -> int:
        """How many buffered assets were overwritten before being drawn."""
        return self._replaced

    def put(self, asset: AssetMessage) -> AssetMessage | None:
        """Store *asset*, returning the asset it replaced (if any)."""
        previous = self._pending
        self._pending = asset
        if previous is not None:
            self._replaced += 1
            _logger.debug(
                "Buffered image replaced size=%d (previous from %s)",
                asset.size,
                previous.arrival_time.isoformat(),
            )
        return previous

    def take(self) -> AssetMessage | None:
        """Remove and return the pending asset."""
        asset = self._pending
        self._pending = None
        return asset

    def clear(self) -> None:
        self._pending = None
