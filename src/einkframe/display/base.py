"""Display driver protocol and the degraded-mode driver."""

from __future__ import annotations

import logging
from typing import Protocol

_logger = logging.getLogger(__name__)


class DisplayDriver(Protocol):
    """Device-specific drawing backend used by the display controller."""

    name: str

    async def init(self) -> None: ...

    async def render(self, payload: bytes) -> None: ...

    def set_brightness(self, value: float) -> None: ...

    async def clear(self) -> None: ...

    def close(self) -> None: ...


class NullDriver:
    """No-op driver.

    Used when no panel is attached, and as the degraded-mode fallback when
    the real driver cannot be initialized: the frame keeps accepting
    messages without drawing anything.
    """

    name = "null"

    def __init__(self) -> None:
        self.render_count = 0
        self.brightness: float | None = None

    async def init(self) -> None:
        return None

    async def render(self, payload: bytes) -> None:
        self.render_count += 1
        _logger.debug("Null display discarded image size=%d", len(payload))

    def set_brightness(self, value: float) -> None:
        self.brightness = value

    async def clear(self) -> None:
        return None

    def close(self) -> None:
        return None
