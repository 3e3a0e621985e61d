"""Inbound message models."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from enum import StrEnum
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field

from einkframe.ingestion.normalize import safe_bool, safe_float
from einkframe.models._base import FrameBaseModel


class MessageKind(StrEnum):
    ASSET = "asset"
    CONFIG = "config"
    UNKNOWN = "unknown"


class AssetMessage(BaseModel):
    """An image received for display.

    Consumed exactly once: rendered immediately or parked in the asset
    slot, where a newer arrival replaces it.
    """

    model_config = ConfigDict(frozen=True)

    payload: bytes
    source_topic: str
    arrival_time: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def size(self) -> int:
        return len(self.payload)


LenientFloat = Annotated[float | None, BeforeValidator(safe_float)]
LenientBool = Annotated[bool | None, BeforeValidator(safe_bool)]


class ConfigUpdate(FrameBaseModel):
    """A configuration message from ``device/<id>/config``.

    ``None`` means the field was absent or malformed. What that implies
    differs per field and is decided by the config store.
    """

    brightness: LenientFloat = Field(default=None, alias="displayBrightness")
    auto_shutdown_enabled: LenientBool = Field(default=None, alias="enableAutoShutdown")

    @classmethod
    def from_payload(cls, payload: bytes | str) -> ConfigUpdate:
        """Parse a JSON object payload.

        Raises
        ------
        ValueError
            When the payload is not valid JSON or not a JSON object.
        """
        text = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        parsed: Any = json.loads(text)
        if not isinstance(parsed, dict):
            raise ValueError("Config payload is not a JSON object")
        return cls.model_validate(parsed)
