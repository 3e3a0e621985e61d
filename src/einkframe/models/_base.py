"""Base model for inbound message payloads.

Every payload model inherits from :class:`FrameBaseModel` which provides:

* ``frozen=True``: a parsed message is a value, never mutated in place.
* ``extra="ignore"``: unrecognized fields are dropped silently.
* Fields bind by their wire alias only, never by the Python name.
* A ``raw`` dict that captures the original JSON object. It is always
  replaced by the payload itself, so a payload key named ``raw`` is
  just another unrecognized field.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class FrameBaseModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
    )

    raw: dict[str, Any] = Field(default_factory=dict, exclude=True, repr=False)
    """Original payload object (as received)."""

    @model_validator(mode="before")
    @classmethod
    def _ensure_raw(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        merged = dict(values)
        merged["raw"] = dict(values)
        return merged
