"""In-memory configuration store.

This is the only component allowed to merge configuration updates.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict

from einkframe._constants import BRIGHTNESS_DEFAULT, BRIGHTNESS_MAX, BRIGHTNESS_MIN
from einkframe.config import FrameConfig
from einkframe.exceptions import FrameConfigError
from einkframe.ingestion.normalize import clamp
from einkframe.models.messages import ConfigUpdate

_logger = logging.getLogger(__name__)


class RuntimeSettings(BaseModel):
    """Settings a config message may change at runtime."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    brightness: float = BRIGHTNESS_DEFAULT
    auto_shutdown_enabled: bool = False


class ConfigStore:
    """Device identity plus mutable runtime settings.

    Loading happens in two explicit phases: the identity is passed in at
    construction (synchronous, no I/O) and :meth:`load_full` reads the
    rest of the configuration. Reading :attr:`config` before that raises
    instead of loading on demand.
    """

    def __init__(self, device_id: str) -> None:
        device_id = device_id.strip()
        if not device_id:
            raise FrameConfigError("device_id must be non-empty")
        self._device_id = device_id
        self._config: FrameConfig | None = None
        self._settings = RuntimeSettings()
        self._config_processed = False

    @property
    def device_id(self) -> str:
        return self._device_id

    @property
    def is_loaded(self) -> bool:
        return self._config is not None

    @property
    def config(self) -> FrameConfig:
        if self._config is None:
            raise FrameConfigError("Configuration not loaded; call ConfigStore.load_full() first")
        return self._config

    @property
    def settings(self) -> RuntimeSettings:
        return self._settings

    @property
    def brightness(self) -> float:
        return self._settings.brightness

    @property
    def auto_shutdown_enabled(self) -> bool:
        return self._settings.auto_shutdown_enabled

    @property
    def config_processed(self) -> bool:
        return self._config_processed

    def load_full(
        self,
        config: FrameConfig | None = None,
        *,
        env: Mapping[str, str] | None = None,
        **overrides: Any,
    ) -> FrameConfig:
        """Load the full configuration and seed the runtime settings from it."""
        if self._config is not None:
            return self._config
        if config is None:
            config = FrameConfig.from_env(env, device_id=self._device_id, **overrides)
        elif config.device_id != self._device_id:
            raise FrameConfigError(
                f"Configuration is for device {config.device_id!r}, store identity is {self._device_id!r}"
            )
        self._config = config
        self._settings = RuntimeSettings(
            brightness=clamp(config.brightness, BRIGHTNESS_MIN, BRIGHTNESS_MAX),
            auto_shutdown_enabled=config.auto_shutdown,
        )
        return config

    def record_brightness(self, value: float) -> float:
        """Store a brightness value (clamped) and return what was stored."""
        stored = clamp(float(value), BRIGHTNESS_MIN, BRIGHTNESS_MAX)
        self._settings = self._settings.model_copy(update={"brightness": stored})
        return stored

    def update_config(self, update: ConfigUpdate) -> RuntimeSettings:
        """Merge a configuration message and return the new settings.

        Brightness only changes when the message carries a number. The
        auto-shutdown flag is always taken from the message: a message
        without ``enableAutoShutdown`` disarms it.
        """
        patch: dict[str, Any] = {"auto_shutdown_enabled": bool(update.auto_shutdown_enabled)}
        if update.brightness is not None:
            patch["brightness"] = clamp(update.brightness, BRIGHTNESS_MIN, BRIGHTNESS_MAX)
        elif "displayBrightness" in update.raw:
            _logger.debug("Ignoring malformed displayBrightness=%r", update.raw.get("displayBrightness"))

        self._settings = self._settings.model_copy(update=patch)
        self._config_processed = True
        _logger.info(
            "Configuration updated brightness=%s auto_shutdown=%s",
            self._settings.brightness,
            self._settings.auto_shutdown_enabled,
        )
        return self._settings
