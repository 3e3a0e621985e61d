"""Device identity and static configuration for einkframe."""

from __future__ import annotations

import dataclasses
import os
import uuid
from collections.abc import Callable, Mapping
from typing import Any

from einkframe._constants import (
    BRIGHTNESS_DEFAULT,
    DEFAULT_BROKER_PORT,
    DEFAULT_SHUTDOWN_COMMAND,
    DEFAULT_VCOM_MV,
    asset_topic,
    config_topic,
)
from einkframe.exceptions import FrameConfigError

DISPLAY_DRIVERS: frozenset[str] = frozenset({"it8951", "file", "null"})


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _hardware_device_id(getnode: Callable[[], int] = uuid.getnode) -> str:
    node = getnode()
    return ":".join(f"{(node >> shift) & 0xFF:02x}" for shift in range(40, -1, -8))


def resolve_device_identity(env: Mapping[str, str] | None = None) -> str:
    """Return the device identity used to scope every topic.

    ``EINKFRAME_DEVICE_ID`` wins, then the legacy ``SPECIFIC_DEVICE_ID``;
    otherwise the MAC address of the primary interface is used.  This is
    the fast first phase of configuration loading and never touches the
    network or the disk.
    """
    source = os.environ if env is None else env
    for key in ("EINKFRAME_DEVICE_ID", "SPECIFIC_DEVICE_ID"):
        value = (source.get(key) or "").strip()
        if value:
            return value
    return _hardware_device_id()


def parse_broker(raw_broker: str) -> tuple[str, int | None]:
    """Split ``mqtts://host:port/path`` style values into host and port."""
    value = raw_broker.strip()
    if not value:
        raise ValueError("Broker value is empty")

    if "://" in value:
        value = value.split("://", 1)[1]
    if "/" in value:
        value = value.split("/", 1)[0]

    host, _, maybe_port = value.rpartition(":")
    if host and maybe_port.isdigit():
        return host, int(maybe_port)
    return value, None


@dataclasses.dataclass(frozen=True)
class FrameConfig:
    """Static runtime configuration.

    Parameters
    ----------
    device_id : str
        Device identity. Every inbound topic is filtered against it.
    broker_host : str
        MQTT broker host name. Empty means offline (display only).
    broker_port : int
        MQTT broker port. Defaults to 8883 (MQTT over TLS).
    username, password : str or None
        Broker credentials.
    client_id_prefix : str
        Prefix of the MQTT client id; a random suffix is appended per run.
    tls_enabled : bool
        Connect with TLS.
    tls_insecure : bool
        Skip broker certificate verification.
    keepalive : int
        MQTT keepalive in seconds.
    image_topic : str or None
        Override for the asset topic. Defaults to
        ``device/<device_id>/image/display``.
    connect_timeout : float
        Seconds ``connect()`` waits before letting startup proceed.
    startup_timeout : float
        Overall startup safety timeout in seconds.
    disconnect_grace : float
        Seconds to wait for the broker to confirm a disconnect.
    aux_init_delay : float
        Delay before auxiliary hardware is initialized.
    shutdown_grace : float
        Delay between the shutdown decision and the shutdown sequence.
    display_driver : str
        ``"it8951"``, ``"file"`` or ``"null"``.
    display_init_attempts : int
        Driver initialization attempts before degrading to no-op mode.
    display_init_delay : float
        Seconds between driver initialization attempts.
    brightness : float
        Initial brightness factor until a config message says otherwise.
    auto_shutdown : bool
        Initial auto-shutdown flag.
    image_save_path : str
        Output directory of the ``file`` driver.
    it8951_command : str
        Executable of the IT8951 command line driver.
    it8951_vcom : int
        Fallback VCOM in millivolts when ``it8951 info`` omits it.
    enable_shutdown_switch : bool
        Poll the GPIO shutdown switch.
    gpio_shutdown_pin : int
        BCM pin of the shutdown switch (closed = pulled to ground).
    switch_poll_interval : float
        Seconds between switch polls.
    power_off_enabled : bool
        Run ``shutdown_command`` at the end of the auto-shutdown sequence.
    shutdown_command : tuple of str
        Platform power-off command.
    """

    device_id: str
    broker_host: str = ""
    broker_port: int = DEFAULT_BROKER_PORT
    username: str | None = None
    password: str | None = None
    client_id_prefix: str = "einkframe"
    tls_enabled: bool = True
    tls_insecure: bool = False
    keepalive: int = 60
    image_topic: str | None = None
    connect_timeout: float = 3.0
    startup_timeout: float = 10.0
    disconnect_grace: float = 2.0
    aux_init_delay: float = 1.0
    shutdown_grace: float = 2.0
    display_driver: str = "it8951"
    display_init_attempts: int = 3
    display_init_delay: float = 0.5
    brightness: float = BRIGHTNESS_DEFAULT
    auto_shutdown: bool = False
    image_save_path: str = "./images"
    it8951_command: str = "it8951"
    it8951_vcom: int = DEFAULT_VCOM_MV
    enable_shutdown_switch: bool = False
    gpio_shutdown_pin: int = 27
    switch_poll_interval: float = 1.0
    power_off_enabled: bool = True
    shutdown_command: tuple[str, ...] = DEFAULT_SHUTDOWN_COMMAND

    def __post_init__(self) -> None:
        if not self.device_id.strip():
            raise FrameConfigError("device_id must be non-empty")
        if self.display_driver not in DISPLAY_DRIVERS:
            raise FrameConfigError(
                f"Unknown display driver {self.display_driver!r} (expected one of {sorted(DISPLAY_DRIVERS)})"
            )
        if self.display_init_attempts < 1:
            raise FrameConfigError("display_init_attempts must be at least 1")

    @property
    def broker_configured(self) -> bool:
        return bool(self.broker_host)

    @property
    def asset_topic(self) -> str:
        return self.image_topic or asset_topic(self.device_id)

    @property
    def config_topic(self) -> str:
        return config_topic(self.device_id)

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None, **overrides: Any) -> FrameConfig:
        """Create configuration from ``EINKFRAME_*`` environment variables.

        Explicit keyword arguments override environment values.  The
        broker URL may be given as ``host``, ``host:port`` or
        ``mqtts://host:port``; an explicit ``EINKFRAME_MQTT_BROKER_PORT``
        wins over a port embedded in the URL.

        Raises
        ------
        FrameConfigError
            When a numeric variable cannot be parsed or a value is invalid.
        """
        source = os.environ if env is None else env

        config_kwargs: dict[str, Any] = {}
        if "device_id" not in overrides:
            config_kwargs["device_id"] = resolve_device_identity(source)

        broker_raw = source.get("EINKFRAME_MQTT_BROKER_URL") or source.get("MQTT_BROKER_URL")
        if broker_raw and broker_raw.strip():
            host, port = parse_broker(broker_raw)
            config_kwargs["broker_host"] = host
            if port is not None:
                config_kwargs["broker_port"] = port

        _ENV_STR_MAP = {
            "EINKFRAME_MQTT_USERNAME": "username",
            "EINKFRAME_MQTT_PASSWORD": "password",
            "EINKFRAME_MQTT_CLIENT_ID": "client_id_prefix",
            "EINKFRAME_MQTT_TOPIC_IMAGE_DISPLAY": "image_topic",
            "EINKFRAME_DISPLAY_DRIVER": "display_driver",
            "EINKFRAME_IMAGE_SAVE_PATH": "image_save_path",
            "EINKFRAME_IT8951_COMMAND": "it8951_command",
        }
        for env_key, field_name in _ENV_STR_MAP.items():
            val = source.get(env_key)
            if val is not None and val.strip():
                config_kwargs[field_name] = val.strip()

        _ENV_NUMBER_MAP: dict[str, tuple[str, Callable[[str], Any]]] = {
            "EINKFRAME_MQTT_BROKER_PORT": ("broker_port", int),
            "EINKFRAME_MQTT_KEEPALIVE": ("keepalive", int),
            "EINKFRAME_CONNECT_TIMEOUT": ("connect_timeout", float),
            "EINKFRAME_STARTUP_TIMEOUT": ("startup_timeout", float),
            "EINKFRAME_SHUTDOWN_GRACE": ("shutdown_grace", float),
            "EINKFRAME_DISPLAY_BRIGHTNESS": ("brightness", float),
            "EINKFRAME_IT8951_VCOM": ("it8951_vcom", int),
            "EINKFRAME_GPIO_SHUTDOWN_PIN": ("gpio_shutdown_pin", int),
        }
        for env_key, (field_name, convert) in _ENV_NUMBER_MAP.items():
            val = source.get(env_key)
            if val is None or field_name in overrides:
                continue
            try:
                config_kwargs[field_name] = convert(val)
            except ValueError as exc:
                raise FrameConfigError(f"{env_key} is not a valid number: {val!r}") from exc

        _ENV_BOOL_MAP = {
            "EINKFRAME_MQTT_TLS": ("tls_enabled", True),
            "EINKFRAME_MQTT_TLS_INSECURE": ("tls_insecure", False),
            "EINKFRAME_AUTO_SHUTDOWN": ("auto_shutdown", False),
            "EINKFRAME_GPIO_ENABLE_SHUTDOWN_SWITCH": ("enable_shutdown_switch", False),
            "EINKFRAME_POWER_OFF_ENABLED": ("power_off_enabled", True),
        }
        for env_key, (field_name, default) in _ENV_BOOL_MAP.items():
            if field_name not in overrides and env_key in source:
                config_kwargs[field_name] = _env_bool(source.get(env_key), default)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
