"""Custom exception hierarchy for einkframe."""

from __future__ import annotations

import enum


class TransportErrorKind(enum.StrEnum):
    """Coarse classification attached to transport failures for logging."""

    AUTH = "auth"
    NETWORK = "network"
    TLS = "tls"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


class FrameError(Exception):
    """Base exception for all einkframe errors."""


class FrameConfigError(FrameError):
    """Invalid or missing configuration."""


class FrameTransportError(FrameError):
    """Broker-level failure (refused, unreachable, TLS, protocol)."""

    def __init__(
        self,
        message: str,
        *,
        kind: TransportErrorKind = TransportErrorKind.UNKNOWN,
        reason_code: int | None = None,
    ) -> None:
        self.kind = kind
        self.reason_code = reason_code
        super().__init__(message)


class FrameAuthenticationError(FrameTransportError):
    """Broker rejected the credentials."""

    def __init__(self, message: str, *, reason_code: int | None = None) -> None:
        super().__init__(message, kind=TransportErrorKind.AUTH, reason_code=reason_code)


class FrameSubscribeError(FrameTransportError):
    """Broker refused (or never acknowledged) a subscription."""

    def __init__(self, message: str, *, topic: str = "", reason_code: int | None = None) -> None:
        self.topic = topic
        super().__init__(message, kind=TransportErrorKind.UNKNOWN, reason_code=reason_code)


class DisplayError(FrameError):
    """Output device failure."""


class DisplayInitError(DisplayError):
    """Display driver could not be initialized."""


class DisplayRenderError(DisplayError):
    """Display driver failed to draw an image.

    The controller drops the asset that failed; it is never retried.
    """

    def __init__(self, message: str, *, returncode: int | None = None) -> None:
        self.returncode = returncode
        super().__init__(message)
