"""Shared types and enumerations."""

from __future__ import annotations

from enum import StrEnum


class ConnectionStatus(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


class QrFormat(StrEnum):
    PNG = "PNG"
    JPEG = "JPEG"
    SVG = "SVG"


class LifecycleKind(StrEnum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSE = "close"


class DeliveryFailure(StrEnum):
    DISCONNECTED = "disconnected"
    NOT_AUTHORIZED = "not-authorized"
    FORBIDDEN = "forbidden"
    RATE_LIMITED = "rate-limited"
    UNKNOWN = "unknown"


class MessageKind(StrEnum):
    TEXT = "text"
    IMAGE = "image"
    ACCEPT = "accept"
    REJECT = "reject"
