"""Session state and snapshot models."""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from pairbot.core.types import ConnectionStatus, MessageKind, QrFormat


@dataclass
class SessionState:
    """Connection state. Mutated only by ConnectionManager."""

    status: ConnectionStatus = ConnectionStatus.DISCONNECTED
    reconnect_attempts: int = 0
    max_reconnect_attempts: int = 5
    is_reconnecting: bool = False
    is_connecting: bool = False
    last_attempt_at: Optional[float] = None


@dataclass(frozen=True)
class ConnectionSnapshot:
    status: ConnectionStatus
    is_connecting: bool
    has_transport: bool
    reconnect_attempts: int
    max_reconnect_attempts: int
    is_reconnecting: bool
    last_attempt_at: Optional[float]

    @property
    def is_connected(self) -> bool:
        return self.status == ConnectionStatus.CONNECTED


@dataclass
class QrCredential:
    payload: str
    image: str
    format: QrFormat
    mime_type: str
    size: str
    created_at: float
    expires_at: float
    fallback: bool = False


@dataclass(frozen=True)
class QrView:
    """Read-time view of a credential; derived fields are never stored."""

    payload: str
    image: str
    format: QrFormat
    mime_type: str
    size: str
    fallback: bool
    created_at: float
    expires_at: float
    time_remaining: int
    time_remaining_formatted: str
    percentage_remaining: int
    is_expired: bool
    age: int


@dataclass(frozen=True)
class QrFormatInfo:
    format: QrFormat
    size: str
    mime_type: str
    fallback: bool
    created_at: float
    expires_at: float


@dataclass(frozen=True)
class QrStatus:
    has_active_qr: bool
    qr: Optional[QrView]
    connection: ConnectionSnapshot
    last_updated: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def is_connected(self) -> bool:
        return self.connection.is_connected

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["is_connected"] = self.is_connected
        return data


@dataclass(frozen=True)
class SentRecord:
    recipient: str
    message_id: str
    preview: str
    kind: MessageKind = MessageKind.TEXT
    template: Optional[str] = None
    status: str = "sent"
    has_image: bool = False
    image_size: Optional[int] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    sent_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


@dataclass(frozen=True)
class PairingResult:
    success: bool
    message: str
    requested_at: float = field(default_factory=time.time)
