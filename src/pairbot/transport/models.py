"""Transport-neutral event and payload models."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from pairbot.core.types import LifecycleKind


@dataclass(frozen=True, slots=True)
class CloseReason:
    """Why the transport closed, as reported by the transport."""

    message: str = ""
    code: Optional[str] = None


@dataclass(frozen=True, slots=True)
class LifecycleEvent:
    kind: Optional[LifecycleKind] = None
    reason: Optional[CloseReason] = None
    qr: Optional[str] = None  # pairing challenge, may ride on any update


@dataclass(frozen=True, slots=True)
class InboundMessage:
    sender_id: str
    text: Optional[str]
    from_self: bool = False
    is_group: bool = False
    is_broadcast: bool = False


@dataclass(frozen=True, slots=True)
class OutboundPayload:
    """What gets handed to the transport. Image payloads use text as caption."""

    text: str = ""
    image: Optional[bytes] = None

    @property
    def has_image(self) -> bool:
        return self.image is not None


@dataclass(frozen=True, slots=True)
class DeliveryReceipt:
    delivery_id: str
