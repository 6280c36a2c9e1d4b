"""Abstract messaging transport interface."""

from __future__ import annotations

import importlib
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable

from pairbot.transport.models import DeliveryReceipt, InboundMessage, LifecycleEvent, OutboundPayload

LifecycleCallback = Callable[[LifecycleEvent], Awaitable[None]]
MessageCallback = Callable[[InboundMessage], Awaitable[None]]
TransportFactory = Callable[..., "Transport"]


class Transport(ABC):
    """Base class for the wire-level messaging transport.

    The transport owns session establishment, authentication and encryption.
    Subclasses push lifecycle and inbound-message events through the
    registered callbacks and never touch session state directly.
    """

    def __init__(self, auth_dir: str, options: dict[str, Any] | None = None):
        self.auth_dir = auth_dir
        self.options = options or {}
        self._lifecycle_callback: LifecycleCallback | None = None
        self._message_callback: MessageCallback | None = None

    @abstractmethod
    async def connect(self) -> None:
        """Open the connection. Progress is reported through lifecycle events."""
        ...

    @abstractmethod
    async def send(self, recipient: str, payload: OutboundPayload) -> DeliveryReceipt:
        """Deliver one payload to a transport-addressed recipient."""
        ...

    @abstractmethod
    async def terminate(self) -> None:
        """Close the connection and release its resources."""
        ...

    @property
    @abstractmethod
    def is_authenticated(self) -> bool:
        """True once the account is paired and the connection can send."""
        ...

    def on_lifecycle(self, callback: LifecycleCallback) -> None:
        self._lifecycle_callback = callback

    def on_message(self, callback: MessageCallback) -> None:
        self._message_callback = callback

    def unsubscribe_all(self) -> None:
        self._lifecycle_callback = None
        self._message_callback = None


def load_transport_factory(path: str) -> TransportFactory:
    """Resolve a ``module:attribute`` reference to a transport factory."""
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Transport must be given as 'module:attribute', got {path!r}")
    module = importlib.import_module(module_name)
    factory = getattr(module, attr, None)
    if factory is None or not callable(factory):
        raise ValueError(f"Transport factory not found: {path}")
    return factory
