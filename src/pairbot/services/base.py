"""Lifecycle contract for long-running pieces the app starts and stops."""

from __future__ import annotations

from abc import ABC, abstractmethod


class Service(ABC):
    """A component PairbotApp starts before the session and stops after it."""

    @property
    @abstractmethod
    def service_name(self) -> str:
        """Short name used in log events."""
        ...

    @abstractmethod
    async def start(self) -> None:
        """Begin work on the running event loop. Must be safe to call twice."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Drop pending work without waiting for it."""
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        ...
