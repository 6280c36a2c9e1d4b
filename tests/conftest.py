"""Pytest configuration and fixtures."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Coroutine

import pytest
import pytest_asyncio

from pairbot.chatbot.flow import default_graph
from pairbot.config import AppConfig, ImagesConfig, MessagesConfig, SessionConfig
from pairbot.core.session import MessagingSession
from pairbot.core.types import LifecycleKind, QrFormat
from pairbot.media.images import ImageSource
from pairbot.qr.renderer import RenderedQr, RenderOptions
from pairbot.templates import TemplateProvider
from pairbot.transport.base import Transport
from pairbot.transport.models import (
    CloseReason,
    DeliveryReceipt,
    InboundMessage,
    LifecycleEvent,
    OutboundPayload,
)


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass
class _Job:
    delay: float
    callback: Callable[..., Coroutine[Any, Any, None]]
    kwargs: dict[str, Any] = field(default_factory=dict)


class FakeScheduler:
    """Manual stand-in for SchedulerService: jobs run only when fired."""

    def __init__(self) -> None:
        self.jobs: dict[str, _Job] = {}
        self.history: list[tuple[str, float]] = []

    def call_later(self, delay, callback, job_id, **kwargs):
        if job_id in self.jobs:
            raise RuntimeError(f"Timer already armed: {job_id}")
        self.jobs[job_id] = _Job(delay, callback, kwargs)
        self.history.append((job_id, delay))
        return job_id

    def cancel(self, job_id):
        return self.jobs.pop(job_id, None) is not None

    def is_pending(self, job_id):
        return job_id in self.jobs

    def pending(self):
        return list(self.jobs)

    async def fire(self, job_id):
        job = self.jobs.pop(job_id)
        await job.callback(**job.kwargs)


class FakeTransport(Transport):
    """In-memory transport driven by the test."""

    instances: list["FakeTransport"] = []

    def __init__(self, auth_dir: str = "auth", options: dict | None = None):
        super().__init__(auth_dir, options)
        self.connected = False
        self.terminated = False
        self.authenticated = False
        self.sent: list[tuple[str, OutboundPayload]] = []
        self.send_errors: list[Exception] = []
        self.connect_error: Exception | None = None
        self._counter = 0
        FakeTransport.instances.append(self)

    @property
    def is_authenticated(self) -> bool:
        return self.authenticated

    async def connect(self) -> None:
        if self.connect_error:
            raise self.connect_error
        self.connected = True

    async def send(self, recipient: str, payload: OutboundPayload) -> DeliveryReceipt:
        if self.send_errors:
            raise self.send_errors.pop(0)
        self._counter += 1
        self.sent.append((recipient, payload))
        return DeliveryReceipt(delivery_id=f"msg-{self._counter}")

    async def terminate(self) -> None:
        self.terminated = True

    async def emit(self, event: LifecycleEvent) -> None:
        if self._lifecycle_callback:
            await self._lifecycle_callback(event)

    async def open(self) -> None:
        self.authenticated = True
        await self.emit(LifecycleEvent(kind=LifecycleKind.OPEN))

    async def close(self, message: str = "", code: str | None = None) -> None:
        self.authenticated = False
        await self.emit(LifecycleEvent(kind=LifecycleKind.CLOSE, reason=CloseReason(message, code)))

    async def inbound(self, sender_id: str, text: str | None, **flags: Any) -> None:
        if self._message_callback:
            await self._message_callback(InboundMessage(sender_id=sender_id, text=text, **flags))

    def texts_to(self, recipient: str) -> list[str]:
        return [p.text for r, p in self.sent if r == recipient]


class FakeRenderer:
    def __init__(self) -> None:
        self.fail_formats: set[QrFormat] = set()
        self.fail_all = False
        self.calls: list[tuple[str, QrFormat, RenderOptions]] = []

    def render(self, payload: str, fmt: QrFormat, options: RenderOptions) -> RenderedQr:
        self.calls.append((payload, fmt, options))
        if self.fail_all or fmt in self.fail_formats:
            raise RuntimeError(f"cannot render {fmt}")
        return RenderedQr(
            image=f"data:{fmt.value.lower()};{payload}",
            format=fmt,
            mime_type=f"image/{fmt.value.lower()}",
            size=f"{options.width}x{options.width}",
        )


class BlockingRenderer(FakeRenderer):
    """Holds each render in its worker thread until the test releases it."""

    def __init__(self) -> None:
        super().__init__()
        self.started = threading.Event()
        self.release = threading.Event()

    def render(self, payload: str, fmt: QrFormat, options: RenderOptions) -> RenderedQr:
        self.started.set()
        self.release.wait(timeout=5)
        return super().render(payload, fmt, options)


class FakeImages(ImageSource):
    def __init__(self, images: dict[str, bytes] | None = None):
        super().__init__(ImagesConfig())
        self.images = images or {}

    async def fetch(self, locator: str) -> bytes | None:
        return self.images.get(locator)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def renderer() -> FakeRenderer:
    return FakeRenderer()


@pytest.fixture
def app_config() -> AppConfig:
    return AppConfig(
        session=SessionConfig(auth_dir="auth"),
        messages=MessagesConfig(retry_delay=0.0, max_history_size=5),
    )


@pytest.fixture
def transports():
    FakeTransport.instances = []
    return FakeTransport.instances


@pytest.fixture
def images() -> FakeImages:
    return FakeImages({"imagenes/Flyer.jpg": b"flyer", "imagenes/default.jpg": b"default"})


@pytest.fixture
def session(app_config, scheduler, renderer, images, clock, transports) -> MessagingSession:
    return MessagingSession(
        app_config,
        transport_factory=FakeTransport,
        scheduler=scheduler,
        renderer=renderer,
        graph=default_graph(),
        templates=TemplateProvider(),
        images=images,
        clock=clock,
    )


@pytest_asyncio.fixture
async def connected_session(session, transports) -> MessagingSession:
    await session.start()
    await transports[-1].open()
    return session
