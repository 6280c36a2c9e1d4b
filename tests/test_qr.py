"""Tests for the QR credential lifecycle and renderer."""

import asyncio
import base64
from dataclasses import replace

import pytest

from pairbot.config import QrConfig
from pairbot.core.errors import InvalidFormatError, NoActiveQrError, QrRenderError
from pairbot.core.models import ConnectionSnapshot
from pairbot.core.types import ConnectionStatus, QrFormat
from pairbot.qr.manager import QrLifecycleManager
from pairbot.qr.renderer import QrRenderer, RenderOptions

from conftest import BlockingRenderer


def _snapshot() -> ConnectionSnapshot:
    return ConnectionSnapshot(
        status=ConnectionStatus.CONNECTING,
        is_connecting=True,
        has_transport=True,
        reconnect_attempts=0,
        max_reconnect_attempts=5,
        is_reconnecting=False,
        last_attempt_at=None,
    )


@pytest.fixture
def qr(renderer, clock) -> QrLifecycleManager:
    return QrLifecycleManager(renderer, QrConfig(), connection_state=_snapshot, clock=clock)


class TestQrLifecycle:
    """Issue, expiry and format changes."""

    @pytest.mark.asyncio
    async def test_issue_sets_two_minute_expiry(self, qr, clock):
        view = await qr.issue("challenge-1")
        assert view.format == QrFormat.PNG
        assert view.expires_at == clock.now + 120
        assert view.time_remaining == 120
        assert view.time_remaining_formatted == "2:00"
        assert view.percentage_remaining == 100
        assert not view.is_expired
        assert qr.has_active()

    @pytest.mark.asyncio
    async def test_status_derives_fields_at_read_time(self, qr, clock):
        await qr.issue("challenge-1")
        clock.advance(45)
        status = qr.status()
        assert status.has_active_qr
        assert status.qr.time_remaining == 75
        assert status.qr.age == 45
        assert status.qr.time_remaining_formatted == "1:15"
        assert status.connection.status == ConnectionStatus.CONNECTING

    @pytest.mark.asyncio
    async def test_expired_exactly_at_expiry(self, qr, clock):
        await qr.issue("challenge-1")
        clock.advance(119.5)
        assert not qr.status().qr.is_expired
        clock.advance(0.5)
        status = qr.status()
        assert status.qr.is_expired
        assert not status.has_active_qr
        assert qr.current() is None

    @pytest.mark.asyncio
    async def test_time_remaining_never_negative(self, qr, clock):
        await qr.issue("challenge-1")
        clock.advance(1000)
        assert qr.status().qr.time_remaining == 0

    @pytest.mark.asyncio
    async def test_second_issue_replaces_first(self, qr, clock):
        await qr.issue("challenge-1")
        clock.advance(30)
        await qr.issue("challenge-2")
        status = qr.status()
        assert status.qr.payload == "challenge-2"
        assert status.qr.time_remaining == 120

    @pytest.mark.asyncio
    async def test_render_failure_falls_back_to_png(self, qr, renderer):
        renderer.fail_formats = {QrFormat.SVG}
        view = await qr.issue("challenge-1", "svg")
        assert view.format == QrFormat.PNG
        assert view.fallback
        assert renderer.calls[-1][2] == RenderOptions()

    @pytest.mark.asyncio
    async def test_render_failure_without_fallback_raises(self, qr, renderer):
        renderer.fail_all = True
        with pytest.raises(QrRenderError):
            await qr.issue("challenge-1")
        assert qr.status().qr is None

    @pytest.mark.asyncio
    async def test_expire_is_idempotent(self, qr):
        assert qr.expire("nothing yet") is False
        await qr.issue("challenge-1")
        assert qr.expire("user cancelled") is True
        assert qr.expire("again") is True
        assert not qr.has_active()
        assert qr.status().qr.is_expired

    @pytest.mark.asyncio
    async def test_change_format_keeps_timestamps(self, qr, clock):
        original = await qr.issue("challenge-1")
        clock.advance(10)
        changed = await qr.change_format("jpeg")
        assert changed.format == QrFormat.JPEG
        assert changed.payload == "challenge-1"
        assert changed.created_at == original.created_at
        assert changed.expires_at == original.expires_at
        assert qr.format_info().mime_type == "image/jpeg"

    @pytest.mark.asyncio
    async def test_change_format_requires_live_qr(self, qr, clock):
        with pytest.raises(NoActiveQrError):
            await qr.change_format("SVG")
        await qr.issue("challenge-1")
        clock.advance(121)
        with pytest.raises(NoActiveQrError):
            await qr.change_format("SVG")

    @pytest.mark.asyncio
    async def test_unknown_format_rejected(self, qr):
        await qr.issue("challenge-1")
        with pytest.raises(InvalidFormatError):
            await qr.change_format("GIF")

    @pytest.mark.asyncio
    async def test_subscribers_notified(self, qr):
        seen = []
        qr.subscribe(seen.append)
        qr.subscribe(lambda status: 1 / 0)
        await qr.issue("challenge-1")
        qr.expire("done")
        assert len(seen) == 2
        assert seen[0].has_active_qr
        assert not seen[1].has_active_qr

    @pytest.mark.asyncio
    async def test_clear_during_render_discards_result(self, clock):
        renderer = BlockingRenderer()
        qr = QrLifecycleManager(renderer, QrConfig(), connection_state=_snapshot, clock=clock)
        pending = asyncio.create_task(qr.issue("challenge-1"))
        await asyncio.to_thread(renderer.started.wait, 5)
        qr.clear()
        renderer.release.set()
        assert await pending is None
        assert qr.status().qr is None

    @pytest.mark.asyncio
    async def test_not_issued_once_connected(self, renderer, clock):
        connected = replace(_snapshot(), status=ConnectionStatus.CONNECTED, is_connecting=False)
        qr = QrLifecycleManager(renderer, QrConfig(), connection_state=lambda: connected, clock=clock)
        assert await qr.issue("challenge-1") is None
        assert not qr.has_active()

    @pytest.mark.asyncio
    async def test_clear_drops_credential(self, qr):
        await qr.issue("challenge-1")
        qr.clear()
        assert qr.status().qr is None
        assert qr.format_info() is None


class TestQrRenderer:
    """Real rendering through qrcode + Pillow."""

    def _decode(self, data_uri: str) -> bytes:
        return base64.b64decode(data_uri.split(",", 1)[1])

    def test_png(self):
        result = QrRenderer().render("hello", QrFormat.PNG, RenderOptions())
        assert result.image.startswith("data:image/png;base64,")
        assert self._decode(result.image).startswith(b"\x89PNG")
        assert result.size == "256x256"

    def test_jpeg(self):
        result = QrRenderer().render("hello", QrFormat.JPEG, RenderOptions())
        assert result.mime_type == "image/jpeg"
        assert self._decode(result.image).startswith(b"\xff\xd8")

    def test_svg(self):
        result = QrRenderer().render("hello", QrFormat.SVG, RenderOptions())
        assert result.mime_type == "image/svg+xml"
        assert b"<svg" in self._decode(result.image)

    def test_deterministic(self):
        renderer = QrRenderer()
        first = renderer.render("same", QrFormat.PNG, RenderOptions())
        second = renderer.render("same", QrFormat.PNG, RenderOptions())
        assert first.image == second.image
