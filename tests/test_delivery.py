"""Tests for the outbound delivery pipeline and sent history."""

import pytest

from pairbot.config import MessagesConfig
from pairbot.core.errors import DeliveryError, NotConnectedError, RecipientError
from pairbot.core.models import SentRecord
from pairbot.core.types import DeliveryFailure, MessageKind
from pairbot.delivery import pipeline as pipeline_module
from pairbot.delivery.history import SentHistory
from pairbot.delivery.pipeline import DeliveryPipeline, classify_failure
from pairbot.transport.models import DeliveryReceipt, OutboundPayload

from conftest import FakeTransport


@pytest.fixture
def sleeps(monkeypatch):
    recorded = []

    async def fake_sleep(delay):
        recorded.append(delay)

    monkeypatch.setattr(pipeline_module.asyncio, "sleep", fake_sleep)
    return recorded


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def pipeline(transport):
    return DeliveryPipeline(MessagesConfig(max_history_size=3), lambda: transport)


def _record(n: int) -> SentRecord:
    return SentRecord(recipient=f"{n}@s.whatsapp.net", message_id=f"msg-{n}", preview=str(n))


class TestAddress:
    """Recipient normalization."""

    def test_strips_formatting(self, pipeline):
        assert pipeline.address("+52 (55) 1234-5678") == "525512345678@s.whatsapp.net"

    @pytest.mark.parametrize("phone", ["123456789", "1234567890123456", "", "abc"])
    def test_rejects_bad_lengths(self, pipeline, phone):
        with pytest.raises(RecipientError):
            pipeline.address(phone)

    @pytest.mark.parametrize("phone", ["1234567890", "123456789012345"])
    def test_accepts_bounds(self, pipeline, phone):
        assert pipeline.address(phone).startswith(phone)

    @pytest.mark.asyncio
    async def test_invalid_recipient_never_reaches_transport(self, pipeline, transport):
        with pytest.raises(RecipientError):
            await pipeline.send("12345", OutboundPayload(text="hola"))
        assert transport.sent == []


class TestRetry:
    """Bounded retries with exponential backoff."""

    def test_backoff_is_capped(self):
        pipeline = DeliveryPipeline(MessagesConfig(retry_delay=2.0, max_retry_delay=5.0), lambda: None)
        assert [pipeline.backoff(n) for n in (1, 2, 3, 4)] == [2.0, 4.0, 5.0, 5.0]

    @pytest.mark.asyncio
    async def test_transient_failure_then_success(self, pipeline, transport, sleeps):
        transport.send_errors = [RuntimeError("timeout")]
        receipt = await pipeline.send("5512345678", OutboundPayload(text="hola"))
        assert receipt.delivery_id == "msg-1"
        assert sleeps == [2.0]
        assert transport.texts_to("5512345678@s.whatsapp.net") == ["hola"]

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_classified_error(self, pipeline, transport, sleeps):
        transport.send_errors = [RuntimeError("Forbidden")] * 3
        with pytest.raises(DeliveryError) as exc:
            await pipeline.send("5512345678", OutboundPayload(text="hola"))
        assert exc.value.failure == DeliveryFailure.FORBIDDEN
        assert exc.value.attempts == 3
        assert sleeps == [2.0, 4.0]

    @pytest.mark.asyncio
    async def test_max_attempts_override(self, pipeline, transport, sleeps):
        transport.send_errors = [RuntimeError("boom")] * 5
        with pytest.raises(DeliveryError):
            await pipeline.send("5512345678", OutboundPayload(text="x"), max_attempts=1)
        assert sleeps == []
        assert len(transport.send_errors) == 4

    @pytest.mark.asyncio
    async def test_missing_receipt_counts_as_failure(self, transport, sleeps):
        async def no_receipt(recipient, payload):
            return None

        transport.send = no_receipt
        pipeline = DeliveryPipeline(MessagesConfig(), lambda: transport)
        with pytest.raises(DeliveryError) as exc:
            await pipeline.send("5512345678", OutboundPayload(text="x"))
        assert exc.value.failure == DeliveryFailure.UNKNOWN

    @pytest.mark.asyncio
    async def test_no_transport(self):
        pipeline = DeliveryPipeline(MessagesConfig(), lambda: None)
        with pytest.raises(NotConnectedError):
            await pipeline.send("5512345678", OutboundPayload(text="x"))


class TestClassification:
    @pytest.mark.parametrize(
        "text, failure",
        [
            ("Connection Closed", DeliveryFailure.DISCONNECTED),
            ("socket disconnected", DeliveryFailure.DISCONNECTED),
            ("not-authorized", DeliveryFailure.NOT_AUTHORIZED),
            ("403 forbidden", DeliveryFailure.FORBIDDEN),
            ("rate-overlimit", DeliveryFailure.RATE_LIMITED),
            ("weird", DeliveryFailure.UNKNOWN),
        ],
    )
    def test_classify(self, text, failure):
        assert classify_failure(RuntimeError(text)) == failure


class TestHistory:
    """Bounded FIFO history, read most-recent-first."""

    def test_evicts_oldest(self):
        history = SentHistory(max_size=3)
        for n in range(5):
            history.append(_record(n))
        assert len(history) == 3
        assert [r.message_id for r in history.recent()] == ["msg-4", "msg-3", "msg-2"]

    def test_rejects_zero_size(self):
        with pytest.raises(ValueError):
            SentHistory(max_size=0)

    def test_record_builds_preview(self, pipeline):
        record = pipeline.record(
            "5512345678@s.whatsapp.net",
            "x" * 150,
            DeliveryReceipt(delivery_id="abc"),
            kind=MessageKind.IMAGE,
            template="cita_confirmada",
            image_size=2048,
            metadata={"source": "test"},
        )
        assert record.preview == "x" * 100 + "..."
        assert record.has_image
        assert record.metadata == {"source": "test"}
        assert pipeline.sent_messages()[0] is record

    def test_short_preview_untouched(self, pipeline):
        record = pipeline.record("a", "hola", DeliveryReceipt(delivery_id="abc"))
        assert record.preview == "hola"
        assert not record.has_image

    def test_clear(self, pipeline):
        pipeline.record("a", "hola", DeliveryReceipt(delivery_id="abc"))
        pipeline.clear_history()
        assert pipeline.sent_messages() == []
