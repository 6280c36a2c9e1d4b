"""Session facade: the single entry point for callers of the messaging session."""

from __future__ import annotations

import time
from typing import Any, Callable, Mapping, Optional

from pairbot.chatbot.conversation import ConversationManager
from pairbot.chatbot.flow import DialogueGraph
from pairbot.config import AppConfig
from pairbot.core.connection import ConnectionManager
from pairbot.core.errors import (
    ConnectionInProgressError,
    DeliveryError,
    ImageNotFoundError,
    NotConnectedError,
    QrActiveError,
    TemplateNotFoundError,
    ValidationError,
)
from pairbot.core.models import PairingResult, QrFormatInfo, QrStatus, QrView, SentRecord
from pairbot.core.rate_limit import RateLimiter
from pairbot.core.types import DeliveryFailure, MessageKind, QrFormat
from pairbot.delivery.pipeline import DeliveryPipeline
from pairbot.log import get_logger
from pairbot.media.images import ImageSource, decode_image_data
from pairbot.qr.manager import QrLifecycleManager, StatusSubscriber
from pairbot.qr.renderer import Renderer
from pairbot.services.scheduler import SchedulerService
from pairbot.templates import TemplateProvider
from pairbot.transport.base import TransportFactory
from pairbot.transport.models import DeliveryReceipt, InboundMessage, OutboundPayload

logger = get_logger(__name__)


class MessagingSession:
    """One long-lived session: connection, pairing QR, chatbot and outbound sends.

    Construct one per process and hand it to whatever layer exposes it.
    """

    def __init__(
        self,
        config: AppConfig,
        transport_factory: TransportFactory,
        scheduler: SchedulerService,
        renderer: Renderer,
        graph: DialogueGraph,
        templates: TemplateProvider,
        images: ImageSource,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self._templates = templates
        self._images = images
        self.qr = QrLifecycleManager(
            renderer, config.qr, connection_state=lambda: self.connection.snapshot(), clock=clock
        )
        self.connection = ConnectionManager(
            transport_factory,
            config.session,
            qr=self.qr,
            scheduler=scheduler,
            on_message=self.handle_inbound,
            clock=clock,
        )
        self.delivery = DeliveryPipeline(config.messages, transport=lambda: self.connection.transport)
        self.conversations = ConversationManager(
            graph, config.conversation, scheduler, send=self._send_text, clock=clock
        )
        self.rate_limiter = RateLimiter(config.rate_limit, clock=clock)

    async def start(self) -> None:
        await self.connection.initialize()

    async def cleanup(self) -> None:
        self.conversations.cleanup()
        await self.connection.cleanup()
        logger.info("session_cleaned_up")

    def subscribe(self, callback: StatusSubscriber) -> None:
        self.qr.subscribe(callback)

    # --- pairing ---

    async def request_pairing(self, user_id: str) -> PairingResult:
        """Restart the connection so a fresh QR is issued for ``user_id``."""
        # Every guard is evaluated before the first await.
        if self.connection.is_busy:
            raise ConnectionInProgressError()
        if self.connection.is_connected:
            return PairingResult(success=False, message="Already connected")
        if self.qr.has_active():
            raise QrActiveError(self.qr.expires_at)
        self.rate_limiter.check(user_id)

        logger.info("pairing_requested", user_id=user_id)
        await self.connection.restart()
        self.rate_limiter.record(user_id)
        return PairingResult(success=True, message="Pairing request accepted")

    def expire_qr(self, reason: str = "", user_id: Optional[str] = None) -> bool:
        logger.info("qr_expire_requested", reason=reason, user_id=user_id)
        return self.qr.expire(reason)

    def get_status(self) -> QrStatus:
        return self.qr.status()

    def get_qr_code(self) -> Optional[QrView]:
        return self.qr.current()

    def get_qr_format_info(self) -> Optional[QrFormatInfo]:
        return self.qr.format_info()

    async def change_qr_format(self, fmt: QrFormat | str) -> QrView:
        return await self.qr.change_format(fmt)

    # --- connection ---

    async def force_reconnect(self) -> None:
        await self.connection.force_reconnect()

    def get_reconnection_status(self) -> dict[str, object]:
        return self.connection.reconnection_status()

    # --- outbound ---

    def _require_connected(self) -> None:
        transport = self.connection.transport
        if transport is None or not transport.is_authenticated:
            raise NotConnectedError()

    async def _deliver(self, address: str, payload: OutboundPayload) -> DeliveryReceipt:
        try:
            return await self.delivery.send_with_retry(address, payload)
        except DeliveryError as e:
            if e.failure == DeliveryFailure.DISCONNECTED:
                await self.connection.cleanup()
            raise

    async def send_template_message(
        self, phone: str, template_id: str, params: Mapping[str, Any] | None = None
    ) -> SentRecord:
        """Send a template's text, attaching its image when it names one."""
        self._require_connected()
        address = self.delivery.address(phone)
        template = self._templates.resolve(template_id, params)

        image: Optional[bytes] = None
        if template.image:
            image = await self._images.fetch(template.image)
            if image is None:
                raise ImageNotFoundError(template.image)

        receipt = await self._deliver(address, OutboundPayload(text=template.text, image=image))
        record = self.delivery.record(
            address,
            template.text,
            receipt,
            kind=MessageKind.IMAGE if image is not None else MessageKind.TEXT,
            template=template_id,
            image_size=len(image) if image is not None else None,
            metadata=dict(params or {}),
        )
        logger.info("template_message_sent", to=address, template=template_id, message_id=record.message_id)
        return record

    async def send_template_image(
        self,
        phone: str,
        template_id: str,
        params: Mapping[str, Any] | None = None,
        image: Optional[str] = None,
    ) -> SentRecord:
        """Send a template whose image is mandatory (``image`` overrides the locator)."""
        self._require_connected()
        address = self.delivery.address(phone)
        merged = dict(params or {})
        if image:
            merged["image"] = image
        template = self._templates.resolve(template_id, merged)
        if not template.image:
            raise TemplateNotFoundError(
                f"Template has no image: {template_id}", {"template": template_id}
            )

        data = await self._images.fetch(template.image)
        if data is None:
            raise ImageNotFoundError(template.image)

        receipt = await self._deliver(address, OutboundPayload(text=template.text, image=data))
        record = self.delivery.record(
            address,
            template.text,
            receipt,
            kind=MessageKind.IMAGE,
            template=template_id,
            image_size=len(data),
            metadata=merged,
        )
        logger.info("template_image_sent", to=address, template=template_id, message_id=record.message_id)
        return record

    async def send_image(self, phone: str, image_data: str, caption: Optional[str] = None) -> SentRecord:
        """Send a base64-encoded image supplied by the caller."""
        self._require_connected()
        address = self.delivery.address(phone)
        data = decode_image_data(image_data, self.config.messages.max_image_bytes)
        text = caption or "Imagen enviada"

        receipt = await self._deliver(address, OutboundPayload(text=text, image=data))
        record = self.delivery.record(address, text, receipt, kind=MessageKind.IMAGE, image_size=len(data))
        logger.info("image_sent", to=address, size=len(data), message_id=record.message_id)
        return record

    async def send_simple_message(
        self,
        phone: str,
        message: str,
        kind: MessageKind | str = MessageKind.TEXT,
        use_template: bool = False,
    ) -> SentRecord:
        """Send plain text, optionally wrapped in the accept/reject template."""
        self._require_connected()
        address = self.delivery.address(phone)
        try:
            kind = MessageKind(kind)
        except ValueError:
            raise ValidationError(f"Unknown message type: {kind}") from None

        text = message
        if use_template and kind in (MessageKind.ACCEPT, MessageKind.REJECT):
            text = self._templates.resolve(kind.value, {"comentario": message}).text
        if not text or not text.strip():
            raise ValidationError("Message text is required")

        receipt = await self._deliver(address, OutboundPayload(text=text))
        record = self.delivery.record(
            address,
            text,
            receipt,
            kind=kind,
            template=kind.value if use_template else None,
            metadata={"original_message": message, "use_template": use_template},
        )
        logger.info("simple_message_sent", to=address, kind=str(kind), message_id=record.message_id)
        return record

    def get_sent_messages(self) -> list[SentRecord]:
        return self.delivery.sent_messages()

    def clear_sent_messages(self) -> bool:
        self.delivery.clear_history()
        return True

    # --- inbound ---

    async def _send_text(self, user_id: str, text: str) -> None:
        transport = self.connection.transport
        if transport is None:
            raise NotConnectedError()
        await transport.send(user_id, OutboundPayload(text=text))

    async def handle_inbound(self, message: InboundMessage) -> None:
        """Run the chatbot for one inbound message and send its reply."""
        if message.from_self or message.is_group or message.is_broadcast:
            return
        if not message.text:
            return

        try:
            reply = await self.conversations.handle(message.sender_id, message.text)
            if reply:
                await self._send_text(message.sender_id, reply)
        except Exception as e:
            logger.error("inbound_handler_error", user_id=message.sender_id, error=str(e))
