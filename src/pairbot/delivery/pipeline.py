"""Outbound delivery: recipient validation, retry with backoff, sent history."""

from __future__ import annotations

import asyncio
import re
from typing import Any, Callable, Optional

from pairbot.config import MessagesConfig
from pairbot.core.errors import DeliveryError, NotConnectedError, RecipientError
from pairbot.core.models import SentRecord
from pairbot.core.types import DeliveryFailure, MessageKind
from pairbot.delivery.history import SentHistory
from pairbot.log import get_logger
from pairbot.transport.base import Transport
from pairbot.transport.models import DeliveryReceipt, OutboundPayload

logger = get_logger(__name__)

_NON_DIGITS = re.compile(r"\D")

_FAILURE_MARKERS: list[tuple[DeliveryFailure, tuple[str, ...]]] = [
    (DeliveryFailure.DISCONNECTED, ("disconnected", "connection closed")),
    (DeliveryFailure.NOT_AUTHORIZED, ("not-authorized", "not authorized")),
    (DeliveryFailure.FORBIDDEN, ("forbidden",)),
    (DeliveryFailure.RATE_LIMITED, ("rate limit", "rate-overlimit")),
]


def classify_failure(error: BaseException) -> DeliveryFailure:
    """Map a transport error to a caller-actionable category by its description."""
    description = str(error).lower()
    for failure, markers in _FAILURE_MARKERS:
        if any(marker in description for marker in markers):
            return failure
    return DeliveryFailure.UNKNOWN


class DeliveryPipeline:
    """Sends payloads through the current transport and records what was sent."""

    def __init__(self, config: MessagesConfig, transport: Callable[[], Optional[Transport]]):
        self._config = config
        self._transport = transport
        self._history = SentHistory(config.max_history_size)

    @property
    def history(self) -> SentHistory:
        return self._history

    def address(self, recipient: str) -> str:
        """Normalize a phone number into a transport identity, or raise RecipientError."""
        digits = _NON_DIGITS.sub("", recipient or "")
        low, high = self._config.min_digits, self._config.max_digits
        if not low <= len(digits) <= high:
            raise RecipientError(
                f"Phone number must have between {low} and {high} digits",
                {"recipient": recipient, "digits": len(digits)},
            )
        return f"{digits}@{self._config.recipient_suffix}"

    def backoff(self, attempt: int) -> float:
        delay = self._config.retry_delay * (2 ** (attempt - 1))
        return min(delay, self._config.max_retry_delay)

    async def send(
        self, recipient: str, payload: OutboundPayload, max_attempts: Optional[int] = None
    ) -> DeliveryReceipt:
        """Validate ``recipient`` and deliver ``payload`` with retries."""
        return await self.send_with_retry(self.address(recipient), payload, max_attempts)

    async def send_with_retry(
        self, address: str, payload: OutboundPayload, max_attempts: Optional[int] = None
    ) -> DeliveryReceipt:
        attempts = max_attempts or self._config.max_retries
        last_error: BaseException | None = None

        for attempt in range(1, attempts + 1):
            transport = self._transport()
            if transport is None:
                raise NotConnectedError()
            try:
                receipt = await transport.send(address, payload)
                if receipt is None:
                    raise RuntimeError("Transport returned no delivery receipt")
                logger.debug("message_sent", to=address, attempt=attempt, message_id=receipt.delivery_id)
                return receipt
            except Exception as e:
                last_error = e
                logger.warning(
                    "send_attempt_failed",
                    to=address,
                    attempt=attempt,
                    max_attempts=attempts,
                    error=str(e),
                )
                if attempt < attempts:
                    await asyncio.sleep(self.backoff(attempt))

        failure = classify_failure(last_error)
        logger.error("send_failed", to=address, attempts=attempts, failure=str(failure), error=str(last_error))
        raise DeliveryError(failure, last_error, attempts) from last_error

    def preview(self, text: str) -> str:
        limit = self._config.preview_length
        return text[:limit] + ("..." if len(text) > limit else "")

    def record(
        self,
        address: str,
        text: str,
        receipt: DeliveryReceipt,
        kind: MessageKind = MessageKind.TEXT,
        template: Optional[str] = None,
        image_size: Optional[int] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> SentRecord:
        record = SentRecord(
            recipient=address,
            message_id=receipt.delivery_id,
            preview=self.preview(text),
            kind=kind,
            template=template,
            has_image=image_size is not None,
            image_size=image_size,
            metadata=dict(metadata or {}),
        )
        self._history.append(record)
        return record

    def sent_messages(self) -> list[SentRecord]:
        return self._history.recent()

    def clear_history(self) -> None:
        self._history.clear()
        logger.info("sent_history_cleared")
