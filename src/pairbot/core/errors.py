"""Exception types raised by the messaging session."""

from __future__ import annotations

from typing import Any, Optional

from pairbot.core.types import DeliveryFailure


class PairbotError(Exception):
    """Base exception for all session errors."""

    code: str = "SESSION_ERROR"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


# --- validation: rejected before any side effect ---


class ValidationError(PairbotError):
    code = "VALIDATION_ERROR"


class RecipientError(ValidationError):
    code = "INVALID_RECIPIENT"


class TemplateNotFoundError(ValidationError):
    code = "INVALID_TEMPLATE"


class ImageNotFoundError(ValidationError):
    code = "IMAGE_NOT_FOUND"

    def __init__(self, locator: str) -> None:
        super().__init__(f"Image not found: {locator}", {"locator": locator})
        self.locator = locator


class InvalidImageError(ValidationError):
    code = "INVALID_IMAGE"


class InvalidFormatError(ValidationError):
    code = "INVALID_FORMAT"


# --- state conflicts: structured signals with remediation data ---


class StateConflictError(PairbotError):
    code = "STATE_CONFLICT"


class ConnectionInProgressError(StateConflictError):
    code = "CONNECTION_IN_PROGRESS"

    def __init__(self, message: str = "A connection attempt is already in progress") -> None:
        super().__init__(message)


class NotConnectedError(StateConflictError):
    code = "NOT_CONNECTED"

    def __init__(self, message: str = "Session is not connected; scan the QR code first") -> None:
        super().__init__(message)


class QrActiveError(StateConflictError):
    code = "QR_ACTIVE"

    def __init__(self, expires_at: float) -> None:
        super().__init__("A QR code is already active", {"expires_at": expires_at})
        self.expires_at = expires_at


class NoActiveQrError(StateConflictError):
    code = "NO_ACTIVE_QR"

    def __init__(self, message: str = "There is no active QR code") -> None:
        super().__init__(message)


class RateLimitedError(StateConflictError):
    code = "RATE_LIMITED"

    def __init__(self, identity: str, reset_at: float) -> None:
        super().__init__(
            "Pairing request limit reached",
            {"identity": identity, "reset_at": reset_at},
        )
        self.identity = identity
        self.reset_at = reset_at


# --- transport / rendering ---


_FAILURE_MESSAGES = {
    DeliveryFailure.DISCONNECTED: "Connection to the messaging service was lost; scan the QR code again.",
    DeliveryFailure.NOT_AUTHORIZED: "Not authorized to send messages to this recipient.",
    DeliveryFailure.FORBIDDEN: "Messages cannot be sent to this recipient; check that the number is valid.",
    DeliveryFailure.RATE_LIMITED: "Message limit reached; wait a moment before sending more messages.",
}


class DeliveryError(PairbotError):
    """Delivery failed after all local retries."""

    code = "DELIVERY_FAILED"

    def __init__(self, failure: DeliveryFailure, cause: BaseException, attempts: int) -> None:
        message = _FAILURE_MESSAGES.get(failure, f"Failed to send message: {cause}")
        super().__init__(message, {"failure": str(failure), "attempts": attempts})
        self.failure = failure
        self.cause = cause
        self.attempts = attempts


class QrRenderError(PairbotError):
    code = "QR_RENDER_FAILED"


class FlowValidationError(PairbotError):
    code = "INVALID_FLOW"
