"""Lifecycle of the pairing QR credential: issue, expiry, re-rendering."""

from __future__ import annotations

import asyncio
import time
from dataclasses import replace
from typing import Callable, Optional

from pairbot.config import QrConfig
from pairbot.core.errors import InvalidFormatError, NoActiveQrError, QrRenderError
from pairbot.core.models import ConnectionSnapshot, QrCredential, QrFormatInfo, QrStatus, QrView
from pairbot.core.types import QrFormat
from pairbot.log import get_logger
from pairbot.qr.renderer import RenderedQr, Renderer, RenderOptions

logger = get_logger(__name__)

StatusSubscriber = Callable[[QrStatus], None]


def parse_format(value: str | QrFormat) -> QrFormat:
    try:
        return QrFormat(str(value).upper())
    except ValueError:
        raise InvalidFormatError(
            f"Unsupported QR format: {value}", {"supported": [f.value for f in QrFormat]}
        ) from None


class QrLifecycleManager:
    """Owns the single live pairing credential.

    Issuing replaces the previous credential in one assignment, so at most one
    credential is ever tracked. Remaining time, age and the expired flag are
    derived from ``created_at``/``expires_at`` whenever a view is built.
    """

    def __init__(
        self,
        renderer: Renderer,
        config: QrConfig,
        connection_state: Callable[[], ConnectionSnapshot],
        clock: Callable[[], float] = time.time,
    ):
        self._renderer = renderer
        self._config = config
        self._connection_state = connection_state
        self._clock = clock
        self._options = RenderOptions.from_config(config)
        self._credential: QrCredential | None = None
        # Bumped by clear(); a render started under an older generation is discarded.
        self._generation = 0
        self._subscribers: list[StatusSubscriber] = []

    def subscribe(self, callback: StatusSubscriber) -> None:
        self._subscribers.append(callback)

    def notify(self) -> None:
        """Push the current status to every subscriber."""
        status = self.status()
        for callback in list(self._subscribers):
            try:
                callback(status)
            except Exception as e:
                logger.error("qr_status_subscriber_error", error=str(e))

    async def _render(self, payload: str, fmt: QrFormat) -> RenderedQr:
        try:
            return await asyncio.to_thread(self._renderer.render, payload, fmt, self._options)
        except Exception as e:
            logger.error("qr_render_error", error=str(e), format=str(fmt))
            try:
                rendered = await asyncio.to_thread(
                    self._renderer.render, payload, QrFormat.PNG, RenderOptions()
                )
            except Exception as fallback_error:
                raise QrRenderError(
                    f"Failed to generate QR in any format: {e}",
                    {"fallback_error": str(fallback_error)},
                ) from e
            return replace(rendered, fallback=True)

    async def issue(self, payload: str, fmt: QrFormat | str | None = None) -> Optional[QrView]:
        """Render ``payload`` and make it the live credential.

        Returns None when the credential was superseded while rendering,
        either by clear() or because the session connected.
        """
        target = parse_format(fmt) if fmt else self._config.default_format
        generation = self._generation
        rendered = await self._render(payload, target)

        connection = self._connection_state()
        if generation != self._generation or (connection is not None and connection.is_connected):
            logger.info("qr_discarded", reason="superseded_during_render")
            return None

        now = self._clock()
        self._credential = QrCredential(
            payload=payload,
            image=rendered.image,
            format=rendered.format,
            mime_type=rendered.mime_type,
            size=rendered.size,
            created_at=now,
            expires_at=now + self._config.ttl_seconds,
            fallback=rendered.fallback,
        )
        logger.info(
            "qr_issued",
            format=str(rendered.format),
            size=rendered.size,
            fallback=rendered.fallback,
            ttl=self._config.ttl_seconds,
        )
        self.notify()
        return self._view(self._credential, now)

    def _view(self, credential: QrCredential, now: float) -> QrView:
        remaining = max(int(credential.expires_at - now), 0)
        lifetime = credential.expires_at - credential.created_at
        percentage = round(remaining / lifetime * 100) if lifetime > 0 else 0
        return QrView(
            payload=credential.payload,
            image=credential.image,
            format=credential.format,
            mime_type=credential.mime_type,
            size=credential.size,
            fallback=credential.fallback,
            created_at=credential.created_at,
            expires_at=credential.expires_at,
            time_remaining=remaining,
            time_remaining_formatted=f"{remaining // 60}:{remaining % 60:02d}",
            percentage_remaining=min(percentage, 100),
            is_expired=now >= credential.expires_at,
            age=max(int(now - credential.created_at), 0),
        )

    def has_active(self) -> bool:
        return self._credential is not None and self._clock() < self._credential.expires_at

    @property
    def expires_at(self) -> Optional[float]:
        return self._credential.expires_at if self._credential else None

    def status(self) -> QrStatus:
        now = self._clock()
        credential = self._credential
        return QrStatus(
            has_active_qr=credential is not None and now < credential.expires_at,
            qr=self._view(credential, now) if credential else None,
            connection=self._connection_state(),
        )

    def current(self) -> Optional[QrView]:
        """The live credential, or None when absent or expired."""
        now = self._clock()
        if self._credential is None or now >= self._credential.expires_at:
            return None
        return self._view(self._credential, now)

    def format_info(self) -> Optional[QrFormatInfo]:
        credential = self._credential
        if credential is None:
            return None
        return QrFormatInfo(
            format=credential.format,
            size=credential.size,
            mime_type=credential.mime_type,
            fallback=credential.fallback,
            created_at=credential.created_at,
            expires_at=credential.expires_at,
        )

    def expire(self, reason: str = "") -> bool:
        """Force the current credential to expire now. Returns whether one existed."""
        if self._credential is None:
            return False
        self._credential.expires_at = min(self._credential.expires_at, self._clock())
        logger.info("qr_expired", reason=reason)
        self.notify()
        return True

    async def change_format(self, fmt: QrFormat | str) -> QrView:
        """Re-render the live credential in ``fmt``, keeping its timestamps."""
        target = parse_format(fmt)
        if not self.has_active():
            raise NoActiveQrError("There is no active QR code to change format")
        credential = self._credential
        rendered = await self._render(credential.payload, target)

        # A newer credential may have been issued while rendering.
        if self._credential is not credential:
            raise NoActiveQrError("QR code was replaced while changing format")
        credential.image = rendered.image
        credential.format = rendered.format
        credential.mime_type = rendered.mime_type
        credential.size = rendered.size
        credential.fallback = rendered.fallback
        logger.info(
            "qr_format_changed",
            format=str(rendered.format),
            size=rendered.size,
            mime_type=rendered.mime_type,
        )
        self.notify()
        return self._view(credential, self._clock())

    def clear(self) -> None:
        self._credential = None
        self._generation += 1
