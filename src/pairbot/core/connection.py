"""Connection lifecycle: connect, react to transport events, reconnect with backoff."""

from __future__ import annotations

import time
from typing import Callable, Optional

from pairbot.config import SessionConfig
from pairbot.core.models import ConnectionSnapshot, SessionState
from pairbot.core.types import ConnectionStatus, LifecycleKind
from pairbot.log import get_logger
from pairbot.qr.manager import QrLifecycleManager
from pairbot.services.scheduler import SchedulerService
from pairbot.transport.base import MessageCallback, Transport, TransportFactory
from pairbot.transport.models import CloseReason, InboundMessage, LifecycleEvent

logger = get_logger(__name__)

RECONNECT_JOB = "session:reconnect"


class ConnectionManager:
    """Sole owner of the transport handle and SessionState.

    Transport callbacks, the reconnect timer and the facade all go through
    these methods; nothing else writes to the state.
    """

    def __init__(
        self,
        factory: TransportFactory,
        config: SessionConfig,
        qr: QrLifecycleManager,
        scheduler: SchedulerService,
        on_message: MessageCallback,
        clock: Callable[[], float] = time.time,
    ):
        self._factory = factory
        self._config = config
        self._qr = qr
        self._scheduler = scheduler
        self._on_message = on_message
        self._clock = clock
        self._transport: Transport | None = None
        self._reconnect_job: str | None = None
        self._state = SessionState(max_reconnect_attempts=config.reconnect.max_attempts)

    # --- read side ---

    @property
    def transport(self) -> Optional[Transport]:
        return self._transport

    @property
    def status(self) -> ConnectionStatus:
        return self._state.status

    @property
    def is_connected(self) -> bool:
        return self._state.status == ConnectionStatus.CONNECTED

    @property
    def is_busy(self) -> bool:
        """True while a connection or reconnection attempt is in flight."""
        return self._state.is_connecting or self._state.is_reconnecting

    def snapshot(self) -> ConnectionSnapshot:
        s = self._state
        return ConnectionSnapshot(
            status=s.status,
            is_connecting=s.is_connecting,
            has_transport=self._transport is not None,
            reconnect_attempts=s.reconnect_attempts,
            max_reconnect_attempts=s.max_reconnect_attempts,
            is_reconnecting=s.is_reconnecting,
            last_attempt_at=s.last_attempt_at,
        )

    def reconnection_status(self) -> dict[str, object]:
        s = self._state
        return {
            "is_reconnecting": s.is_reconnecting,
            "reconnect_attempts": s.reconnect_attempts,
            "max_reconnect_attempts": s.max_reconnect_attempts,
            "last_attempt_at": s.last_attempt_at,
        }

    def reconnect_delay(self, attempt: int) -> float:
        cfg = self._config.reconnect
        delay = cfg.base_delay * (2 ** (attempt - 1))
        if cfg.max_delay is not None:
            delay = min(delay, cfg.max_delay)
        return delay

    # --- lifecycle ---

    def _set_status(self, status: ConnectionStatus) -> None:
        if self._state.status != status:
            logger.debug("connection_status", previous=str(self._state.status), status=str(status))
        self._state.status = status

    async def initialize(self) -> None:
        """Build a fresh transport, subscribe to it and start connecting.

        Failures propagate after the half-built transport is released.
        """
        try:
            transport = self._factory(self._config.auth_dir, self._config.transport_options)
        except Exception as e:
            logger.error("transport_create_failed", error=str(e))
            raise

        async def _lifecycle(event: LifecycleEvent) -> None:
            if transport is not self._transport:
                logger.debug("stale_transport_event", kind=str(event.kind))
                return
            await self.on_transport_event(event)

        async def _message(message: InboundMessage) -> None:
            if transport is not self._transport:
                return
            await self._on_message(message)

        transport.on_lifecycle(_lifecycle)
        transport.on_message(_message)
        self._transport = transport
        self._set_status(ConnectionStatus.CONNECTING)

        try:
            await transport.connect()
        except Exception as e:
            logger.error("transport_connect_failed", error=str(e))
            await self._release()
            self._set_status(ConnectionStatus.DISCONNECTED)
            self._qr.notify()
            raise
        logger.info("session_initialized")

    async def on_transport_event(self, event: LifecycleEvent) -> None:
        s = self._state
        if event.kind == LifecycleKind.CONNECTING:
            self._set_status(ConnectionStatus.CONNECTING)
            s.is_connecting = True
            s.reconnect_attempts = 0
            s.last_attempt_at = self._clock()
        elif event.kind == LifecycleKind.OPEN:
            self._set_status(ConnectionStatus.CONNECTED)
            s.is_connecting = False
            s.reconnect_attempts = 0
            s.is_reconnecting = False
            self._cancel_reconnect()
            self._qr.clear()
            logger.info("session_connected")
        elif event.kind == LifecycleKind.CLOSE:
            self._set_status(ConnectionStatus.DISCONNECTED)
            s.is_connecting = False
            self._handle_close(event.reason)

        if event.qr:
            try:
                await self._qr.issue(event.qr)
            except Exception as e:
                logger.error("qr_issue_failed", error=str(e))
        if event.kind is not None:
            self._qr.notify()

    def is_recoverable(self, reason: Optional[CloseReason]) -> bool:
        if reason is None:
            return False
        cfg = self._config.reconnect
        if reason.code is not None and str(reason.code) in cfg.recoverable_codes:
            return True
        return any(marker in reason.message for marker in cfg.recoverable_markers)

    def _handle_close(self, reason: Optional[CloseReason]) -> None:
        logger.warning(
            "connection_closed",
            reason=reason.message if reason else None,
            code=reason.code if reason else None,
        )
        if self.is_recoverable(reason):
            self.attempt_reconnect()

    def attempt_reconnect(self) -> bool:
        """Schedule one reconnect with exponential backoff. Returns whether one was scheduled."""
        s = self._state
        if s.is_reconnecting or s.reconnect_attempts >= s.max_reconnect_attempts:
            logger.debug(
                "reconnect_skipped",
                is_reconnecting=s.is_reconnecting,
                attempts=s.reconnect_attempts,
            )
            return False

        s.is_reconnecting = True
        s.reconnect_attempts += 1
        delay = self.reconnect_delay(s.reconnect_attempts)
        self._cancel_reconnect()
        self._reconnect_job = self._scheduler.call_later(delay, self._run_reconnect, job_id=RECONNECT_JOB)
        self._set_status(ConnectionStatus.RECONNECTING)
        logger.info(
            "reconnect_scheduled",
            attempt=s.reconnect_attempts,
            max_attempts=s.max_reconnect_attempts,
            delay=delay,
        )
        self._qr.notify()
        return True

    async def _run_reconnect(self) -> None:
        self._reconnect_job = None
        s = self._state
        try:
            await self._release()
            self._qr.clear()
            await self.initialize()
        except Exception as e:
            logger.error("reconnect_failed", attempt=s.reconnect_attempts, error=str(e))
            s.is_reconnecting = False
            if s.reconnect_attempts < s.max_reconnect_attempts:
                self.attempt_reconnect()
            else:
                logger.warning("reconnect_gave_up", attempts=s.reconnect_attempts)
            return
        s.reconnect_attempts = 0
        s.is_reconnecting = False
        logger.info("reconnect_succeeded")

    async def force_reconnect(self) -> None:
        """Operator escape hatch: reconnect regardless of the attempt cap."""
        logger.info("reconnect_forced")
        self._cancel_reconnect()
        self._state.reconnect_attempts = 0
        self._state.is_reconnecting = False
        self.attempt_reconnect()

    async def restart(self) -> None:
        """Tear down and re-initialize to obtain a fresh pairing challenge."""
        self._state.is_connecting = True
        self._set_status(ConnectionStatus.CONNECTING)
        try:
            await self._release()
            self._qr.clear()
            await self.initialize()
        except Exception:
            self._state.is_connecting = False
            self._set_status(ConnectionStatus.DISCONNECTED)
            raise

    def _cancel_reconnect(self) -> None:
        if self._reconnect_job is not None:
            self._scheduler.cancel(self._reconnect_job)
            self._reconnect_job = None

    async def _release(self) -> None:
        transport, self._transport = self._transport, None
        if transport is None:
            return
        transport.unsubscribe_all()
        try:
            await transport.terminate()
        except Exception as e:
            logger.warning("transport_terminate_error", error=str(e))

    async def cleanup(self) -> None:
        """Drop the transport and all derived state. Safe to call repeatedly."""
        self._cancel_reconnect()
        await self._release()
        self._qr.clear()
        self._state.is_connecting = False
        self._state.is_reconnecting = False
        self._set_status(ConnectionStatus.DISCONNECTED)
