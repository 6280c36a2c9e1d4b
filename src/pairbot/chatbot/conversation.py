"""Per-user conversation state machine over a DialogueGraph."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from pairbot.chatbot.flow import DialogueGraph
from pairbot.config import ConversationConfig
from pairbot.log import get_logger
from pairbot.services.scheduler import SchedulerService

logger = get_logger(__name__)

SendText = Callable[[str, str], Awaitable[None]]


@dataclass
class Conversation:
    user_id: str
    step: str
    last_interaction_at: float
    timer_id: Optional[str] = None


class ConversationManager:
    """Advances each user through the dialogue graph.

    Timers are scheduler jobs keyed by user id. Every arm site cancels the
    previous job before any await, so one user never has two live timers.
    """

    def __init__(
        self,
        graph: DialogueGraph,
        config: ConversationConfig,
        scheduler: SchedulerService,
        send: SendText,
        clock: Callable[[], float] = time.time,
    ):
        self._graph = graph
        self._config = config
        self._scheduler = scheduler
        self._send = send
        self._clock = clock
        self._conversations: dict[str, Conversation] = {}
        self._closing_timers: dict[str, str] = {}

    @property
    def graph(self) -> DialogueGraph:
        return self._graph

    def get(self, user_id: str) -> Optional[Conversation]:
        return self._conversations.get(user_id)

    def active_users(self) -> list[str]:
        return list(self._conversations)

    def __len__(self) -> int:
        return len(self._conversations)

    async def handle(self, user_id: str, text: str) -> Optional[str]:
        """Process one inbound text. Returns the reply to send, if any."""
        conv = self._conversations.get(user_id) or Conversation(
            user_id=user_id, step=self._graph.start, last_interaction_at=self._clock()
        )
        current = self._graph.get(conv.step)
        if current is None:
            logger.error("conversation_invalid_step", user_id=user_id, step=conv.step)
            return self._config.step_error

        self._cancel_inactivity(conv)
        conv.last_interaction_at = self._clock()

        option = text.strip()
        target_id = current.resolve(option)

        if target_id is None:
            # Step unchanged; the inactivity timer stays disarmed.
            self._conversations[user_id] = conv
            logger.debug("conversation_invalid_option", user_id=user_id, step=conv.step)
            return f"{self._config.invalid_option_notice}\n\n{current.message}"

        target = self._graph.get(target_id)

        if target_id == self._graph.closing:
            self._conversations.pop(user_id, None)
            logger.info("conversation_closed", user_id=user_id, from_step=conv.step)
            await self._send(user_id, target.message)
            return None

        if target.is_terminal:
            self._conversations.pop(user_id, None)
            logger.info("conversation_finished", user_id=user_id, step=target_id)
            await self._send(user_id, target.message)
            self._arm_closing_ack(user_id)
            return None

        conv.step = target_id
        self._arm_inactivity(conv)
        self._conversations[user_id] = conv
        logger.debug("conversation_advanced", user_id=user_id, step=target_id)
        return target.message

    def _cancel_inactivity(self, conv: Conversation) -> None:
        if conv.timer_id is not None:
            self._scheduler.cancel(conv.timer_id)
            conv.timer_id = None

    def _arm_inactivity(self, conv: Conversation) -> None:
        self._cancel_inactivity(conv)
        conv.timer_id = self._scheduler.call_later(
            self._config.inactivity_timeout,
            self._on_inactive,
            job_id=f"inactivity:{conv.user_id}",
            user_id=conv.user_id,
        )

    def _arm_closing_ack(self, user_id: str) -> None:
        previous = self._closing_timers.pop(user_id, None)
        if previous is not None:
            self._scheduler.cancel(previous)
        self._closing_timers[user_id] = self._scheduler.call_later(
            self._config.closing_delay,
            self._on_closing_ack,
            job_id=f"closing:{user_id}",
            user_id=user_id,
        )

    async def _on_inactive(self, user_id: str) -> None:
        conv = self._conversations.get(user_id)
        if conv is None or conv.timer_id != f"inactivity:{user_id}":
            return
        del self._conversations[user_id]
        logger.info("conversation_timed_out", user_id=user_id, step=conv.step)
        try:
            await self._send(user_id, self._config.inactivity_notice)
        except Exception as e:
            logger.error("inactivity_notice_failed", user_id=user_id, error=str(e))

    async def _on_closing_ack(self, user_id: str) -> None:
        self._closing_timers.pop(user_id, None)
        try:
            await self._send(user_id, self._config.closing_ack)
        except Exception as e:
            logger.error("closing_ack_failed", user_id=user_id, error=str(e))

    def cleanup(self) -> None:
        """Cancel every pending timer and forget all conversations."""
        for conv in self._conversations.values():
            self._cancel_inactivity(conv)
        for job_id in self._closing_timers.values():
            self._scheduler.cancel(job_id)
        self._closing_timers.clear()
        self._conversations.clear()
