"""Application orchestrator - wires all components and manages lifecycle."""

from __future__ import annotations

from pairbot.chatbot.flow import DialogueGraph, default_graph
from pairbot.config import AppConfig
from pairbot.core.session import MessagingSession
from pairbot.log import get_logger
from pairbot.media.images import ImageSource
from pairbot.qr.renderer import QrRenderer
from pairbot.services.scheduler import SchedulerService
from pairbot.templates import TemplateProvider
from pairbot.transport.base import TransportFactory, load_transport_factory

logger = get_logger(__name__)


def build_graph(config: AppConfig) -> DialogueGraph:
    conv = config.conversation
    if conv.flow_path:
        return DialogueGraph.from_yaml(conv.flow_path, start=conv.start_step, closing=conv.closing_step)
    return default_graph(start=conv.start_step, closing=conv.closing_step)


def build_templates(config: AppConfig) -> TemplateProvider:
    if config.templates.path:
        return TemplateProvider.from_yaml(config.templates.path)
    return TemplateProvider()


class PairbotApp:
    """Top-level application orchestrator."""

    def __init__(self, config: AppConfig, transport_factory: TransportFactory | None = None):
        self.config = config
        if transport_factory is None:
            if not config.session.transport:
                raise ValueError("No transport configured; set 'session.transport' to 'module:factory'")
            transport_factory = load_transport_factory(config.session.transport)
        self.scheduler = SchedulerService(config.scheduler)
        self.session = MessagingSession(
            config,
            transport_factory=transport_factory,
            scheduler=self.scheduler,
            renderer=QrRenderer(),
            graph=build_graph(config),
            templates=build_templates(config),
            images=ImageSource(config.images),
        )

    async def start(self) -> None:
        """Start the timer service, then the session."""
        await self.scheduler.start()
        try:
            await self.session.start()
        except Exception as e:
            # The session stays disconnected; pairing or force_reconnect can recover it.
            logger.error("session_start_failed", error=str(e))
        logger.info("pairbot_started", status=str(self.session.connection.status))

    async def stop(self) -> None:
        """Gracefully shut down all components."""
        try:
            await self.session.cleanup()
        except Exception as e:
            logger.error("session_stop_error", error=str(e))
        await self.scheduler.stop()
        logger.info("pairbot_stopped")
