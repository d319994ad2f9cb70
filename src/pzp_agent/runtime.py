"""Wire settings, stores, client, stream and transport into one agent."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

import structlog

from .client import JobClient
from .coordinator import RunCoordinator
from .events import EventRouter, RunEventStream, SocketIOEventStream
from .relay import ArtifactRelay
from .rooms import RoomStore
from .run_config import ConfigStore
from .sessions import PendingSessionRegistry
from .settings import AgentSettings
from .transport import Transport

log = structlog.get_logger(__name__)


@dataclass
class AgentRuntime:
    settings: AgentSettings
    sessions: PendingSessionRegistry
    configs: ConfigStore
    rooms: RoomStore
    client: JobClient
    relay: ArtifactRelay
    stream: RunEventStream
    router: EventRouter
    coordinator: RunCoordinator

    async def serve(self) -> None:
        """Route events until the stream closes, then release HTTP clients."""

        log.info(
            "runtime.serve.started",
            profile=self.settings.profile,
            namespace=self.settings.namespace,
            rooms=len(self.rooms.records()),
        )
        try:
            await self.router.run(self.stream)
        except asyncio.CancelledError:
            log.info("runtime.serve.cancelled")
            raise
        finally:
            await self.relay.aclose()
            await self.client.aclose()
            log.info("runtime.serve.stopped")

    async def stop(self) -> None:
        await self.router.stop()


def build_runtime(
    settings: AgentSettings,
    transport: Transport,
    *,
    stream: RunEventStream | None = None,
    client: JobClient | None = None,
) -> AgentRuntime:
    """Assemble an :class:`AgentRuntime` for ``settings``.

    If ``transport`` exposes ``attach(coordinator)`` it is called so the
    adapter can forward inbound chat commands.
    """

    settings.state_dir.mkdir(parents=True, exist_ok=True)
    sessions = PendingSessionRegistry()
    configs = ConfigStore(settings.config_path)
    rooms = RoomStore(settings.rooms_path)
    client = client or JobClient(
        settings.api_base,
        settings.api_secret,
        namespace=settings.namespace,
        timeout=settings.request_timeout,
    )
    relay = ArtifactRelay(transport, concurrency=settings.relay_concurrency)
    stream = stream or SocketIOEventStream(settings.api_websocket)
    router = EventRouter(rooms, client, transport, relay)
    coordinator = RunCoordinator(sessions, configs, rooms, client, transport, stream)

    attach = getattr(transport, "attach", None)
    if callable(attach):
        attach(coordinator)

    return AgentRuntime(
        settings=settings,
        sessions=sessions,
        configs=configs,
        rooms=rooms,
        client=client,
        relay=relay,
        stream=stream,
        router=router,
        coordinator=coordinator,
    )


__all__ = ["AgentRuntime", "build_runtime"]
