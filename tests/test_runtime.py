from __future__ import annotations

import asyncio
from collections.abc import Callable
from pathlib import Path

import pytest

from pzp_agent.client import JobClient
from pzp_agent.coordinator import RunCoordinator
from pzp_agent.events import QueueEventStream
from pzp_agent.models import RunEvent
from pzp_agent.runtime import build_runtime
from pzp_agent.settings import AgentSettings
from pzp_agent.transport import LoggingTransport


class AttachableTransport(LoggingTransport):
    def __init__(self) -> None:
        super().__init__()
        self.coordinator: RunCoordinator | None = None

    def attach(self, coordinator: RunCoordinator) -> None:
        self.coordinator = coordinator


@pytest.mark.anyio("asyncio")
async def test_runtime_wires_components_and_serves_until_stopped(
    tmp_path: Path, make_client: Callable[..., JobClient]
) -> None:
    settings = AgentSettings(api_secret="s3cret", state_dir=tmp_path / "state")
    transport = AttachableTransport()
    stream = QueueEventStream()

    runtime = build_runtime(settings, transport, stream=stream, client=make_client())

    assert transport.coordinator is runtime.coordinator
    assert settings.state_dir.is_dir()

    serving = asyncio.create_task(runtime.serve())
    stream.offer(RunEvent("ns/alice/run-1", "rendering"))
    await asyncio.sleep(0)
    await runtime.stop()
    await asyncio.wait_for(serving, timeout=5)

    assert stream.closed
    assert runtime.rooms.records() == []
