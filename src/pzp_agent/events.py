"""Shared run event stream and the router that demultiplexes it per user."""

from __future__ import annotations

import asyncio
import random
from collections import deque
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol

import socketio
import structlog
from socketio import exceptions as socketio_exceptions

from .client import JobClient
from .errors import AgentError, TransportError
from .messages import output_display_name, status_name, text
from .models import (
    PROCESSING_STATUS,
    TERMINAL_STATUSES,
    ConversationRef,
    JobAddress,
    RoomRecord,
    RunEvent,
)
from .relay import ArtifactRelay
from .rooms import RoomStore
from .transport import DEFAULT_TRANSPORT_TIMEOUT, Transport, bounded

logger = structlog.get_logger(__name__)

ConnectCallback = Callable[[], Awaitable[None]]

DEFAULT_LANE_LIMIT = 64


class RunEventStream(Protocol):
    """Long-lived subscription producing run status events."""

    def __aiter__(self) -> AsyncIterator[RunEvent]: ...

    async def join(self, address: JobAddress) -> None: ...

    def on_connect(self, callback: ConnectCallback) -> None: ...

    async def close(self) -> None: ...


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff used while (re)connecting to the stream."""

    max_attempts: int | None = None
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: float = 0.5

    def delay(self, attempt: int) -> float:
        backoff = min(self.max_delay, self.base_delay * (2 ** max(0, attempt - 1)))
        return backoff + random.uniform(0, self.jitter)


class QueueEventStream:
    """Buffered event stream; producers :meth:`offer` events, consumers iterate.

    When ``max_buffer`` events are waiting the oldest one is dropped. Closing
    never evicts: events buffered before :meth:`close` are still delivered.
    """

    def __init__(self, max_buffer: int = 256) -> None:
        self._max_buffer = max_buffer
        self._queue: asyncio.Queue[RunEvent | None] = asyncio.Queue()
        self._callbacks: list[ConnectCallback] = []
        self._closed = False
        self.joined: list[JobAddress] = []

    @property
    def closed(self) -> bool:
        return self._closed

    def on_connect(self, callback: ConnectCallback) -> None:
        self._callbacks.append(callback)

    async def join(self, address: JobAddress) -> None:
        self.joined.append(address)

    def offer(self, event: RunEvent) -> bool:
        """Enqueue ``event`` without blocking, trimming the oldest on overflow."""

        if self._closed:
            return False
        if self._queue.qsize() >= self._max_buffer:
            dropped = self._queue.get_nowait()
            logger.warning(
                "events.stream.backpressure",
                dropped=dropped.target if dropped else None,
                buffered=self._max_buffer,
            )
        self._queue.put_nowait(event)
        return True

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(None)

    def __aiter__(self) -> AsyncIterator[RunEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[RunEvent]:
        await self._open()
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event

    async def _open(self) -> None:
        await self._notify_connected()

    async def _notify_connected(self) -> None:
        for callback in list(self._callbacks):
            try:
                await callback()
            except Exception as exc:  # pragma: no cover
                logger.error("events.stream.connect_callback_failed", error=str(exc))


class SocketIOEventStream(QueueEventStream):
    """Event stream backed by the job service's Socket.IO endpoint."""

    def __init__(
        self,
        url: str,
        *,
        retry: RetryPolicy | None = None,
        max_buffer: int = 256,
        client: socketio.AsyncClient | None = None,
    ) -> None:
        super().__init__(max_buffer)
        self._url = url
        self._retry = retry or RetryPolicy()
        self._client = client or socketio.AsyncClient(
            reconnection=True,
            reconnection_delay=self._retry.base_delay,
            reconnection_delay_max=self._retry.max_delay,
            randomization_factor=self._retry.jitter,
        )
        self._client.on("connect", self._handle_connect)
        self._client.on("disconnect", self._handle_disconnect)
        self._client.on("message", self._handle_message)

    async def _open(self) -> None:
        attempt = 0
        while not self._closed:
            attempt += 1
            try:
                await self._client.connect(self._url)
                return
            except socketio_exceptions.ConnectionError as exc:
                if self._retry.max_attempts and attempt >= self._retry.max_attempts:
                    raise TransportError(
                        f"Unable to connect to event stream at {self._url}: {exc}"
                    ) from exc
                delay = self._retry.delay(attempt)
                logger.warning(
                    "events.stream.connect_failed",
                    url=self._url,
                    attempt=attempt,
                    retry_in=round(delay, 2),
                    error=str(exc),
                )
                await asyncio.sleep(delay)

    async def join(self, address: JobAddress) -> None:
        await self._client.emit("join", (address.namespace, address.user, address.job_id))
        logger.info("events.stream.joined", address=str(address))

    async def close(self) -> None:
        await super().close()
        await self._client.disconnect()

    async def _handle_connect(self) -> None:
        logger.info("events.stream.connected", url=self._url)
        await self._notify_connected()

    def _handle_disconnect(self, *args: Any) -> None:
        logger.info("events.stream.disconnected", url=self._url)

    def _handle_message(
        self, target: str, status: str, progress: float = 0.0, eta: float = 0.0
    ) -> None:
        logger.debug(
            "events.stream.message", target=target, status=status, progress=progress, eta=eta
        )
        self.offer(
            RunEvent(
                target=str(target),
                status=str(status),
                progress=float(progress or 0.0),
                eta=float(eta or 0.0),
            )
        )


class EventRouter:
    """Route stream events to the conversation that owns the run.

    Events are validated against :class:`RoomStore`; anything that does not
    match a user's current room is dropped silently. Each user gets a lane so
    their events are handled in order while different users proceed
    concurrently. A lane holds at most ``lane_limit`` pending events; on
    overflow the oldest progress update is dropped before any processing or
    terminal event.
    """

    def __init__(
        self,
        rooms: RoomStore,
        client: JobClient,
        transport: Transport,
        relay: ArtifactRelay,
        *,
        send_timeout: float | None = DEFAULT_TRANSPORT_TIMEOUT,
        lane_limit: int = DEFAULT_LANE_LIMIT,
    ) -> None:
        self._rooms = rooms
        self._client = client
        self._transport = transport
        self._relay = relay
        self._send_timeout = send_timeout
        self._lane_limit = lane_limit
        self._lanes: dict[str, deque[RunEvent]] = {}
        self._workers: dict[str, asyncio.Task[None]] = {}
        self._stream: RunEventStream | None = None

    async def run(self, stream: RunEventStream) -> None:
        """Consume ``stream`` until it closes, then wait for pending lanes."""

        self._stream = stream
        stream.on_connect(self.rejoin)
        try:
            async for event in stream:
                self.submit(event)
        finally:
            await self.drain()

    async def stop(self) -> None:
        if self._stream is not None:
            await self._stream.close()

    async def drain(self) -> None:
        while self._workers:
            await asyncio.gather(*list(self._workers.values()), return_exceptions=True)

    async def rejoin(self) -> None:
        """Subscribe every stored, unfinished room on the stream again."""

        stream = self._stream
        if stream is None:
            return
        for record in self._rooms.records():
            if record.payload.is_terminal:
                continue
            try:
                await stream.join(record.address)
            except Exception as exc:
                logger.error(
                    "events.router.rejoin_failed",
                    address=str(record.address),
                    error=str(exc),
                )

    def submit(self, event: RunEvent) -> bool:
        """Queue ``event`` on the lane of the user its target names."""

        address = JobAddress.parse(event.target)
        if address is None:
            logger.debug("events.router.malformed_target", target=event.target)
            return False
        lane = self._lanes.get(address.user)
        if lane is None:
            lane = deque()
            self._lanes[address.user] = lane
            self._workers[address.user] = asyncio.create_task(
                self._work(address.user, lane), name=f"pzp-lane-{address.user}"
            )
        if len(lane) >= self._lane_limit:
            self._shed(address.user, lane)
        lane.append(event)
        return True

    def _shed(self, user: str, lane: deque[RunEvent]) -> None:
        for index, queued in enumerate(lane):
            if queued.status != PROCESSING_STATUS and queued.status not in TERMINAL_STATUSES:
                del lane[index]
                break
        else:
            queued = lane.popleft()
        logger.warning(
            "events.router.lane_backpressure",
            user=user,
            dropped=queued.target,
            status=queued.status,
        )

    async def _work(self, user: str, lane: deque[RunEvent]) -> None:
        try:
            while lane:
                event = lane.popleft()
                try:
                    await self.handle(event)
                except Exception:
                    logger.exception("events.router.handler_failed", target=event.target)
        finally:
            self._lanes.pop(user, None)
            self._workers.pop(user, None)

    async def handle(self, event: RunEvent) -> bool:
        """Apply one event; returns ``False`` when it was dropped as stale."""

        address = JobAddress.parse(event.target)
        if address is None or self._rooms.validate(address) is None:
            logger.debug("events.router.dropped", target=event.target, status=event.status)
            return False

        record = self._rooms.update_payload(address.user, event.payload)
        if record is None:
            return False

        if event.status == PROCESSING_STATUS:
            if self._rooms.mark_announced(address.user):
                await self._notify(
                    record.conversation, text("request_received", address.job_id)
                )
        elif event.status in TERMINAL_STATUSES:
            try:
                await self._finish(record, event.status)
            finally:
                self._rooms.retire(address.user, address)
        return True

    async def _finish(self, record: RoomRecord, status: str) -> None:
        address = record.address
        if status == "completed":
            try:
                run = await self._client.get_run(
                    address.job_id, address.user, namespace=address.namespace
                )
            except AgentError as exc:
                logger.error(
                    "events.router.fetch_failed", address=str(address), error=str(exc)
                )
            else:
                listing = "\n".join(
                    f"· {output_display_name(run.id, file.name)}\n  {file.url}"
                    for file in run.output_files
                )
                await self._notify(
                    record.conversation,
                    text(
                        "request_completed",
                        address.job_id,
                        status_name(status),
                        address.user,
                        listing or text("no_output"),
                    ),
                )
                await self._relay.relay(run.id, run.output_files, record.conversation)
                return
        await self._notify(
            record.conversation,
            text("request_ended", address.job_id, status_name(status), address.user),
        )

    async def _notify(self, conversation: ConversationRef, message: str) -> None:
        try:
            await bounded(
                self._transport.send(conversation, message),
                timeout=self._send_timeout,
                operation="send message",
            )
        except AgentError as exc:
            logger.error(
                "events.router.notify_failed",
                channel=conversation.channel_id,
                error=str(exc),
            )


__all__ = [
    "EventRouter",
    "QueueEventStream",
    "RetryPolicy",
    "RunEventStream",
    "SocketIOEventStream",
]
