"""Contract between the engine and the chat platform transport."""

from __future__ import annotations

import asyncio
from collections import deque
from pathlib import Path
from typing import Awaitable, Protocol, TypeVar, runtime_checkable

import structlog

from .errors import NotFoundError, TransportError
from .models import ConversationRef, FileRef

log = structlog.get_logger(__name__)

DEFAULT_TRANSPORT_TIMEOUT = 60.0
DEFAULT_HISTORY = 100

T = TypeVar("T")


@runtime_checkable
class Transport(Protocol):
    """Operations the engine needs from a chat platform adapter."""

    async def resolve_file_url(self, file: FileRef) -> str:
        """Return a downloadable URL for ``file`` or raise ``NotFoundError``."""

    async def send(self, conversation: ConversationRef, text: str) -> None:
        """Deliver ``text`` to ``conversation`` or raise ``TransportError``."""

    async def upload_file(
        self, conversation: ConversationRef, path: Path, display_name: str
    ) -> None:
        """Upload the local file at ``path`` into ``conversation``."""


async def bounded(
    awaitable: Awaitable[T], *, timeout: float | None, operation: str
) -> T:
    """Await ``awaitable`` and turn a timeout into a retryable ``TransportError``."""

    try:
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError as exc:
        log.warning("transport.timeout", operation=operation, timeout=timeout)
        raise TransportError(f"Timed out during {operation}.") from exc


class LoggingTransport:
    """Transport used for dry runs that only logs what would be delivered.

    The most recent ``history`` deliveries are kept in ``sent`` and ``uploaded``.
    """

    def __init__(
        self, file_urls: dict[str, str] | None = None, *, history: int = DEFAULT_HISTORY
    ) -> None:
        self.file_urls = dict(file_urls or {})
        self.sent: deque[tuple[ConversationRef, str]] = deque(maxlen=history)
        self.uploaded: deque[tuple[ConversationRef, str]] = deque(maxlen=history)

    async def resolve_file_url(self, file: FileRef) -> str:
        url = self.file_urls.get(file.file_id)
        if url is None:
            raise NotFoundError(f"File '{file.display_name}' cannot be resolved.")
        return url

    async def send(self, conversation: ConversationRef, text: str) -> None:
        self.sent.append((conversation, text))
        log.info("transport.logging.sent", channel=conversation.channel_id, text=text)

    async def upload_file(
        self, conversation: ConversationRef, path: Path, display_name: str
    ) -> None:
        self.uploaded.append((conversation, display_name))
        log.info(
            "transport.logging.uploaded",
            channel=conversation.channel_id,
            file=display_name,
            size=path.stat().st_size,
        )


__all__ = ["DEFAULT_TRANSPORT_TIMEOUT", "LoggingTransport", "Transport", "bounded"]
