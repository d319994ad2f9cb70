"""Coordinate chat commands into pending sessions, submissions and rooms."""

from __future__ import annotations

import asyncio
import math
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import structlog

from . import run_config
from .client import JobClient
from .errors import (
    AgentError,
    ConflictError,
    NotFoundError,
    RemoteServiceError,
    TransportError,
    UnknownPropertyError,
    ValidationError,
)
from .events import RunEventStream
from .messages import format_time, output_display_name, status_name, text, to_percent
from .models import ConversationRef, FileRef, PendingSession, RoomRecord, RunSubmission
from .rooms import RoomStore
from .run_config import ConfigStore, PropertyKind, RunConfig
from .sessions import PendingSessionRegistry
from .transport import DEFAULT_TRANSPORT_TIMEOUT, Transport, bounded

log = structlog.get_logger(__name__)

HISTORY_LIMIT_MAX = 5


class RunCoordinator:
    """Drive one user's request from ``start`` through ``submit``.

    The coordinator owns no state of its own: pending drafts live in the
    :class:`PendingSessionRegistry`, active runs in the :class:`RoomStore`
    and per-user settings in the :class:`ConfigStore`.
    """

    def __init__(
        self,
        sessions: PendingSessionRegistry,
        configs: ConfigStore,
        rooms: RoomStore,
        client: JobClient,
        transport: Transport,
        stream: RunEventStream,
        *,
        transport_timeout: float | None = DEFAULT_TRANSPORT_TIMEOUT,
    ) -> None:
        self._sessions = sessions
        self._configs = configs
        self._rooms = rooms
        self._client = client
        self._transport = transport
        self._stream = stream
        self._timeout = transport_timeout

    async def _send(self, conversation: ConversationRef, message: str) -> None:
        await bounded(
            self._transport.send(conversation, message),
            timeout=self._timeout,
            operation="send message",
        )

    @asynccontextmanager
    async def surface_errors(
        self, conversation: ConversationRef, *, user: str | None = None
    ) -> AsyncIterator[None]:
        """Report taxonomy errors raised inside the block back to the user."""

        try:
            yield
        except (RemoteServiceError, TransportError) as exc:
            log.error(
                "coordinator.command_failed",
                user=user,
                channel=conversation.channel_id,
                error=str(exc),
                status_code=getattr(exc, "status_code", None),
            )
            await self._send_quietly(conversation, text("generic_failure"))
        except ConflictError:
            await self._send_quietly(conversation, text("existing_request"))
        except NotFoundError:
            await self._send_quietly(conversation, text("start_first"))
        except (ValidationError, UnknownPropertyError) as exc:
            await self._send_quietly(conversation, exc.message)

    async def _send_quietly(self, conversation: ConversationRef, message: str) -> None:
        try:
            await self._send(conversation, message)
        except AgentError as exc:
            log.error(
                "coordinator.reply_failed", channel=conversation.channel_id, error=str(exc)
            )

    # ------------------------------------------------------------------
    # Request assembly
    # ------------------------------------------------------------------

    async def start(
        self, user: str, conversation: ConversationRef
    ) -> PendingSession | None:
        """Open a pending session unless the user already has one in flight.

        An unfinished remote run is reported together with its progress and
        no session is opened; ``None`` is returned in that case.
        """

        if user in self._sessions:
            raise ConflictError(f"User '{user}' already has a pending request.")
        latest = await self._client.latest_run(user)
        if latest is not None and latest.is_active:
            log.info("coordinator.start_refused", user=user, run_id=latest.id)
            await self._send(conversation, text("existing_request"))
            await self.progress(user, conversation)
            return None
        session = self._sessions.begin(user)
        await self._send(conversation, text("start_instructions"))
        await self._send(conversation, text("send_chart_files"))
        return session

    async def receive_file(
        self, user: str, conversation: ConversationRef, file: FileRef
    ) -> bool | None:
        """Attach an incoming chat file; returns ``None`` if no session is open."""

        if user not in self._sessions:
            return None
        auxiliary = self._sessions.record_file(user, file)
        key = "respack_set" if auxiliary else "chart_file_added"
        await self._send(conversation, text(key, file.display_name))
        return auxiliary

    async def request_respack(self, user: str, conversation: ConversationRef) -> None:
        self._sessions.request_auxiliary(user)
        await self._send(conversation, text("send_respack_file"))

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def submit(self, user: str, conversation: ConversationRef) -> RoomRecord:
        """Submit the user's pending session and open a room for the new run.

        The session is taken before anything else happens, so a failed
        submission has to be restarted with ``start``.
        """

        session = self._sessions.take(user)
        if not session.primary_files:
            raise ValidationError(text("need_chart_files"), value=[])

        config = self._configs.get(user)
        chart_names = ", ".join(file.display_name for file in session.primary_files)
        respack_name = (
            session.auxiliary_file.display_name
            if session.auxiliary_file
            else text("default_respack")
        )
        await self._send(
            conversation,
            text(
                "request_summary",
                chart_names,
                respack_name,
                run_config.describe(config, full=False),
            ),
        )

        payload = await self._build_payload(session, config)
        submission = await self._client.create_run(payload)
        record = await self._open_room(user, conversation, submission)

        await self._send(
            conversation,
            text(
                "request_submitted",
                submission.run_id,
                submission.queue_size,
                format_time(submission.queue_time),
                user,
            ),
        )
        log.info(
            "coordinator.submitted",
            user=user,
            channel=conversation.channel_id,
            address=str(record.address),
        )
        return record

    async def _build_payload(
        self, session: PendingSession, config: RunConfig
    ) -> dict[str, Any]:
        async def _resolve(file: FileRef) -> str:
            return await bounded(
                self._transport.resolve_file_url(file),
                timeout=self._timeout,
                operation="file url resolution",
            )

        chart_urls = await asyncio.gather(*(_resolve(file) for file in session.primary_files))
        respack_url = (
            await _resolve(session.auxiliary_file) if session.auxiliary_file else None
        )
        return {
            "input": {"chartFiles": list(chart_urls), "respack": respack_url},
            **config.to_request_fields(),
        }

    async def _open_room(
        self, user: str, conversation: ConversationRef, submission: RunSubmission
    ) -> RoomRecord:
        record = RoomRecord(
            user=user,
            address=submission.address_for(user),
            conversation=conversation,
        )
        self._rooms.put(record)
        try:
            await self._stream.join(record.address)
        except Exception as exc:
            # The room stays; the router joins stored rooms on every reconnect.
            log.error("coordinator.join_failed", address=str(record.address), error=str(exc))
        return record

    # ------------------------------------------------------------------
    # Queries on the remote service
    # ------------------------------------------------------------------

    async def progress(self, user: str, conversation: ConversationRef) -> None:
        latest = await self._client.latest_run(user)
        if latest is None or not latest.is_active:
            await self._send(conversation, text("no_active_request"))
            return
        if latest.status == "queued":
            await self._send(conversation, text("progress_queued", latest.id, user))
            return
        live = await self._client.get_progress(latest.id, user)
        progress_text = (
            f"\n{text('current_progress', to_percent(live.progress))}" if live.progress else ""
        )
        eta_text = f"\n{text('current_eta', format_time(live.eta))}" if live.eta else ""
        await self._send(
            conversation,
            text(
                "progress_in_progress",
                latest.id,
                status_name(live.status),
                progress_text,
                eta_text,
                user,
            ),
        )

    async def cancel(self, user: str, conversation: ConversationRef) -> bool:
        latest = await self._client.latest_run(user)
        if latest is None or not latest.is_active:
            await self._send(conversation, text("no_active_request"))
            return False
        try:
            await self._client.cancel_run(latest.id, user)
        except RemoteServiceError as exc:
            await self._send(conversation, text("cancel_failed", exc.message))
            return False
        await self._send(conversation, text("cancel_success", latest.id))
        return True

    async def history(
        self, user: str, conversation: ConversationRef, page: int = 1, limit: int = 3
    ) -> None:
        if page < 1 or limit < 1:
            raise ValidationError(f"Invalid page or limit: {page}, {limit}", value=(page, limit))
        limit = min(limit, HISTORY_LIMIT_MAX)
        result = await self._client.list_runs(user, page, limit)
        if result.total == 0:
            await self._send(conversation, text("history_empty"))
            return
        if not result.runs:
            await self._send(conversation, text("no_results"))
            return

        entries = []
        for index, run in enumerate(result.runs, start=1 + (page - 1) * limit):
            outputs = (
                "\n".join(
                    f"· {output_display_name(run.id, file.name)}\n  {file.url}"
                    for file in run.output_files
                )
                or text("no_output")
            )
            entries.append(f"{index}. [{status_name(run.status)}]｢{run.id}｣\n{outputs}")
        await self._send(
            conversation, text("history_header", page, math.ceil(result.total / limit))
        )
        await self._send(conversation, "\n\n".join(entries))

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    async def configure(
        self,
        user: str,
        conversation: ConversationRef,
        property_name: str | None = None,
        value: str | None = None,
    ) -> RunConfig:
        """Show, toggle or set a configuration property of ``user``."""

        config = self._configs.get(user)
        if not property_name:
            await self._send(conversation, run_config.describe(config))
            await self._send(conversation, text("config_instructions"))
            return config

        prop = run_config.resolve_property(property_name)
        spec = run_config.PROPERTY_SPECS[prop]
        if value is None and spec.kind is not PropertyKind.BOOLEAN:
            current = run_config.format_value(prop, run_config.get_path(config, prop))
            await self._send(conversation, text("current_value", spec.label, current))
            return config

        updated = run_config.set_path(config, prop, value)
        self._configs.save(updated)
        shown = run_config.format_value(prop, run_config.get_path(updated, prop))
        key = "boolean_toggled" if value is None else "value_set"
        await self._send(conversation, text(key, spec.label, shown))
        return updated


__all__ = ["HISTORY_LIMIT_MAX", "RunCoordinator"]
