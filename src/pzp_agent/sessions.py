"""In-memory registry of run requests that are still being assembled."""

from __future__ import annotations

import threading

import structlog

from .errors import ConflictError, NotFoundError
from .models import FileRef, PendingSession

log = structlog.get_logger(__name__)


class PendingSessionRegistry:
    """Own the pending session of every user that is building a request.

    Sessions are process-local: a restart drops requests that were never
    submitted, and users start again from :meth:`begin`.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, PendingSession] = {}
        self._lock = threading.Lock()

    def __contains__(self, user: object) -> bool:
        with self._lock:
            return user in self._sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def begin(self, user: str) -> PendingSession:
        """Open an empty session for ``user``."""

        with self._lock:
            if user in self._sessions:
                raise ConflictError(f"User '{user}' already has a pending request.")
            session = PendingSession(user=user)
            self._sessions[user] = session
        log.info("sessions.begin", user=user)
        return session

    def peek(self, user: str) -> PendingSession | None:
        with self._lock:
            return self._sessions.get(user)

    def record_file(
        self, user: str, file: FileRef, as_auxiliary: bool | None = None
    ) -> bool:
        """Attach ``file`` to the user's session.

        When ``as_auxiliary`` is ``None`` the session's pending auxiliary
        request decides where the file goes. Returns ``True`` when the file
        filled the auxiliary slot.
        """

        with self._lock:
            session = self._require(user)
            auxiliary = (
                session.expecting_auxiliary_file if as_auxiliary is None else as_auxiliary
            )
            if auxiliary:
                session.auxiliary_file = file
                session.expecting_auxiliary_file = False
            else:
                session.primary_files.append(file)
        log.info(
            "sessions.file_recorded",
            user=user,
            file=file.display_name,
            auxiliary=auxiliary,
        )
        return auxiliary

    def request_auxiliary(self, user: str) -> None:
        """Route the next file from ``user`` into the auxiliary slot."""

        with self._lock:
            self._require(user).expecting_auxiliary_file = True

    def take(self, user: str) -> PendingSession:
        """Remove and return the session so it can be submitted at most once."""

        with self._lock:
            session = self._sessions.pop(user, None)
        if session is None:
            raise NotFoundError(f"User '{user}' has no pending request.")
        log.info("sessions.take", user=user, files=len(session.primary_files))
        return session

    def abandon(self, user: str) -> bool:
        with self._lock:
            removed = self._sessions.pop(user, None) is not None
        if removed:
            log.info("sessions.abandon", user=user)
        return removed

    def _require(self, user: str) -> PendingSession:
        session = self._sessions.get(user)
        if session is None:
            raise NotFoundError(f"User '{user}' has no pending request.")
        return session


__all__ = ["PendingSessionRegistry"]
