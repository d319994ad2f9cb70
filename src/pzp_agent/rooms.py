"""Durable per-user room records binding users to their active run."""

from __future__ import annotations

import os
import threading
from dataclasses import replace
from datetime import datetime, timezone

import structlog

from .models import JobAddress, RoomRecord, RunPayload
from .storage import JsonDocumentFile

logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RoomStore:
    """Keep at most one room per user and persist every change to disk.

    The store is the authority the event router checks incoming routing keys
    against, so records are loaded eagerly and written back after each
    mutation.
    """

    def __init__(self, path: os.PathLike[str] | str) -> None:
        self._file = JsonDocumentFile(path)
        self._lock = threading.Lock()
        self._rooms: dict[str, RoomRecord] = {}
        self._load()

    @property
    def document(self) -> JsonDocumentFile:
        return self._file

    def _load(self) -> None:
        for user, item in self._file.load().items():
            if not isinstance(item, dict):
                continue
            try:
                record = RoomRecord.from_storage(item)
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("rooms.store.record_invalid", user=user, error=str(exc))
                continue
            self._rooms[record.user] = record
        stats = self._file.stats
        logger.info(
            "rooms.store.loaded",
            rooms=len(self._rooms),
            path=str(self._file.path),
            modified_at=stats.modified_at.isoformat() if stats.modified_at else None,
            load_error=stats.load_error,
        )

    def _persist(self) -> None:
        payload = {user: record.to_storage() for user, record in self._rooms.items()}
        try:
            self._file.save(payload)
        except OSError as exc:
            logger.error(
                "rooms.store.write_failed",
                path=str(self._file.path),
                error=str(exc),
                rotation_error=self._file.stats.rotation_error,
            )
            raise

    def put(self, record: RoomRecord) -> None:
        """Store ``record`` for its user, replacing any previous room."""

        with self._lock:
            previous = self._rooms.get(record.user)
            self._rooms[record.user] = record
            self._persist()
        if previous is not None and previous.address != record.address:
            logger.info(
                "rooms.store.replaced",
                user=record.user,
                previous=str(previous.address),
                current=str(record.address),
            )

    def get(self, user: str) -> RoomRecord | None:
        with self._lock:
            return self._rooms.get(user)

    def records(self) -> list[RoomRecord]:
        with self._lock:
            return sorted(self._rooms.values(), key=lambda record: record.created_at)

    def validate(self, address: JobAddress) -> tuple[str, str] | None:
        """Return ``(user, job_id)`` when ``address`` is the user's current run."""

        with self._lock:
            record = self._rooms.get(address.user)
        if record is None or record.address != address:
            return None
        return address.user, address.job_id

    def update_payload(self, user: str, payload: RunPayload) -> RoomRecord | None:
        """Record the latest status of the user's run; late events are ignored."""

        with self._lock:
            record = self._rooms.get(user)
            if record is None:
                return None
            updated = replace(record, payload=payload, updated_at=_utcnow())
            self._rooms[user] = updated
            self._persist()
        return updated

    def mark_announced(self, user: str) -> bool:
        """Flag the processing notice as sent; ``False`` if it already was."""

        with self._lock:
            record = self._rooms.get(user)
            if record is None or record.announced:
                return False
            self._rooms[user] = replace(record, announced=True, updated_at=_utcnow())
            self._persist()
        return True

    def retire(self, user: str, address: JobAddress | None = None) -> bool:
        """Drop the user's room, optionally only if it still holds ``address``."""

        with self._lock:
            record = self._rooms.get(user)
            if record is None:
                return False
            if address is not None and record.address != address:
                return False
            del self._rooms[user]
            self._persist()
        logger.info("rooms.store.retired", user=user, address=str(record.address))
        return True


__all__ = ["RoomStore"]
