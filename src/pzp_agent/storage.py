"""Atomic JSON document files backing the durable stores."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import structlog

logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class DocumentStats:
    """What the last load or save learned about a document file."""

    entries: int = 0
    modified_at: datetime | None = None
    load_error: str | None = None
    rotation_error: str | None = None


class JsonDocumentFile:
    """A JSON object persisted with tmp-file replacement and backup rotation."""

    def __init__(self, path: os.PathLike[str] | str) -> None:
        self._path = Path(path)
        self._stats = DocumentStats()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def stats(self) -> DocumentStats:
        return self._stats

    def load(self) -> dict[str, Any]:
        """Return the stored mapping, or an empty one when unreadable."""

        self._stats.entries = 0
        self._stats.load_error = None
        if not self._path.exists():
            self._stats.modified_at = None
            return {}
        try:
            self._stats.modified_at = datetime.fromtimestamp(
                self._path.stat().st_mtime, tz=timezone.utc
            )
            raw_data = self._path.read_text(encoding="utf-8")
        except OSError as exc:
            logger.warning("storage.read_failed", path=str(self._path), error=str(exc))
            self._stats.load_error = str(exc)
            return {}
        try:
            payload = json.loads(raw_data or "{}")
        except json.JSONDecodeError as exc:
            logger.warning(
                "storage.decode_failed", path=str(self._path), error=str(exc)
            )
            self._stats.load_error = f"invalid JSON: {exc}"
            return {}
        if not isinstance(payload, dict):
            logger.warning("storage.invalid_payload", path=str(self._path))
            self._stats.load_error = "expected a JSON object"
            return {}
        self._stats.entries = len(payload)
        return payload

    def save(self, payload: dict[str, Any]) -> None:
        """Replace the file contents with ``payload``."""

        serialised = json.dumps(payload, indent=2, sort_keys=True, ensure_ascii=False)

        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        backup_path = self._path.with_suffix(self._path.suffix + ".bak")
        backup_created = False

        if self._path.exists():
            try:
                os.replace(self._path, backup_path)
                backup_created = True
                self._stats.rotation_error = None
            except OSError as exc:
                self._stats.rotation_error = str(exc)
                raise

        try:
            tmp_path.write_text(serialised, encoding="utf-8")
            os.replace(tmp_path, self._path)
        except Exception:
            if backup_created and backup_path.exists():
                os.replace(backup_path, self._path)
            raise
        finally:
            tmp_path.unlink(missing_ok=True)

        if backup_created:
            backup_path.unlink(missing_ok=True)

        self._stats.modified_at = _utcnow()
        self._stats.entries = len(payload)
        self._stats.load_error = None


__all__ = ["DocumentStats", "JsonDocumentFile"]
