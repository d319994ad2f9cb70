"""Domain types for run sessions, rooms and remote job payloads."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed", "cancelled"})
PROCESSING_STATUS = "initializing"
QUEUED_STATUS = "queued"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError:
            pass
        else:
            if parsed.tzinfo is None:
                return parsed.replace(tzinfo=timezone.utc)
            return parsed.astimezone(timezone.utc)
    return _utcnow()


@dataclass(frozen=True, slots=True)
class FileRef:
    """Handle the transport can later resolve into a downloadable URL."""

    display_name: str
    file_id: str
    chat_id: str
    is_private: bool


@dataclass(frozen=True, slots=True)
class ConversationRef:
    """Conversation a notification should be delivered to."""

    channel_id: str
    is_private: bool = False

    def to_storage(self) -> dict[str, Any]:
        return {"channel_id": self.channel_id, "is_private": self.is_private}

    @classmethod
    def from_storage(cls, payload: Mapping[str, Any]) -> "ConversationRef":
        return cls(
            channel_id=str(payload["channel_id"]),
            is_private=bool(payload.get("is_private", False)),
        )


@dataclass(frozen=True, slots=True)
class JobAddress:
    """Composite routing key ``namespace/user/job_id`` of a remote run."""

    namespace: str
    user: str
    job_id: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.user}/{self.job_id}"

    @classmethod
    def parse(cls, target: str) -> "JobAddress | None":
        """Return the address encoded in ``target`` or ``None`` when malformed."""

        if not isinstance(target, str):
            return None
        parts = target.split("/")
        if len(parts) != 3 or not all(parts):
            return None
        return cls(*parts)

    def to_storage(self) -> list[str]:
        return [self.namespace, self.user, self.job_id]

    @classmethod
    def from_storage(cls, payload: Any) -> "JobAddress":
        namespace, user, job_id = (str(part) for part in payload)
        return cls(namespace, user, job_id)


@dataclass(slots=True)
class PendingSession:
    """Draft of a run request that has not been submitted yet."""

    user: str
    expecting_auxiliary_file: bool = False
    primary_files: list[FileRef] = field(default_factory=list)
    auxiliary_file: FileRef | None = None


@dataclass(frozen=True, slots=True)
class RunPayload:
    """Last status reported for a run."""

    status: str = QUEUED_STATUS
    progress: float = 0.0
    eta: float = 0.0

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_storage(self) -> dict[str, Any]:
        return {"status": self.status, "progress": self.progress, "eta": self.eta}

    @classmethod
    def from_storage(cls, payload: Mapping[str, Any]) -> "RunPayload":
        return cls(
            status=str(payload.get("status", QUEUED_STATUS)),
            progress=float(payload.get("progress") or 0.0),
            eta=float(payload.get("eta") or 0.0),
        )


@dataclass(slots=True)
class RoomRecord:
    """Durable binding between a user, their active run and its conversation."""

    user: str
    address: JobAddress
    conversation: ConversationRef
    payload: RunPayload = field(default_factory=RunPayload)
    announced: bool = False
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        if self.updated_at is None:
            self.updated_at = self.created_at

    def to_storage(self) -> dict[str, Any]:
        return {
            "user": self.user,
            "address": self.address.to_storage(),
            "conversation": self.conversation.to_storage(),
            "payload": self.payload.to_storage(),
            "announced": self.announced,
            "created_at": self.created_at.astimezone(timezone.utc).isoformat(),
            "updated_at": (self.updated_at or self.created_at)
            .astimezone(timezone.utc)
            .isoformat(),
        }

    @classmethod
    def from_storage(cls, payload: Mapping[str, Any]) -> "RoomRecord":
        created_at = _parse_timestamp(payload.get("created_at"))
        updated_raw = payload.get("updated_at")
        return cls(
            user=str(payload["user"]),
            address=JobAddress.from_storage(payload["address"]),
            conversation=ConversationRef.from_storage(payload["conversation"]),
            payload=RunPayload.from_storage(payload.get("payload") or {}),
            announced=bool(payload.get("announced", False)),
            created_at=created_at,
            updated_at=_parse_timestamp(updated_raw) if updated_raw else created_at,
        )


@dataclass(frozen=True, slots=True)
class RunEvent:
    """Status update received from the shared event stream."""

    target: str
    status: str
    progress: float = 0.0
    eta: float = 0.0

    @property
    def payload(self) -> RunPayload:
        return RunPayload(status=self.status, progress=self.progress, eta=self.eta)


# ---------------------------------------------------------------------------
# Remote job service payloads
# ---------------------------------------------------------------------------


class _RemoteModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore"
    )


class OutputFile(_RemoteModel):
    """Artifact produced by a finished run."""

    name: str
    url: str


class RunResult(_RemoteModel):
    """Run as reported by the job service."""

    id: str
    status: str = "unknown"
    output_files: list[OutputFile] = Field(default_factory=list)
    date_created: str | None = None
    date_completed: str | None = None

    @property
    def is_active(self) -> bool:
        return not self.date_completed


class RunPage(_RemoteModel):
    """One page of a user's run history."""

    runs: list[RunResult] = Field(default_factory=list)
    total: int = 0


class RunSubmission(_RemoteModel):
    """Acknowledgement returned when a run is accepted."""

    object_id: str | None = None
    run_id: str
    prefix: str
    queue_size: int = 0
    queue_time: float = 0.0

    def address_for(self, user: str) -> JobAddress:
        return JobAddress(self.prefix, user, self.run_id)


class RunProgress(_RemoteModel):
    """Live progress of a running job."""

    status: str
    progress: float = 0.0
    eta: float = 0.0


__all__ = [
    "ConversationRef",
    "FileRef",
    "JobAddress",
    "OutputFile",
    "PROCESSING_STATUS",
    "PendingSession",
    "QUEUED_STATUS",
    "RoomRecord",
    "RunEvent",
    "RunPage",
    "RunPayload",
    "RunProgress",
    "RunResult",
    "RunSubmission",
    "TERMINAL_STATUSES",
]
