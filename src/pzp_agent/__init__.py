"""PhiZone Player Agent - chat driven render run sessions and event routing."""

from .coordinator import RunCoordinator  # noqa: F401
from .errors import (  # noqa: F401
    AgentError,
    ConfigurationError,
    ConflictError,
    NotFoundError,
    RemoteServiceError,
    TransportError,
    UnknownPropertyError,
    ValidationError,
)
from .events import EventRouter, QueueEventStream, SocketIOEventStream  # noqa: F401
from .models import ConversationRef, FileRef, JobAddress, RoomRecord, RunEvent  # noqa: F401
from .relay import ArtifactRelay, RelayReport  # noqa: F401
from .rooms import RoomStore  # noqa: F401
from .run_config import ConfigStore, RunConfig  # noqa: F401
from .runtime import AgentRuntime, build_runtime  # noqa: F401
from .sessions import PendingSessionRegistry  # noqa: F401
from .settings import AgentSettings, load_settings  # noqa: F401
from .transport import LoggingTransport, Transport  # noqa: F401

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "AgentError",
    "AgentRuntime",
    "AgentSettings",
    "ArtifactRelay",
    "ConfigStore",
    "ConfigurationError",
    "ConflictError",
    "ConversationRef",
    "EventRouter",
    "FileRef",
    "JobAddress",
    "LoggingTransport",
    "NotFoundError",
    "PendingSessionRegistry",
    "QueueEventStream",
    "RelayReport",
    "RemoteServiceError",
    "RoomRecord",
    "RoomStore",
    "RunConfig",
    "RunCoordinator",
    "RunEvent",
    "SocketIOEventStream",
    "Transport",
    "TransportError",
    "UnknownPropertyError",
    "ValidationError",
    "build_runtime",
    "load_settings",
]
