"""Error taxonomy shared by the run-session engine."""

from __future__ import annotations

from enum import IntEnum
from typing import Any


class ExitCode(IntEnum):
    """Exit codes used by the ``pzp-agent`` CLI."""

    SUCCESS = 0
    VALIDATION = 1
    STATE = 2
    CONFIG = 3
    EXTERNAL = 4
    RUNTIME = 5


class AgentError(Exception):
    """Base for predictable errors that are surfaced to chat users."""

    exit_code: ExitCode = ExitCode.RUNTIME
    label = "Error"
    code = "agent.error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message

    @property
    def heading(self) -> str:
        """Return a short label describing the error class."""

        return type(self).label


class ConflictError(AgentError):
    """Raised when a session or room already exists where exclusivity is required."""

    exit_code = ExitCode.STATE
    label = "Conflict"
    code = "agent.conflict"


class NotFoundError(AgentError):
    """Raised when operating on an absent session, room or file."""

    exit_code = ExitCode.STATE
    label = "Not found"
    code = "agent.not_found"


class ValidationError(AgentError):
    """Raised when a user supplied value cannot be accepted."""

    exit_code = ExitCode.VALIDATION
    label = "Validation error"
    code = "agent.validation"

    def __init__(self, message: str, *, value: Any = None) -> None:
        super().__init__(message)
        self.value = value


class UnknownPropertyError(AgentError):
    """Raised when a configuration property is not in the allow-list."""

    exit_code = ExitCode.VALIDATION
    label = "Unknown property"
    code = "agent.unknown_property"

    def __init__(self, key: str) -> None:
        super().__init__(f"Unknown configuration property: {key}")
        self.key = key


class RemoteServiceError(AgentError):
    """Raised when the remote job service answers with a non-success status."""

    exit_code = ExitCode.EXTERNAL
    label = "Remote service error"
    code = "agent.remote"

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TransportError(AgentError):
    """Raised when a transport or network call fails or times out."""

    exit_code = ExitCode.EXTERNAL
    label = "Transport error"
    code = "agent.transport"
    retryable = True


class ConfigurationError(AgentError):
    """Raised when service settings are missing or invalid."""

    exit_code = ExitCode.CONFIG
    label = "Configuration error"
    code = "agent.config"


__all__ = [
    "AgentError",
    "ConfigurationError",
    "ConflictError",
    "ExitCode",
    "NotFoundError",
    "RemoteServiceError",
    "TransportError",
    "UnknownPropertyError",
    "ValidationError",
]
