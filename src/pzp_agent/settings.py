"""Service settings merged from TOML profiles and environment variables."""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any, Iterable, Mapping

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from .errors import ConfigurationError

CONFIG_FILENAME = "pzp-agent.toml"
ENV_PREFIX = "PZP_AGENT_"
PROFILE_ENV = f"{ENV_PREFIX}PROFILE"

DEFAULT_API_BASE = "https://agent.phizone.cn"
DEFAULT_API_WEBSOCKET = "wss://agent.phizone.cn"


class AgentSettings(BaseSettings):
    """Resolved settings for one agent process.

    Values passed to the constructor come from the selected TOML profile.
    ``PZP_AGENT_*`` environment variables (and a local ``.env`` file) take
    precedence over them.
    """

    api_secret: str = Field(min_length=1)
    api_base: str = DEFAULT_API_BASE
    api_websocket: str = DEFAULT_API_WEBSOCKET
    namespace: str = ""
    state_dir: Path = Field(default_factory=lambda: Path.home() / ".pzp-agent")
    request_timeout: float = Field(default=30.0, gt=0)
    relay_concurrency: int = Field(default=2, gt=0)
    profile: str = "default"
    sources: tuple[Path, ...] = ()

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    @field_validator("state_dir", mode="after")
    @classmethod
    def _expand_state_dir(cls, value: Path) -> Path:
        return value.expanduser()

    @property
    def rooms_path(self) -> Path:
        return self.state_dir / "rooms.json"

    @property
    def config_path(self) -> Path:
        return self.state_dir / "configs.json"


def load_settings(
    *, profile: str | None = None, workspace: Path | None = None
) -> AgentSettings:
    """Resolve :class:`AgentSettings` for ``profile``.

    TOML documents are read from the user config directory and then from
    ``workspace``; later files deep-merge over earlier ones. The profile is
    chosen by argument, then ``PZP_AGENT_PROFILE``, then ``default_profile``
    and finally ``"default"``.
    """

    merged: dict[str, Any] = {}
    sources: list[Path] = []
    for path in _iter_config_paths(workspace=workspace):
        try:
            with path.open("rb") as handle:
                document = tomllib.load(handle)
        except OSError as exc:
            raise ConfigurationError(
                f"Unable to read configuration file '{path}': {exc}"
            ) from exc
        except tomllib.TOMLDecodeError as exc:
            raise ConfigurationError(f"Invalid TOML in '{path}': {exc}") from exc
        merged = _deep_merge(merged, document)
        sources.append(path)

    selected = str(
        profile or os.environ.get(PROFILE_ENV) or merged.get("default_profile") or "default"
    )
    values = _select_profile(merged, selected)

    try:
        settings = AgentSettings(**values)
    except ValidationError as exc:
        raise ConfigurationError(_describe_validation_error(exc)) from exc
    return settings.model_copy(update={"profile": selected, "sources": tuple(sources)})


def _select_profile(merged: Mapping[str, Any], selected: str) -> dict[str, Any]:
    profiles = merged.get("profiles", {})
    if not isinstance(profiles, Mapping):
        raise ConfigurationError("The 'profiles' table must contain mappings of settings")
    if selected in profiles:
        data = profiles[selected]
        if not isinstance(data, Mapping):
            raise ConfigurationError(
                f"Profile '{selected}' must be a mapping of configuration values"
            )
        return {key: value for key, value in data.items() if key not in {"profile", "sources"}}
    if selected == "default":
        return {}
    available = ", ".join(sorted(str(name) for name in profiles)) or "<none>"
    raise ConfigurationError(
        f"Profile '{selected}' was not found. Available profiles: {available}."
    )


def _describe_validation_error(exc: ValidationError) -> str:
    problems: list[str] = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error["loc"]) or "settings"
        if field == "api_secret":
            problems.append(
                f"An API secret is required; set 'api_secret' in the profile or {ENV_PREFIX}API_SECRET."
            )
        else:
            problems.append(f"{field}: {error['msg']}")
    return "Invalid settings: " + " ".join(problems)


def _iter_config_paths(*, workspace: Path | None) -> Iterable[Path]:
    candidates: list[Path] = []
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        candidates.append(Path(xdg) / "pzp-agent" / CONFIG_FILENAME)
    home = os.environ.get("HOME")
    base = Path(home) if home else Path.home()
    candidates.append(base / ".config" / "pzp-agent" / CONFIG_FILENAME)
    if workspace is not None:
        candidates.append(workspace / CONFIG_FILENAME)

    seen: set[Path] = set()
    for path in candidates:
        if path.exists() and path not in seen:
            seen.add(path)
            yield path


def _deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    result: dict[str, Any] = dict(base)
    for key, value in override.items():
        existing = result.get(key)
        if isinstance(existing, Mapping) and isinstance(value, Mapping):
            result[key] = _deep_merge(existing, value)
        else:
            result[key] = value
    return result


__all__ = ["AgentSettings", "CONFIG_FILENAME", "load_settings"]
