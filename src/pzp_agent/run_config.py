"""Per-user render configuration documents and their typed property table.

Every user owns one :class:`RunConfig`. Properties are addressed by a fixed
set of dotted paths (:class:`ConfigProperty`); each path carries a declared
:class:`PropertyKind` that decides how raw chat input is coerced. Mutations
are pure: :meth:`ConfigStore.set_path` returns a new document and leaves
persistence to an explicit :meth:`ConfigStore.save`.
"""

from __future__ import annotations

import math
import os
import re
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Final, Mapping

import structlog
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from .errors import UnknownPropertyError, ValidationError
from .storage import JsonDocumentFile

log = structlog.get_logger(__name__)


class _Section(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MediaOptions(_Section):
    override_resolution: list[int] = Field(default_factory=lambda: [1620, 1080])
    frame_rate: int | float = 60
    video_codec: str = "libx264"
    video_bitrate: int | float = 6000
    audio_bitrate: int | float = 320
    results_loops_to_render: int | float = 1


class Preferences(_Section):
    background_blur: int | float = 1
    background_luminance: int | float = 0.5
    chart_flipping: int = 0
    chart_offset: int | float = 0
    fc_ap_indicator: bool = True
    hit_sound_volume: int | float = 0.75
    line_thickness: int | float = 1
    music_volume: int | float = 1
    note_size: int | float = 1
    simultaneous_note_hint: bool = True


class Toggles(_Section):
    autoplay: bool = True


class RunConfig(_Section):
    """Configuration document sent along with every run request."""

    user: str
    media_options: MediaOptions = Field(default_factory=MediaOptions)
    preferences: Preferences = Field(default_factory=Preferences)
    toggles: Toggles = Field(default_factory=Toggles)

    def to_request_fields(self) -> dict[str, Any]:
        """Return the camelCase fields expected by the job service."""

        return self.model_dump(by_alias=True)


class PropertyKind(str, Enum):
    BOOLEAN = "boolean"
    NUMBER = "number"
    RESOLUTION = "resolution"
    FLIPPING = "flipping"
    TEXT = "text"


class ConfigProperty(str, Enum):
    """Allow-list of addressable configuration paths."""

    OVERRIDE_RESOLUTION = "mediaOptions.overrideResolution"
    FRAME_RATE = "mediaOptions.frameRate"
    VIDEO_CODEC = "mediaOptions.videoCodec"
    VIDEO_BITRATE = "mediaOptions.videoBitrate"
    AUDIO_BITRATE = "mediaOptions.audioBitrate"
    RESULTS_LOOPS_TO_RENDER = "mediaOptions.resultsLoopsToRender"
    BACKGROUND_BLUR = "preferences.backgroundBlur"
    BACKGROUND_LUMINANCE = "preferences.backgroundLuminance"
    CHART_FLIPPING = "preferences.chartFlipping"
    CHART_OFFSET = "preferences.chartOffset"
    FC_AP_INDICATOR = "preferences.fcApIndicator"
    HIT_SOUND_VOLUME = "preferences.hitSoundVolume"
    LINE_THICKNESS = "preferences.lineThickness"
    MUSIC_VOLUME = "preferences.musicVolume"
    NOTE_SIZE = "preferences.noteSize"
    SIMULTANEOUS_NOTE_HINT = "preferences.simultaneousNoteHint"
    AUTOPLAY = "toggles.autoplay"


@dataclass(frozen=True, slots=True)
class PropertySpec:
    """Typed accessor description for one :class:`ConfigProperty`."""

    kind: PropertyKind
    section: str
    field: str
    label: str
    aliases: tuple[str, ...]
    unit: str = ""


def _spec(
    kind: PropertyKind,
    section: str,
    field: str,
    label: str,
    *aliases: str,
    unit: str = "",
) -> PropertySpec:
    return PropertySpec(kind, section, field, label, aliases, unit)


_N = PropertyKind.NUMBER
_B = PropertyKind.BOOLEAN

PROPERTY_SPECS: Final[Mapping[ConfigProperty, PropertySpec]] = {
    ConfigProperty.OVERRIDE_RESOLUTION: _spec(
        PropertyKind.RESOLUTION, "media_options", "override_resolution",
        "Resolution", "Resolution", "分辨率",
    ),
    ConfigProperty.FRAME_RATE: _spec(
        _N, "media_options", "frame_rate", "Frame Rate", "FrameRate", "帧率", unit="fps"
    ),
    ConfigProperty.VIDEO_CODEC: _spec(
        PropertyKind.TEXT, "media_options", "video_codec",
        "Video Codec", "VideoCodec", "视频编码器",
    ),
    ConfigProperty.VIDEO_BITRATE: _spec(
        _N, "media_options", "video_bitrate",
        "Video Bitrate", "VideoBitrate", "视频码率", unit="kbps",
    ),
    ConfigProperty.AUDIO_BITRATE: _spec(
        _N, "media_options", "audio_bitrate",
        "Audio Bitrate", "AudioBitrate", "音频码率", unit="kbps",
    ),
    ConfigProperty.RESULTS_LOOPS_TO_RENDER: _spec(
        _N, "media_options", "results_loops_to_render",
        "Results Loops to Render", "ResultsLoopsToRender", "结算循环次数",
    ),
    ConfigProperty.BACKGROUND_BLUR: _spec(
        _N, "preferences", "background_blur",
        "Background Blur", "BackgroundBlur", "背景模糊",
    ),
    ConfigProperty.BACKGROUND_LUMINANCE: _spec(
        _N, "preferences", "background_luminance",
        "Background Luminance", "BackgroundLuminance", "背景亮度",
    ),
    ConfigProperty.CHART_FLIPPING: _spec(
        PropertyKind.FLIPPING, "preferences", "chart_flipping",
        "Chart Flipping", "ChartFlipping", "谱面翻转",
    ),
    ConfigProperty.CHART_OFFSET: _spec(
        _N, "preferences", "chart_offset", "Chart Offset", "ChartOffset", "谱面偏移"
    ),
    ConfigProperty.FC_AP_INDICATOR: _spec(
        _B, "preferences", "fc_ap_indicator",
        "FC/AP Indicator", "FC/APIndicator", "FC/AP指示器",
    ),
    ConfigProperty.HIT_SOUND_VOLUME: _spec(
        _N, "preferences", "hit_sound_volume",
        "Hit Sound Volume", "HitSoundVolume", "打击效果音量",
    ),
    ConfigProperty.LINE_THICKNESS: _spec(
        _N, "preferences", "line_thickness",
        "Line Thickness", "LineThickness", "线条粗细",
    ),
    ConfigProperty.MUSIC_VOLUME: _spec(
        _N, "preferences", "music_volume", "Music Volume", "MusicVolume", "音乐音量"
    ),
    ConfigProperty.NOTE_SIZE: _spec(
        _N, "preferences", "note_size", "Note Size", "NoteSize", "音符大小"
    ),
    ConfigProperty.SIMULTANEOUS_NOTE_HINT: _spec(
        _B, "preferences", "simultaneous_note_hint",
        "Simultaneous Note Hint", "SimultaneousNoteHint", "多押提示",
    ),
    ConfigProperty.AUTOPLAY: _spec(
        _B, "toggles", "autoplay", "Autoplay", "Autoplay", "自动游玩"
    ),
}

BOOLEAN_TOKENS: Final[Mapping[str, bool]] = {
    "on": True,
    "off": False,
    "true": True,
    "false": False,
    "1": True,
    "0": False,
    "开启": True,
    "关闭": False,
}

FLIPPING_TOKENS: Final[Mapping[str, int]] = {
    "off": 0,
    "关闭": 0,
    "horizontal": 1,
    "水平": 1,
    "vertical": 2,
    "竖直": 2,
    "both": 3,
    "水平与竖直": 3,
}

FLIPPING_NAMES: Final[Mapping[int, str]] = {
    0: "off",
    1: "horizontal",
    2: "vertical",
    3: "both",
}

RESOLUTION_PATTERN: Final = re.compile(r"^(\d+)x(\d+)$")

_LOOKUP: Final[Mapping[str, ConfigProperty]] = {
    **{
        name.lower(): prop
        for prop, spec in PROPERTY_SPECS.items()
        for name in (spec.label, *spec.aliases)
    },
    **{prop.value.lower(): prop for prop in ConfigProperty},
}


def resolve_property(name: str) -> ConfigProperty:
    """Map a dotted path or localised display name onto the allow-list."""

    prop = _LOOKUP.get(name.strip().lower())
    if prop is None:
        raise UnknownPropertyError(name)
    return prop


def _as_property(path: ConfigProperty | str) -> ConfigProperty:
    if isinstance(path, ConfigProperty):
        return path
    return resolve_property(path)


def _coerce_number(raw: str) -> int | float:
    try:
        value = float(raw)
    except ValueError:
        raise ValidationError(f"Number format error: {raw!r}.", value=raw) from None
    if not math.isfinite(value):
        raise ValidationError(f"Number format error: {raw!r}.", value=raw)
    return int(value) if value.is_integer() else value


def _coerce_resolution(raw: str) -> list[int]:
    match = RESOLUTION_PATTERN.match(raw)
    if match is None or not int(match.group(1)) or not int(match.group(2)):
        raise ValidationError(
            f"Resolution format error: {raw!r}. Please use width x height format, e.g.: 1620x1080.",
            value=raw,
        )
    return [int(match.group(1)), int(match.group(2))]


def _coerce(spec: PropertySpec, current: Any, raw: str | None) -> Any:
    if raw is None:
        if spec.kind is PropertyKind.BOOLEAN:
            return not current
        raise ValidationError(f"A value is required for {spec.label}.", value=raw)

    value = raw.strip()
    if spec.kind is PropertyKind.BOOLEAN:
        token = value.lower()
        if token not in BOOLEAN_TOKENS:
            raise ValidationError(
                f"Boolean format error: {raw!r}. Available options: on, off.", value=raw
            )
        return BOOLEAN_TOKENS[token]
    if spec.kind is PropertyKind.FLIPPING:
        token = value.lower()
        if token not in FLIPPING_TOKENS:
            raise ValidationError(
                f"Chart flipping option error: {raw!r}. Available options: off, horizontal, vertical, both.",
                value=raw,
            )
        return FLIPPING_TOKENS[token]
    if spec.kind is PropertyKind.RESOLUTION:
        return _coerce_resolution(value)
    if spec.kind is PropertyKind.NUMBER:
        return _coerce_number(value)
    if not value:
        raise ValidationError(f"{spec.label} cannot be empty.", value=raw)
    return value


def get_path(doc: RunConfig, path: ConfigProperty | str) -> Any:
    """Return the current value stored under ``path``."""

    spec = PROPERTY_SPECS[_as_property(path)]
    return getattr(getattr(doc, spec.section), spec.field)


def set_path(doc: RunConfig, path: ConfigProperty | str, raw: str | None) -> RunConfig:
    """Return a copy of ``doc`` with ``path`` set from the raw input ``raw``.

    ``raw=None`` flips boolean properties. Invalid input raises
    :class:`~pzp_agent.errors.ValidationError` and ``doc`` is never touched.
    """

    spec = PROPERTY_SPECS[_as_property(path)]
    section = getattr(doc, spec.section)
    value = _coerce(spec, getattr(section, spec.field), raw)
    updated_section = section.model_copy(update={spec.field: value})
    return doc.model_copy(update={spec.section: updated_section})


def format_value(path: ConfigProperty | str, value: Any) -> str:
    """Render a property value the way it is shown to users."""

    spec = PROPERTY_SPECS[_as_property(path)]
    if spec.kind is PropertyKind.BOOLEAN:
        return "on" if value else "off"
    if spec.kind is PropertyKind.RESOLUTION:
        return "x".join(str(part) for part in value)
    if spec.kind is PropertyKind.FLIPPING:
        return FLIPPING_NAMES.get(value, "unknown")
    return f"{value} {spec.unit}" if spec.unit else str(value)


def describe(doc: RunConfig, *, full: bool = True) -> str:
    """Return a multi-line summary of ``doc`` grouped by section."""

    headings = {
        "media_options": "Media Options",
        "preferences": "Play Preferences",
        "toggles": "Toggles",
    }
    lines: list[str] = []
    if full:
        lines.extend(["PhiZone Player Agent Configuration", "", f"User: {doc.user}"])
    for section, heading in headings.items():
        lines.extend(["", f"{heading}:"])
        for prop, spec in PROPERTY_SPECS.items():
            if spec.section != section:
                continue
            lines.append(f"· {spec.label}: {format_value(prop, get_path(doc, prop))}")
    return "\n".join(lines).strip("\n")


class ConfigStore:
    """Load, create and persist the configuration document of each user."""

    def __init__(self, path: os.PathLike[str] | str) -> None:
        self._file = JsonDocumentFile(path)
        self._lock = threading.Lock()
        self._documents: dict[str, Any] | None = None

    def _documents_locked(self) -> dict[str, Any]:
        if self._documents is None:
            self._documents = self._file.load()
        return self._documents

    def get(self, user: str) -> RunConfig:
        """Return the user's document, creating it with defaults on first access."""

        with self._lock:
            documents = self._documents_locked()
            stored = documents.get(user)
            if isinstance(stored, dict):
                try:
                    return RunConfig.model_validate({**stored, "user": user})
                except PydanticValidationError as exc:
                    log.warning("config.store.document_invalid", user=user, error=str(exc))
            doc = RunConfig(user=user)
            documents[user] = doc.model_dump(by_alias=True)
            self._file.save(documents)
        log.info("config.store.initialised", user=user)
        return doc

    def save(self, doc: RunConfig) -> None:
        """Write ``doc`` back as the user's stored document."""

        with self._lock:
            documents = self._documents_locked()
            documents[doc.user] = doc.model_dump(by_alias=True)
            self._file.save(documents)
        log.info("config.store.saved", user=doc.user)

    def users(self) -> list[str]:
        with self._lock:
            return sorted(self._documents_locked())

    resolve_property = staticmethod(resolve_property)
    get_path = staticmethod(get_path)
    set_path = staticmethod(set_path)
    describe = staticmethod(describe)
    format_value = staticmethod(format_value)


__all__ = [
    "BOOLEAN_TOKENS",
    "ConfigProperty",
    "ConfigStore",
    "FLIPPING_TOKENS",
    "MediaOptions",
    "PROPERTY_SPECS",
    "Preferences",
    "PropertyKind",
    "PropertySpec",
    "RunConfig",
    "Toggles",
    "describe",
    "format_value",
    "get_path",
    "resolve_property",
    "set_path",
]
