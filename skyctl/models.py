"""Plugin catalogue records, plugin names and the plugin protocol constants."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping

ENV_PLUGIN = "SKY_PLUGIN"
ENV_PLUGIN_MODE = "SKY_PLUGIN_MODE"
ENV_PLUGIN_NAME = "SKY_PLUGIN_NAME"

MODE_EXEC = "exec"
MODE_METADATA = "metadata"

METADATA_API_VERSION = 1

_NAME_RE = re.compile(r"[a-z][a-z0-9-]{0,62}")
_FRACTION_RE = re.compile(r"(\.\d{6})\d+")


class PluginError(Exception):
    """Raised when a plugin, marketplace or catalogue operation fails."""


class PluginType(str, Enum):
    """How a plugin is executed."""

    EXECUTABLE = "exe"
    WASM = "wasm"

    def __str__(self) -> str:
        return self.value


def _quote(text: str) -> str:
    return json.dumps(text, ensure_ascii=False)


def validate_name(name: str) -> None:
    """Raise PluginError unless the name is safe to use as a file name."""
    if not isinstance(name, str) or _NAME_RE.fullmatch(name) is None:
        raise PluginError(f"invalid plugin name {_quote(str(name))}")


def parse_plugin_type(text: str) -> PluginType:
    """Normalise user input into a PluginType; empty input means an executable."""
    normalized = text.strip().lower()
    if normalized in ("", "exe", "bin", "binary"):
        return PluginType.EXECUTABLE
    if normalized == "wasm":
        return PluginType.WASM
    raise PluginError(f"unknown plugin type {_quote(text)}")


def detect_plugin_type(source: str) -> PluginType:
    """Infer the plugin type from a path or URL."""
    if source.strip().lower().endswith(".wasm"):
        return PluginType.WASM
    return PluginType.EXECUTABLE


def _type_from_json(value: Any) -> PluginType | None:
    if not value:
        return None
    try:
        return PluginType(value)
    except ValueError:
        raise PluginError(f"unknown plugin type {_quote(str(value))}") from None


def _format_time(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_time(value: Any) -> datetime | None:
    if not value:
        return None
    text = str(value)
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    text = _FRACTION_RE.sub(r"\1", text)
    try:
        moment = datetime.fromisoformat(text)
    except ValueError:
        raise PluginError(f"invalid timestamp {_quote(str(value))}") from None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    if moment.year == 1:
        return None
    return moment


def _require_mapping(data: Any, what: str) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        raise PluginError(f"invalid {what} entry: expected an object")
    return data


def _put_if(result: dict[str, Any], key: str, value: Any) -> None:
    if value:
        result[key] = value


@dataclass
class CommandMetadata:
    """A single command offered by a plugin."""

    name: str
    summary: str = ""

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"name": self.name}
        _put_if(result, "summary", self.summary)
        return result

    @classmethod
    def from_dict(cls, data: Any) -> CommandMetadata:
        data = _require_mapping(data, "command")
        return cls(name=data.get("name") or "", summary=data.get("summary") or "")


@dataclass
class Metadata:
    """A plugin's self-description, reported in metadata mode."""

    api_version: int = 0
    name: str = ""
    version: str = ""
    summary: str = ""
    commands: list[CommandMetadata] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"api_version": self.api_version, "name": self.name}
        _put_if(result, "version", self.version)
        _put_if(result, "summary", self.summary)
        if self.commands:
            result["commands"] = [command.to_dict() for command in self.commands]
        return result

    @classmethod
    def from_dict(cls, data: Any) -> Metadata:
        data = _require_mapping(data, "metadata")
        api_version = data.get("api_version") or 0
        if isinstance(api_version, bool) or not isinstance(api_version, int):
            raise PluginError(f"invalid api_version {api_version!r}")
        return cls(
            api_version=api_version,
            name=data.get("name") or "",
            version=data.get("version") or "",
            summary=data.get("summary") or "",
            commands=[CommandMetadata.from_dict(c) for c in data.get("commands") or []],
        )


@dataclass
class Plugin:
    """An installed plugin."""

    name: str
    version: str = ""
    description: str = ""
    source: str = ""
    installed_at: datetime | None = None
    path: str = ""
    type: PluginType | None = None

    def effective_type(self) -> PluginType:
        """The plugin's type, defaulting to an executable when unset."""
        return self.type or PluginType.EXECUTABLE

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"name": self.name}
        _put_if(result, "version", self.version)
        _put_if(result, "description", self.description)
        _put_if(result, "source", self.source)
        if self.installed_at is not None:
            result["installed_at"] = _format_time(self.installed_at)
        _put_if(result, "path", self.path)
        if self.type is not None:
            result["type"] = self.type.value
        return result

    @classmethod
    def from_dict(cls, data: Any) -> Plugin:
        data = _require_mapping(data, "plugin")
        return cls(
            name=data.get("name") or "",
            version=data.get("version") or "",
            description=data.get("description") or "",
            source=data.get("source") or "",
            installed_at=_parse_time(data.get("installed_at")),
            path=data.get("path") or "",
            type=_type_from_json(data.get("type")),
        )


@dataclass
class Marketplace:
    """A configured plugin marketplace source."""

    name: str
    url: str
    added_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"name": self.name, "url": self.url}
        if self.added_at is not None:
            result["added_at"] = _format_time(self.added_at)
        return result

    @classmethod
    def from_dict(cls, data: Any) -> Marketplace:
        data = _require_mapping(data, "marketplace")
        return cls(
            name=data.get("name") or "",
            url=data.get("url") or "",
            added_at=_parse_time(data.get("added_at")),
        )


@dataclass
class MarketplacePlugin:
    """A plugin entry in a marketplace index."""

    name: str
    url: str = ""
    version: str = ""
    description: str = ""
    sha256: str = ""
    type: PluginType | None = None

    @classmethod
    def from_dict(cls, data: Any) -> MarketplacePlugin:
        data = _require_mapping(data, "marketplace plugin")
        return cls(
            name=data.get("name") or "",
            url=data.get("url") or "",
            version=data.get("version") or "",
            description=data.get("description") or "",
            sha256=data.get("sha256") or "",
            type=_type_from_json(data.get("type")),
        )


@dataclass
class MarketplaceIndex:
    """The index document published by a marketplace."""

    name: str = ""
    updated_at: datetime | None = None
    plugins: list[MarketplacePlugin] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any) -> MarketplaceIndex:
        data = _require_mapping(data, "marketplace index")
        return cls(
            name=data.get("name") or "",
            updated_at=_parse_time(data.get("updated_at")),
            plugins=[MarketplacePlugin.from_dict(p) for p in data.get("plugins") or []],
        )


@dataclass
class SearchResult:
    """A plugin matched in a marketplace."""

    marketplace: Marketplace
    plugin: MarketplacePlugin