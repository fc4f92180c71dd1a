"""On-disk catalogue of installed plugins and configured marketplaces."""

from __future__ import annotations

import json
import os
import sys
import tempfile
from contextlib import contextmanager
from dataclasses import replace
from pathlib import Path
from typing import Any, Iterator

import portalocker

from .models import (
    Marketplace,
    Plugin,
    PluginError,
    PluginType,
    validate_name,
)


def _quote(text: str) -> str:
    return json.dumps(text, ensure_ascii=False)


def _user_config_dir() -> Path:
    if sys.platform.startswith("win"):
        appdata = os.environ.get("APPDATA")
        if not appdata:
            raise PluginError("config dir: %AppData% is not defined")
        return Path(appdata)
    if sys.platform == "darwin":
        home = os.environ.get("HOME")
        if not home:
            raise PluginError("config dir: $HOME is not defined")
        return Path(home) / "Library" / "Application Support"
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        if not os.path.isabs(xdg):
            raise PluginError("config dir: path in $XDG_CONFIG_HOME is relative")
        return Path(xdg)
    home = os.environ.get("HOME")
    if not home:
        raise PluginError("config dir: neither $XDG_CONFIG_HOME nor $HOME are defined")
    return Path(home) / ".config"


def default_store() -> Store:
    """A store in $SKY_CONFIG_DIR, or in the user's config directory."""
    override = os.environ.get("SKY_CONFIG_DIR")
    if override:
        return Store(override)
    return Store(_user_config_dir() / "sky")


def _read_json(path: Path) -> Any:
    try:
        data = path.read_bytes()
    except FileNotFoundError:
        return None
    if not data:
        return None
    return json.loads(data)


def _write_json(path: Path, value: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=".tmp-", suffix=".json", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(value, handle, indent=2, ensure_ascii=False)
            handle.write("\n")
        os.chmod(tmp_name, 0o600)
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.remove(tmp_name)
        except FileNotFoundError:
            pass
        raise


class Store:
    """Plugin catalogue and marketplace list kept under one root directory."""

    def __init__(self, root: str | os.PathLike[str]) -> None:
        self.root = Path(root)

    def __repr__(self) -> str:
        return f"Store({str(self.root)!r})"

    def ensure(self) -> None:
        """Create the root and plugins directories if needed."""
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise PluginError(f"config dir: {exc}") from exc
        try:
            self.plugins_dir().mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise PluginError(f"plugins dir: {exc}") from exc

    def plugins_dir(self) -> Path:
        return self.root / "plugins"

    def plugins_file(self) -> Path:
        return self.root / "plugins.json"

    def marketplaces_file(self) -> Path:
        return self.root / "marketplaces.json"

    def lock_file(self) -> Path:
        return self.root / "lock"

    def plugin_path(self, name: str, plugin_type: PluginType | None) -> Path:
        """Where the binary of a plugin of the given type lives."""
        filename = f"{name}.wasm" if plugin_type is PluginType.WASM else name
        return self.plugins_dir() / filename

    @contextmanager
    def _locked(self, shared: bool) -> Iterator[None]:
        self.ensure()
        flags = portalocker.LOCK_SH if shared else portalocker.LOCK_EX
        kind = "read" if shared else "write"
        with open(self.lock_file(), "a") as handle:
            try:
                portalocker.lock(handle, flags)
            except portalocker.LockException as exc:
                raise PluginError(f"acquire {kind} lock: {exc}") from exc
            try:
                yield
            finally:
                portalocker.unlock(handle)

    def _load_plugins_unlocked(self) -> list[Plugin]:
        try:
            raw = _read_json(self.plugins_file())
            if raw is not None and not isinstance(raw, list):
                raise PluginError("expected a list of plugins")
            plugins = [Plugin.from_dict(entry) for entry in raw or []]
        except (OSError, ValueError, PluginError) as exc:
            raise PluginError(f"load plugins: {exc}") from exc
        plugins = [p if p.type else replace(p, type=PluginType.EXECUTABLE) for p in plugins]
        return sorted(plugins, key=lambda p: p.name)

    def _save_plugins(self, plugins: list[Plugin]) -> None:
        self.ensure()
        _write_json(self.plugins_file(), [p.to_dict() for p in plugins])

    def load_plugins(self) -> list[Plugin]:
        """Installed plugins sorted by name."""
        with self._locked(shared=True):
            return self._load_plugins_unlocked()

    def upsert_plugin(self, plugin: Plugin) -> None:
        """Insert a plugin entry or replace the one with the same name."""
        with self._locked(shared=False):
            validate_name(plugin.name)
            plugins = self._load_plugins_unlocked()
            for position, existing in enumerate(plugins):
                if existing.name == plugin.name:
                    plugins[position] = plugin
                    break
            else:
                plugins.append(plugin)
            self._save_plugins(plugins)

    def find_plugin(self, name: str) -> Plugin | None:
        """The installed plugin of that name, or None."""
        validate_name(name)
        for plugin in self.load_plugins():
            if plugin.name == name:
                if plugin.path:
                    return plugin
                return replace(
                    plugin,
                    path=str(self.plugin_path(plugin.name, plugin.effective_type())),
                )
        return None

    def remove_plugin(self, name: str) -> Plugin:
        """Remove a plugin's entry and its binary; return the removed entry."""
        with self._locked(shared=False):
            validate_name(name)
            plugins = self._load_plugins_unlocked()
            removed = next((p for p in plugins if p.name == name), None)
            if removed is None:
                raise PluginError(f"plugin {_quote(name)} not installed")
            self._save_plugins([p for p in plugins if p.name != name])
            try:
                os.remove(self.plugin_path(name, removed.effective_type()))
            except FileNotFoundError:
                pass
            except OSError as exc:
                raise PluginError(f"remove plugin binary: {exc}") from exc
            return removed

    def _load_marketplaces_unlocked(self) -> list[Marketplace]:
        try:
            raw = _read_json(self.marketplaces_file())
            if raw is not None and not isinstance(raw, list):
                raise PluginError("expected a list of marketplaces")
            marketplaces = [Marketplace.from_dict(entry) for entry in raw or []]
        except (OSError, ValueError, PluginError) as exc:
            raise PluginError(f"load marketplaces: {exc}") from exc
        return sorted(marketplaces, key=lambda m: m.name)

    def _save_marketplaces(self, marketplaces: list[Marketplace]) -> None:
        self.ensure()
        _write_json(self.marketplaces_file(), [m.to_dict() for m in marketplaces])

    def load_marketplaces(self) -> list[Marketplace]:
        """Configured marketplaces sorted by name."""
        with self._locked(shared=True):
            return self._load_marketplaces_unlocked()

    def upsert_marketplace(self, marketplace: Marketplace) -> None:
        """Insert a marketplace or replace the one with the same name."""
        with self._locked(shared=False):
            validate_name(marketplace.name)
            if not marketplace.url:
                raise PluginError("marketplace url is required")
            marketplaces = self._load_marketplaces_unlocked()
            for position, existing in enumerate(marketplaces):
                if existing.name == marketplace.name:
                    marketplaces[position] = marketplace
                    break
            else:
                marketplaces.append(marketplace)
            self._save_marketplaces(marketplaces)

    def remove_marketplace(self, name: str) -> Marketplace:
        """Remove a marketplace entry and return it."""
        with self._locked(shared=False):
            validate_name(name)
            marketplaces = self._load_marketplaces_unlocked()
            removed = next((m for m in marketplaces if m.name == name), None)
            if removed is None:
                raise PluginError(f"marketplace {_quote(name)} not configured")
            self._save_marketplaces([m for m in marketplaces if m.name != name])
            return removed