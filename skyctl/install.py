"""Installing plugin binaries from local paths, URLs and marketplaces."""

from __future__ import annotations

import hashlib
import os
import tempfile
import urllib.error
import urllib.request
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO

from .marketplace import resolve_marketplace_plugin
from .models import Plugin, PluginError, PluginType, validate_name
from .store import Store

_DOWNLOAD_TIMEOUT = 20.0
_CHUNK = 64 * 1024


def _copy_stream(source: BinaryIO, target: BinaryIO, hasher=None) -> None:
    for chunk in iter(lambda: source.read(_CHUNK), b""):
        target.write(chunk)
        if hasher is not None:
            hasher.update(chunk)


def _copy_file(src_path: str, dest_path: Path, mode: int) -> None:
    with open(src_path, "rb") as source:
        dest_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(dest_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
        with os.fdopen(fd, "wb") as target:
            _copy_stream(source, target)
            target.flush()
            os.fsync(target.fileno())


def install_from_path(
    store: Store,
    name: str,
    path: str,
    version: str = "",
    plugin_type: PluginType | None = None,
) -> Plugin:
    """Copy a local plugin binary into the store and record it."""
    validate_name(name)
    plugin_type = plugin_type or PluginType.EXECUTABLE
    if not path:
        raise PluginError("install path is required")
    try:
        is_dir = os.stat(path).st_mode and os.path.isdir(path)
    except OSError as exc:
        raise PluginError(f"stat plugin: {exc}") from exc
    if is_dir:
        raise PluginError(f'plugin path "{path}" is a directory')

    store.ensure()
    dest = store.plugin_path(name, plugin_type)
    try:
        _copy_file(path, dest, 0o755)
    except OSError as exc:
        raise PluginError(f"install plugin: {exc}") from exc

    plugin = Plugin(
        name=name,
        version=version,
        source=path,
        installed_at=datetime.now(timezone.utc),
        path=str(dest),
        type=plugin_type,
    )
    store.upsert_plugin(plugin)
    return plugin


def _download(url: str, target: BinaryIO, hasher) -> None:
    request = urllib.request.Request(url, method="GET")
    try:
        with urllib.request.urlopen(request, timeout=_DOWNLOAD_TIMEOUT) as response:
            if response.status != 200:
                raise PluginError(
                    f"download plugin: status {response.status} {response.reason}"
                )
            _copy_stream(response, target, hasher)
    except urllib.error.HTTPError as exc:
        raise PluginError(f"download plugin: status {exc.code} {exc.reason}") from exc
    except OSError as exc:
        raise PluginError(f"download plugin: {exc}") from exc


def _copy_local(url: str, target: BinaryIO, hasher) -> None:
    try:
        source = open(url.removeprefix("file://"), "rb")
    except OSError as exc:
        raise PluginError(f"open plugin: {exc}") from exc
    with source:
        try:
            _copy_stream(source, target, hasher)
        except OSError as exc:
            raise PluginError(f"copy plugin: {exc}") from exc


def install_from_url(
    store: Store,
    name: str,
    url: str,
    expected_sha: str = "",
    version: str = "",
    description: str = "",
    plugin_type: PluginType | None = None,
) -> Plugin:
    """Download or copy a plugin binary, verify its checksum and record it."""
    validate_name(name)
    plugin_type = plugin_type or PluginType.EXECUTABLE
    if not url:
        raise PluginError("install url is required")
    store.ensure()

    try:
        fd, tmp_name = tempfile.mkstemp(prefix=f"{name}-tmp-", dir=store.plugins_dir())
    except OSError as exc:
        raise PluginError(f"create temp: {exc}") from exc

    dest = store.plugin_path(name, plugin_type)
    try:
        hasher = hashlib.sha256()
        tmp = os.fdopen(fd, "wb")
        try:
            if url.startswith(("http://", "https://")):
                _download(url, tmp, hasher)
            else:
                _copy_local(url, tmp, hasher)
        finally:
            try:
                tmp.close()
            except OSError as exc:
                raise PluginError(f"finalize plugin: {exc}") from exc
        try:
            os.chmod(tmp_name, 0o755)
        except OSError as exc:
            raise PluginError(f"chmod plugin: {exc}") from exc

        if expected_sha:
            actual = hasher.hexdigest()
            if actual.lower() != expected_sha.lower():
                raise PluginError(
                    f"checksum mismatch: expected {expected_sha} got {actual}"
                )
        try:
            os.replace(tmp_name, dest)
        except OSError as exc:
            raise PluginError(f"install plugin: {exc}") from exc
    except BaseException:
        try:
            os.remove(tmp_name)
        except OSError:
            pass
        raise

    plugin = Plugin(
        name=name,
        version=version,
        description=description,
        source=url,
        installed_at=datetime.now(timezone.utc),
        path=str(dest),
        type=plugin_type,
    )
    store.upsert_plugin(plugin)
    return plugin


def install_from_marketplace(
    store: Store, name: str, marketplace_name: str = ""
) -> Plugin:
    """Install a plugin listed in one of the configured marketplaces."""
    marketplace, entry = resolve_marketplace_plugin(store, name, marketplace_name)
    plugin = install_from_url(
        store,
        name,
        entry.url,
        entry.sha256,
        entry.version,
        entry.description,
        entry.type or PluginType.EXECUTABLE,
    )
    plugin.source = f"{marketplace.name} ({entry.url})"
    store.upsert_plugin(plugin)
    return plugin