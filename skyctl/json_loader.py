"""Builtin definitions loaded from JSON data files."""

from __future__ import annotations

import copy
import json
import os
import posixpath
import threading
from pathlib import Path
from typing import Mapping, Optional, Protocol, Union

from .builtins import Builtins, FileKind, Provider

_BASENAMES: dict[str, dict[FileKind, str]] = {
    "bazel": {
        FileKind.BUILD: "bazel-build",
        FileKind.BZL: "bazel-bzl",
        FileKind.WORKSPACE: "bazel-workspace",
        FileKind.MODULE: "bazel-module",
        FileKind.BZLMOD: "bazel-bzlmod",
    },
    "buck2": {
        FileKind.BUCK: "buck2-buck",
        FileKind.BZL_BUCK: "buck2-bzl",
        FileKind.BUCKCONFIG: "buck2-buckconfig",
    },
    "starlark": {
        FileKind.STARLARK: "starlark-core",
        FileKind.SKYI: "starlark-skyi",
    },
}


def _quote(text: str) -> str:
    return json.dumps(text, ensure_ascii=False)


class _FileReader(Protocol):
    def read_file(self, name: str) -> bytes: ...


class DiskFS:
    """Reads data files from a directory on disk."""

    def __init__(self, base_dir: Union[str, os.PathLike]) -> None:
        self.base_dir = Path(base_dir)

    def read_file(self, name: str) -> bytes:
        full_path = self.base_dir / name
        try:
            return full_path.read_bytes()
        except OSError as exc:
            raise OSError(f"failed to read {full_path}: {exc}") from exc


class MemoryFS:
    """Serves data files from an in-memory mapping of names to contents."""

    def __init__(self, files: Optional[Mapping[str, Union[bytes, str]]] = None) -> None:
        self.files: dict[str, Union[bytes, str]] = dict(files or {})

    def read_file(self, name: str) -> bytes:
        try:
            data = self.files[name]
        except KeyError:
            raise FileNotFoundError(f"file not found: {name}") from None
        return data.encode("utf-8") if isinstance(data, str) else data


class JSONProvider(Provider):
    """Loads builtin definitions from JSON files and caches what it parsed."""

    def __init__(self, data_fs: Optional[_FileReader] = None) -> None:
        self._data_fs = data_fs if data_fs is not None else DiskFS(Path(__file__).parent)
        self._cache: dict[tuple[str, FileKind], Builtins] = {}
        self._lock = threading.Lock()

    def builtins(self, dialect: str, kind: FileKind) -> Builtins:
        """Builtins for a dialect and kind; LookupError or ValueError when unavailable."""
        key = (dialect, kind)
        with self._lock:
            cached = self._cache.get(key)
        if cached is not None:
            return copy.deepcopy(cached)

        filename = self.json_filename(dialect, kind)
        if filename is None:
            raise LookupError(
                f"unsupported dialect {_quote(dialect)} or file kind {_quote(str(kind))}"
            )

        try:
            data = self._data_fs.read_file(filename)
        except OSError as exc:
            raise LookupError(
                f"failed to load JSON data for {dialect}/{kind}: "
                f"JSON data file not found: {filename}"
            ) from exc

        try:
            result = Builtins.from_dict(json.loads(data))
        except ValueError as exc:
            raise ValueError(f"failed to parse JSON file {filename}: {exc}") from exc

        with self._lock:
            self._cache[key] = result
        return copy.deepcopy(result)

    def supported_dialects(self) -> list[str]:
        return ["bazel", "buck2", "starlark"]

    def json_filename(self, dialect: str, kind: FileKind) -> Optional[str]:
        """The data file for a dialect and kind, or None if the pair is unsupported."""
        basename = _BASENAMES.get(dialect.lower(), {}).get(kind)
        if basename is None:
            return None
        return posixpath.join("data", "json", f"{basename}.json")