"""Running installed plugins and querying their metadata."""

from __future__ import annotations

import io
import json
import os
import subprocess
from typing import IO, Any, Sequence

from .models import (
    ENV_PLUGIN,
    ENV_PLUGIN_MODE,
    ENV_PLUGIN_NAME,
    METADATA_API_VERSION,
    MODE_EXEC,
    MODE_METADATA,
    Metadata,
    Plugin,
    PluginError,
    PluginType,
)


def _quote(text: str) -> str:
    return json.dumps(text, ensure_ascii=False)


def _fileno(stream: Any) -> int | None:
    try:
        return stream.fileno()
    except (AttributeError, OSError, ValueError):
        return None


def _stdin_source(stream: Any) -> tuple[Any, bytes | None]:
    if stream is None:
        return subprocess.DEVNULL, None
    fd = _fileno(stream)
    if fd is not None:
        return fd, None
    data = stream.read()
    if isinstance(data, str):
        data = data.encode("utf-8")
    return subprocess.PIPE, data


def _sink(stream: Any) -> Any:
    if stream is None:
        return subprocess.DEVNULL
    fd = _fileno(stream)
    if fd is None:
        return subprocess.PIPE
    stream.flush()
    return fd


def _emit(stream: Any, data: bytes | None) -> None:
    if stream is None or not data:
        return
    if isinstance(stream, io.TextIOBase):
        stream.write(data.decode("utf-8", errors="replace"))
    else:
        stream.write(data)


def _run_exec(
    plugin: Plugin,
    mode: str,
    args: Sequence[str],
    stdin: IO | None,
    stdout: IO | None,
    stderr: IO | None,
) -> int:
    env = {
        **os.environ,
        ENV_PLUGIN: "1",
        ENV_PLUGIN_MODE: mode,
        ENV_PLUGIN_NAME: plugin.name,
    }
    stdin_arg, stdin_data = _stdin_source(stdin)
    try:
        process = subprocess.Popen(
            [plugin.path, *args],
            stdin=stdin_arg,
            stdout=_sink(stdout),
            stderr=_sink(stderr),
            env=env,
        )
    except OSError as exc:
        raise PluginError(str(exc)) from exc
    out, err = process.communicate(stdin_data)
    _emit(stdout, out)
    _emit(stderr, err)
    # A process killed by a signal has no exit status of its own.
    return -1 if process.returncode < 0 else process.returncode


def _run_with_mode(
    plugin: Plugin,
    mode: str,
    args: Sequence[str],
    stdin: IO | None,
    stdout: IO | None,
    stderr: IO | None,
) -> int:
    plugin_type = plugin.effective_type()
    if plugin_type is PluginType.EXECUTABLE:
        return _run_exec(plugin, mode, args, stdin, stdout, stderr)
    raise PluginError(f"unsupported plugin type {_quote(plugin_type.value)}")


class Runner:
    """Executes plugins according to their type."""

    def metadata(self, plugin: Plugin) -> Metadata:
        """Ask the plugin to describe itself and validate the answer."""
        label = _quote(plugin.name)
        if not plugin.path:
            raise PluginError(f"plugin {label} has no path")

        out = io.BytesIO()
        err = io.BytesIO()
        exit_code = _run_with_mode(plugin, MODE_METADATA, [], None, out, err)
        if exit_code != 0:
            raise PluginError(f"plugin {label} exited with {exit_code}")

        try:
            metadata = Metadata.from_dict(json.loads(out.getvalue().strip()))
        except (ValueError, PluginError):
            message = err.getvalue().decode("utf-8", "replace").strip()
            if not message:
                message = out.getvalue().decode("utf-8", "replace").strip()
            raise PluginError(f"plugin {label} metadata parse failed: {message}") from None

        if metadata.api_version != METADATA_API_VERSION:
            raise PluginError(
                f"plugin {label} metadata api_version {metadata.api_version} is unsupported"
            )
        if metadata.name and metadata.name != plugin.name:
            raise PluginError(f"plugin {label} metadata name mismatch ({metadata.name})")
        if not metadata.name:
            metadata.name = plugin.name
        return metadata

    def run(
        self,
        plugin: Plugin,
        args: Sequence[str] = (),
        stdin: IO | None = None,
        stdout: IO | None = None,
        stderr: IO | None = None,
    ) -> int:
        """Run the plugin with the given arguments and return its exit code."""
        if not plugin.path:
            raise PluginError(f"plugin {_quote(plugin.name)} has no path")
        return _run_with_mode(plugin, MODE_EXEC, args, stdin, stdout, stderr)