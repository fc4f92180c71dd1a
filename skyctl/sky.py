"""The sky command: dispatches to core tools, manages plugins and runs them."""

from __future__ import annotations

import json
import os
import shutil
import subprocess
import sys
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import IO, Any, Callable, Mapping, Optional, Sequence, TextIO

from .cli import version_string
from .install import install_from_marketplace, install_from_path, install_from_url
from .marketplace import search_marketplaces
from .models import (
    Marketplace,
    PluginError,
    detect_plugin_type,
    parse_plugin_type,
)
from .runner import Runner
from .store import default_store

# Short aliases dispatched to co-located binaries before falling back to plugins.
CORE_COMMANDS: dict[str, str] = {
    "fmt": "skyfmt",
    "lint": "skylint",
    "check": "skycheck",
    "query": "skyquery",
    "repl": "skyrepl",
}

_FAILURES = (PluginError, OSError, ValueError)


def _quote(text: str) -> str:
    return json.dumps(text, ensure_ascii=False)


# ---------------------------------------------------------------------------
# Flag parsing with the conventions of the original tool: flags come before
# positional arguments, "-name value", "-name=value" and "--name" all work.


class _ParseFailed(Exception):
    pass


@dataclass
class _FlagSet:
    name: str
    flags: Mapping[str, str]

    def usage(self, out: TextIO) -> None:
        out.write(f"Usage of {self.name}:\n")
        for flag in sorted(self.flags):
            out.write(f"  -{flag} string\n    \t{self.flags[flag]}\n")

    def _fail(self, message: str, out: TextIO) -> None:
        out.write(f"{message}\n")
        self.usage(out)
        raise _ParseFailed(message)

    def parse(self, args: Sequence[str], out: TextIO) -> tuple[dict[str, str], list[str]]:
        values = {flag: "" for flag in self.flags}
        pending = list(args)
        while pending:
            arg = pending[0]
            if len(arg) < 2 or not arg.startswith("-"):
                break
            pending.pop(0)
            if arg == "--":
                break
            name = arg[2:] if arg.startswith("--") else arg[1:]
            if not name or name.startswith(("-", "=")):
                self._fail(f"bad flag syntax: {arg}", out)
            name, has_value, value = name.partition("=")
            if name not in self.flags:
                if name in ("help", "h"):
                    self.usage(out)
                    raise _ParseFailed("help requested")
                self._fail(f"flag provided but not defined: -{name}", out)
            if not has_value:
                if not pending:
                    self._fail(f"flag needs an argument: -{name}", out)
                value = pending.pop(0)
            values[name] = value
        return values, pending


# ---------------------------------------------------------------------------
# Output helpers.


def _table(rows: Sequence[Sequence[str]]) -> str:
    """Align tab-separated cells into columns padded by two spaces."""
    widths: dict[int, int] = {}
    for row in rows:
        for column, cell in enumerate(row[:-1]):
            widths[column] = max(widths.get(column, 0), len(cell) + 2)
    lines = []
    for row in rows:
        cells = [cell.ljust(widths[column]) for column, cell in enumerate(row[:-1])]
        lines.append("".join(cells) + (row[-1] if row else ""))
    return "".join(line + "\n" for line in lines)


def _rfc3339(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.replace(microsecond=0)
    if moment.utcoffset() == timedelta(0):
        return moment.strftime("%Y-%m-%dT%H:%M:%SZ")
    return moment.isoformat(timespec="seconds")


def _marshal_indent(value: Any) -> str:
    text = json.dumps(value, indent=2, ensure_ascii=False)
    for char, escape in (("<", "\\u003c"), (">", "\\u003e"), ("&", "\\u0026"),
                         ("\u2028", "\\u2028"), ("\u2029", "\\u2029")):
        text = text.replace(char, escape)
    return text


def _fileno(stream: Any) -> Optional[int]:
    try:
        return stream.fileno()
    except (AttributeError, OSError, ValueError):
        return None


def _sink(stream: Any) -> Any:
    fd = _fileno(stream)
    if fd is None:
        return subprocess.PIPE
    stream.flush()
    return fd


def _emit(stream: Any, data: Optional[bytes]) -> None:
    if not data:
        return
    try:
        stream.write(data.decode("utf-8", errors="replace"))
    except TypeError:
        stream.write(data)


# ---------------------------------------------------------------------------
# Usage texts.


def _print_usage(out: TextIO) -> None:
    out.write(
        "usage: sky <command> [args]\n"
        "\n"
        "starlark tools:\n"
        "  fmt          format Starlark files\n"
        "  lint         lint Starlark files\n"
        "  check        type check Starlark files\n"
        "  query        query Starlark sources\n"
        "  repl         interactive Starlark REPL\n"
        "\n"
        "management:\n"
        "  plugin       manage plugins\n"
        "  version      show version\n"
        "\n"
        "plugin-first:\n"
        "  unknown commands are resolved to installed plugins\n"
        "\n"
        'run "sky plugin --help" for plugin commands\n'
    )


def _print_plugin_usage(out: TextIO) -> None:
    out.write(
        "usage: sky plugin <command> [args]\n"
        "\n"
        "commands:\n"
        "  list                     list installed plugins\n"
        "  install <name>           install a plugin\n"
        "  inspect <name>           inspect plugin metadata\n"
        "  remove <name>            remove a plugin\n"
        "  search <query>           search marketplaces\n"
        "  marketplace <command>    manage marketplaces\n"
    )


def _print_marketplace_usage(out: TextIO) -> None:
    out.write(
        "usage: sky plugin marketplace <command> [args]\n"
        "\n"
        "commands:\n"
        "  list                     list marketplaces\n"
        "  add <name> <url>          add or update a marketplace\n"
        "  remove <name>             remove a marketplace\n"
    )


def _is_help(arg: str) -> bool:
    return arg in ("-h", "--help")


# ---------------------------------------------------------------------------
# Core commands.


def find_core_binary(name: str) -> str:
    """Locate a core tool next to the running program, then on PATH."""
    program = sys.argv[0] if sys.argv else ""
    if program:
        candidate = os.path.join(os.path.dirname(os.path.realpath(program)), name)
        if os.path.exists(candidate):
            return candidate
    found = shutil.which(name)
    if found is None:
        raise FileNotFoundError(f'exec: "{name}": executable file not found in $PATH')
    return found


def _run_core_command(binary: str, args: Sequence[str], stdout: TextIO, stderr: TextIO) -> int:
    try:
        path = find_core_binary(binary)
    except FileNotFoundError:
        return _run_installed_plugin([binary, *args], stdout, stderr)

    try:
        process = subprocess.Popen(
            [path, *args],
            stdin=_fileno(sys.stdin),
            stdout=_sink(stdout),
            stderr=_sink(stderr),
        )
    except OSError as exc:
        stderr.write(f"sky: {exc}\n")
        return 1
    out, err = process.communicate()
    _emit(stdout, out)
    _emit(stderr, err)
    return -1 if process.returncode < 0 else process.returncode


# ---------------------------------------------------------------------------
# Plugin commands.


def _run_plugin(args: Sequence[str], stdout: TextIO, stderr: TextIO) -> int:
    if not args or _is_help(args[0]):
        _print_plugin_usage(stderr)
        return 0
    handlers: dict[str, Callable[[Sequence[str], TextIO, TextIO], int]] = {
        "list": _plugin_list,
        "install": _plugin_install,
        "remove": _plugin_remove,
        "inspect": _plugin_inspect,
        "search": _plugin_search,
        "marketplace": _run_marketplace,
    }
    handler = handlers.get(args[0])
    if handler is None:
        stderr.write(f"unknown plugin command {_quote(args[0])}\n")
        _print_plugin_usage(stderr)
        return 2
    return handler(args[1:], stdout, stderr)


def _plugin_list(_args: Sequence[str], stdout: TextIO, stderr: TextIO) -> int:
    try:
        plugins = default_store().load_plugins()
    except _FAILURES as exc:
        stderr.write(f"sky: {exc}\n")
        return 1
    if not plugins:
        stdout.write("no plugins installed\n")
        return 0
    rows = [["NAME", "TYPE", "VERSION", "SOURCE", "DESCRIPTION"]]
    rows.extend(
        [p.name, p.effective_type().value, p.version, p.source, p.description]
        for p in sorted(plugins, key=lambda p: p.name)
    )
    stdout.write(_table(rows))
    return 0


_INSTALL_FLAGS = _FlagSet(
    "install",
    {
        "path": "path to local plugin binary",
        "url": "URL to download plugin binary",
        "marketplace": "marketplace name (optional)",
        "version": "plugin version metadata",
        "sha256": "expected sha256 for --url downloads",
        "type": "plugin type (exe|wasm)",
    },
)


def _plugin_install(args: Sequence[str], stdout: TextIO, stderr: TextIO) -> int:
    try:
        flags, rest = _INSTALL_FLAGS.parse(args, stderr)
    except _ParseFailed:
        return 2
    if len(rest) != 1:
        stderr.write(
            "usage: sky plugin install <name> [--path PATH | --url URL] "
            "[--marketplace NAME] [--type exe|wasm]\n"
        )
        return 2
    name = rest[0]
    path, url, type_flag = flags["path"], flags["url"], flags["type"]

    if path and url:
        stderr.write("sky: only one of --path or --url is allowed\n")
        return 2
    if type_flag and not path and not url:
        stderr.write("sky: --type requires --path or --url\n")
        return 2

    try:
        store = default_store()
        plugin_type = parse_plugin_type(type_flag)
        if not type_flag:
            if path:
                plugin_type = detect_plugin_type(path)
            if url:
                plugin_type = detect_plugin_type(url)

        if path:
            plugin = install_from_path(store, name, path, flags["version"], plugin_type)
        elif url:
            plugin = install_from_url(
                store, name, url, flags["sha256"], flags["version"], "", plugin_type
            )
        else:
            plugin = install_from_marketplace(store, name, flags["marketplace"])
    except _FAILURES as exc:
        stderr.write(f"sky: {exc}\n")
        return 1

    stdout.write(f"installed {plugin.name} ({plugin.version})\n")
    return 0


def _single_name(
    flagset: _FlagSet, args: Sequence[str], usage: str, stderr: TextIO
) -> Optional[str]:
    try:
        _, rest = flagset.parse(args, stderr)
    except _ParseFailed:
        return None
    if len(rest) != 1:
        stderr.write(f"{usage}\n")
        return None
    return rest[0]


def _plugin_remove(args: Sequence[str], stdout: TextIO, stderr: TextIO) -> int:
    name = _single_name(_FlagSet("remove", {}), args, "usage: sky plugin remove <name>", stderr)
    if name is None:
        return 2
    try:
        removed = default_store().remove_plugin(name)
    except _FAILURES as exc:
        stderr.write(f"sky: {exc}\n")
        return 1
    stdout.write(f"removed {removed.name}\n")
    return 0


def _plugin_inspect(args: Sequence[str], stdout: TextIO, stderr: TextIO) -> int:
    name = _single_name(_FlagSet("inspect", {}), args, "usage: sky plugin inspect <name>", stderr)
    if name is None:
        return 2
    try:
        store = default_store()
        plugin = store.find_plugin(name)
        if plugin is None:
            stderr.write(f"sky: plugin {_quote(name)} not installed\n")
            return 1
        metadata = Runner().metadata(plugin)
        if metadata.version:
            plugin.version = metadata.version
        if metadata.summary:
            plugin.description = metadata.summary
        plugin.type = plugin.effective_type()
        store.upsert_plugin(plugin)
    except _FAILURES as exc:
        stderr.write(f"sky: {exc}\n")
        return 1
    stdout.write(_marshal_indent(metadata.to_dict()) + "\n")
    return 0


_SEARCH_FLAGS = _FlagSet("search", {"marketplace": "marketplace name (optional)"})


def _plugin_search(args: Sequence[str], stdout: TextIO, stderr: TextIO) -> int:
    try:
        flags, rest = _SEARCH_FLAGS.parse(args, stderr)
    except _ParseFailed:
        return 2
    if len(rest) != 1:
        stderr.write("usage: sky plugin search <query> [--marketplace NAME]\n")
        return 2
    try:
        results = search_marketplaces(default_store(), rest[0], flags["marketplace"])
    except _FAILURES as exc:
        stderr.write(f"sky: {exc}\n")
        return 1
    rows = [["NAME", "VERSION", "MARKETPLACE", "DESCRIPTION", "URL"]]
    rows.extend(
        [r.plugin.name, r.plugin.version, r.marketplace.name, r.plugin.description, r.plugin.url]
        for r in results
    )
    stdout.write(_table(rows))
    return 0


# ---------------------------------------------------------------------------
# Marketplace commands.


def _run_marketplace(args: Sequence[str], stdout: TextIO, stderr: TextIO) -> int:
    if not args or _is_help(args[0]):
        _print_marketplace_usage(stderr)
        return 0
    handlers: dict[str, Callable[[Sequence[str], TextIO, TextIO], int]] = {
        "list": _marketplace_list,
        "add": _marketplace_add,
        "remove": _marketplace_remove,
    }
    handler = handlers.get(args[0])
    if handler is None:
        stderr.write(f"unknown marketplace command {_quote(args[0])}\n")
        _print_marketplace_usage(stderr)
        return 2
    return handler(args[1:], stdout, stderr)


def _marketplace_list(_args: Sequence[str], stdout: TextIO, stderr: TextIO) -> int:
    try:
        marketplaces = default_store().load_marketplaces()
    except _FAILURES as exc:
        stderr.write(f"sky: {exc}\n")
        return 1
    if not marketplaces:
        stdout.write("no marketplaces configured\n")
        return 0
    rows = [["NAME", "URL", "ADDED"]]
    rows.extend(
        [m.name, m.url, _rfc3339(m.added_at) if m.added_at is not None else ""]
        for m in marketplaces
    )
    stdout.write(_table(rows))
    return 0


def _marketplace_add(args: Sequence[str], stdout: TextIO, stderr: TextIO) -> int:
    try:
        _, rest = _FlagSet("marketplace add", {}).parse(args, stderr)
    except _ParseFailed:
        return 2
    if len(rest) != 2:
        stderr.write("usage: sky plugin marketplace add <name> <url>\n")
        return 2
    marketplace = Marketplace(name=rest[0], url=rest[1], added_at=datetime.now(timezone.utc))
    try:
        default_store().upsert_marketplace(marketplace)
    except _FAILURES as exc:
        stderr.write(f"sky: {exc}\n")
        return 1
    stdout.write(f"marketplace {marketplace.name} added\n")
    return 0


def _marketplace_remove(args: Sequence[str], stdout: TextIO, stderr: TextIO) -> int:
    name = _single_name(
        _FlagSet("marketplace remove", {}),
        args,
        "usage: sky plugin marketplace remove <name>",
        stderr,
    )
    if name is None:
        return 2
    try:
        removed = default_store().remove_marketplace(name)
    except _FAILURES as exc:
        stderr.write(f"sky: {exc}\n")
        return 1
    stdout.write(f"marketplace {removed.name} removed\n")
    return 0


# ---------------------------------------------------------------------------
# Installed plugins and the entry points.


def _run_installed_plugin(args: Sequence[str], stdout: TextIO, stderr: TextIO) -> int:
    try:
        plugin = default_store().find_plugin(args[0])
    except _FAILURES as exc:
        stderr.write(f"sky: {exc}\n")
        return 1
    if plugin is None:
        stderr.write(f"unknown command {_quote(args[0])}\n")
        stderr.write("install plugins with: sky plugin search <query>\n")
        return 2
    try:
        return Runner().run(plugin, list(args[1:]), sys.stdin, stdout, stderr)
    except _FAILURES as exc:
        stderr.write(f"sky: {exc}\n")
        return 1


def run(
    args: Sequence[str],
    stdout: Optional[IO] = None,
    stderr: Optional[IO] = None,
) -> int:
    """Run the sky command with the given arguments and return its exit code."""
    stdout = stdout if stdout is not None else sys.stdout
    stderr = stderr if stderr is not None else sys.stderr
    args = list(args)

    if not args or _is_help(args[0]):
        _print_usage(stderr)
        return 0

    command = args[0]
    if command == "version":
        stdout.write(f"sky {version_string()}\n")
        return 0
    if command == "plugin":
        return _run_plugin(args[1:], stdout, stderr)
    if command == "help":
        _print_usage(stderr)
        return 0
    binary = CORE_COMMANDS.get(command)
    if binary is not None:
        return _run_core_command(binary, args[1:], stdout, stderr)
    return _run_installed_plugin(args, stdout, stderr)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Entry point of the sky command."""
    return run(sys.argv[1:] if argv is None else argv, sys.stdout, sys.stderr)


if __name__ == "__main__":
    sys.exit(main())