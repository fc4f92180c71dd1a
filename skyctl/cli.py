"""A small command runner shared by the single-purpose command-line tools."""

from __future__ import annotations

import sys
from collections import deque
from dataclasses import dataclass
from importlib import metadata
from typing import Callable, Optional, Sequence, TextIO

RunFunc = Callable[[Sequence[str], TextIO, TextIO], None]

_TRUE_WORDS = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE_WORDS = {"0", "f", "F", "FALSE", "false", "False"}


def version_string() -> str:
    """The installed version of this package, or "dev" when it is not installed."""
    try:
        return metadata.version("skyctl")
    except metadata.PackageNotFoundError:
        return "dev"


class ExitCodeError(Exception):
    """Raised by a command to end the process with a particular exit code."""

    def __init__(self, code: int) -> None:
        super().__init__(code)
        self.code = int(code)

    def __str__(self) -> str:
        return f"exit code {self.code}"


@dataclass
class Command:
    """A single command-line entry point."""

    name: str
    summary: str = ""
    run: Optional[RunFunc] = None


class _HelpRequested(Exception):
    pass


class _FlagError(Exception):
    pass


def _parse_bool(value: str) -> bool:
    if value in _TRUE_WORDS:
        return True
    if value in _FALSE_WORDS:
        return False
    raise _FlagError(f'invalid boolean value "{value}" for -version: parse error')


def _parse_flags(args: Sequence[str]) -> tuple[bool, list[str]]:
    """Parse the leading flags; return the -version setting and the remaining args."""
    pending = deque(args)
    show_version = False
    while pending:
        arg = pending[0]
        if len(arg) < 2 or not arg.startswith("-"):
            break
        pending.popleft()
        if arg == "--":
            break
        name = arg[2:] if arg.startswith("--") else arg[1:]
        if not name or name.startswith("-") or name.startswith("="):
            raise _FlagError(f"bad flag syntax: {arg}")
        name, has_value, value = name.partition("=")
        if name == "version":
            show_version = _parse_bool(value) if has_value else True
        elif name in ("help", "h"):
            raise _HelpRequested
        else:
            raise _FlagError(f"flag provided but not defined: -{name}")
    return show_version, list(pending)


def _usage(command: Command, out: TextIO) -> None:
    out.write(f"usage: {command.name} [flags]\n\n{command.summary}\n\nflags:\n")
    out.write("  -version\n    \tprint version and exit\n")


def execute(
    command: Command,
    args: Sequence[str],
    stdout: Optional[TextIO] = None,
    stderr: Optional[TextIO] = None,
) -> int:
    """Run the command with the given arguments and return a process exit code."""
    stdout = stdout if stdout is not None else sys.stdout
    stderr = stderr if stderr is not None else sys.stderr

    try:
        show_version, rest = _parse_flags(args)
    except _HelpRequested:
        _usage(command, stderr)
        return 0
    except _FlagError as exc:
        stderr.write(f"{exc}\n")
        _usage(command, stderr)
        stderr.write(f"{exc}\n")
        return 2

    if show_version:
        stdout.write(f"{command.name} {version_string()}\n")
        return 0

    if command.run is None:
        stderr.write(f"{command.name}: no command configured\n")
        return 1

    try:
        command.run(rest, stdout, stderr)
    except ExitCodeError as exc:
        return exc.code
    except Exception as exc:  # any failure of the command becomes exit status 1
        stderr.write(f"{command.name}: {exc}\n")
        return 1
    return 0