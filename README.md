# skyctl

`skyctl` provides the `sky` command. It is a single entry point for Starlark
tooling: it hands core commands to companion executables, installs and runs
plugins, and manages plugin marketplaces. The package also has a small
library for loading Starlark builtin definitions from JSON files.

## Installation

```
pip install .
```

Run the tests with `pip install .[test]` and then `pytest`.

## The `sky` command

```
sky <command> [args]
```

- `sky version` prints the installed version.
- `sky help`, `sky -h` or `sky --help` print usage to standard error.
- `fmt`, `lint`, `check`, `query` and `repl` run the executables `skyfmt`,
  `skylint`, `skycheck`, `skyquery` and `skyrepl`. `sky` looks first in the
  directory of the running program and then on `PATH`. If neither has the
  executable, the alias is looked up as an installed plugin instead.
- Any other command is run as the installed plugin of that name. An unknown
  name exits with status 2.

Flags go **before** positional arguments. Both `-name value` and
`--name=value` work.

```
sky plugin list
sky plugin install --path ./demo-plugin demo
sky plugin install --url https://example.com/demo.wasm --sha256 <digest> demo
sky plugin install --marketplace local demo
sky plugin inspect demo
sky plugin remove demo
sky plugin search fmt
sky plugin search --marketplace local fmt
sky plugin marketplace add local /path/to/index.json
sky plugin marketplace list
sky plugin marketplace remove local
```

`plugin install` has these flags: `--path`, `--url`, `--marketplace`,
`--version`, `--sha256` and `--type` (`exe` or `wasm`, and `bin`/`binary`
also mean `exe`). Use at most one of `--path` and `--url`. If neither is
given, the plugin is resolved in the configured marketplaces. If `--type` is
not given, a source ending in `.wasm` is recorded as `wasm` and anything else
as `exe`. Plugin names must match `[a-z][a-z0-9-]{0,62}`.

`plugin inspect` asks the plugin for its metadata, prints it as JSON, and
updates the plugin's recorded version and description from it.

Exit status: 0 on success, 1 on failure, and 2 on a usage error. When a plugin
is run, `sky` exits with the plugin's own status.

### Storage

Plugin data lives in `$SKY_CONFIG_DIR` when that variable is set. Otherwise it
lives in `sky/` under the user configuration directory:
`$XDG_CONFIG_HOME` or `~/.config` on Linux, `~/Library/Application Support`
on macOS, and `%APPDATA%` on Windows. The directory holds `plugins.json`,
`marketplaces.json`, a `lock` file and a `plugins/` directory of installed
plugin files. Readers and writers coordinate through a file lock.

### Plugin protocol

Executable plugins are started with these environment variables set:

- `SKY_PLUGIN=1`
- `SKY_PLUGIN_MODE`, which is `exec` or `metadata`
- `SKY_PLUGIN_NAME`

In `metadata` mode the plugin must print a JSON object with `api_version` 1.
If it gives a `name`, that name must match the installed name:

```json
{"api_version": 1, "name": "demo", "version": "0.1.0", "summary": "Demo plugin",
 "commands": [{"name": "hello", "summary": "Say hi"}]}
```

### Marketplace index

A marketplace URL can be a local path, a `file://` URL or an `http(s)://` URL.
It points to a JSON document like this:

```json
{"name": "local", "plugins": [
  {"name": "demo", "version": "1.0.0", "description": "Demo",
   "url": "file:///path/to/demo", "sha256": "", "type": "exe"}
]}
```

Search matches the query against plugin names and descriptions, ignoring
case. When `sha256` is set, a download whose checksum differs is rejected.

## Library use

```python
from skyctl.store import Store
from skyctl.install import install_from_path
from skyctl.runner import Runner
from skyctl.models import PluginType

store = Store("/tmp/sky-config")
plugin = install_from_path(store, "demo", "./demo-plugin", "1.0.0", PluginType.EXECUTABLE)
print([p.name for p in store.load_plugins()])
exit_code = Runner().run(plugin, ["hello"])
```

Failures raise `skyctl.models.PluginError`.

`skyctl.cli` has `Command` and `execute()` for small single-purpose tools.
`execute()` handles `-version` and `-help`, and turns an `ExitCodeError`
raised by the command into the process exit status.

Builtin definitions come from providers (`skyctl.builtins`). A
`ChainProvider` merges the results of several providers in order and skips
any provider that cannot serve the request:

```python
from skyctl.builtins import ChainProvider, FileKind
from skyctl.json_loader import JSONProvider, MemoryFS

fs = MemoryFS({"data/json/starlark-core.json": b'{"functions": [{"name": "glob"}]}'})
chain = ChainProvider(JSONProvider(fs))
result = chain.builtins("starlark", FileKind.STARLARK)
print([f.name for f in result.functions])
```

`JSONProvider` supports the dialects `bazel`, `buck2` and `starlark` and
caches every file it has parsed. `DiskFS` reads the data files from a
directory instead of from memory.

## What this package does not do

- It does not include the `skyfmt`, `skylint`, `skycheck`, `skyquery` or
  `skyrepl` tools. `sky fmt` and the other aliases work only when those
  executables, or plugins with those names, are installed.
- It cannot run WebAssembly plugins. A `wasm` plugin can be installed and
  listed, but running or inspecting it fails with "unsupported plugin type".
- It does not ship builtin definition data files. Without a data source of
  your own, `JSONProvider()` raises `LookupError`. Only JSON definitions are
  supported.