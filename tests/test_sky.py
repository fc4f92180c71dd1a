import hashlib
import io
import json
import os
import sys
from datetime import datetime, timezone

import pytest

from skyctl.cli import version_string
from skyctl.models import Marketplace
from skyctl.sky import find_core_binary, run
from skyctl.store import Store


@pytest.fixture
def config_dir(tmp_path, monkeypatch):
    root = tmp_path / "config"
    monkeypatch.setenv("SKY_CONFIG_DIR", str(root))
    return root


def call(args):
    out, err = io.StringIO(), io.StringIO()
    code = run(args, out, err)
    return code, out.getvalue(), err.getvalue()


def make_script(path, body):
    path.write_text(f"#!{sys.executable}\n{body}")
    os.chmod(path, 0o755)
    return path


PLUGIN_BODY = """import json, os, sys
if os.environ.get("SKY_PLUGIN_MODE") == "metadata":
    print(json.dumps({"api_version": 1, "name": "demo", "version": "0.1.0",
                      "summary": "Demo plugin",
                      "commands": [{"name": "hello", "summary": "Say hi"}]}))
    sys.exit(0)
print("args:" + " ".join(sys.argv[1:]))
sys.exit(3)
"""


def test_no_args_prints_usage():
    code, out, err = call([])
    assert code == 0
    assert out == ""
    assert err.startswith("usage: sky <command> [args]\n")


def test_help_flag_prints_usage():
    code, _, err = call(["--help"])
    assert code == 0
    assert 'run "sky plugin --help" for plugin commands' in err


def test_version():
    code, out, _ = call(["version"])
    assert code == 0
    assert out == f"sky {version_string()}\n"


def test_unknown_plugin_command():
    code, _, err = call(["plugin", "bogus"])
    assert code == 2
    assert err.startswith('unknown plugin command "bogus"\n')
    assert "usage: sky plugin <command> [args]" in err


def test_plugin_list_empty(config_dir):
    code, out, _ = call(["plugin", "list"])
    assert code == 0
    assert out == "no plugins installed\n"


def test_install_list_remove(config_dir, tmp_path):
    binary = tmp_path / "plugin-bin"
    binary.write_bytes(b"demo")

    code, out, err = call(["plugin", "install", "--path", str(binary), "--version", "1.2.3", "demo"])
    assert (code, err) == (0, "")
    assert out == "installed demo (1.2.3)\n"

    code, out, _ = call(["plugin", "list"])
    assert code == 0
    lines = out.splitlines()
    assert lines[0].split() == ["NAME", "TYPE", "VERSION", "SOURCE", "DESCRIPTION"]
    assert lines[1].split() == ["demo", "exe", "1.2.3", str(binary)]
    assert lines[0].index("TYPE") == lines[1].index("exe")

    code, out, _ = call(["plugin", "remove", "demo"])
    assert code == 0
    assert out == "removed demo\n"
    assert Store(config_dir).load_plugins() == []


def test_install_detects_wasm_type(config_dir, tmp_path):
    binary = tmp_path / "mod.wasm"
    binary.write_bytes(b"\0asm")
    code, _, _ = call(["plugin", "install", "-path", str(binary), "wasmy"])
    assert code == 0
    installed = Store(config_dir).find_plugin("wasmy")
    assert installed.type.value == "wasm"
    assert installed.path.endswith("wasmy.wasm")


def test_install_rejects_path_and_url(config_dir):
    code, _, err = call(["plugin", "install", "--path", "a", "--url", "b", "demo"])
    assert code == 2
    assert err == "sky: only one of --path or --url is allowed\n"


def test_install_type_requires_source(config_dir):
    code, _, err = call(["plugin", "install", "--type", "wasm", "demo"])
    assert code == 2
    assert err == "sky: --type requires --path or --url\n"


def test_install_flags_after_name_are_positional(config_dir):
    code, _, err = call(["plugin", "install", "demo", "--path", "x"])
    assert code == 2
    assert err.startswith("usage: sky plugin install <name>")


def test_install_unknown_flag(config_dir):
    code, _, err = call(["plugin", "install", "--bogus", "demo"])
    assert code == 2
    assert err.startswith("flag provided but not defined: -bogus\n")


def test_install_bad_type(config_dir, tmp_path):
    binary = tmp_path / "p"
    binary.write_bytes(b"x")
    code, _, err = call(["plugin", "install", "--path", str(binary), "--type", "bad", "demo"])
    assert code == 1
    assert err == 'sky: unknown plugin type "bad"\n'


def test_remove_missing_plugin(config_dir):
    code, _, err = call(["plugin", "remove", "ghost"])
    assert code == 1
    assert err == 'sky: plugin "ghost" not installed\n'


def test_remove_requires_one_name(config_dir):
    code, _, err = call(["plugin", "remove"])
    assert code == 2
    assert err == "usage: sky plugin remove <name>\n"


def test_marketplace_add_list_remove(config_dir):
    code, out, _ = call(["plugin", "marketplace", "list"])
    assert (code, out) == (0, "no marketplaces configured\n")

    code, out, _ = call(["plugin", "marketplace", "add", "local", "/tmp/market.json"])
    assert (code, out) == (0, "marketplace local added\n")
    stored = Store(config_dir).load_marketplaces()
    assert [m.name for m in stored] == ["local"]
    assert stored[0].added_at is not None

    code, out, _ = call(["plugin", "marketplace", "remove", "local"])
    assert (code, out) == (0, "marketplace local removed\n")
    assert Store(config_dir).load_marketplaces() == []


def test_marketplace_list_formats_time(config_dir):
    added = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    Store(config_dir).upsert_marketplace(
        Marketplace(name="local", url="/tmp/market.json", added_at=added)
    )
    code, out, _ = call(["plugin", "marketplace", "list"])
    assert code == 0
    header, row = out.splitlines()
    assert header.split() == ["NAME", "URL", "ADDED"]
    assert row.split() == ["local", "/tmp/market.json", "2024-01-02T03:04:05Z"]
    assert header.index("ADDED") == row.index("2024")


def test_marketplace_unknown_command():
    code, _, err = call(["plugin", "marketplace", "bogus"])
    assert code == 2
    assert err.startswith('unknown marketplace command "bogus"\n')


def _write_index(tmp_path, binary):
    digest = hashlib.sha256(binary.read_bytes()).hexdigest()
    index = tmp_path / "index.json"
    index.write_text(json.dumps({
        "name": "market",
        "plugins": [
            {"name": "demo", "url": f"file://{binary}", "sha256": digest,
             "version": "2.0.0", "description": "Demo formatter"},
            {"name": "other", "url": f"file://{binary}", "description": "Something"},
        ],
    }))
    return index


def test_search_and_install_from_marketplace(config_dir, tmp_path):
    binary = tmp_path / "payload"
    binary.write_bytes(b"payload-bytes")
    index = _write_index(tmp_path, binary)
    assert call(["plugin", "marketplace", "add", "market", f"file://{index}"])[0] == 0

    code, out, _ = call(["plugin", "search", "formatter"])
    assert code == 0
    lines = out.splitlines()
    assert lines[0].split() == ["NAME", "VERSION", "MARKETPLACE", "DESCRIPTION", "URL"]
    assert len(lines) == 2
    assert lines[1].startswith("demo")

    code, out, err = call(["plugin", "install", "demo"])
    assert (code, err) == (0, "")
    assert out == "installed demo (2.0.0)\n"
    installed = Store(config_dir).find_plugin("demo")
    assert installed.source == f"market (file://{binary})"


def test_search_without_matches(config_dir, tmp_path):
    binary = tmp_path / "payload"
    binary.write_bytes(b"x")
    index = _write_index(tmp_path, binary)
    call(["plugin", "marketplace", "add", "market", str(index)])
    code, _, err = call(["plugin", "search", "zzz"])
    assert code == 1
    assert err == 'sky: no plugins matched "zzz"\n'


def test_inspect_updates_catalogue(config_dir, tmp_path):
    script = make_script(tmp_path / "demo-plugin", PLUGIN_BODY)
    assert call(["plugin", "install", "--path", str(script), "demo"])[0] == 0

    code, out, err = call(["plugin", "inspect", "demo"])
    assert (code, err) == (0, "")
    payload = json.loads(out)
    assert payload["api_version"] == 1
    assert payload["name"] == "demo"
    assert payload["summary"] == "Demo plugin"
    assert payload["commands"] == [{"name": "hello", "summary": "Say hi"}]

    installed = Store(config_dir).find_plugin("demo")
    assert installed.version == "0.1.0"
    assert installed.description == "Demo plugin"


def test_inspect_missing_plugin(config_dir):
    code, _, err = call(["plugin", "inspect", "ghost"])
    assert code == 1
    assert err == 'sky: plugin "ghost" not installed\n'


def test_runs_installed_plugin(config_dir, tmp_path, monkeypatch):
    monkeypatch.setattr(sys, "stdin", io.StringIO(""))
    script = make_script(tmp_path / "demo-plugin", PLUGIN_BODY)
    assert call(["plugin", "install", "--path", str(script), "demo"])[0] == 0

    code, out, _ = call(["demo", "alpha", "beta"])
    assert code == 3
    assert "args:alpha beta" in out


def test_unknown_command(config_dir):
    code, _, err = call(["nothing"])
    assert code == 2
    assert err == (
        'unknown command "nothing"\n'
        "install plugins with: sky plugin search <query>\n"
    )


def test_find_core_binary_next_to_program(tmp_path, monkeypatch):
    bindir = tmp_path / "bin"
    bindir.mkdir()
    tool = make_script(bindir / "skyfmt", "print('hi')\n")
    monkeypatch.setattr(sys, "argv", [str(bindir / "sky")])
    assert os.path.realpath(find_core_binary("skyfmt")) == os.path.realpath(tool)


def test_find_core_binary_on_path(tmp_path, monkeypatch):
    pathdir = tmp_path / "onpath"
    pathdir.mkdir()
    tool = make_script(pathdir / "skylint", "print('hi')\n")
    monkeypatch.setattr(sys, "argv", [str(tmp_path / "elsewhere" / "sky")])
    monkeypatch.setenv("PATH", str(pathdir))
    assert os.path.realpath(find_core_binary("skylint")) == os.path.realpath(tool)


def test_find_core_binary_missing(tmp_path, monkeypatch):
    monkeypatch.setattr(sys, "argv", [str(tmp_path / "sky")])
    monkeypatch.setenv("PATH", str(tmp_path))
    with pytest.raises(FileNotFoundError):
        find_core_binary("skyquery")


def test_core_command_runs_binary(tmp_path, monkeypatch):
    bindir = tmp_path / "bin"
    bindir.mkdir()
    make_script(
        bindir / "skyfmt",
        "import sys\nprint('fmt:' + ','.join(sys.argv[1:]))\nsys.exit(4)\n",
    )
    monkeypatch.setattr(sys, "argv", [str(bindir / "sky")])
    code, out, _ = call(["fmt", "a.bzl", "b.bzl"])
    assert code == 4
    assert out == "fmt:a.bzl,b.bzl\n"


def test_core_command_falls_back_to_plugins(config_dir, tmp_path, monkeypatch):
    monkeypatch.setattr(sys, "argv", [str(tmp_path / "sky")])
    monkeypatch.setenv("PATH", str(tmp_path))
    code, _, err = call(["repl"])
    assert code == 2
    assert err.startswith('unknown command "skyrepl"\n')