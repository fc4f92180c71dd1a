import json
from concurrent.futures import ThreadPoolExecutor

import pytest

from skyctl.models import Marketplace, Plugin, PluginError, PluginType
from skyctl.store import Store, default_store


@pytest.fixture
def store(tmp_path):
    return Store(tmp_path / "config")


def test_paths(tmp_path):
    s = Store(tmp_path)
    assert s.plugins_dir() == tmp_path / "plugins"
    assert s.plugins_file() == tmp_path / "plugins.json"
    assert s.marketplaces_file() == tmp_path / "marketplaces.json"
    assert s.lock_file() == tmp_path / "lock"


def test_plugin_path_by_type(tmp_path):
    s = Store(tmp_path)
    assert s.plugin_path("demo", PluginType.EXECUTABLE) == tmp_path / "plugins" / "demo"
    assert s.plugin_path("demo", PluginType.WASM) == tmp_path / "plugins" / "demo.wasm"


def test_ensure_creates_directories(store):
    store.ensure()
    assert store.root.is_dir()
    assert store.plugins_dir().is_dir()


def test_default_store_honours_override(monkeypatch, tmp_path):
    monkeypatch.setenv("SKY_CONFIG_DIR", str(tmp_path / "custom"))
    assert default_store().root == tmp_path / "custom"


def test_load_plugins_empty(store):
    assert store.load_plugins() == []


def test_load_plugins_empty_file(store):
    store.ensure()
    store.plugins_file().write_text("")
    assert store.load_plugins() == []


def test_load_plugins_corrupt_file(store):
    store.ensure()
    store.plugins_file().write_text("{not json")
    with pytest.raises(PluginError, match="load plugins"):
        store.load_plugins()


def test_upsert_and_load_defaults_type(store):
    store.upsert_plugin(Plugin(name="demo", version="1.2.3"))
    plugins = store.load_plugins()
    assert plugins == [Plugin(name="demo", version="1.2.3", type=PluginType.EXECUTABLE)]


def test_upsert_writes_json_list(store):
    store.upsert_plugin(Plugin(name="demo", version="1.0"))
    saved = json.loads(store.plugins_file().read_text())
    assert saved == [{"name": "demo", "version": "1.0"}]


def test_upsert_replaces_existing(store):
    store.upsert_plugin(Plugin(name="demo", version="1.0"))
    store.upsert_plugin(Plugin(name="demo", version="2.0"))
    plugins = store.load_plugins()
    assert [p.version for p in plugins] == ["2.0"]


def test_load_plugins_sorted(store):
    for name in ["zeta", "alpha", "mid"]:
        store.upsert_plugin(Plugin(name=name))
    assert [p.name for p in store.load_plugins()] == ["alpha", "mid", "zeta"]


def test_upsert_rejects_invalid_name(store):
    with pytest.raises(PluginError, match="invalid plugin name"):
        store.upsert_plugin(Plugin(name="Bad_Name"))


def test_find_plugin_fills_path(store):
    store.upsert_plugin(Plugin(name="demo", type=PluginType.WASM))
    found = store.find_plugin("demo")
    assert found.name == "demo"
    assert found.path == str(store.plugins_dir() / "demo.wasm")


def test_find_plugin_keeps_recorded_path(store):
    store.upsert_plugin(Plugin(name="demo", path="/opt/demo"))
    assert store.find_plugin("demo").path == "/opt/demo"


def test_find_plugin_missing(store):
    assert store.find_plugin("absent") is None


def test_find_plugin_invalid_name(store):
    with pytest.raises(PluginError):
        store.find_plugin("-bad")


def test_install_and_remove_plugin(store):
    store.ensure()
    binary = store.plugin_path("demo", PluginType.EXECUTABLE)
    binary.write_bytes(b"demo")
    store.upsert_plugin(Plugin(name="demo", version="1.2.3", path=str(binary)))
    assert len(store.load_plugins()) == 1

    removed = store.remove_plugin("demo")
    assert removed.name == "demo"
    assert not binary.exists()
    assert store.load_plugins() == []


def test_remove_plugin_without_binary(store):
    store.upsert_plugin(Plugin(name="demo"))
    assert store.remove_plugin("demo").name == "demo"
    assert store.load_plugins() == []


def test_remove_missing_plugin(store):
    with pytest.raises(PluginError, match='plugin "demo" not installed'):
        store.remove_plugin("demo")


def test_marketplace_upsert(store):
    store.upsert_marketplace(Marketplace(name="local", url="/tmp/market.json"))
    marketplaces = store.load_marketplaces()
    assert len(marketplaces) == 1
    assert marketplaces[0].name == "local"
    assert marketplaces[0].url == "/tmp/market.json"


def test_marketplace_upsert_replaces(store):
    store.upsert_marketplace(Marketplace(name="local", url="/a.json"))
    store.upsert_marketplace(Marketplace(name="local", url="/b.json"))
    assert [m.url for m in store.load_marketplaces()] == ["/b.json"]


def test_marketplace_requires_url(store):
    with pytest.raises(PluginError, match="marketplace url is required"):
        store.upsert_marketplace(Marketplace(name="local", url=""))


def test_marketplace_invalid_name(store):
    with pytest.raises(PluginError, match="invalid plugin name"):
        store.upsert_marketplace(Marketplace(name="Local", url="/a.json"))


def test_remove_marketplace(store):
    store.upsert_marketplace(Marketplace(name="one", url="/1.json"))
    store.upsert_marketplace(Marketplace(name="two", url="/2.json"))
    removed = store.remove_marketplace("one")
    assert removed.url == "/1.json"
    assert [m.name for m in store.load_marketplaces()] == ["two"]


def test_remove_missing_marketplace(store):
    with pytest.raises(PluginError, match='marketplace "ghost" not configured'):
        store.remove_marketplace("ghost")


@pytest.mark.parametrize("workers", [1, 5, 20])
def test_store_concurrency(store, workers):
    def install(index):
        store.upsert_plugin(Plugin(name=f"p{index}", version="1.0.0"))

    with ThreadPoolExecutor(max_workers=workers) as pool:
        list(pool.map(install, range(workers)))

    plugins = store.load_plugins()
    assert len(plugins) == workers
    assert {p.name for p in plugins} == {f"p{i}" for i in range(workers)}


def test_store_concurrent_upsert(store):
    def upsert(index):
        store.upsert_plugin(Plugin(name="same-plugin", version=f"1.0.{index}"))

    with ThreadPoolExecutor(max_workers=20) as pool:
        list(pool.map(upsert, range(20)))

    plugins = store.load_plugins()
    assert len(plugins) == 1
    assert plugins[0].version in {f"1.0.{i}" for i in range(20)}