import pytest

from tilesync.models import LayoutItem, WidgetRecord
from tilesync.storage.kv_store import MemoryKeyValueStore, TinyDBKeyValueStore
from tilesync.storage.local_cache import LocalCacheGateway


@pytest.fixture(params=["memory", "tinydb"])
def gateway(request, tmp_path):
    if request.param == "memory":
        store = MemoryKeyValueStore()
    else:
        store = TinyDBKeyValueStore(tmp_path / "cache.json")
    yield LocalCacheGateway(store, key_prefix="test")
    store.close()


def test_layouts_widgets_and_configs_stored(gateway):
    gateway.set_widgets([WidgetRecord(id="a", type="clock")])
    gateway.set_layouts({"lg": [LayoutItem(id="a", x=1, y=2, w=3, h=4)]})
    gateway.set_config("a", {"city": "Oslo"})

    assert gateway.get_widgets() == [WidgetRecord(id="a", type="clock")]
    assert gateway.get_widget_type("a") == "clock"
    assert gateway.get_widget_type("b") is None
    layouts = gateway.get_layouts()
    assert (layouts["lg"][0].x, layouts["lg"][0].h) == (1, 4)
    assert gateway.get_config("a") == {"city": "Oslo"}


def test_empty_store_returns_defaults(gateway):
    assert gateway.get_layouts() == {}
    assert gateway.get_widgets() == []
    assert gateway.get_configs() == {}
    assert gateway.get_config("a") is None


def test_layouts_stored_with_short_id_key_are_readable(gateway):
    gateway.set_layouts_raw({"lg": [{"i": "a", "x": 0, "y": 0, "w": 3, "h": 3, "minW": 2, "minH": 2}]})
    assert gateway.get_layouts()["lg"][0].id == "a"


def test_remove_config_keeps_other_entries(gateway):
    gateway.set_config("a", {"n": 1})
    gateway.set_config("b", {"n": 2})
    gateway.remove_config("a")
    assert gateway.get_configs() == {"b": {"n": 2}}


def test_update_applies_function_to_current_value(gateway):
    gateway.update(gateway.app_settings_key, lambda s: {**s, "theme": "dark"}, default={})
    gateway.update(gateway.app_settings_key, lambda s: {**s, "lang": "en"}, default={})
    assert gateway.get_app_settings() == {"theme": "dark", "lang": "en"}


def test_clear_user_data_keeps_app_settings(gateway):
    gateway.set_widgets([WidgetRecord(id="a", type="clock")])
    gateway.set_layouts({"lg": [LayoutItem(id="a")]})
    gateway.set_config("a", {"n": 1})
    gateway.set_app_settings({"theme": "dark"})

    gateway.clear_user_data()

    assert gateway.get_widgets() == []
    assert gateway.get_layouts() == {}
    assert gateway.get_configs() == {}
    assert gateway.get_app_settings() == {"theme": "dark"}


def test_corrupt_value_falls_back_to_default():
    store = MemoryKeyValueStore({"test-layouts": "{not json", "test-widgets": '{"a": 1}'})
    gateway = LocalCacheGateway(store, key_prefix="test")
    assert gateway.get_layouts() == {}
    assert gateway.get_widgets() == []


def test_keys_use_prefix():
    store = MemoryKeyValueStore()
    gateway = LocalCacheGateway(store, key_prefix="board")
    gateway.set_widgets([])
    gateway.set_layouts({})
    gateway.set_configs({})
    for key in ("board-layouts", "board-widget-configs", "board-widgets"):
        assert store.get(key) is not None
    assert store.get("layouts") is None


def test_tinydb_store_persists_across_reopen(tmp_path):
    path = tmp_path / "nested" / "cache.json"
    store = TinyDBKeyValueStore(path)
    store.set("k", "v1")
    store.set("k", "v2")
    store.set("gone", "x")
    store.remove("gone")
    store.close()

    reopened = TinyDBKeyValueStore(path)
    assert reopened.get("k") == "v2"
    assert reopened.get("gone") is None
    assert len(reopened.table) == 1
    reopened.close()
