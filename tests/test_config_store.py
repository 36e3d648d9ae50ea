from unittest.mock import MagicMock

import pytest

from tilesync.config_loader import DEFAULT_SENSITIVE_FIELDS
from tilesync.config_store import SENSITIVE_FIELDS_KEY, ConfigStore, ConfigValidationError
from tilesync.crypto import Base64FieldCipher
from tilesync.models import WidgetRecord, WidgetTypeSpec
from tilesync.widget_types import WidgetTypeRegistry


@pytest.fixture
def registry():
    return WidgetTypeRegistry([
        WidgetTypeSpec(type="weather", sensitive_fields=["apiKey"]),
        WidgetTypeSpec(type="notes", sensitive_fields=[]),
    ])


@pytest.fixture
def config_store(cache, registry):
    cache.set_widgets([
        WidgetRecord(id="w1", type="weather"),
        WidgetRecord(id="n1", type="notes"),
        WidgetRecord(id="x1", type="unregistered"),
    ])
    return ConfigStore(cache, Base64FieldCipher(), registry)


def test_sensitive_fields_encoded_at_rest(config_store, cache):
    config_store.set("w1", {"apiKey": "abc", "city": "Oslo"})

    assert cache.get_config("w1") == {"apiKey": "YWJj", "city": "Oslo", SENSITIVE_FIELDS_KEY: ["apiKey"]}
    assert config_store.get("w1") == {"apiKey": "abc", "city": "Oslo"}


def test_sensitive_fields_declared_per_widget_type(config_store, cache):
    config_store.set("n1", {"token": "plain"})
    config_store.set("x1", {"token": "abc", "apiKey": "", "count": 3})

    assert cache.get_config("n1") == {"token": "plain", SENSITIVE_FIELDS_KEY: []}
    # unregistered types use the default field list; empty and non-string values pass through
    assert cache.get_config("x1") == {
        "token": "YWJj",
        "apiKey": "",
        "count": 3,
        SENSITIVE_FIELDS_KEY: DEFAULT_SENSITIVE_FIELDS,
    }


def test_decoding_uses_fields_recorded_at_write_time(config_store, cache):
    config_store.set("n1", {"key": "hello world"})
    config_store.set("w1", {"apiKey": "abc"})

    # widget list not synced yet on this device
    cache.set_widgets([])

    assert config_store.get("n1") == {"key": "hello world"}
    assert config_store.get("w1") == {"apiKey": "abc"}


def test_configs_without_recorded_fields_fall_back_to_widget_type(config_store, cache):
    cache.set_config("w1", {"apiKey": "YWJj"})
    cache.set_config("n1", {"key": "hello world"})

    assert config_store.get_all() == {"w1": {"apiKey": "abc"}, "n1": {"key": "hello world"}}


def test_get_all_decodes_every_entry(config_store):
    config_store.set("w1", {"apiKey": "k1"})
    config_store.set("n1", {"text": "hi"})
    assert config_store.get_all() == {"w1": {"apiKey": "k1"}, "n1": {"text": "hi"}}


def test_missing_config_is_none(config_store):
    assert config_store.get("w1") is None


@pytest.mark.parametrize("settings", [
    ["not", "a", "mapping"],
    {1: "int key"},
    {"value": object()},
    {SENSITIVE_FIELDS_KEY: ["apiKey"]},
])
def test_invalid_settings_rejected(config_store, cache, settings):
    with pytest.raises(ConfigValidationError) as excinfo:
        config_store.set("w1", settings)
    assert excinfo.value.widget_id == "w1"
    assert cache.get_config("w1") is None


def test_writes_handed_to_coordinator(config_store, cache, registry):
    # Mock dependencies
    coordinator = MagicMock()
    config_store = ConfigStore(cache, Base64FieldCipher(), registry, coordinator=coordinator)

    config_store.set("w1", {"apiKey": "abc"})
    coordinator.schedule_config_write.assert_called_once_with(
        "w1", {"apiKey": "YWJj", SENSITIVE_FIELDS_KEY: ["apiKey"]}
    )

    config_store.remove("w1")
    coordinator.delete_config_now.assert_called_once_with("w1")
    assert config_store.get("w1") is None


def test_undecodable_value_reads_back_empty():
    cipher = Base64FieldCipher()
    assert cipher.decrypt("not base64!") == ""
    assert cipher.process_from_storage({"token": cipher.encrypt("s3cret")}, ["token"]) == {"token": "s3cret"}
