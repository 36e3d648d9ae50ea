from unittest.mock import MagicMock

import pytest

from tilesync.config_store import ConfigStore, ConfigValidationError
from tilesync.dashboard import DashboardService, WidgetNotFound
from tilesync.layout.normalizer import LayoutNormalizer
from tilesync.models import LayoutItem, WidgetTypeSpec
from tilesync.widget_types import WidgetTypeRegistry


@pytest.fixture
def registry():
    return WidgetTypeRegistry([WidgetTypeSpec(type="weather", default_w=4, default_h=2, sensitive_fields=["apiKey"])])


@pytest.fixture
def coordinator():
    return MagicMock()


@pytest.fixture
def dashboard(five_tier_grid, cache, registry, coordinator):
    config_store = ConfigStore(cache, registry=registry, coordinator=coordinator)
    normalizer = LayoutNormalizer(five_tier_grid, registry)
    return DashboardService(five_tier_grid, normalizer, cache, config_store, coordinator, registry)


def positions(layouts, widget_id):
    return {bp: next(i for i in items if i.id == widget_id) for bp, items in layouts.items()}


def test_add_widget_places_it_on_every_breakpoint(dashboard, cache, coordinator):
    first = dashboard.add_widget("clock")
    second = dashboard.add_widget("weather", {"apiKey": "abc", "city": "Oslo"})

    layouts = dashboard.layouts()
    assert sorted(layouts) == ["lg", "md", "sm", "xs", "xxs"]
    for items in layouts.values():
        assert sorted(i.id for i in items) == sorted([first.id, second.id])

    lg = positions(layouts, second.id)["lg"]
    assert (lg.x, lg.y, lg.w, lg.h) == (3, 0, 4, 2)

    # stored locally before sync, sensitive fields encoded at rest
    assert cache.get_config(second.id)["apiKey"] == "YWJj"
    assert dashboard.get_config(second.id) == {"apiKey": "abc", "city": "Oslo"}
    assert coordinator.push_layouts.call_count == 2
    assert coordinator.push_widgets.call_args.kwargs == {"immediate": False}


def test_add_widget_rejects_invalid_config(dashboard, cache):
    with pytest.raises(ConfigValidationError):
        dashboard.add_widget("clock", {"bad": object()})
    assert dashboard.widgets() == []


def test_delete_removes_widget_from_all_breakpoints(dashboard, cache, coordinator):
    keep_a = dashboard.add_widget("clock")
    doomed = dashboard.add_widget("weather", {"apiKey": "abc"})
    keep_b = dashboard.add_widget("clock")
    before = dashboard.layouts()

    dashboard.delete_widget(doomed.id)

    after = dashboard.layouts()
    assert len(after) == 5
    for bp, items in after.items():
        assert doomed.id not in {i.id for i in items}
        assert positions(after, keep_a.id)[bp] == positions(before, keep_a.id)[bp]
        assert positions(after, keep_b.id)[bp] == positions(before, keep_b.id)[bp]
    assert cache.get_config(doomed.id) is None
    assert [w.id for w in dashboard.widgets()] == [keep_a.id, keep_b.id]

    coordinator.delete_config_now.assert_called_once_with(doomed.id)
    assert coordinator.push_layouts.call_args.kwargs == {"immediate": True}
    assert coordinator.push_widgets.call_args.kwargs == {"immediate": True}


def test_delete_unknown_widget(dashboard):
    with pytest.raises(WidgetNotFound):
        dashboard.delete_widget("nope")


def test_move_and_resize_only_touch_one_breakpoint(dashboard):
    widget = dashboard.add_widget("clock")
    before = dashboard.layouts()

    moved = dashboard.move_widget(widget.id, "lg", 6, 1)
    assert (moved.x, moved.y) == (6, 1)

    resized = dashboard.resize_widget(widget.id, "lg", 1, 5)
    assert (resized.w, resized.h) == (2, 5)

    after = dashboard.layouts()
    assert after["md"] == before["md"]
    assert positions(after, widget.id)["lg"].x == 6


def test_move_clamped_inside_grid(dashboard):
    widget = dashboard.add_widget("clock")
    moved = dashboard.move_widget(widget.id, "sm", 10, 0)
    assert moved.x + moved.w == 6


def test_update_layout_rejects_unknown_breakpoint(dashboard):
    dashboard.add_widget("clock")
    with pytest.raises(KeyError):
        dashboard.update_layout("xxxl", [])


def test_update_layout_refills_missing_items(dashboard):
    a = dashboard.add_widget("clock")
    b = dashboard.add_widget("clock")

    layouts = dashboard.update_layout("lg", [LayoutItem(id=a.id, x=0, y=0, w=6, h=3)])

    assert {i.id for i in layouts["lg"]} == {a.id, b.id}
    assert positions(layouts, b.id)["lg"].x == 6


def test_snapshot_includes_decoded_configs(dashboard):
    widget = dashboard.add_widget("weather", {"apiKey": "abc"})
    snapshot = dashboard.snapshot()
    assert snapshot["widgets"] == [{"id": widget.id, "type": "weather", "config": {"apiKey": "abc"}}]
    assert set(snapshot["layouts"]) == {"lg", "md", "sm", "xs", "xxs"}


def test_save_now_flushes(dashboard, coordinator):
    dashboard.save_now()
    coordinator.flush.assert_called_once_with()
