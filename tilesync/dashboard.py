"""
仪表盘操作，由展示层调用。

每个操作先用 LayoutNormalizer 和放置求解计算所有断点的新布局，
写入本地缓存后再交给 SyncCoordinator 同步。
"""

import logging
import uuid
from typing import Any, Dict, List, Optional

from tilesync.config_store import ConfigStore
from tilesync.layout.grid import GridModel
from tilesync.layout.normalizer import LayoutNormalizer
from tilesync.models import LayoutItem, LayoutMap, Widget, WidgetRecord, dump_layouts
from tilesync.storage.local_cache import LocalCacheGateway
from tilesync.sync.coordinator import SyncCoordinator
from tilesync.widget_types import WidgetTypeRegistry

logger = logging.getLogger(__name__)


class WidgetNotFound(KeyError):
    def __init__(self, widget_id: str):
        self.widget_id = widget_id
        super().__init__(widget_id)


def new_widget_id() -> str:
    return f"widget-{uuid.uuid4().hex[:12]}"


class DashboardService:

    def __init__(
        self,
        grid: GridModel,
        normalizer: LayoutNormalizer,
        cache: LocalCacheGateway,
        config_store: ConfigStore,
        coordinator: Optional[SyncCoordinator] = None,
        registry: Optional[WidgetTypeRegistry] = None,
    ):
        self.grid = grid
        self.normalizer = normalizer
        self.cache = cache
        self.config_store = config_store
        self.coordinator = coordinator
        self.registry = registry or WidgetTypeRegistry()

    # ── Reads ────────────────────────────────────────

    def widgets(self) -> List[WidgetRecord]:
        return self.cache.get_widgets()

    def layouts(self) -> LayoutMap:
        """与组件列表对齐后的缓存布局。"""
        return self.normalizer.normalize(self.cache.get_layouts(), self.widgets())

    def snapshot(self) -> Dict[str, Any]:
        widgets = self.widgets()
        configs = self.config_store.get_all()
        return {
            "widgets": [
                Widget(id=w.id, type=w.type, config=configs.get(w.id, {})).model_dump()
                for w in widgets
            ],
            "layouts": dump_layouts(self.normalizer.normalize(self.cache.get_layouts(), widgets)),
        }

    def _require(self, widget_id: str) -> WidgetRecord:
        for w in self.widgets():
            if w.id == widget_id:
                return w
        raise WidgetNotFound(widget_id)

    # ── Persist helpers ──────────────────────────────

    def _commit_layouts(self, layouts: LayoutMap, immediate: bool = False):
        self.cache.set_layouts(layouts)
        if self.coordinator is not None:
            self.coordinator.push_layouts(layouts, immediate=immediate)

    def _commit_widgets(self, widgets: List[WidgetRecord], immediate: bool = False):
        self.cache.set_widgets(widgets)
        if self.coordinator is not None:
            self.coordinator.push_widgets(widgets, immediate=immediate)

    # ── Actions ──────────────────────────────────────

    def add_widget(self, widget_type: str, config: Optional[Dict[str, Any]] = None) -> Widget:
        if config is not None:
            ConfigStore.validate("<new>", config)
        if not self.registry.is_known(widget_type):
            logger.warning(f"Unknown widget type '{widget_type}', using default size")

        widget = Widget(id=new_widget_id(), type=widget_type, config=dict(config or {}))
        widgets = self.widgets() + [WidgetRecord(id=widget.id, type=widget.type)]
        layouts = self.normalizer.normalize(self.cache.get_layouts(), widgets)

        self._commit_widgets(widgets)
        self._commit_layouts(layouts)
        self.config_store.set(widget.id, widget.config)
        logger.info(f"[{widget.id}] Widget added ({widget_type})")
        return widget

    def delete_widget(self, widget_id: str):
        self._require(widget_id)
        widgets = [w for w in self.widgets() if w.id != widget_id]
        layouts = self.normalizer.normalize(self.cache.get_layouts(), widgets)

        self._commit_widgets(widgets, immediate=True)
        self._commit_layouts(layouts, immediate=True)
        self.config_store.remove(widget_id)
        logger.info(f"[{widget_id}] Widget deleted")

    def update_layout(self, breakpoint: str, items: List[LayoutItem]) -> LayoutMap:
        """应用某个断点上拖动或缩放的结果。"""
        if breakpoint not in self.grid:
            raise KeyError(breakpoint)
        layouts = self.cache.get_layouts()
        layouts[breakpoint] = list(items)
        layouts = self.normalizer.normalize(layouts, self.widgets())
        self._commit_layouts(layouts)
        return layouts

    def _edit_item(self, widget_id: str, breakpoint: str, **changes) -> LayoutItem:
        self._require(widget_id)
        current = self.layouts()
        if breakpoint not in current:
            raise KeyError(breakpoint)
        items = [
            item.model_copy(update=changes) if item.id == widget_id else item
            for item in current[breakpoint]
        ]
        updated = self.update_layout(breakpoint, items)
        return next(item for item in updated[breakpoint] if item.id == widget_id)

    def move_widget(self, widget_id: str, breakpoint: str, x: int, y: int) -> LayoutItem:
        return self._edit_item(widget_id, breakpoint, x=x, y=y)

    def resize_widget(self, widget_id: str, breakpoint: str, w: int, h: int) -> LayoutItem:
        return self._edit_item(widget_id, breakpoint, w=w, h=h)

    def get_config(self, widget_id: str) -> Dict[str, Any]:
        self._require(widget_id)
        return self.config_store.get(widget_id) or {}

    def update_config(self, widget_id: str, settings: Dict[str, Any]):
        self._require(widget_id)
        self.config_store.set(widget_id, settings)

    def save_now(self):
        if self.coordinator is not None:
            self.coordinator.flush()
