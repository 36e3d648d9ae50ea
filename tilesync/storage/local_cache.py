"""
本地缓存网关：以类型化的方式读写 KeyValueStore 中的组件、布局和组件配置。

本地存储只通过这里写入。读-改-写通过 `update()` 完成，整个过程持有可重入锁。
"""

import json
import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from tilesync.models import LayoutMap, WidgetRecord, dump_layouts, parse_layouts
from tilesync.storage.kv_store import KeyValueStore

logger = logging.getLogger(__name__)


class LocalCacheGateway:
    """保存用户的三类记录以及应用级设置。"""

    def __init__(self, store: KeyValueStore, key_prefix: str = "tilesync"):
        self._store = store
        self._lock = threading.RLock()
        self.layouts_key = f"{key_prefix}-layouts"
        self.widgets_key = f"{key_prefix}-widgets"
        self.configs_key = f"{key_prefix}-widget-configs"
        self.app_settings_key = f"{key_prefix}-app-settings"

    # ── Raw JSON ─────────────────────────────────────────

    def _read(self, key: str, default: Any) -> Any:
        raw = self._store.get(key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            logger.error(f"[{key}] Failed to parse cached value: {e}")
            return default

    def _write(self, key: str, value: Any):
        self._store.set(key, json.dumps(value, ensure_ascii=False))

    def update(self, key: str, fn: Callable[[Any], Any], default: Any = None) -> Any:
        """对 `key` 的当前值调用 `fn`，并把结果写回。"""
        with self._lock:
            current = self._read(key, default)
            updated = fn(current)
            self._write(key, updated)
            return updated

    # ── Layouts ──────────────────────────────────────────

    def get_layouts(self) -> LayoutMap:
        raw = self._read(self.layouts_key, {})
        try:
            return parse_layouts(raw)
        except ValidationError as e:
            logger.error(f"Failed to load layouts: {e}")
            return {}

    def set_layouts(self, layouts: LayoutMap):
        with self._lock:
            self._write(self.layouts_key, dump_layouts(layouts))

    def set_layouts_raw(self, raw: Dict[str, Any]):
        with self._lock:
            self._write(self.layouts_key, raw)

    # ── Widgets ──────────────────────────────────────────

    def get_widgets(self) -> List[WidgetRecord]:
        raw = self._read(self.widgets_key, [])
        if not isinstance(raw, list):
            logger.error(f"Unexpected widgets record type: {type(raw).__name__}")
            return []
        try:
            return [WidgetRecord.model_validate(item) for item in raw]
        except ValidationError as e:
            logger.error(f"Failed to load widgets: {e}")
            return []

    def set_widgets(self, widgets: List[WidgetRecord]):
        with self._lock:
            self._write(self.widgets_key, [WidgetRecord(id=w.id, type=w.type).model_dump() for w in widgets])

    def get_widget_type(self, widget_id: str) -> Optional[str]:
        for w in self.get_widgets():
            if w.id == widget_id:
                return w.type
        return None

    # ── Widget configs ───────────────────────────────────

    def get_configs(self) -> Dict[str, Dict[str, Any]]:
        raw = self._read(self.configs_key, {})
        return raw if isinstance(raw, dict) else {}

    def set_configs(self, configs: Dict[str, Dict[str, Any]]):
        with self._lock:
            self._write(self.configs_key, configs)

    def get_config(self, widget_id: str) -> Optional[Dict[str, Any]]:
        return self.get_configs().get(widget_id)

    def set_config(self, widget_id: str, config: Dict[str, Any]):
        def apply(configs):
            configs = configs if isinstance(configs, dict) else {}
            configs[widget_id] = config
            return configs
        self.update(self.configs_key, apply, default={})

    def remove_config(self, widget_id: str):
        def apply(configs):
            configs = configs if isinstance(configs, dict) else {}
            configs.pop(widget_id, None)
            return configs
        self.update(self.configs_key, apply, default={})

    # ── App settings / sign-out ──────────────────────────

    def get_app_settings(self) -> Dict[str, Any]:
        raw = self._read(self.app_settings_key, {})
        return raw if isinstance(raw, dict) else {}

    def set_app_settings(self, settings: Dict[str, Any]):
        with self._lock:
            self._write(self.app_settings_key, settings)

    def clear_user_data(self):
        """删除用户数据，保留应用级设置。"""
        with self._lock:
            for key in (self.layouts_key, self.widgets_key, self.configs_key):
                self._store.remove(key)
        logger.info("Local user data cleared")
