"""
Config Store：按 widget id 存取组件配置。
敏感字段在进入本地缓存或同步层之前交给 FieldCipher 处理。
编码时使用的字段名随配置一起保存，解码时不依赖组件列表是否已同步。
"""

import json
import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Dict, Optional

from tilesync.crypto import Base64FieldCipher, FieldCipher
from tilesync.storage.local_cache import LocalCacheGateway
from tilesync.widget_types import WidgetTypeRegistry

if TYPE_CHECKING:
    from tilesync.sync.coordinator import SyncCoordinator

logger = logging.getLogger(__name__)

# 保存配置时记录已编码的字段名
SENSITIVE_FIELDS_KEY = "__sensitive__"


class ConfigValidationError(ValueError):
    """配置不是字符串 key 的可 JSON 序列化映射。"""
    def __init__(self, widget_id: str, message: str):
        self.widget_id = widget_id
        self.message = message
        super().__init__(f"[{widget_id}] {message}")


class ConfigStore:

    def __init__(
        self,
        cache: LocalCacheGateway,
        cipher: FieldCipher | None = None,
        registry: WidgetTypeRegistry | None = None,
        coordinator: Optional["SyncCoordinator"] = None,
    ):
        self._cache = cache
        self._cipher = cipher or Base64FieldCipher()
        self._registry = registry or WidgetTypeRegistry()
        self._coordinator = coordinator

    def _fields_for(self, widget_id: str) -> list[str]:
        return self._registry.sensitive_fields_for(self._cache.get_widget_type(widget_id))

    @staticmethod
    def validate(widget_id: str, settings: Any) -> Dict[str, Any]:
        if not isinstance(settings, Mapping):
            raise ConfigValidationError(widget_id, f"settings must be a mapping, got {type(settings).__name__}")
        for key in settings:
            if not isinstance(key, str):
                raise ConfigValidationError(widget_id, f"setting names must be strings, got {key!r}")
            if key == SENSITIVE_FIELDS_KEY:
                raise ConfigValidationError(widget_id, f"setting name '{key}' is reserved")
        try:
            json.dumps(dict(settings))
        except (TypeError, ValueError) as e:
            raise ConfigValidationError(widget_id, f"settings are not JSON serializable: {e}")
        return dict(settings)

    # ── 读取 ──────────────────────────────────────────

    def _decode(self, widget_id: str, stored: Dict[str, Any]) -> Dict[str, Any]:
        stored = dict(stored)
        fields = stored.pop(SENSITIVE_FIELDS_KEY, None)
        if not isinstance(fields, list):
            # 旧数据没有记录字段名，按组件类型推断
            fields = self._fields_for(widget_id)
        return self._cipher.process_from_storage(stored, fields)

    def get(self, widget_id: str) -> Dict[str, Any] | None:
        stored = self._cache.get_config(widget_id)
        if stored is None:
            return None
        return self._decode(widget_id, stored)

    def get_all(self) -> Dict[str, Dict[str, Any]]:
        result = {}
        for widget_id, stored in self._cache.get_configs().items():
            if isinstance(stored, dict):
                result[widget_id] = self._decode(widget_id, stored)
        return result

    # ── 写入 ──────────────────────────────────────────

    def set(self, widget_id: str, settings: Dict[str, Any]):
        """校验并保存配置；先写本地，再交给同步层（防抖）。"""
        settings = self.validate(widget_id, settings)
        fields = self._fields_for(widget_id)
        processed = self._cipher.process_for_storage(settings, fields)
        processed[SENSITIVE_FIELDS_KEY] = fields
        self._cache.set_config(widget_id, processed)
        if self._coordinator is not None:
            self._coordinator.schedule_config_write(widget_id, processed)
        logger.debug(f"[{widget_id}] 配置已保存")

    def remove(self, widget_id: str):
        self._cache.remove_config(widget_id)
        if self._coordinator is not None:
            self._coordinator.delete_config_now(widget_id)
        logger.debug(f"[{widget_id}] 配置已删除")
