"""
组件类型注册表：每种类型的默认尺寸与敏感配置字段。
"""

import logging
from typing import Dict, Iterable, List, Optional

from tilesync.config_loader import DEFAULT_SENSITIVE_FIELDS
from tilesync.models import WidgetTypeSpec

logger = logging.getLogger(__name__)


class WidgetTypeRegistry:
    """按类型名查找 WidgetTypeSpec，未知类型使用通用定义。"""

    def __init__(
        self,
        specs: Iterable[WidgetTypeSpec] = (),
        default_sensitive_fields: Optional[List[str]] = None,
    ):
        self._specs: Dict[str, WidgetTypeSpec] = {s.type: s for s in specs}
        self._default_sensitive = list(default_sensitive_fields or DEFAULT_SENSITIVE_FIELDS)

    def get(self, widget_type: str) -> WidgetTypeSpec:
        spec = self._specs.get(widget_type)
        if spec is None:
            return WidgetTypeSpec(type=widget_type)
        return spec

    def is_known(self, widget_type: str) -> bool:
        return widget_type in self._specs

    def sensitive_fields_for(self, widget_type: Optional[str]) -> List[str]:
        if widget_type is None:
            return list(self._default_sensitive)
        spec = self._specs.get(widget_type)
        if spec is None or spec.sensitive_fields is None:
            return list(self._default_sensitive)
        return list(spec.sensitive_fields)
