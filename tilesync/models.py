"""
数据模型定义：组件、网格布局与同步状态。
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class LayoutItem(BaseModel):
    """某个断点网格上的一个组件矩形。"""
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(validation_alias=AliasChoices("id", "i"), description="Widget id")
    x: int = Field(default=0, description="X position in grid columns")
    y: int = Field(default=0, description="Y position in grid rows")
    w: int = Field(default=3, description="Width in grid columns")
    h: int = Field(default=3, description="Height in grid rows")
    min_w: int = Field(default=2, alias="minW")
    min_h: int = Field(default=2, alias="minH")
    max_w: Optional[int] = Field(default=None, alias="maxW")
    max_h: Optional[int] = Field(default=None, alias="maxH")

    def overlaps(self, other: "LayoutItem") -> bool:
        return (
            self.x < other.x + other.w
            and other.x < self.x + self.w
            and self.y < other.y + other.h
            and other.y < self.y + self.h
        )

    def dump(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


LayoutMap = Dict[str, List[LayoutItem]]


class WidgetRecord(BaseModel):
    """组件的持久化部分（配置保存在 Config Store 中）。"""
    id: str
    type: str


class Widget(WidgetRecord):
    config: Dict[str, Any] = Field(default_factory=dict)


class WidgetTypeSpec(BaseModel):
    """某种组件类型声明的尺寸与敏感字段。"""
    type: str
    default_w: int = 3
    default_h: int = 3
    min_w: int = 2
    min_h: int = 2
    max_w: Optional[int] = None
    max_h: Optional[int] = None
    sensitive_fields: Optional[List[str]] = None


class SyncStatus(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    ERROR = "error"
    SUCCESS = "success"


class Channel(str, Enum):
    LAYOUTS = "layouts"
    WIDGETS = "widgets"
    CONFIGS = "configs"


class NoticeKind(str, Enum):
    SYNC_FAILED = "sync_failed"
    SYNC_RESTORED = "sync_restored"
    OFFLINE = "offline"
    ONLINE = "online"


class SyncNotice(BaseModel):
    """同步层发出的、面向用户的通知。"""
    kind: NoticeKind
    message: str
    timestamp: float = 0.0


def dump_layouts(layouts: LayoutMap) -> Dict[str, List[Dict[str, Any]]]:
    return {bp: [item.dump() for item in items] for bp, items in layouts.items()}


def parse_layouts(raw: Any) -> LayoutMap:
    """把原始的 `{breakpoint: [item, ...]}` 映射解析为 LayoutItem。"""
    if not isinstance(raw, dict):
        return {}
    return {
        bp: [LayoutItem.model_validate(item) for item in items]
        for bp, items in raw.items()
        if isinstance(items, list)
    }
