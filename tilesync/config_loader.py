"""
配置加载器：将 YAML 配置文件解析为 Pydantic 模型。
"""

import logging
import os
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, model_validator

from tilesync.models import WidgetTypeSpec

logger = logging.getLogger(__name__)


# ── 网格配置 ──────────────────────────────────────────

class BreakpointConfig(BaseModel):
    name: str
    min_width: int  # 最小视口宽度 (px)
    columns: int


DEFAULT_BREAKPOINTS = [
    BreakpointConfig(name="xxxl", min_width=2560, columns=24),  # 4K / ultra-wide
    BreakpointConfig(name="xxl", min_width=1920, columns=18),
    BreakpointConfig(name="xl", min_width=1536, columns=14),
    BreakpointConfig(name="lg", min_width=1200, columns=12),
    BreakpointConfig(name="md", min_width=996, columns=10),
    BreakpointConfig(name="sm", min_width=768, columns=6),
    BreakpointConfig(name="xs", min_width=480, columns=4),
    BreakpointConfig(name="xxs", min_width=0, columns=2),
]


class GridConfig(BaseModel):
    breakpoints: List[BreakpointConfig] = Field(default_factory=lambda: list(DEFAULT_BREAKPOINTS))
    # 新组件放置时预留的空行数
    extra_rows: int = 6

    @model_validator(mode="after")
    def check_breakpoints(self) -> "GridConfig":
        if not self.breakpoints:
            raise ValueError("at least one breakpoint is required")
        ordered = sorted(self.breakpoints, key=lambda b: b.min_width, reverse=True)
        for prev, cur in zip(ordered, ordered[1:]):
            if prev.min_width == cur.min_width:
                raise ValueError(f"breakpoints {prev.name} and {cur.name} share min_width {cur.min_width}")
            if cur.columns > prev.columns:
                raise ValueError(f"breakpoint {cur.name} has more columns than wider {prev.name}")
        if ordered[-1].min_width != 0:
            raise ValueError("the smallest breakpoint must have min_width 0")
        if any(b.columns <= 0 for b in ordered):
            raise ValueError("breakpoint columns must be positive")
        self.breakpoints = ordered
        return self


# ── 同步配置 ──────────────────────────────────────────

class SyncConfig(BaseModel):
    debounce_ms: int = 500
    retry_delays: List[float] = Field(default_factory=lambda: [1.0, 2.0, 4.0])
    max_attempts: int = 3
    # 远程文档服务地址，未配置时使用进程内存储
    remote_url: Optional[str] = None
    poll_interval: float = 5.0
    probe_interval: float = 15.0
    request_timeout: float = 10.0


# ── 存储配置 ──────────────────────────────────────────

DEFAULT_SENSITIVE_FIELDS = ["apiKey", "token", "secret", "password", "key"]


class StorageConfig(BaseModel):
    path: str = "data/cache.json"
    key_prefix: str = "tilesync"
    sensitive_fields: List[str] = Field(default_factory=lambda: list(DEFAULT_SENSITIVE_FIELDS))


# ── 顶层配置 ──────────────────────────────────────────

class AppConfig(BaseModel):
    grid: GridConfig = Field(default_factory=GridConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    widget_types: List[WidgetTypeSpec] = Field(default_factory=list)

    def widget_type_map(self) -> Dict[str, WidgetTypeSpec]:
        return {t.type: t for t in self.widget_types}


# ── Loading ──────────────────────────────────────────

_CONFIG_SEARCH_PATHS = [
    "config/config.yaml",
    "config.yaml",
]


def find_config_root() -> Path:
    """在 TILESYNC_ROOT（或当前目录）下查找配置文件。"""
    base = Path(os.getenv("TILESYNC_ROOT", "."))
    for p in _CONFIG_SEARCH_PATHS:
        path = base / p
        if path.exists():
            return path
    return base / _CONFIG_SEARCH_PATHS[0]


def load_config(path: Optional[str | Path] = None) -> AppConfig:
    """
    加载 YAML 配置。文件不存在时返回默认配置。
    `widget_types` 可以写成列表或以类型名为 key 的字典。
    """
    if path is None:
        path = find_config_root()
    path = Path(path)

    if not path.exists():
        logger.info(f"配置文件不存在，使用默认配置: {path}")
        return AppConfig()

    with open(path, "r", encoding="utf-8") as fp:
        raw = yaml.safe_load(fp) or {}

    types = raw.get("widget_types")
    if isinstance(types, dict):
        raw["widget_types"] = [{"type": name, **(spec or {})} for name, spec in types.items()]

    return AppConfig.model_validate(raw)
