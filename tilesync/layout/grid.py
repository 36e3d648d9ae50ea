"""
断点表：断点名称、最小视口宽度与列数的静态查询。
"""

from typing import Dict, List, Optional

from tilesync.config_loader import DEFAULT_BREAKPOINTS, BreakpointConfig, GridConfig


class GridModel:
    """断点按宽度从宽到窄排列。"""

    def __init__(self, breakpoints: Optional[List[BreakpointConfig]] = None):
        config = GridConfig(breakpoints=breakpoints if breakpoints is not None else list(DEFAULT_BREAKPOINTS))
        self._ordered = config.breakpoints
        self._by_name: Dict[str, BreakpointConfig] = {b.name: b for b in self._ordered}

    @classmethod
    def from_config(cls, config: GridConfig) -> "GridModel":
        return cls(config.breakpoints)

    @property
    def breakpoints(self) -> List[str]:
        return [b.name for b in self._ordered]

    def columns_for(self, breakpoint: str) -> int:
        return self._by_name[breakpoint].columns

    def min_width_for(self, breakpoint: str) -> int:
        return self._by_name[breakpoint].min_width

    def breakpoint_for(self, viewport_width: int) -> str:
        for bp in self._ordered:
            if bp.min_width <= viewport_width:
                return bp.name
        # negative widths
        return self._ordered[-1].name

    def __contains__(self, breakpoint: str) -> bool:
        return breakpoint in self._by_name
