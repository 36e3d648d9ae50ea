"""
布局规范化。

让 LayoutMap 与组件列表及网格模型保持一致：去掉孤立项和重复项，
限制每个项目的尺寸，解决重叠，并为某断点缺失的组件补上布局项。
每一步都是幂等的，对已规范化的布局再次处理不会有任何变化。
"""

import logging
from typing import Dict, Iterable, List, Optional

from tilesync.layout.grid import GridModel
from tilesync.layout.occupancy import build_occupancy
from tilesync.layout.placement import place
from tilesync.models import LayoutItem, LayoutMap, WidgetRecord
from tilesync.widget_types import WidgetTypeRegistry

logger = logging.getLogger(__name__)


class LayoutNormalizer:

    def __init__(self, grid: GridModel, registry: Optional[WidgetTypeRegistry] = None, extra_rows: int = 6):
        self._grid = grid
        self._registry = registry or WidgetTypeRegistry()
        self._extra_rows = extra_rows

    def normalize(self, layouts: LayoutMap, widgets: Iterable[WidgetRecord]) -> LayoutMap:
        widget_types: Dict[str, str] = {}
        for w in widgets:
            widget_types.setdefault(w.id, w.type)

        for bp in layouts:
            if bp not in self._grid:
                logger.debug(f"Dropping layout for unknown breakpoint '{bp}'")

        result: LayoutMap = {}
        for bp in self._grid.breakpoints:
            columns = self._grid.columns_for(bp)
            items = self._prune(bp, layouts.get(bp) or [], widget_types)
            items = [self._limit(bp, item, columns) for item in items]
            items = self._resolve_collisions(bp, items, columns)
            present = {item.id for item in items}
            for widget_id, widget_type in widget_types.items():
                if widget_id not in present:
                    items.append(self._synthesize(widget_id, widget_type, items, columns))
                    logger.debug(f"[{widget_id}] Synthesized layout entry for breakpoint '{bp}'")
            result[bp] = items
        return result

    def _prune(self, bp: str, items: List[LayoutItem], widget_types: Dict[str, str]) -> List[LayoutItem]:
        kept = []
        seen = set()
        for item in items:
            if item.id not in widget_types:
                logger.debug(f"[{item.id}] Dropping orphan layout entry from '{bp}'")
                continue
            if item.id in seen:
                logger.debug(f"[{item.id}] Dropping duplicate layout entry from '{bp}'")
                continue
            seen.add(item.id)
            kept.append(item)
        return kept

    def _limit(self, bp: str, item: LayoutItem, columns: int) -> LayoutItem:
        limited = self.enforce_limits(item, columns)
        if limited is not item:
            logger.debug(
                f"[{item.id}] Size/position out of bounds on '{bp}': "
                f"({item.x}, {item.y}) {item.w}x{item.h} -> ({limited.x}, {limited.y}) {limited.w}x{limited.h}"
            )
        return limited

    @staticmethod
    def enforce_limits(item: LayoutItem, columns: int) -> LayoutItem:
        """把尺寸限制在最小/最大值之间，并把位置限制在网格列数内。"""
        min_w = max(1, min(item.min_w, columns))
        min_h = max(1, item.min_h)
        w = max(item.w, min_w)
        h = max(item.h, min_h)
        if item.max_w is not None and item.max_w >= min_w:
            w = min(w, item.max_w)
        if item.max_h is not None and item.max_h >= min_h:
            h = min(h, item.max_h)
        w = min(w, columns)
        x = max(item.x, 0)
        y = max(item.y, 0)
        if x + w > columns:
            x = columns - w

        changes = {"x": x, "y": y, "w": w, "h": h, "min_w": min_w, "min_h": min_h}
        if all(getattr(item, k) == v for k, v in changes.items()):
            return item
        return item.model_copy(update=changes)

    def _resolve_collisions(self, bp: str, items: List[LayoutItem], columns: int) -> List[LayoutItem]:
        order = sorted(range(len(items)), key=lambda i: (items[i].y, items[i].x, i))
        accepted: List[LayoutItem] = []
        resolved = list(items)
        for i in order:
            item = items[i]
            if any(item.overlaps(other) for other in accepted):
                grid = build_occupancy(accepted, columns, extra_rows=max(self._extra_rows, item.h))
                p = place(grid, columns, item.min_w, item.min_h, item.w, item.h)
                logger.debug(f"[{item.id}] Overlap on '{bp}', moved to ({p.x}, {p.y}) {p.w}x{p.h}")
                item = item.model_copy(update={"x": p.x, "y": p.y, "w": p.w, "h": p.h})
                resolved[i] = item
            accepted.append(item)
        return resolved

    def _synthesize(self, widget_id: str, widget_type: str, items: List[LayoutItem], columns: int) -> LayoutItem:
        spec = self._registry.get(widget_type)
        preferred_w = spec.default_w if spec.max_w is None else min(spec.default_w, spec.max_w)
        preferred_h = spec.default_h if spec.max_h is None else min(spec.default_h, spec.max_h)
        grid = build_occupancy(items, columns, extra_rows=max(self._extra_rows, preferred_h))
        p = place(grid, columns, spec.min_w, spec.min_h, preferred_w, preferred_h)
        item = LayoutItem(
            id=widget_id,
            x=p.x,
            y=p.y,
            w=p.w,
            h=p.h,
            min_w=spec.min_w,
            min_h=spec.min_h,
            max_w=spec.max_w,
            max_h=spec.max_h,
        )
        return self.enforce_limits(item, columns)
