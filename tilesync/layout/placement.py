"""
放置求解：为新项目做贪心的首次适配，优先填补空隙。

按行优先顺序扫描单元格。在第一个空闲单元格处，从首选尺寸递减到最小尺寸
（先高后宽）依次尝试，接受第一个能放下的矩形。
这不是最优装箱算法，不追求总面积最小。
"""

import logging
from typing import NamedTuple

from tilesync.layout.occupancy import OccupancyGrid, occupied_rows

logger = logging.getLogger(__name__)


class Placement(NamedTuple):
    x: int
    y: int
    w: int
    h: int


class PlacementFailure(Exception):
    """预分配的网格中没有任何位置放得下最小尺寸。"""
    def __init__(self, columns: int, rows: int, min_w: int, min_h: int):
        self.columns = columns
        self.rows = rows
        self.min_w = min_w
        self.min_h = min_h
        super().__init__(f"no {min_w}x{min_h} slot in {columns}x{rows} grid")


def _fits(grid: OccupancyGrid, columns: int, x: int, y: int, w: int, h: int) -> bool:
    if x + w > columns or y + h > len(grid):
        return False
    for row in range(y, y + h):
        cells = grid[row]
        for col in range(x, x + w):
            if cells[col]:
                return False
    return True


def _clamp_sizes(columns: int, min_w: int, min_h: int, preferred_w: int, preferred_h: int):
    min_w = max(1, min(min_w, columns))
    min_h = max(1, min_h)
    preferred_w = max(min_w, min(preferred_w, columns))
    preferred_h = max(min_h, preferred_h)
    return min_w, min_h, preferred_w, preferred_h


def find_slot(
    grid: OccupancyGrid,
    columns: int,
    min_w: int,
    min_h: int,
    preferred_w: int,
    preferred_h: int,
) -> Placement:
    """扫描第一个可用位置；没有时抛出 PlacementFailure。"""
    min_w, min_h, preferred_w, preferred_h = _clamp_sizes(columns, min_w, min_h, preferred_w, preferred_h)

    for y, cells in enumerate(grid):
        for x in range(columns):
            if cells[x]:
                continue
            for h in range(preferred_h, min_h - 1, -1):
                for w in range(preferred_w, min_w - 1, -1):
                    if _fits(grid, columns, x, y, w, h):
                        return Placement(x, y, w, h)

    raise PlacementFailure(columns, len(grid), min_w, min_h)


def place(
    grid: OccupancyGrid,
    columns: int,
    min_w: int,
    min_h: int,
    preferred_w: int,
    preferred_h: int,
) -> Placement:
    """
    为新项目确定位置和尺寸。

    网格没有空位时，按首选尺寸放到已占用区域的下方；行数向下不受限，所以总能放下。
    """
    try:
        return find_slot(grid, columns, min_w, min_h, preferred_w, preferred_h)
    except PlacementFailure as e:
        logger.debug(f"Placement fallback to bottom of grid: {e}")
        _, _, preferred_w, preferred_h = _clamp_sizes(columns, min_w, min_h, preferred_w, preferred_h)
        return Placement(0, occupied_rows(grid), preferred_w, preferred_h)
