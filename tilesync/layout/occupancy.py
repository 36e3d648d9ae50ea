"""
占用网格：记录已放置项目所覆盖单元格的布尔矩阵。
"""

from typing import Iterable, List

from tilesync.models import LayoutItem

OccupancyGrid = List[List[bool]]


def build_occupancy(items: Iterable[LayoutItem], columns: int, extra_rows: int = 0) -> OccupancyGrid:
    """
    构建 `[max(y + h) + extra_rows][columns]` 的矩阵。

    假定项目之间不重叠，这里不再检查；超出列数的单元格被截掉。
    """
    items = list(items)
    bottom = max((item.y + item.h for item in items), default=0)
    grid = [[False] * columns for _ in range(bottom + max(extra_rows, 0))]

    for item in items:
        for row in range(max(item.y, 0), item.y + item.h):
            cells = grid[row]
            for col in range(max(item.x, 0), min(item.x + item.w, columns)):
                cells[col] = True
    return grid


def occupied_rows(grid: OccupancyGrid) -> int:
    """最后一个有占用单元格的行号加一。"""
    for row in range(len(grid) - 1, -1, -1):
        if any(grid[row]):
            return row + 1
    return 0
