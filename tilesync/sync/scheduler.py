"""
可取消的延迟回调。

防抖与重试退避的定时器都经由 Scheduler 创建，持有者可以随时取消；
测试中用 ManualScheduler 推进虚拟时间。
"""

import asyncio
import heapq
import itertools
from abc import ABC, abstractmethod
from typing import Any, Callable, List, Optional, Tuple


class TimerHandle:
    """一个待执行的回调；`cancel()` 后不再执行。"""

    def __init__(self, when: float, callback: Callable[..., Any], args: tuple):
        self.when = when
        self._callback = callback
        self._args = args
        self._cancelled = False
        self._inner: Optional[asyncio.TimerHandle] = None

    def cancel(self):
        self._cancelled = True
        if self._inner is not None:
            self._inner.cancel()

    def cancelled(self) -> bool:
        return self._cancelled

    def _run(self):
        if not self._cancelled:
            self._cancelled = True
            self._callback(*self._args)


class Scheduler(ABC):

    @abstractmethod
    def call_later(self, delay: float, callback: Callable[..., Any], *args) -> TimerHandle:
        ...


class LoopScheduler(Scheduler):
    """在当前运行的 asyncio 事件循环上调度。"""

    def call_later(self, delay: float, callback: Callable[..., Any], *args) -> TimerHandle:
        loop = asyncio.get_running_loop()
        handle = TimerHandle(loop.time() + delay, callback, args)
        handle._inner = loop.call_later(delay, handle._run)
        return handle


class ManualScheduler(Scheduler):
    """虚拟时钟；回调只在 `advance()` 中执行。"""

    def __init__(self, start: float = 0.0):
        self._now = start
        self._queue: List[Tuple[float, int, TimerHandle]] = []
        self._seq = itertools.count()

    def call_later(self, delay: float, callback: Callable[..., Any], *args) -> TimerHandle:
        handle = TimerHandle(self._now + max(delay, 0.0), callback, args)
        heapq.heappush(self._queue, (handle.when, next(self._seq), handle))
        return handle

    def pending(self) -> List[TimerHandle]:
        return sorted((h for _, _, h in self._queue if not h.cancelled()), key=lambda h: h.when)

    def advance(self, seconds: float):
        """推进时钟，按时间顺序执行到期的回调。"""
        target = self._now + seconds
        while self._queue and self._queue[0][0] <= target:
            when, _, handle = heapq.heappop(self._queue)
            self._now = when
            handle._run()
        self._now = target
