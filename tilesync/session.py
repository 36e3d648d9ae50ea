"""
会话信号：当前身份（登录/登出事件）与网络状态。
以事件流的方式注入同步层，而不是全局单例。
"""

import asyncio
import logging
from typing import Callable, List, Optional

import httpx

from tilesync.sync.scheduler import Scheduler, TimerHandle

logger = logging.getLogger(__name__)


class _Signal:
    """简单的回调列表，订阅时返回取消订阅的函数。"""

    def __init__(self):
        self._callbacks: List[Callable] = []

    def subscribe(self, callback: Callable) -> Callable[[], None]:
        self._callbacks.append(callback)

        def unsubscribe():
            if callback in self._callbacks:
                self._callbacks.remove(callback)
        return unsubscribe

    def emit(self, *args):
        for callback in list(self._callbacks):
            callback(*args)


class IdentityEvents:
    """
    当前用户身份。认证由外部完成，这里只接收结果：
    `sign_in(uid)` / `sign_out()`，订阅者收到 uid 或 None。
    """

    def __init__(self):
        self._current: Optional[str] = None
        self._signal = _Signal()

    @property
    def current(self) -> Optional[str]:
        return self._current

    def subscribe(self, callback: Callable[[Optional[str]], None]) -> Callable[[], None]:
        return self._signal.subscribe(callback)

    def sign_in(self, user_id: str):
        if not user_id:
            raise ValueError("user_id must not be empty")
        if user_id == self._current:
            return
        if self._current is not None:
            self.sign_out()
        self._current = user_id
        logger.info(f"[{user_id}] 已登录")
        self._signal.emit(user_id)

    def sign_out(self):
        if self._current is None:
            return
        logger.info(f"[{self._current}] 已登出")
        self._current = None
        self._signal.emit(None)


class NetworkMonitor:
    """在线/离线状态，状态变化时通知订阅者。"""

    def __init__(self, online: bool = True):
        self._online = online
        self._signal = _Signal()

    @property
    def is_online(self) -> bool:
        return self._online

    def subscribe(self, callback: Callable[[bool], None]) -> Callable[[], None]:
        return self._signal.subscribe(callback)

    def set_online(self, online: bool):
        if online == self._online:
            return
        self._online = online
        logger.info("网络已恢复" if online else "网络已断开")
        self._signal.emit(online)


class ConnectivityProbe:
    """定期探测远程服务地址，驱动 NetworkMonitor。"""

    def __init__(
        self,
        url: str,
        monitor: NetworkMonitor,
        scheduler: Scheduler,
        interval: float = 15.0,
        timeout: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ):
        self._url = url
        self._monitor = monitor
        self._scheduler = scheduler
        self._interval = interval
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._handle: Optional[TimerHandle] = None
        self._running = False

    def start(self):
        self._running = True
        self._handle = self._scheduler.call_later(0, self._tick)

    def _tick(self):
        if self._running:
            asyncio.get_running_loop().create_task(self.probe())

    async def probe(self) -> bool:
        """探测一次；任何 HTTP 响应都视为在线。"""
        try:
            await self._client.head(self._url)
            online = True
        except httpx.TransportError as e:
            logger.debug(f"连通性探测失败: {e}")
            online = False
        self._monitor.set_online(online)
        if self._running:
            self._handle = self._scheduler.call_later(self._interval, self._tick)
        return online

    async def stop(self):
        self._running = False
        if self._handle is not None:
            self._handle.cancel()
        await self._client.aclose()
