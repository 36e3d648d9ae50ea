"""
远程文档存储。

路径以斜杠分隔，例如 `users/<uid>/dashboard/layouts`。
订阅文档路径时推送该文档（不存在时为 None）；
订阅集合路径时推送 `{doc_id: document}`（集合为空时为 None）。
"""

import asyncio
import copy
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional

import httpx

from tilesync.sync.scheduler import Scheduler, TimerHandle

logger = logging.getLogger(__name__)

OnChange = Callable[[Any], None]
OnError = Callable[[Exception], None]
Unsubscribe = Callable[[], None]


class RemoteError(Exception):
    def __init__(self, path: str, message: str):
        self.path = path
        self.message = message
        super().__init__(f"{path}: {message}")


class RemoteWriteError(RemoteError):
    """写入或删除被拒绝，或在传输中失败。"""


class RemoteSubscriptionError(RemoteError):
    """变更监听无法建立或被中断。"""


class OfflineError(RemoteError):
    """远程存储不可达。"""


class RemoteDocumentStore(ABC):

    @abstractmethod
    def subscribe(self, path: str, on_change: OnChange, on_error: OnError) -> Unsubscribe:
        ...

    @abstractmethod
    async def write(self, path: str, value: Any):
        ...

    @abstractmethod
    async def delete(self, path: str):
        ...

    async def aclose(self):
        pass


def _parent(path: str) -> str:
    return path.rsplit("/", 1)[0] if "/" in path else ""


# ── In-process store ─────────────────────────────────

class _Listener:
    def __init__(self, path: str, on_change: OnChange, on_error: OnError):
        self.path = path
        self.on_change = on_change
        self.on_error = on_error
        self.active = True


class MemoryDocumentStore(RemoteDocumentStore):
    """进程内文档存储；快照同步推送。"""

    def __init__(self):
        self._docs: Dict[str, Any] = {}
        self._listeners: List[_Listener] = []

    def snapshot(self, path: str) -> Any:
        if path in self._docs:
            return copy.deepcopy(self._docs[path])
        prefix = path + "/"
        children = {
            p[len(prefix):]: copy.deepcopy(v)
            for p, v in self._docs.items()
            if p.startswith(prefix) and "/" not in p[len(prefix):]
        }
        return children or None

    def subscribe(self, path: str, on_change: OnChange, on_error: OnError) -> Unsubscribe:
        listener = _Listener(path, on_change, on_error)
        self._listeners.append(listener)
        on_change(self.snapshot(path))

        def unsubscribe():
            listener.active = False
            if listener in self._listeners:
                self._listeners.remove(listener)
        return unsubscribe

    def _notify(self, path: str):
        targets = {path, _parent(path)}
        for listener in list(self._listeners):
            if listener.active and listener.path in targets:
                listener.on_change(self.snapshot(listener.path))

    async def write(self, path: str, value: Any):
        self._docs[path] = copy.deepcopy(value)
        self._notify(path)

    async def delete(self, path: str):
        if self._docs.pop(path, None) is not None:
            self._notify(path)


# ── HTTP store ───────────────────────────────────────

class _Poller:
    def __init__(self, path: str, on_change: OnChange, on_error: OnError):
        self.path = path
        self.on_change = on_change
        self.on_error = on_error
        self.active = True
        self.seen = False
        self.last: Any = None
        self.handle: Optional[TimerHandle] = None
        self.task: Optional[asyncio.Task] = None


class HttpDocumentStore(RemoteDocumentStore):
    """
    REST 文档服务客户端。

    `GET/PUT/DELETE {base_url}/docs/{path}`；对集合路径 GET 返回 `{doc_id: document}`。
    变更通知通过轮询每个订阅路径实现，内容变化时推送。
    """

    def __init__(
        self,
        base_url: str,
        scheduler: Scheduler,
        poll_interval: float = 5.0,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self._client = client or httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=timeout)
        self._scheduler = scheduler
        self._poll_interval = poll_interval
        self._pollers: List[_Poller] = []

    @staticmethod
    def _url(path: str) -> str:
        return f"/docs/{path.strip('/')}"

    def subscribe(self, path: str, on_change: OnChange, on_error: OnError) -> Unsubscribe:
        poller = _Poller(path, on_change, on_error)
        self._pollers.append(poller)
        poller.handle = self._scheduler.call_later(0, self._start_poll, poller)

        def unsubscribe():
            poller.active = False
            if poller.handle is not None:
                poller.handle.cancel()
            if poller.task is not None and not poller.task.done():
                poller.task.cancel()
            if poller in self._pollers:
                self._pollers.remove(poller)
        return unsubscribe

    def _start_poll(self, poller: _Poller):
        if poller.active:
            poller.task = asyncio.get_running_loop().create_task(self._poll(poller))

    async def _poll(self, poller: _Poller):
        try:
            response = await self._client.get(self._url(poller.path))
            if response.status_code == 404:
                value = None
            else:
                response.raise_for_status()
                value = response.json()
        except (httpx.HTTPError, ValueError) as e:
            if poller.active:
                logger.error(f"[{poller.path}] Poll failed: {e}")
                poller.active = False
                poller.on_error(RemoteSubscriptionError(poller.path, str(e)))
            return

        if not poller.active:
            return
        if not poller.seen or value != poller.last:
            poller.seen = True
            poller.last = value
            poller.on_change(copy.deepcopy(value))
        poller.handle = self._scheduler.call_later(self._poll_interval, self._start_poll, poller)

    async def write(self, path: str, value: Any):
        try:
            response = await self._client.put(self._url(path), json=value)
            response.raise_for_status()
        except httpx.TransportError as e:
            raise OfflineError(path, str(e)) from e
        except httpx.HTTPError as e:
            raise RemoteWriteError(path, str(e)) from e

    async def delete(self, path: str):
        try:
            response = await self._client.delete(self._url(path))
            if response.status_code != 404:
                response.raise_for_status()
        except httpx.TransportError as e:
            raise OfflineError(path, str(e)) from e
        except httpx.HTTPError as e:
            raise RemoteWriteError(path, str(e)) from e

    async def aclose(self):
        for poller in list(self._pollers):
            poller.active = False
            if poller.handle is not None:
                poller.handle.cancel()
            if poller.task is not None and not poller.task.done():
                poller.task.cancel()
        self._pollers.clear()
        await self._client.aclose()
