"""
Sync Coordinator：本地缓存与远程文档存储之间的同步。

- 本地写入总是先完成（乐观写），远程写入按 key 防抖合并；删除和“立即保存”跳过防抖。
- 登录后订阅 layouts / widgets / configs 三个远程路径，远程变更直接覆盖本地（后写者胜）。
  本地尚未送达的写入仍保留在队列中，送达后远程会回推本地的值。
- 失败时进入 error，指数退避自动重试，每个错误周期最多 3 次尝试，且只提示一次。
"""

import asyncio
import logging
import time
from collections import Counter
from typing import Any, Callable, Dict, List, Optional, Set

from pydantic import ValidationError

from tilesync.models import (
    Channel,
    LayoutMap,
    NoticeKind,
    SyncNotice,
    SyncStatus,
    WidgetRecord,
    dump_layouts,
    parse_layouts,
)
from tilesync.session import IdentityEvents, NetworkMonitor
from tilesync.storage.local_cache import LocalCacheGateway
from tilesync.sync.remote import RemoteDocumentStore, Unsubscribe
from tilesync.sync.scheduler import Scheduler, TimerHandle

logger = logging.getLogger(__name__)


class _WriteOp:
    """一次待发送的远程操作；相同 `key` 的新操作会取代旧操作。"""

    def __init__(self, channel: Channel, key: str, payload: Any = None, delete: bool = False, doc_id: str | None = None):
        self.channel = channel
        self.key = key
        self.payload = payload
        self.delete = delete
        self.doc_id = doc_id

    def __repr__(self):
        action = "delete" if self.delete else "write"
        return f"<{action} {self.key}>"


def _config_key(widget_id: str) -> str:
    return f"{Channel.CONFIGS.value}/{widget_id}"


class SyncCoordinator:
    """
    负责远程订阅、防抖写入、失败重试与 SyncStatus。
    只有它直接访问远程文档存储。
    """

    def __init__(
        self,
        cache: LocalCacheGateway,
        remote: RemoteDocumentStore,
        scheduler: Scheduler,
        identity: IdentityEvents,
        network: Optional[NetworkMonitor] = None,
        debounce: float = 0.5,
        retry_delays: List[float] | None = None,
        max_attempts: int = 3,
        clock: Callable[[], float] = time.time,
    ):
        self._cache = cache
        self._remote = remote
        self._scheduler = scheduler
        self._identity = identity
        self._network = network or NetworkMonitor()
        self._debounce = debounce
        self._retry_delays = list(retry_delays or [1.0, 2.0, 4.0])
        self._max_attempts = max_attempts
        self._clock = clock

        self._status = SyncStatus.IDLE
        self._user: Optional[str] = None
        # bumped on sign-out; callbacks from an older session are ignored
        self._generation = 0
        self._unsubscribes: Dict[Channel, Unsubscribe] = {}
        self._awaiting_snapshot: Set[Channel] = set()
        self._inflight: Counter = Counter()
        self._inflight_keys: Counter = Counter()

        self._debounced: Dict[str, TimerHandle] = {}
        self._outbox: Dict[str, _WriteOp] = {}
        self._failed_writes: Dict[str, _WriteOp] = {}
        self._failed_channels: Set[Channel] = set()
        self._locks: Dict[str, asyncio.Lock] = {}
        self._tasks: Set[asyncio.Task] = set()

        self._attempts = 0
        self._retry_handle: Optional[TimerHandle] = None
        self._error_notified = False

        self.last_sync_time: Optional[float] = None
        self.last_error: Optional[str] = None

        self._status_listeners: List[Callable[[SyncStatus], None]] = []
        self._notice_listeners: List[Callable[[SyncNotice], None]] = []
        self._signal_unsubscribes: List[Callable[[], None]] = []

    # ── Introspection ────────────────────────────────

    @property
    def status(self) -> SyncStatus:
        return self._status

    @property
    def user_id(self) -> Optional[str]:
        return self._user

    @property
    def pending_channels(self) -> Set[Channel]:
        return set(self._awaiting_snapshot) | {c for c, n in self._inflight.items() if n > 0}

    @property
    def attempts(self) -> int:
        return self._attempts

    def add_status_listener(self, callback: Callable[[SyncStatus], None]):
        self._status_listeners.append(callback)

    def add_notice_listener(self, callback: Callable[[SyncNotice], None]):
        self._notice_listeners.append(callback)

    def summary(self) -> Dict[str, Any]:
        return {
            "status": self._status.value,
            "user_id": self._user,
            "online": self._network.is_online,
            "last_sync_time": self.last_sync_time,
            "last_error": self.last_error,
            "pending_channels": sorted(c.value for c in self.pending_channels),
            "queued_writes": sorted(set(self._outbox) | set(self._failed_writes)),
        }

    # ── Lifecycle ────────────────────────────────────

    def start(self):
        self._signal_unsubscribes.append(self._identity.subscribe(self._on_identity))
        self._signal_unsubscribes.append(self._network.subscribe(self._on_network))
        if self._identity.current is not None:
            self._on_identity(self._identity.current)

    def stop(self):
        for unsubscribe in self._signal_unsubscribes:
            unsubscribe()
        self._signal_unsubscribes.clear()
        self._teardown_session()
        self._set_status(SyncStatus.IDLE)

    async def wait_idle(self):
        """等待所有已发出的远程操作结束。"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ── Local write API ──────────────────────────────

    def push_layouts(self, layouts: LayoutMap, immediate: bool = False):
        doc = {"layouts": dump_layouts(layouts)}
        self._enqueue(_WriteOp(Channel.LAYOUTS, Channel.LAYOUTS.value, doc), immediate)

    def push_widgets(self, widgets: List[WidgetRecord], immediate: bool = False):
        doc = {"widgets": [WidgetRecord(id=w.id, type=w.type).model_dump() for w in widgets]}
        self._enqueue(_WriteOp(Channel.WIDGETS, Channel.WIDGETS.value, doc), immediate)

    def schedule_config_write(self, widget_id: str, config: Dict[str, Any], immediate: bool = False):
        op = _WriteOp(Channel.CONFIGS, _config_key(widget_id), {"config": config}, doc_id=widget_id)
        self._enqueue(op, immediate)

    def delete_config_now(self, widget_id: str):
        op = _WriteOp(Channel.CONFIGS, _config_key(widget_id), delete=True, doc_id=widget_id)
        self._enqueue(op, immediate=True)

    def flush(self):
        """立即发送所有防抖中的写入（“立即保存”）。"""
        for key in list(self._debounced):
            self._debounced.pop(key).cancel()
            self._fire(key)

    # ── Outbound pipeline ────────────────────────────

    def _enqueue(self, op: _WriteOp, immediate: bool):
        if self._user is None:
            logger.debug(f"Not signed in, {op!r} kept local only")
            return

        handle = self._debounced.pop(op.key, None)
        if handle is not None:
            handle.cancel()
        self._outbox[op.key] = op
        self._failed_writes.pop(op.key, None)

        # a user-triggered write opens a fresh attempt budget once retries ran out
        if self._attempts >= self._max_attempts:
            self._attempts = 0
            self._requeue_failed()

        if immediate:
            self._fire(op.key)
        else:
            self._debounced[op.key] = self._scheduler.call_later(self._debounce, self._fire, op.key)

    def _fire(self, key: str):
        self._debounced.pop(key, None)
        if self._user is None or key not in self._outbox:
            return
        if not self._network.is_online:
            logger.info(f"[{key}] Offline, write queued locally")
            self._set_status(SyncStatus.SYNCING)
            return
        op = self._outbox.pop(key)
        self._inflight[op.channel] += 1
        self._inflight_keys[op.key] += 1
        self._set_status(SyncStatus.SYNCING)
        self._spawn(self._perform(op, self._generation))

    async def _perform(self, op: _WriteOp, generation: int):
        lock = self._locks.setdefault(op.key, asyncio.Lock())
        error: Optional[Exception] = None
        try:
            async with lock:
                if generation != self._generation:
                    return
                path = self._path_for(op)
                try:
                    if op.delete:
                        await self._remote.delete(path)
                    else:
                        await self._remote.write(path, op.payload)
                except Exception as e:
                    error = e
        finally:
            if generation == self._generation:
                self._release(op)

        if generation != self._generation:
            return
        if error is not None:
            if op.key not in self._outbox:
                self._failed_writes[op.key] = op
            self._on_failure(f"{op.key}", error)
        else:
            logger.debug(f"[{op.key}] Remote write acknowledged")
            self._maybe_succeed()

    def _release(self, op: _WriteOp):
        self._inflight[op.channel] -= 1
        if self._inflight[op.channel] <= 0:
            del self._inflight[op.channel]
        self._inflight_keys[op.key] -= 1
        if self._inflight_keys[op.key] <= 0:
            del self._inflight_keys[op.key]
            self._locks.pop(op.key, None)

    def _spawn(self, coro):
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # ── Paths ────────────────────────────────────────

    def _base(self) -> str:
        return f"users/{self._user}/dashboard"

    def _channel_path(self, channel: Channel) -> str:
        if channel == Channel.LAYOUTS:
            return f"{self._base()}/layouts"
        if channel == Channel.WIDGETS:
            return f"{self._base()}/widget-list"
        return f"{self._base()}/widget-configs/configs"

    def _path_for(self, op: _WriteOp) -> str:
        if op.channel == Channel.CONFIGS:
            return f"{self._channel_path(Channel.CONFIGS)}/{op.doc_id}"
        return self._channel_path(op.channel)

    # ── Identity ─────────────────────────────────────

    def _on_identity(self, user_id: Optional[str]):
        if user_id is None:
            self._teardown_session()
            self._cache.clear_user_data()
            self._set_status(SyncStatus.IDLE)
            return

        if self._user is not None:
            self._teardown_session()
        self._user = user_id
        self._generation += 1
        logger.info(f"[{user_id}] Starting remote subscriptions")
        self._set_status(SyncStatus.SYNCING)
        self._awaiting_snapshot = set(Channel)
        for channel in Channel:
            self._subscribe(channel)

    def _teardown_session(self):
        self._generation += 1
        for channel, unsubscribe in list(self._unsubscribes.items()):
            try:
                unsubscribe()
            except Exception as e:
                logger.error(f"Error cleaning up {channel.value} listener: {e}")
        self._unsubscribes.clear()
        for handle in self._debounced.values():
            handle.cancel()
        self._debounced.clear()
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None
        self._outbox.clear()
        self._failed_writes.clear()
        self._failed_channels.clear()
        self._awaiting_snapshot.clear()
        self._inflight.clear()
        self._inflight_keys.clear()
        self._locks.clear()
        self._attempts = 0
        self._error_notified = False
        self.last_error = None
        self._user = None

    # ── Subscriptions ────────────────────────────────

    def _subscribe(self, channel: Channel):
        generation = self._generation
        self._awaiting_snapshot.add(channel)
        self._failed_channels.discard(channel)
        try:
            unsubscribe = self._remote.subscribe(
                self._channel_path(channel),
                lambda value: self._on_remote(channel, value, generation),
                lambda error: self._on_subscription_error(channel, error, generation),
            )
        except Exception as e:
            self._on_subscription_error(channel, e, generation)
            return
        if channel in self._failed_channels:
            # the listener failed before subscribe() returned
            unsubscribe()
        else:
            self._unsubscribes[channel] = unsubscribe

    def _on_subscription_error(self, channel: Channel, error: Exception, generation: int):
        if generation != self._generation:
            return
        self._awaiting_snapshot.discard(channel)
        self._failed_channels.add(channel)
        unsubscribe = self._unsubscribes.pop(channel, None)
        if unsubscribe is not None:
            try:
                unsubscribe()
            except Exception as e:
                logger.error(f"Error cleaning up {channel.value} listener: {e}")
        self._on_failure(channel.value, error)

    def _on_remote(self, channel: Channel, value: Any, generation: int):
        if generation != self._generation:
            return
        first = channel in self._awaiting_snapshot

        if channel == Channel.CONFIGS:
            if value is None and first:
                self._migrate(channel)
            else:
                self._apply_configs(value or {})
        elif value is None:
            if first:
                self._migrate(channel)
        elif channel == Channel.LAYOUTS:
            self._apply_layouts(value)
        else:
            self._apply_widgets(value)

        self._awaiting_snapshot.discard(channel)
        self._maybe_succeed()

    def _apply_layouts(self, doc: Any):
        raw = doc.get("layouts") if isinstance(doc, dict) else None
        if not isinstance(raw, dict):
            logger.error("Remote layouts document is malformed, ignored")
            return
        try:
            parse_layouts(raw)
        except ValidationError as e:
            logger.error(f"Remote layouts failed validation, ignored: {e}")
            return
        self._cache.set_layouts_raw(raw)
        logger.debug("Remote layouts applied to local cache")

    def _apply_widgets(self, doc: Any):
        raw = doc.get("widgets") if isinstance(doc, dict) else None
        if not isinstance(raw, list):
            logger.error("Remote widget list document is malformed, ignored")
            return
        try:
            widgets = [WidgetRecord.model_validate(item) for item in raw]
        except ValidationError as e:
            logger.error(f"Remote widget list failed validation, ignored: {e}")
            return
        self._cache.set_widgets(widgets)
        logger.debug(f"Remote widget list applied ({len(widgets)} widgets)")

    def _apply_configs(self, docs: Dict[str, Any]):
        merged: Dict[str, Any] = {}
        for widget_id, doc in docs.items():
            if isinstance(doc, dict) and isinstance(doc.get("config"), dict):
                merged[widget_id] = doc["config"]
        self._cache.set_configs(merged)
        logger.debug(f"Remote widget configs applied ({len(merged)} configs)")

    def _migrate(self, channel: Channel):
        """首次同步时远程文档不存在：改为上传本地数据。"""
        if channel == Channel.LAYOUTS:
            layouts = self._cache.get_layouts()
            if layouts:
                logger.info("Uploading local layouts to empty remote store")
                self.push_layouts(layouts, immediate=True)
        elif channel == Channel.WIDGETS:
            widgets = self._cache.get_widgets()
            if widgets:
                logger.info("Uploading local widget list to empty remote store")
                self.push_widgets(widgets, immediate=True)
        else:
            configs = self._cache.get_configs()
            if configs:
                logger.info(f"Uploading {len(configs)} local widget configs to empty remote store")
            for widget_id, config in configs.items():
                if isinstance(config, dict):
                    self.schedule_config_write(widget_id, config, immediate=True)

    # ── Status / errors / retry ──────────────────────

    def _set_status(self, status: SyncStatus):
        if status == self._status:
            return
        logger.info(f"Sync status: {self._status.value} -> {status.value}")
        self._status = status
        for callback in list(self._status_listeners):
            callback(status)

    def _notify(self, kind: NoticeKind, message: str):
        notice = SyncNotice(kind=kind, message=message, timestamp=self._clock())
        for callback in list(self._notice_listeners):
            callback(notice)

    def _maybe_succeed(self):
        if self._user is None:
            return
        if self.pending_channels:
            return
        if self._failed_writes or self._failed_channels:
            # everything else settled; only failed work remains
            self._set_status(SyncStatus.ERROR)
            return
        if any(key not in self._debounced for key in self._outbox):
            # queued while offline
            return
        self.last_sync_time = self._clock()
        if self._status == SyncStatus.SUCCESS:
            return

        restored = self._error_notified
        self._attempts = 0
        self._error_notified = False
        self.last_error = None
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None
        self._set_status(SyncStatus.SUCCESS)
        if restored:
            self._notify(NoticeKind.SYNC_RESTORED, "Sync restored")

    def _on_failure(self, what: str, error: Exception):
        self.last_error = f"Error syncing {what}: {error}"
        logger.error(self.last_error)
        self._set_status(SyncStatus.ERROR)
        if not self._error_notified:
            self._error_notified = True
            self._notify(NoticeKind.SYNC_FAILED, "Sync failed, changes saved locally")
        if self._attempts == 0:
            self._attempts = 1
        self._schedule_retry()

    def _schedule_retry(self):
        if self._retry_handle is not None:
            return
        if self._attempts >= self._max_attempts:
            logger.warning(f"Sync retries exhausted after {self._attempts} attempts, waiting for next write")
            return
        if not self._network.is_online:
            return
        delay = self._retry_delays[min(self._attempts - 1, len(self._retry_delays) - 1)]
        logger.info(f"Retrying sync in {delay}s (attempt {self._attempts + 1}/{self._max_attempts})")
        self._retry_handle = self._scheduler.call_later(delay, self._retry)

    def _retry(self):
        self._retry_handle = None
        if self._user is None or not (self._failed_writes or self._failed_channels):
            return
        self._attempts += 1
        self._set_status(SyncStatus.SYNCING)
        self._requeue_failed()

    def _requeue_failed(self):
        """重新订阅失败的频道，并重新发送失败的写入。"""
        channels = list(self._failed_channels)
        ops = list(self._failed_writes.values())
        self._failed_channels.clear()
        self._failed_writes.clear()
        for op in ops:
            self._outbox[op.key] = op
        self._awaiting_snapshot.update(channels)
        for channel in channels:
            self._subscribe(channel)
        for op in ops:
            self._fire(op.key)

    # ── Network ──────────────────────────────────────

    def _on_network(self, online: bool):
        if not online:
            self._notify(NoticeKind.OFFLINE, "You are offline. Changes will be saved when you reconnect.")
            return
        self._notify(NoticeKind.ONLINE, "Back online")
        if self._user is None:
            return
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None
        # reconnection starts a fresh attempt budget
        self._attempts = 0
        self._retry()
        for key in list(self._outbox):
            if key not in self._debounced:
                self._fire(key)
        self._maybe_succeed()
