"""
Tile Sync 主入口：启动 FastAPI 后端服务。
"""

import logging
import sys
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tilesync import api
from tilesync.config_loader import AppConfig, load_config
from tilesync.config_store import ConfigStore
from tilesync.crypto import Base64FieldCipher
from tilesync.dashboard import DashboardService
from tilesync.layout.grid import GridModel
from tilesync.layout.normalizer import LayoutNormalizer
from tilesync.models import SyncNotice
from tilesync.session import ConnectivityProbe, IdentityEvents, NetworkMonitor
from tilesync.storage.kv_store import KeyValueStore, TinyDBKeyValueStore
from tilesync.storage.local_cache import LocalCacheGateway
from tilesync.sync.coordinator import SyncCoordinator
from tilesync.sync.remote import HttpDocumentStore, MemoryDocumentStore, RemoteDocumentStore
from tilesync.sync.scheduler import LoopScheduler
from tilesync.widget_types import WidgetTypeRegistry

# 日志配置
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def _log_notice(notice: SyncNotice):
    logger.warning(f"[{notice.kind.value}] {notice.message}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan 事件处理：启动时和关闭时的逻辑。"""
    coordinator = app.state.coordinator
    probe = app.state.probe

    # 启动时：订阅身份与网络事件
    coordinator.start()
    if probe is not None:
        probe.start()

    yield  # 应用运行中

    # 关闭时：停止同步，关闭远程连接和数据库
    logger.info("正在关闭...")
    coordinator.stop()
    if probe is not None:
        await probe.stop()
    await app.state.remote.aclose()
    app.state.kv_store.close()


def create_app(
    config: AppConfig | None = None,
    kv_store: KeyValueStore | None = None,
    remote: RemoteDocumentStore | None = None,
) -> FastAPI:
    """创建并配置 FastAPI 应用。"""
    app = FastAPI(
        title="Tile Sync API",
        description="Dashboard layout packing and offline-first sync",
        version="0.1.0",
        lifespan=lifespan,
    )

    # CORS 中间件
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://localhost:5173"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── 初始化核心组件 ────────────────────────────────────────
    if config is None:
        logger.info("正在加载配置...")
        config = load_config()
    logger.info(f"已加载 {len(config.widget_types)} 个组件类型, {len(config.grid.breakpoints)} 个断点")

    scheduler = LoopScheduler()
    identity = IdentityEvents()
    network = NetworkMonitor()

    # 本地缓存
    if kv_store is None:
        kv_store = TinyDBKeyValueStore(config.storage.path)
    cache = LocalCacheGateway(kv_store, key_prefix=config.storage.key_prefix)

    # 远程文档存储
    probe = None
    if remote is None:
        if config.sync.remote_url:
            remote = HttpDocumentStore(
                config.sync.remote_url,
                scheduler,
                poll_interval=config.sync.poll_interval,
                timeout=config.sync.request_timeout,
            )
            probe = ConnectivityProbe(config.sync.remote_url, network, scheduler, interval=config.sync.probe_interval)
        else:
            logger.warning("未配置 remote_url，使用进程内远程存储")
            remote = MemoryDocumentStore()

    coordinator = SyncCoordinator(
        cache,
        remote,
        scheduler,
        identity,
        network,
        debounce=config.sync.debounce_ms / 1000,
        retry_delays=config.sync.retry_delays,
        max_attempts=config.sync.max_attempts,
    )
    coordinator.add_notice_listener(_log_notice)

    registry = WidgetTypeRegistry(config.widget_types, config.storage.sensitive_fields)
    grid = GridModel.from_config(config.grid)
    normalizer = LayoutNormalizer(grid, registry, extra_rows=config.grid.extra_rows)
    config_store = ConfigStore(cache, Base64FieldCipher(), registry, coordinator)
    dashboard = DashboardService(grid, normalizer, cache, config_store, coordinator, registry)

    # 注入依赖到 API 模块
    api.init_api(dashboard=dashboard, coordinator=coordinator, identity=identity, network=network)

    # 注册 API 路由
    app.include_router(api.router)

    # 将组件存到 app.state，供 lifespan 访问
    app.state.coordinator = coordinator
    app.state.probe = probe
    app.state.remote = remote
    app.state.kv_store = kv_store
    app.state.dashboard = dashboard

    return app


def main():
    """主入口。"""
    port = int(sys.argv[1]) if len(sys.argv) > 1 else 8400

    logger.info(f"🚀 启动 Tile Sync 后端 (port={port})...")

    app = create_app()

    uvicorn.run(
        app,
        host="127.0.0.1",
        port=port,
        log_level="info",
    )


if __name__ == "__main__":
    main()
