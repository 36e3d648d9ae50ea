"""
FastAPI 路由：暴露 REST API 供展现层调用。
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from tilesync.config_store import ConfigValidationError
from tilesync.dashboard import DashboardService, WidgetNotFound
from tilesync.models import LayoutItem, dump_layouts
from tilesync.session import IdentityEvents, NetworkMonitor
from tilesync.sync.coordinator import SyncCoordinator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

# 这些全局引用会在 main.py 中注入
_dashboard: DashboardService | None = None
_coordinator: SyncCoordinator | None = None
_identity: IdentityEvents | None = None
_network: NetworkMonitor | None = None


def init_api(dashboard, coordinator, identity, network):
    """注入全局依赖（由 main.py 调用）。"""
    global _dashboard, _coordinator, _identity, _network
    _dashboard = dashboard
    _coordinator = coordinator
    _identity = identity
    _network = network


# ── 请求模型 ──────────────────────────────────────────

class AddWidgetRequest(BaseModel):
    type: str
    config: Dict[str, Any] = Field(default_factory=dict)


class MoveRequest(BaseModel):
    breakpoint: str
    x: int
    y: int


class ResizeRequest(BaseModel):
    breakpoint: str
    w: int
    h: int


class LoginRequest(BaseModel):
    user_id: str


class NetworkRequest(BaseModel):
    online: bool


# ── 仪表盘 ────────────────────────────────────────────

@router.get("/dashboard")
async def get_dashboard() -> dict[str, Any]:
    """获取组件列表（含解密后的配置）与各断点布局。"""
    return _dashboard.snapshot()


@router.get("/breakpoints")
async def get_breakpoints(width: Optional[int] = None) -> dict[str, Any]:
    """列出断点；给定视口宽度时返回匹配的断点。"""
    grid = _dashboard.grid
    result: dict[str, Any] = {
        "breakpoints": [
            {"name": bp, "min_width": grid.min_width_for(bp), "columns": grid.columns_for(bp)}
            for bp in grid.breakpoints
        ]
    }
    if width is not None:
        result["active"] = grid.breakpoint_for(width)
    return result


@router.post("/widgets")
async def add_widget(request: AddWidgetRequest) -> dict[str, Any]:
    """添加组件：为所有断点计算位置，先写本地再同步。"""
    try:
        widget = _dashboard.add_widget(request.type, request.config)
    except ConfigValidationError as e:
        raise HTTPException(400, e.message)
    return widget.model_dump()


@router.delete("/widgets/{widget_id}")
async def delete_widget(widget_id: str) -> dict:
    """删除组件及其所有断点布局和配置（立即同步）。"""
    try:
        _dashboard.delete_widget(widget_id)
    except WidgetNotFound:
        raise HTTPException(404, f"组件 '{widget_id}' 不存在")
    return {"message": f"Widget {widget_id} deleted"}


@router.put("/layouts/{breakpoint}")
async def update_layout(breakpoint: str, items: List[LayoutItem]) -> dict[str, Any]:
    """前端拖拽/缩放后提交某个断点的布局。"""
    try:
        layouts = _dashboard.update_layout(breakpoint, items)
    except KeyError:
        raise HTTPException(404, f"断点 '{breakpoint}' 不存在")
    return dump_layouts(layouts)


@router.post("/widgets/{widget_id}/move")
async def move_widget(widget_id: str, request: MoveRequest) -> dict[str, Any]:
    try:
        item = _dashboard.move_widget(widget_id, request.breakpoint, request.x, request.y)
    except WidgetNotFound:
        raise HTTPException(404, f"组件 '{widget_id}' 不存在")
    except KeyError:
        raise HTTPException(404, f"断点 '{request.breakpoint}' 不存在")
    return item.dump()


@router.post("/widgets/{widget_id}/resize")
async def resize_widget(widget_id: str, request: ResizeRequest) -> dict[str, Any]:
    try:
        item = _dashboard.resize_widget(widget_id, request.breakpoint, request.w, request.h)
    except WidgetNotFound:
        raise HTTPException(404, f"组件 '{widget_id}' 不存在")
    except KeyError:
        raise HTTPException(404, f"断点 '{request.breakpoint}' 不存在")
    return item.dump()


# ── 组件配置 ──────────────────────────────────────────

@router.get("/widgets/{widget_id}/config")
async def get_widget_config(widget_id: str) -> dict[str, Any]:
    try:
        return _dashboard.get_config(widget_id)
    except WidgetNotFound:
        raise HTTPException(404, f"组件 '{widget_id}' 不存在")


@router.put("/widgets/{widget_id}/config")
async def update_widget_config(widget_id: str, settings: Dict[str, Any]) -> dict:
    try:
        _dashboard.update_config(widget_id, settings)
    except WidgetNotFound:
        raise HTTPException(404, f"组件 '{widget_id}' 不存在")
    except ConfigValidationError as e:
        raise HTTPException(400, e.message)
    return {"message": f"Config saved: {widget_id}"}


# ── 同步 ──────────────────────────────────────────────

@router.get("/sync/status")
async def get_sync_status() -> dict[str, Any]:
    return _coordinator.summary()


@router.post("/sync/save")
async def save_now() -> dict[str, Any]:
    """跳过防抖，立即把待写入的变更发送到远程。"""
    _dashboard.save_now()
    return _coordinator.summary()


# ── 会话 / 网络 ───────────────────────────────────────

@router.post("/session/login")
async def login(request: LoginRequest) -> dict[str, Any]:
    """外部认证完成后通知登录身份，开始远程订阅。"""
    try:
        _identity.sign_in(request.user_id)
    except ValueError as e:
        raise HTTPException(400, str(e))
    return _coordinator.summary()


@router.post("/session/logout")
async def logout() -> dict[str, Any]:
    """登出：停止订阅并清除本地用户数据（保留应用设置）。"""
    _identity.sign_out()
    return _coordinator.summary()


@router.post("/network")
async def set_network(request: NetworkRequest) -> dict[str, Any]:
    _network.set_online(request.online)
    return _coordinator.summary()
