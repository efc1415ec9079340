"""会话管理 API 端点"""

from fastapi import APIRouter, Depends

from src.api.dependencies import get_coordinator
from src.core.logger import logger
from src.services.session.coordinator import SessionCoordinator

router = APIRouter(prefix="/admin/session", tags=["Admin - Session"])


@router.post("/refresh")
async def refresh_session(coordinator: SessionCoordinator = Depends(get_coordinator)):
    """保存状态并重建会话（persist -> teardown -> rebuild）"""
    logger.info("收到会话刷新请求")
    await coordinator.refresh()
    return {"ok": True, "action": "refresh", "session": coordinator.status}


@router.post("/save")
async def save_session(coordinator: SessionCoordinator = Depends(get_coordinator)):
    """保存会话状态"""
    await coordinator.save()
    return {"ok": True, "action": "save", "session": coordinator.status}
