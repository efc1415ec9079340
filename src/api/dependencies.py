"""FastAPI 依赖项"""

from fastapi import Request

from src.core.exceptions import SessionInitializationError
from src.services.session.coordinator import SessionCoordinator


def get_coordinator(request: Request) -> SessionCoordinator:
    """从 app.state 取出进程唯一的 SessionCoordinator"""
    coordinator = getattr(request.app.state, "coordinator", None)
    if coordinator is None:
        raise SessionInitializationError("会话尚未初始化")
    return coordinator
