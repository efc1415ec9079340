"""
模型列表与服务信息端点

- GET /v1/models - OpenAI 格式的模型列表
- GET / - 服务信息
"""

import time

from fastapi import APIRouter, Depends

from src.api.dependencies import get_coordinator
from src.config.settings import config
from src.services.session.coordinator import SessionCoordinator

router = APIRouter(tags=["Models"])

SERVICE_NAME = "webchat-bridge"


@router.get("/v1/models")
async def list_models(coordinator: SessionCoordinator = Depends(get_coordinator)):
    """默认模型 + 会话后端报告的模型"""
    names = [config.default_model]
    for name in await coordinator.list_models():
        if name and name not in names:
            names.append(name)

    created = int(time.time())
    return {
        "object": "list",
        "data": [
            {"id": name, "object": "model", "created": created, "owned_by": "openai"}
            for name in names
        ],
    }


@router.get("/")
async def service_info(coordinator: SessionCoordinator = Depends(get_coordinator)):
    return {
        "ok": True,
        "service": SERVICE_NAME,
        "model": config.default_model,
        "session": coordinator.status,
        "endpoints": {
            "chat_completions": "/v1/chat/completions",
            "models": "/v1/models",
            "session_refresh": "/admin/session/refresh",
            "session_save": "/admin/session/save",
        },
        "capabilities": {
            "streaming": True,
            "tool_calls": True,
            "hidden_function_mode": config.hidden_function_mode,
            "control_commands": ["\\restart", "\\switch <model>"],
        },
    }
