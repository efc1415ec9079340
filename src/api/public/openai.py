"""
OpenAI API 端点

- /v1/chat/completions - OpenAI Chat API

注意: /v1/models 端点由 models.py 处理
"""

from fastapi import APIRouter, Depends, Request

from src.api.dependencies import get_coordinator
from src.api.handlers.openai import OpenAIChatAdapter
from src.services.session.coordinator import SessionCoordinator

router = APIRouter(tags=["OpenAI API"])


@router.post("/v1/chat/completions")
async def create_chat_completion(
    http_request: Request,
    coordinator: SessionCoordinator = Depends(get_coordinator),
):
    """
    OpenAI Chat Completions API

    兼容 OpenAI Chat Completions API 格式的接口，实际生成由网页端会话完成。

    **请求格式**:
    ```json
    {
        "model": "gpt-5",
        "messages": [{"role": "user", "content": "Hello"}],
        "stream": false
    }
    ```

    `stream: true` 或 `Accept: text/event-stream` 时返回 SSE 流。
    最后一条 user 消息为 `\\restart` 或 `\\switch <model>` 时作为控制命令处理。
    """
    adapter = OpenAIChatAdapter(coordinator)
    return await adapter.handle(http_request)
