"""
OpenAI Chat Adapter

处理 /v1/chat/completions：读取并校验请求体、识别流式意图与控制命令，
再交给 OpenAIChatHandler。所有 ProxyException 在这里统一转换为错误响应。
"""

from __future__ import annotations

import asyncio
import json
import uuid
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

from src.api.handlers.base.utils import wants_event_stream
from src.api.handlers.openai.handler import OpenAIChatHandler, build_prompt
from src.config.settings import config
from src.core.exceptions import (
    InvalidRequestException,
    PayloadTooLargeException,
    ProxyException,
    RequestBodyTimeoutException,
)
from src.core.logger import logger
from src.models.openai import extract_last_user_message, parse_chat_request
from src.services.session.coordinator import SessionCoordinator


class OpenAIChatAdapter:
    """OpenAI Chat Completions API 适配器"""

    name = "openai.chat"

    def __init__(self, coordinator: SessionCoordinator) -> None:
        self.coordinator = coordinator
        self.request_id = uuid.uuid4().hex[:8]

    async def handle(self, http_request: Request) -> Any:
        try:
            body = await self._read_json_body(http_request)
            request_obj = parse_chat_request(body)
            last_user_text = extract_last_user_message(request_obj.messages)

            stream = wants_event_stream(body, http_request.headers.get("accept"))
            model = request_obj.model or config.default_model
            handler = OpenAIChatHandler(self.coordinator, model, self.request_id)
            logger.info(
                f"[{self.request_id}] chat completion: model={model}, stream={stream}, "
                f"messages={len(request_obj.messages)}"
            )

            command = handler.parse_command(last_user_text)
            if command is not None:
                return await handler.run_command(command, last_user_text, stream)

            prompt = build_prompt(body, last_user_text)
            if stream:
                return await handler.process_stream(prompt)
            return await handler.process_sync(prompt)

        except ProxyException as e:
            logger.warning(f"[{self.request_id}] 请求失败: {e.status_code} {e.error_type}: {e.message}")
            return self._error_response(e)
        except Exception as e:
            logger.exception(f"[{self.request_id}] 处理请求时发生未预期错误: {e}")
            return JSONResponse(
                status_code=500,
                content={"error": {"type": "api_error", "message": "处理请求时发生内部错误"}},
            )

    async def _read_json_body(self, http_request: Request) -> Any:
        content_length = http_request.headers.get("content-length")
        if content_length and content_length.isdigit() and int(content_length) > config.max_body_bytes:
            raise PayloadTooLargeException(f"Request body exceeds {config.max_body_bytes} bytes")

        try:
            # 添加超时防止卡死
            raw_body = await asyncio.wait_for(http_request.body(), timeout=config.request_body_timeout)
        except asyncio.TimeoutError as e:
            raise RequestBodyTimeoutException(
                f"读取请求体超时({int(config.request_body_timeout)}s)"
            ) from e

        if len(raw_body) > config.max_body_bytes:
            raise PayloadTooLargeException(f"Request body exceeds {config.max_body_bytes} bytes")
        if not raw_body:
            raise InvalidRequestException("Request body must be a JSON object")
        try:
            return json.loads(raw_body)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise InvalidRequestException(f"Invalid JSON body: {e}") from e

    def _error_response(self, exc: ProxyException) -> JSONResponse:
        """生成 OpenAI 格式的错误响应"""
        return JSONResponse(status_code=exc.status_code, content=exc.to_error_body())


__all__ = ["OpenAIChatAdapter"]
