"""
OpenAI Chat Handler

把一次 chat completion 请求交给 SessionCoordinator，
并用 ResponseAssembler 把事件渲染成流式或非流式响应。
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, AsyncIterator, Dict, Optional

from fastapi.responses import JSONResponse, StreamingResponse

from src.api.handlers.base.utils import build_sse_headers
from src.api.handlers.openai.response_assembler import (
    NonStreamingResponseAssembler,
    StreamingResponseAssembler,
)
from src.config.settings import config
from src.core.conversion.stream_events import DoneEvent, TextEvent
from src.core.logger import logger
from src.services.session.coordinator import SessionCoordinator

COMMAND_HANDLED = "Command handled."

# 队列结束标记
_END = object()


def build_prompt(body: Dict[str, Any], last_user_text: str, mode: Optional[str] = None) -> str:
    """
    生成提交给会话的文本

    Args:
        body: 原始请求体
        last_user_text: 最后一条 user 消息
        mode: body（完整请求体 JSON）或 last_user，默认取 config.prompt_mode
    """
    mode = (mode or config.prompt_mode).lower()
    if mode == "last_user":
        return last_user_text
    return json.dumps(body, ensure_ascii=False, indent=2)


class OpenAIChatHandler:
    """
    单次请求的处理器

    流式路径：coordinator.submit 在后台任务中运行，事件经 asyncio.Queue 交给响应生成器。
    Done 之后连接立即关闭，会话回收继续在后台完成。
    """

    def __init__(
        self,
        coordinator: SessionCoordinator,
        model: str,
        request_id: str,
        timeout: Optional[float] = None,
    ) -> None:
        self.coordinator = coordinator
        self.model = model
        self.request_id = request_id
        self.timeout = timeout or config.stream_timeout

    # ------------------------------------------------------------------
    # 生成
    # ------------------------------------------------------------------

    async def process_stream(self, prompt: str) -> StreamingResponse:
        assembler = StreamingResponseAssembler(self.model, request_id=self.request_id)
        queue: asyncio.Queue = asyncio.Queue()

        task = asyncio.create_task(
            self.coordinator.submit(
                prompt, queue.put_nowait, timeout=self.timeout, request_id=self.request_id
            )
        )
        task.add_done_callback(lambda t: self._on_submit_done(t, queue))

        async def generate() -> AsyncIterator[bytes]:
            for frame in assembler.start():
                yield frame
            while not assembler.closed:
                item = await queue.get()
                if item is _END:
                    error = task.exception() if not task.cancelled() else asyncio.CancelledError()
                    if error is not None:
                        frames = assembler.fail(error)
                    else:
                        frames = assembler.handle(DoneEvent())
                    for frame in frames:
                        yield frame
                    break
                for frame in assembler.handle(item):
                    yield frame

        return StreamingResponse(
            generate(),
            media_type="text/event-stream; charset=utf-8",
            headers=build_sse_headers(),
        )

    def _on_submit_done(self, task: asyncio.Task, queue: asyncio.Queue) -> None:
        if not task.cancelled() and task.exception() is not None:
            logger.warning(f"[{self.request_id}] 流式生成失败: {task.exception()}")
        queue.put_nowait(_END)

    async def process_sync(self, prompt: str) -> JSONResponse:
        assembler = NonStreamingResponseAssembler(self.model, prompt=prompt, request_id=self.request_id)
        final_text = await self.coordinator.submit(
            prompt, assembler.handle, timeout=self.timeout, request_id=self.request_id
        )
        if not assembler.finalized:
            assembler.handle(DoneEvent(final_text=final_text))
        return JSONResponse(content=assembler.build_response())

    # ------------------------------------------------------------------
    # 控制命令
    # ------------------------------------------------------------------

    @staticmethod
    def parse_command(text: str) -> Optional[str]:
        """识别 \\restart / \\switch 控制命令，返回命令名"""
        stripped = text.strip()
        if stripped == "\\restart":
            return "restart"
        if stripped.startswith("\\switch"):
            return "switch"
        return None

    async def run_command(self, command: str, text: str, stream: bool):
        if command == "restart":
            await self.coordinator.refresh()
        elif command == "switch":
            target = text.strip()[len("\\switch") :].strip()
            if target:
                await self.coordinator.switch_model(target)
            else:
                models = await self.coordinator.list_models()
                logger.info(f"[{self.request_id}] 可用模型: {', '.join(models) or '(无)'}")
        logger.info(f"[{self.request_id}] 已处理控制命令: {command}")
        return self.command_response(stream)

    def command_response(self, stream: bool):
        events = [TextEvent(content=COMMAND_HANDLED), DoneEvent()]
        if stream:
            assembler = StreamingResponseAssembler(self.model, request_id=self.request_id)

            async def generate() -> AsyncIterator[bytes]:
                for frame in assembler.start():
                    yield frame
                for event in events:
                    for frame in assembler.handle(event):
                        yield frame

            return StreamingResponse(
                generate(),
                media_type="text/event-stream; charset=utf-8",
                headers=build_sse_headers(),
            )

        collector = NonStreamingResponseAssembler(self.model, request_id=self.request_id)
        for event in events:
            collector.handle(event)
        return JSONResponse(content=collector.build_response())


__all__ = ["OpenAIChatHandler", "build_prompt", "COMMAND_HANDLED"]
