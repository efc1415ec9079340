"""
OpenAI 输出组装器（ResponseAssembler）

把规范化的 AssistantEvent 序列渲染为 OpenAI Chat Completions 输出：
- 流式：Init -> RoleAnnounced -> Streaming -> Finalizing -> Closed
- 非流式：Init -> Collecting -> Finalized
"""

from __future__ import annotations

import json
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from src.api.handlers.base.utils import format_sse_data
from src.config.constants import SSEFrame
from src.config.settings import config
from src.core.conversion.stream_events import (
    AssistantEvent,
    AttachmentEvent,
    DoneEvent,
    FunctionAppendEvent,
    FunctionEndEvent,
    FunctionStartEvent,
    TextEvent,
    ThoughtEvent,
)
from src.core.exceptions import ProxyException
from src.core.logger import logger


class AssemblerState(str, Enum):
    """组装器状态"""

    INIT = "init"
    ROLE_ANNOUNCED = "role_announced"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    CLOSED = "closed"
    COLLECTING = "collecting"
    FINALIZED = "finalized"


class FinishReason(str, Enum):
    STOP = "stop"
    TOOL_CALLS = "tool_calls"


@dataclass
class ToolCallSlot:
    """一个输出中的 tool call"""

    index: int
    id: str
    name: str
    arguments: str = ""
    completed: bool = False
    announced: bool = False


def new_call_id() -> str:
    return f"call_{uuid.uuid4().hex[:24]}"


def error_body(exc: BaseException) -> Dict[str, Any]:
    """异常 -> OpenAI 风格错误对象"""
    if isinstance(exc, ProxyException):
        return exc.to_error_body()
    return {"error": {"type": "api_error", "message": str(exc) or exc.__class__.__name__}}


class _AssemblerBase:
    """两种组装器共享的事件簿记"""

    def __init__(
        self,
        model: str,
        request_id: str = "",
        completion_id: Optional[str] = None,
        created: Optional[int] = None,
    ) -> None:
        self.model = model
        self.request_id = request_id
        self.completion_id = completion_id or f"chatcmpl-{uuid.uuid4().hex}"
        self.created = created if created is not None else int(time.time())
        self.state = AssemblerState.INIT

        self.tool_calls: List[ToolCallSlot] = []
        self.attachments: List[Dict[str, str]] = []
        self.produced_text = False
        self.produced_function = False
        self._last_segment_is_function = False

    def _open_slot(self, name: str) -> ToolCallSlot:
        slot = ToolCallSlot(index=len(self.tool_calls), id=new_call_id(), name=name)
        self.tool_calls.append(slot)
        return slot

    def _find_open_slot(self, name: str) -> Optional[ToolCallSlot]:
        for slot in reversed(self.tool_calls):
            if not slot.completed and slot.name == name:
                return slot
        return None

    def _log_side_channel(self, event: AssistantEvent) -> None:
        if isinstance(event, ThoughtEvent):
            level = "INFO" if config.expose_thoughts else "DEBUG"
            logger.log(level, f"[{self.request_id}] [thought #{event.group}] {event.content}")
        elif isinstance(event, AttachmentEvent):
            self.attachments.append({"name": event.name, "mime": event.mime, "data": event.data})
            logger.info(f"[{self.request_id}] 收到附件: {event.name} ({event.mime or 'unknown'})")


class StreamingResponseAssembler(_AssemblerBase):
    """
    流式组装器

    每个 handle() 返回需要立即写出的 SSE 帧（bytes），
    单个帧序列化失败只记录警告，不会中断整个流。
    """

    def __init__(
        self,
        model: str,
        request_id: str = "",
        completion_id: Optional[str] = None,
        created: Optional[int] = None,
        stream_tool_arguments: Optional[bool] = None,
    ) -> None:
        super().__init__(model, request_id, completion_id, created)
        self.stream_tool_arguments = (
            config.stream_tool_arguments if stream_tool_arguments is None else stream_tool_arguments
        )

    @property
    def closed(self) -> bool:
        return self.state == AssemblerState.CLOSED

    def _chunk(self, delta: Dict[str, Any], finish_reason: Optional[str] = None) -> Optional[bytes]:
        payload = {
            "id": self.completion_id,
            "object": "chat.completion.chunk",
            "created": self.created,
            "model": self.model,
            "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}],
        }
        try:
            return format_sse_data(payload)
        except (TypeError, ValueError) as e:
            logger.warning(f"[{self.request_id}] 输出块序列化失败，已跳过: {e}")
            return None

    def _emit(self, frames: List[bytes], delta: Dict[str, Any], finish_reason: Optional[str] = None) -> None:
        frame = self._chunk(delta, finish_reason)
        if frame is not None:
            frames.append(frame)

    def start(self) -> List[bytes]:
        """输出 role 声明块"""
        frames: List[bytes] = []
        if self.state == AssemblerState.INIT:
            self._emit(frames, {"role": "assistant"})
            self.state = AssemblerState.ROLE_ANNOUNCED
        return frames

    def handle(self, event: AssistantEvent) -> List[bytes]:
        if self.closed:
            return []
        frames = self.start()

        if isinstance(event, TextEvent):
            if event.content:
                self.state = AssemblerState.STREAMING
                self.produced_text = True
                self._last_segment_is_function = False
                self._emit(frames, {"content": event.content})

        elif isinstance(event, FunctionStartEvent):
            self.state = AssemblerState.STREAMING
            self._last_segment_is_function = True
            slot = self._open_slot(event.name)
            self._announce(frames, slot)

        elif isinstance(event, FunctionAppendEvent):
            self.state = AssemblerState.STREAMING
            self._last_segment_is_function = True
            slot = self._find_open_slot(event.name)
            if slot is None:
                slot = self._open_slot(event.name)
                self._announce(frames, slot)
            slot.arguments += event.args_fragment
            if self.stream_tool_arguments and event.args_fragment:
                self._emit_arguments(frames, slot, event.args_fragment)

        elif isinstance(event, FunctionEndEvent):
            self._finish_function(frames, event)

        elif isinstance(event, DoneEvent):
            self._finalize(frames, event)

        else:
            self._log_side_channel(event)

        return frames

    def _announce(self, frames: List[bytes], slot: ToolCallSlot, arguments: Optional[str] = None) -> None:
        function: Dict[str, Any] = {"name": slot.name}
        if arguments is not None:
            function["arguments"] = arguments
        tool_call = {"index": slot.index, "id": slot.id, "type": "function", "function": function}
        self._emit(frames, {"tool_calls": [tool_call]})
        slot.announced = True

    def _emit_arguments(self, frames: List[bytes], slot: ToolCallSlot, arguments: str) -> None:
        self._emit(frames, {"tool_calls": [{"index": slot.index, "function": {"arguments": arguments}}]})

    def _finish_function(self, frames: List[bytes], event: FunctionEndEvent) -> None:
        self.state = AssemblerState.STREAMING
        self._last_segment_is_function = True
        self.produced_function = True

        slot = self._find_open_slot(event.name)
        if slot is None:
            # 没有 FunctionStart（如文本内嵌函数调用）：一次性输出声明与完整参数
            slot = self._open_slot(event.name)
            slot.arguments = event.arguments
            self._announce(frames, slot, arguments=event.arguments)
        elif not self.stream_tool_arguments:
            slot.arguments = event.arguments
            self._emit_arguments(frames, slot, event.arguments)
        slot.completed = True
        if event.truncated:
            logger.warning(f"[{self.request_id}] 工具调用 {event.name} 的参数已被截断")

    def _finalize(self, frames: List[bytes], event: DoneEvent) -> None:
        self.state = AssemblerState.FINALIZING
        if not self.produced_text and not self.produced_function and event.final_text.strip():
            logger.warning(f"[{self.request_id}] 未收到任何增量事件，使用页面最终文本兜底")
            self.produced_text = True
            self._last_segment_is_function = False
            self._emit(frames, {"content": event.final_text})

        reason = FinishReason.TOOL_CALLS if self._last_segment_is_function else FinishReason.STOP
        self._emit(frames, {}, finish_reason=reason.value)
        frames.append(SSEFrame.DONE_FRAME)
        self.state = AssemblerState.CLOSED

    def fail(self, exc: BaseException) -> List[bytes]:
        """流已开始后出错：输出错误帧 + [DONE]"""
        if self.closed:
            return []
        frames = self.start()
        try:
            frames.append(format_sse_data(error_body(exc)))
        except (TypeError, ValueError) as e:
            logger.warning(f"[{self.request_id}] 错误帧序列化失败: {e}")
        frames.append(SSEFrame.DONE_FRAME)
        self.state = AssemblerState.CLOSED
        return frames


class NonStreamingResponseAssembler(_AssemblerBase):
    """非流式组装器：累积事件，Done 后生成单个 chat.completion 对象"""

    def __init__(
        self,
        model: str,
        prompt: str = "",
        request_id: str = "",
        completion_id: Optional[str] = None,
        created: Optional[int] = None,
    ) -> None:
        super().__init__(model, request_id, completion_id, created)
        self.prompt = prompt
        self.content_parts: List[str] = []
        self._content_override: Optional[str] = None

    @property
    def finalized(self) -> bool:
        return self.state == AssemblerState.FINALIZED

    def handle(self, event: AssistantEvent) -> None:
        if self.finalized:
            return
        self.state = AssemblerState.COLLECTING

        if isinstance(event, TextEvent):
            if event.content:
                self.produced_text = True
                self.content_parts.append(event.content)

        elif isinstance(event, FunctionStartEvent):
            self._open_slot(event.name)

        elif isinstance(event, FunctionAppendEvent):
            slot = self._find_open_slot(event.name) or self._open_slot(event.name)
            slot.arguments += event.args_fragment

        elif isinstance(event, FunctionEndEvent):
            slot = self._find_open_slot(event.name) or self._open_slot(event.name)
            slot.arguments = event.arguments.strip()
            slot.completed = True
            self.produced_function = True
            self._content_override = self._stringify_arguments(slot.arguments)
            if event.truncated:
                logger.warning(f"[{self.request_id}] 工具调用 {event.name} 的参数已被截断")

        elif isinstance(event, DoneEvent):
            if not self.produced_text and not self.produced_function and event.final_text.strip():
                logger.warning(f"[{self.request_id}] 未收到任何增量事件，使用页面最终文本兜底")
                self.produced_text = True
                self.content_parts.append(event.final_text)
            self.state = AssemblerState.FINALIZED

        else:
            self._log_side_channel(event)

    @staticmethod
    def _stringify_arguments(arguments: str) -> str:
        """参数 -> content 字符串；无法解析或为空时放入 __raw（空参数为 null）"""
        parsed = None
        if arguments:
            try:
                parsed = json.loads(arguments)
            except (json.JSONDecodeError, ValueError):
                parsed = None
        if parsed is None:
            parsed = {"__raw": arguments or None}
        return json.dumps(parsed, ensure_ascii=False)

    @property
    def content(self) -> str:
        if self._content_override is not None:
            return self._content_override
        return "".join(self.content_parts)

    def build_response(self) -> Dict[str, Any]:
        """生成 chat.completion 响应体"""
        if not self.finalized:
            self.handle(DoneEvent())

        completed = [slot for slot in self.tool_calls if slot.completed]
        message: Dict[str, Any] = {"role": "assistant", "content": self.content}
        if completed:
            message["tool_calls"] = [
                {
                    "id": slot.id,
                    "type": "function",
                    "function": {"name": slot.name, "arguments": slot.arguments},
                }
                for slot in completed
            ]
        if self.attachments:
            message["attachments"] = list(self.attachments)

        prompt_tokens = len(self.prompt)
        completion_tokens = len(self.content)
        return {
            "id": self.completion_id,
            "object": "chat.completion",
            "created": self.created,
            "model": self.model,
            "choices": [
                {
                    "index": 0,
                    "message": message,
                    "finish_reason": (
                        FinishReason.TOOL_CALLS.value if completed else FinishReason.STOP.value
                    ),
                }
            ],
            "usage": {
                "prompt_tokens": prompt_tokens,
                "completion_tokens": completion_tokens,
                "total_tokens": prompt_tokens + completion_tokens,
            },
        }


__all__ = [
    "AssemblerState",
    "FinishReason",
    "ToolCallSlot",
    "StreamingResponseAssembler",
    "NonStreamingResponseAssembler",
    "error_body",
]
