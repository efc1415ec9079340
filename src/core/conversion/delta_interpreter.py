"""
增量补丁解释器（DeltaInterpreter）

把网页端会话的增量补丁（marker / 路径操作 / 数组追加 / 续写字符串）
解释为规范化的 AssistantEvent。

上游词汇表没有公开文档且会变化，无法识别的内容一律视为 no-op。
补丁字段同时接受缩写（p/o/v）和完整写法（path/op/value）。
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, List, Optional, Union

from src.config.constants import ProviderVocabulary, StreamDefaults
from src.core.conversion.function_buffer import FunctionBufferRegistry
from src.core.conversion.stream_events import (
    AssistantEvent,
    AttachmentEvent,
    FunctionAppendEvent,
    FunctionEndEvent,
    FunctionStartEvent,
    TextEvent,
    ThoughtEvent,
)
from src.core.conversion.stream_state import SegmentKind, StreamState
from src.core.logger import logger

_THOUGHT_CONTENT_PATH = re.compile(r"^/message/content/thoughts/(\d+)/content$")
_THOUGHTS_PATH = "/message/content/thoughts"
_CONTENT_PART_PATH = re.compile(r"^/message/content/parts/(\d+)$")

# 与正文无关的 SSE 事件
_IGNORED_EVENTS = frozenset({"delta_encoding", "ping"})

_MISSING = object()


def _field(op: Dict[str, Any], short: str, long: str) -> Any:
    if short in op:
        return op[short]
    return op.get(long, _MISSING)


class DeltaInterpreter:
    """
    解释单个 payload 并产出事件

    匹配顺序（先匹配者生效）：
    1. message_marker：切换活跃片段
    2. 思考内容路径：Thought
    3. 思考数组批量追加：每个元素一个新组
    4. content part 路径：Text / FunctionAppend
    5. 携带完整消息的 add：recipient 非 all 时 FunctionStart
    6. status 变为终态：关闭匹配的函数片段，FunctionEnd
    7. 无路径的字符串：续写当前活跃片段
    8. 其它：忽略
    """

    def __init__(
        self,
        state: Optional[StreamState] = None,
        max_function_args_bytes: int = StreamDefaults.MAX_FUNCTION_ARGS_BYTES,
        request_id: str = "",
    ) -> None:
        self.state = state or StreamState()
        self.request_id = request_id
        self.functions = FunctionBufferRegistry(max_function_args_bytes, request_id)

    # ------------------------------------------------------------------
    # 入口
    # ------------------------------------------------------------------

    def interpret(self, payload: Union[str, Any], event_name: Optional[str] = None) -> List[AssistantEvent]:
        """
        解释一个 payload

        Args:
            payload: 原始 data 字符串或已解析的 JSON 值
            event_name: SSE 事件名

        Returns:
            产出的事件列表（可能为空）
        """
        if event_name in _IGNORED_EVENTS:
            return []

        if isinstance(payload, str):
            try:
                parsed = json.loads(payload)
            except (json.JSONDecodeError, ValueError):
                logger.debug(f"[{self.request_id}] 忽略非 JSON payload: {payload[:100]!r}")
                return []
        else:
            parsed = payload

        if isinstance(parsed, dict):
            kind = parsed.get("type")
            if kind == ProviderVocabulary.MESSAGE_MARKER:
                self._apply_marker(parsed)
                return []
            if kind == ProviderVocabulary.STREAM_COMPLETE:
                self.state.stream_complete = True
                return []
            inner = parsed.get("payload")
            if isinstance(inner, dict) and ("v" in inner or "value" in inner):
                parsed = inner
            return self._apply_operation(parsed)

        if isinstance(parsed, list):
            return self._apply_patch(parsed)

        return []

    # ------------------------------------------------------------------
    # 规则实现
    # ------------------------------------------------------------------

    def _apply_marker(self, marker: Dict[str, Any]) -> None:
        message_id = marker.get("message_id") or self.state.current_message_id
        if marker.get("message_id"):
            self.state.current_message_id = marker["message_id"]

        name = marker.get("marker")
        if name == ProviderVocabulary.MARKER_COT:
            self.state.enter(SegmentKind.THINKING, message_id)
        elif name == ProviderVocabulary.MARKER_VISIBLE:
            self.state.enter(SegmentKind.VISIBLE, message_id)

    def _apply_patch(self, operations: List[Any]) -> List[AssistantEvent]:
        events: List[AssistantEvent] = []
        for sub in operations:
            if isinstance(sub, dict):
                events.extend(self._apply_operation(sub))
        return events

    def _apply_operation(self, op: Dict[str, Any]) -> List[AssistantEvent]:
        path = _field(op, "p", "path")
        operation = _field(op, "o", "op")
        value = _field(op, "v", "value")
        if value is _MISSING:
            return []
        path = path if isinstance(path, str) else ""
        operation = operation if isinstance(operation, str) else ""

        match = _THOUGHT_CONTENT_PATH.match(path)
        if match and isinstance(value, str):
            group = self.state.resolve_group(self.state.current_message_id, int(match.group(1)))
            return [ThoughtEvent(group=group, content=value)]

        if path == _THOUGHTS_PATH and operation == "append" and isinstance(value, list):
            return self._append_thoughts(value)

        match = _CONTENT_PART_PATH.match(path)
        if match:
            return self._apply_part(int(match.group(1)), value)

        if operation == "add" and isinstance(value, dict) and isinstance(value.get("message"), dict):
            return self._add_message(value["message"])

        if path == ProviderVocabulary.STATUS_PATH and operation in ("replace", "set"):
            if value in ProviderVocabulary.TERMINAL_STATUSES:
                return self._close_function(self.state.current_message_id)
            return []

        if operation == "patch" and isinstance(value, list):
            return self._apply_patch(value)

        if not path:
            if isinstance(value, str) and operation in ("", "append"):
                return self._continue_segment(value)
            if isinstance(value, list) and not operation:
                return self._apply_patch(value)

        return []

    def _append_thoughts(self, thoughts: List[Any]) -> List[AssistantEvent]:
        message_id = self.state.current_message_id
        events: List[AssistantEvent] = []
        for item in thoughts:
            group = self.state.allocate_group(message_id)
            if isinstance(item, dict):
                content = item.get("content") or item.get("summary") or ""
            else:
                content = item if isinstance(item, str) else ""
            if content:
                events.append(ThoughtEvent(group=group, content=content))
        return events

    def _apply_part(self, index: int, value: Any) -> List[AssistantEvent]:
        message_id = self.state.current_message_id
        self.state.part_key_last = (message_id, index)

        if isinstance(value, dict) and value.get("asset_pointer"):
            return [self._attachment(value)]
        if not isinstance(value, str) or value == "":
            return []

        active = self.state.active
        if active.is_function_for(message_id):
            return self._function_append(active.name or "", value, message_id)
        return [TextEvent(content=value, part_index=index)]

    def _attachment(self, part: Dict[str, Any]) -> AttachmentEvent:
        pointer = str(part.get("asset_pointer"))
        name = part.get("name") or pointer.rsplit("/", 1)[-1]
        return AttachmentEvent(name=name, mime=part.get("mime_type") or "", data=pointer)

    def _add_message(self, message: Dict[str, Any]) -> List[AssistantEvent]:
        message_id = message.get("id") or None
        self.state.current_message_id = message_id

        recipient = message.get("recipient") or ProviderVocabulary.RECIPIENT_ALL
        author = message.get("author") or {}
        role = author.get("role", "assistant") if isinstance(author, dict) else "assistant"
        if recipient == ProviderVocabulary.RECIPIENT_ALL or role != "assistant":
            return []

        self.state.enter(SegmentKind.FUNCTION, message_id, recipient)
        self.functions.open(recipient, message_id)
        logger.debug(f"[{self.request_id}] 函数调用开始: {recipient} (message_id={message_id})")
        return [FunctionStartEvent(name=recipient, id=message_id)]

    def _function_append(self, name: str, fragment: str, message_id: Optional[str]) -> List[AssistantEvent]:
        accepted = self.functions.append(name, fragment, message_id)
        if not accepted:
            return []
        return [FunctionAppendEvent(name=name, args_fragment=accepted)]

    def _close_function(self, message_id: Optional[str]) -> List[AssistantEvent]:
        active = self.state.active
        if not active.is_function_for(message_id):
            return []

        name = active.name or "unknown"
        buf = self.functions.close(name, message_id)
        self.state.clear_segment()
        if buf is None:
            return [FunctionEndEvent(name=name, arguments="")]
        return [FunctionEndEvent(name=buf.name, arguments=buf.arguments, truncated=buf.truncated)]

    def close_pending(self) -> List[AssistantEvent]:
        """
        流结束时关闭所有未收到终态的函数调用

        已累积的参数原样作为 FunctionEnd 输出，活跃片段被清除。
        """
        pending = self.functions.drain()
        if not pending:
            return []

        logger.warning(f"[{self.request_id}] 流结束时仍有 {len(pending)} 个函数调用未收到终态，按已收到的参数结束")
        if self.state.active.kind == SegmentKind.FUNCTION:
            self.state.clear_segment()
        return [
            FunctionEndEvent(name=buf.name, arguments=buf.arguments, truncated=buf.truncated)
            for buf in pending
        ]

    def _continue_segment(self, fragment: str) -> List[AssistantEvent]:
        if not fragment:
            return []
        active = self.state.active

        if active.kind == SegmentKind.FUNCTION:
            return self._function_append(active.name or "", fragment, active.id)

        if active.kind == SegmentKind.VISIBLE:
            part_index = self.state.part_key_last[1] if self.state.part_key_last else None
            return [TextEvent(content=fragment, part_index=part_index)]

        if active.kind == SegmentKind.THINKING:
            group = self.state.last_group
            if group is None:
                group = self.state.resolve_group(active.id, 0)
            return [ThoughtEvent(group=group, content=fragment)]

        return []


__all__ = ["DeltaInterpreter"]
