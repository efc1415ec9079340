"""
规范化助手事件（AssistantEvent）

上游网页端的增量补丁流经过解码后统一映射为以下事件，
再由 ResponseAssembler 渲染为 OpenAI 兼容的输出。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union


class AssistantEventType(str, Enum):
    """助手事件类型"""

    TEXT = "text"
    THOUGHT = "thought"
    FUNCTION_START = "function_start"
    FUNCTION_APPEND = "function_append"
    FUNCTION_END = "function_end"
    ATTACHMENT = "attachment"
    DONE = "done"


@dataclass
class TextEvent:
    """可见文本片段"""

    type: AssistantEventType = field(default=AssistantEventType.TEXT, init=False)
    content: str = ""
    # 所属 content part 的下标（来自 partKeyLast）
    part_index: Optional[int] = None


@dataclass
class ThoughtEvent:
    """思考片段，group 按首次出现顺序从 1 开始编号"""

    type: AssistantEventType = field(default=AssistantEventType.THOUGHT, init=False)
    group: int = 0
    content: str = ""


@dataclass
class FunctionStartEvent:
    """函数调用开始"""

    type: AssistantEventType = field(default=AssistantEventType.FUNCTION_START, init=False)
    name: str = ""
    id: Optional[str] = None


@dataclass
class FunctionAppendEvent:
    """函数参数片段（字符串）"""

    type: AssistantEventType = field(default=AssistantEventType.FUNCTION_APPEND, init=False)
    name: str = ""
    args_fragment: str = ""


@dataclass
class FunctionEndEvent:
    """函数调用结束，arguments 为完整参数字符串"""

    type: AssistantEventType = field(default=AssistantEventType.FUNCTION_END, init=False)
    name: str = ""
    arguments: str = ""
    truncated: bool = False


@dataclass
class AttachmentEvent:
    """附件（图片等），只作为旁路信息记录"""

    type: AssistantEventType = field(default=AssistantEventType.ATTACHMENT, init=False)
    name: str = ""
    mime: str = ""
    data: str = ""


@dataclass
class DoneEvent:
    """一次交互结束；final_text 用于降级兜底"""

    type: AssistantEventType = field(default=AssistantEventType.DONE, init=False)
    final_text: str = ""


AssistantEvent = Union[
    TextEvent,
    ThoughtEvent,
    FunctionStartEvent,
    FunctionAppendEvent,
    FunctionEndEvent,
    AttachmentEvent,
    DoneEvent,
]


def merge_adjacent_text(events: list) -> list:
    """合并相邻的 TextEvent（文本切分方式不影响语义）"""
    merged: list = []
    for event in events:
        if (
            merged
            and isinstance(event, TextEvent)
            and isinstance(merged[-1], TextEvent)
            and merged[-1].part_index == event.part_index
        ):
            merged[-1] = TextEvent(
                content=merged[-1].content + event.content, part_index=event.part_index
            )
        else:
            merged.append(event)
    return merged


__all__ = [
    "AssistantEventType",
    "TextEvent",
    "ThoughtEvent",
    "FunctionStartEvent",
    "FunctionAppendEvent",
    "FunctionEndEvent",
    "AttachmentEvent",
    "DoneEvent",
    "AssistantEvent",
    "merge_adjacent_text",
]
