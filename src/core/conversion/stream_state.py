"""
增量解码状态（StreamState）

生命周期为一次请求，只由 DeltaInterpreter 读写，不跨请求共享。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple


class SegmentKind(str, Enum):
    """当前活跃片段类别"""

    NONE = "none"
    THINKING = "thinking"
    VISIBLE = "visible"
    FUNCTION = "function"


@dataclass(frozen=True)
class ActiveSegment:
    """活跃片段：同一时刻只有一个"""

    kind: SegmentKind = SegmentKind.NONE
    id: Optional[str] = None
    # 仅 FUNCTION 使用
    name: Optional[str] = None

    def is_function_for(self, message_id: Optional[str]) -> bool:
        return self.kind == SegmentKind.FUNCTION and self.id == message_id


@dataclass
class StreamState:
    """
    一次请求内的解码上下文

    关键点：
    - thought_index_to_group 只增不改，(message_id, 位置下标) 一旦分配组号就不会变
    - 组号按首次出现顺序从 1 开始
    """

    active: ActiveSegment = field(default_factory=ActiveSegment)
    current_message_id: Optional[str] = None

    thought_index_to_group: Dict[Tuple[Optional[str], int], int] = field(default_factory=dict)
    # 每条消息已出现的思考条数（批量追加时的下一个位置下标）
    thought_counts: Dict[Optional[str], int] = field(default_factory=dict)
    next_group: int = 1
    last_group: Optional[int] = None

    part_key_last: Optional[Tuple[Optional[str], int]] = None

    # 上游发送了 message_stream_complete
    stream_complete: bool = False

    def enter(self, kind: SegmentKind, segment_id: Optional[str] = None, name: Optional[str] = None) -> None:
        """进入新片段（同时清除之前的片段）"""
        self.active = ActiveSegment(kind=kind, id=segment_id, name=name)

    def clear_segment(self) -> None:
        self.active = ActiveSegment()

    def resolve_group(self, message_id: Optional[str], index: int) -> int:
        """把 (消息, 位置下标) 映射为组号，重复调用结果不变"""
        key = (message_id, index)
        group = self.thought_index_to_group.get(key)
        if group is None:
            group = self.next_group
            self.next_group += 1
            self.thought_index_to_group[key] = group
        self.thought_counts[message_id] = max(self.thought_counts.get(message_id, 0), index + 1)
        self.last_group = group
        return group

    def allocate_group(self, message_id: Optional[str]) -> int:
        """为批量追加的下一条思考分配组号"""
        return self.resolve_group(message_id, self.thought_counts.get(message_id, 0))


__all__ = ["SegmentKind", "ActiveSegment", "StreamState"]
