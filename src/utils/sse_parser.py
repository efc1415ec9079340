"""
SSE 事件解析器

逐行输入（不含换行符），遇到空行时产出一个事件：
`{"event": <事件名或 None>, "data": <多行 data 以 \\n 拼接>}`。
"""

from __future__ import annotations

from typing import Dict, List, Optional

from src.core.logger import logger


class SSEEventParser:
    """按 text/event-stream 规则把行组装为事件"""

    def __init__(self, max_event_bytes: Optional[int] = None, request_id: str = "") -> None:
        self.max_event_bytes = max_event_bytes
        self.request_id = request_id
        self._event: Optional[str] = None
        self._data_lines: List[str] = []
        self._size = 0
        self._oversized = False
        self.dropped_events = 0

    def _reset(self) -> None:
        self._event = None
        self._data_lines = []
        self._size = 0
        self._oversized = False

    def _emit(self) -> List[Dict[str, Optional[str]]]:
        if self._oversized:
            self.dropped_events += 1
            logger.warning(
                f"[{self.request_id}] SSE 事件超过 {self.max_event_bytes} 字节预算，已丢弃 "
                f"(event={self._event})"
            )
            self._reset()
            return []
        if not self._data_lines:
            self._reset()
            return []
        event = {"event": self._event, "data": "\n".join(self._data_lines)}
        self._reset()
        return [event]

    def feed_line(self, line: str) -> List[Dict[str, Optional[str]]]:
        """
        输入一行

        Args:
            line: 去掉换行符的单行文本

        Returns:
            本行结束的事件列表（通常为空或一个）
        """
        if line == "":
            return self._emit()
        if line.startswith(":"):
            # 注释行
            return []

        field_name, sep, value = line.partition(":")
        if not sep:
            value = ""
        elif value.startswith(" "):
            value = value[1:]

        if field_name == "event":
            self._event = value
        elif field_name == "data":
            if self._oversized:
                return []
            self._size += len(value.encode("utf-8")) + 1
            if self.max_event_bytes is not None and self._size > self.max_event_bytes:
                self._oversized = True
                self._data_lines = []
                return []
            self._data_lines.append(value)
        return []

    def flush(self) -> List[Dict[str, Optional[str]]]:
        """流结束时产出最后一个未以空行结尾的事件"""
        return self._emit()


__all__ = ["SSEEventParser"]
