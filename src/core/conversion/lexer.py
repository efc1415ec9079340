"""
原始事件词法器（RawEventLexer）

把会话拦截到的字节流切分为独立的 payload 字符串。
分块规则与 SSE 一致；跨网络读取的残缺行会保留到下一次 feed。
"""

from __future__ import annotations

import codecs
from dataclasses import dataclass
from typing import List, Optional, Union

from src.config.constants import SSEFrame, StreamDefaults
from src.core.logger import logger
from src.utils.sse_parser import SSEEventParser


@dataclass
class RawEvent:
    """一个 data 块；event 为 SSE 事件名（可能为空）"""

    data: str
    event: Optional[str] = None


class RawEventLexer:
    """
    增量 SSE 词法器

    - `feed()` 可以接收任意切分的 bytes/str
    - 遇到 `[DONE]` 后 finished 置为 True，之后的输入全部忽略
    """

    def __init__(self, max_event_bytes: int = StreamDefaults.MAX_EVENT_BYTES, request_id: str = "") -> None:
        self.request_id = request_id
        self.finished = False
        self._buffer = b""
        # 使用增量解码器处理跨 chunk 的 UTF-8 字符
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._parser = SSEEventParser(max_event_bytes=max_event_bytes, request_id=request_id)

    @property
    def dropped_events(self) -> int:
        return self._parser.dropped_events

    def feed(self, chunk: Union[bytes, str]) -> List[RawEvent]:
        if self.finished or not chunk:
            return []
        if isinstance(chunk, str):
            chunk = chunk.encode("utf-8")

        self._buffer += chunk
        events: List[RawEvent] = []
        while b"\n" in self._buffer and not self.finished:
            line_bytes, self._buffer = self._buffer.split(b"\n", 1)
            line = self._decoder.decode(line_bytes + b"\n", False)
            events.extend(self._process_line(line))
        return events

    def flush(self) -> List[RawEvent]:
        """处理剩余缓冲区（没有以空行结尾的最后一块）"""
        if self.finished:
            return []
        events: List[RawEvent] = []
        if self._buffer:
            line = self._decoder.decode(self._buffer, True)
            self._buffer = b""
            events.extend(self._process_line(line))
        if not self.finished:
            events.extend(self._convert(self._parser.flush()))
        return events

    def _process_line(self, line: str) -> List[RawEvent]:
        # 统一剔除 CR/LF，避免把空行误判成 "\n"
        return self._convert(self._parser.feed_line(line.rstrip("\r\n")))

    def _convert(self, parsed: list) -> List[RawEvent]:
        events: List[RawEvent] = []
        for item in parsed:
            data = item.get("data") or ""
            if data.strip() == SSEFrame.DONE:
                logger.debug(f"[{self.request_id}] 收到 [DONE]")
                self.finished = True
                self._buffer = b""
                break
            events.append(RawEvent(data=data, event=item.get("event")))
        return events


__all__ = ["RawEvent", "RawEventLexer"]
