"""
文本内嵌函数调用提取器（HiddenFunctionExtractor）

部分上游配置没有结构化的函数调用通道，函数调用只能从普通文本中识别：
- sentinel：`<function_call>{"name": ..., "arguments": {...}}</function_call>`
- json：回复中任意位置的裸 JSON 对象 `{"name": "...", "arguments": {...}}`
- auto：先按 sentinel 识别，没有识别到任何函数调用时再尝试 json

push() 可以接收任意切分的片段（包括把 sentinel 切断的片段），
输出只在相邻 Text 的切分上可能不同。
"""

from __future__ import annotations

import json
import re
from typing import Any, List, Optional, Tuple

from src.config.constants import StreamDefaults
from src.core.conversion.function_buffer import FunctionCallBuffer
from src.core.conversion.stream_events import AssistantEvent, FunctionEndEvent, TextEvent
from src.core.logger import logger

_NAME_FIELD = re.compile(r'"name"\s*:\s*"((?:[^"\\]|\\.)*)"')
_CALL_START = re.compile(r'\{\s*"name"\s*:')
_CALL_NON_GREEDY = re.compile(r'\{\s*"name"\s*:\s*"[^"]+"\s*,\s*"arguments"\s*:\s*\{.*?\}\s*\}', re.DOTALL)


class HiddenFunctionMode:
    OFF = "off"
    SENTINEL = "sentinel"
    JSON = "json"
    AUTO = "auto"

    ALL = (OFF, SENTINEL, JSON, AUTO)


def suffix_prefix_overlap(s1: str, s2: str) -> int:
    """返回 s1 的后缀与 s2 的前缀的最长重叠长度"""
    n = min(len(s1), len(s2))
    for k in range(n, 0, -1):
        if s1.endswith(s2[:k]):
            return k
    return 0


def encode_arguments(arguments: Any) -> str:
    """参数统一编码为紧凑 JSON 字符串；本身是字符串时原样保留"""
    if isinstance(arguments, str):
        return arguments
    return json.dumps(arguments, ensure_ascii=False, separators=(",", ":"))


def parse_function_payload(payload: str, request_id: str = "") -> Tuple[str, str]:
    """
    解析函数调用 JSON

    Args:
        payload: sentinel 之间的原始文本
        request_id: 日志用请求 ID

    Returns:
        (name, arguments 字符串)；解析失败时退化为正则提取 name、原文作为参数，不会抛出异常
    """
    try:
        parsed = json.loads(payload.strip())
    except (json.JSONDecodeError, ValueError):
        parsed = None

    if isinstance(parsed, dict) and isinstance(parsed.get("name"), str):
        return parsed["name"], encode_arguments(parsed.get("arguments", {}))

    match = _NAME_FIELD.search(payload)
    name = match.group(1) if match else "unknown"
    logger.warning(f"[{request_id}] 函数调用 JSON 解析失败，使用原始文本作为参数 (name={name})")
    return name, payload


def find_json_call(text: str) -> Optional[Tuple[int, int, str, str]]:
    """
    在整段文本中查找第一个形如 {"name": ..., "arguments": {...}} 的 JSON 对象

    Returns:
        (start, end, name, arguments) 或 None
    """
    decoder = json.JSONDecoder()
    for match in _CALL_START.finditer(text):
        start = match.start()
        try:
            obj, end = decoder.raw_decode(text, start)
        except (json.JSONDecodeError, ValueError):
            continue
        if isinstance(obj, dict) and isinstance(obj.get("name"), str) and "arguments" in obj:
            return start, end, obj["name"], encode_arguments(obj["arguments"])

    match = _CALL_NON_GREEDY.search(text)
    if match:
        name, arguments = parse_function_payload(match.group(0))
        return match.start(), match.end(), name, arguments
    return None


class HiddenFunctionExtractor:
    """
    内嵌函数调用提取器

    维护一个滚动文本缓冲和 capturing 标志：
    - 非捕获：查找开始标记，之前的文本立即作为 Text 输出
    - 捕获中：查找结束标记，之间的内容累积到函数缓冲（受字节上限约束）
    可能是标记前缀的尾部文本会保留到下一次 push。
    """

    def __init__(
        self,
        mode: str = HiddenFunctionMode.SENTINEL,
        start_marker: str = StreamDefaults.FUNCTION_START_MARKER,
        end_marker: str = StreamDefaults.FUNCTION_END_MARKER,
        max_bytes: int = StreamDefaults.MAX_FUNCTION_ARGS_BYTES,
        request_id: str = "",
    ) -> None:
        if mode not in HiddenFunctionMode.ALL or mode == HiddenFunctionMode.OFF:
            raise ValueError(f"不支持的内嵌函数识别模式: {mode}")
        self.mode = mode
        self.start_marker = start_marker
        self.end_marker = end_marker
        self.max_bytes = max_bytes
        self.request_id = request_id

        self.capturing = False
        self._buffer = ""
        self._function: Optional[FunctionCallBuffer] = None
        # json/auto 模式下暂存的输出，end() 时统一决定
        self._withheld: List[AssistantEvent] = []
        self.function_count = 0

    @property
    def _scan_sentinels(self) -> bool:
        return self.mode in (HiddenFunctionMode.SENTINEL, HiddenFunctionMode.AUTO)

    @property
    def _withholding(self) -> bool:
        return self.mode in (HiddenFunctionMode.JSON, HiddenFunctionMode.AUTO)

    def push(self, fragment: str) -> List[AssistantEvent]:
        if not fragment:
            return []
        if not self._scan_sentinels:
            self._withheld.append(TextEvent(content=fragment))
            return []

        self._buffer += fragment
        return self._release(self._scan())

    def end(self) -> List[AssistantEvent]:
        """刷新剩余文本；结束标记未到达的函数调用被丢弃"""
        events: List[AssistantEvent] = []
        if self.capturing:
            logger.warning(
                f"[{self.request_id}] 函数调用未收到结束标记，丢弃 "
                f"{self._function.byte_count if self._function else 0} 字节"
            )
            self.capturing = False
            self._function = None
        elif self._buffer:
            events.append(TextEvent(content=self._buffer))
        self._buffer = ""

        if not self._withholding:
            return events

        pending = self._withheld + events
        self._withheld = []
        if any(isinstance(e, FunctionEndEvent) for e in pending):
            return pending
        return self._json_fallback(pending)

    def _release(self, events: List[AssistantEvent]) -> List[AssistantEvent]:
        if self._withholding:
            self._withheld.extend(events)
            return []
        return events

    def _scan(self) -> List[AssistantEvent]:
        events: List[AssistantEvent] = []
        while self._buffer:
            if not self.capturing:
                idx = self._buffer.find(self.start_marker)
                if idx >= 0:
                    if idx > 0:
                        events.append(TextEvent(content=self._buffer[:idx]))
                    self._buffer = self._buffer[idx + len(self.start_marker) :]
                    self.capturing = True
                    self._function = FunctionCallBuffer("", self.max_bytes, self.request_id)
                    continue
                hold = suffix_prefix_overlap(self._buffer, self.start_marker)
                emit = self._buffer[: len(self._buffer) - hold]
                if emit:
                    events.append(TextEvent(content=emit))
                self._buffer = self._buffer[len(self._buffer) - hold :]
                break

            assert self._function is not None
            idx = self._buffer.find(self.end_marker)
            if idx >= 0:
                self._function.append(self._buffer[:idx])
                self._buffer = self._buffer[idx + len(self.end_marker) :]
                events.append(self._finish_function(self._function))
                self.capturing = False
                self._function = None
                continue
            hold = suffix_prefix_overlap(self._buffer, self.end_marker)
            self._function.append(self._buffer[: len(self._buffer) - hold])
            self._buffer = self._buffer[len(self._buffer) - hold :]
            break
        return events

    def _finish_function(self, buf: FunctionCallBuffer) -> FunctionEndEvent:
        name, arguments = parse_function_payload(buf.arguments, self.request_id)
        self.function_count += 1
        logger.debug(f"[{self.request_id}] 识别到内嵌函数调用: {name}")
        return FunctionEndEvent(name=name, arguments=arguments, truncated=buf.truncated)

    def _json_fallback(self, pending: List[AssistantEvent]) -> List[AssistantEvent]:
        text = "".join(e.content for e in pending if isinstance(e, TextEvent))
        others = [e for e in pending if not isinstance(e, TextEvent)]
        found = find_json_call(text) if text else None
        if found is None:
            return ([TextEvent(content=text)] if text else []) + others

        start, end, name, arguments = found
        encoded = arguments.encode("utf-8")
        truncated = len(encoded) > self.max_bytes
        if truncated:
            logger.warning(f"[{self.request_id}] 函数 {name} 的参数超过 {self.max_bytes} 字节，已截断")
            arguments = encoded[: self.max_bytes].decode("utf-8", errors="ignore")

        self.function_count += 1
        body = text[:start] + text[end:]
        events: List[AssistantEvent] = []
        if body.strip():
            events.append(TextEvent(content=body))
        events.extend(others)
        events.append(FunctionEndEvent(name=name, arguments=arguments, truncated=truncated))
        return events


__all__ = [
    "HiddenFunctionMode",
    "HiddenFunctionExtractor",
    "suffix_prefix_overlap",
    "encode_arguments",
    "parse_function_payload",
    "find_json_call",
]
