"""
翻译流水线（TranslationPipeline）

RawEventLexer -> DeltaInterpreter -> HiddenFunctionExtractor，每个请求一个实例。
"""

from __future__ import annotations

from typing import List, Optional, Union

from src.config.settings import config
from src.core.conversion.delta_interpreter import DeltaInterpreter
from src.core.conversion.hidden_function import HiddenFunctionExtractor, HiddenFunctionMode
from src.core.conversion.lexer import RawEventLexer
from src.core.conversion.stream_events import AssistantEvent, FunctionEndEvent, TextEvent


class TranslationPipeline:
    """把会话拦截到的原始字节转换为规范化事件"""

    def __init__(
        self,
        request_id: str = "",
        hidden_function_mode: Optional[str] = None,
        start_marker: Optional[str] = None,
        end_marker: Optional[str] = None,
        max_function_args_bytes: Optional[int] = None,
        max_event_bytes: Optional[int] = None,
    ) -> None:
        self.request_id = request_id
        max_function_args_bytes = max_function_args_bytes or config.max_function_args_bytes
        mode = (hidden_function_mode or config.hidden_function_mode).lower()

        self.lexer = RawEventLexer(max_event_bytes or config.max_event_bytes, request_id)
        self.interpreter = DeltaInterpreter(
            max_function_args_bytes=max_function_args_bytes, request_id=request_id
        )
        self.extractor: Optional[HiddenFunctionExtractor] = None
        if mode != HiddenFunctionMode.OFF:
            self.extractor = HiddenFunctionExtractor(
                mode=mode,
                start_marker=start_marker or config.function_start_marker,
                end_marker=end_marker or config.function_end_marker,
                max_bytes=max_function_args_bytes,
                request_id=request_id,
            )

        self.produced_text = False
        self.produced_function = False
        self._text_parts: List[str] = []
        self._closed = False

    @property
    def finished(self) -> bool:
        """上游发送了 [DONE] 或 message_stream_complete"""
        return self.lexer.finished or self.interpreter.state.stream_complete

    @property
    def collected_text(self) -> str:
        return "".join(self._text_parts)

    def feed(self, chunk: Union[bytes, str]) -> List[AssistantEvent]:
        if self._closed:
            return []
        events: List[AssistantEvent] = []
        for raw in self.lexer.feed(chunk):
            events.extend(self._translate(self.interpreter.interpret(raw.data, raw.event)))
        return events

    def finish(self) -> List[AssistantEvent]:
        """刷新词法器与提取器，之后的 feed 不再产出事件"""
        if self._closed:
            return []
        events: List[AssistantEvent] = []
        for raw in self.lexer.flush():
            events.extend(self._translate(self.interpreter.interpret(raw.data, raw.event)))
        events.extend(self._record(self.interpreter.close_pending()))
        if self.extractor is not None:
            events.extend(self._record(self.extractor.end()))
        self._closed = True
        return events

    def _translate(self, events: List[AssistantEvent]) -> List[AssistantEvent]:
        if self.extractor is None:
            return self._record(events)
        out: List[AssistantEvent] = []
        for event in events:
            if isinstance(event, TextEvent):
                out.extend(self.extractor.push(event.content))
            else:
                out.append(event)
        return self._record(out)

    def _record(self, events: List[AssistantEvent]) -> List[AssistantEvent]:
        for event in events:
            if isinstance(event, TextEvent):
                self.produced_text = True
                self._text_parts.append(event.content)
            elif isinstance(event, FunctionEndEvent):
                self.produced_function = True
        return events


__all__ = ["TranslationPipeline"]
