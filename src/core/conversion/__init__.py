"""
网页端增量流 -> 规范化助手事件
"""

from .delta_interpreter import DeltaInterpreter
from .function_buffer import FunctionBufferRegistry, FunctionCallBuffer
from .hidden_function import HiddenFunctionExtractor, HiddenFunctionMode
from .lexer import RawEvent, RawEventLexer
from .pipeline import TranslationPipeline
from .stream_events import (
    AssistantEvent,
    AssistantEventType,
    AttachmentEvent,
    DoneEvent,
    FunctionAppendEvent,
    FunctionEndEvent,
    FunctionStartEvent,
    TextEvent,
    ThoughtEvent,
)
from .stream_state import ActiveSegment, SegmentKind, StreamState

__all__ = [
    "AssistantEvent",
    "AssistantEventType",
    "TextEvent",
    "ThoughtEvent",
    "FunctionStartEvent",
    "FunctionAppendEvent",
    "FunctionEndEvent",
    "AttachmentEvent",
    "DoneEvent",
    "StreamState",
    "ActiveSegment",
    "SegmentKind",
    "RawEvent",
    "RawEventLexer",
    "DeltaInterpreter",
    "FunctionCallBuffer",
    "FunctionBufferRegistry",
    "HiddenFunctionExtractor",
    "HiddenFunctionMode",
    "TranslationPipeline",
]
