"""
OpenAI Chat Completions 输出
"""

from .adapter import OpenAIChatAdapter
from .handler import OpenAIChatHandler
from .response_assembler import NonStreamingResponseAssembler, StreamingResponseAssembler

__all__ = [
    "OpenAIChatAdapter",
    "OpenAIChatHandler",
    "StreamingResponseAssembler",
    "NonStreamingResponseAssembler",
]
