"""
测试辅助

FakeBackend 模拟浏览器会话：每次 submit_prompt 按脚本回放一组原始 SSE 字节，
并记录生命周期调用顺序。
"""

import asyncio
import json
from typing import Any, List, Optional

from src.services.session.backend import GenerationBackend


def sse(*payloads: Any, event: Optional[str] = "delta") -> bytes:
    """把若干 payload 编码为 SSE 块（dict/list 会被 JSON 序列化）"""
    out = []
    for payload in payloads:
        data = payload if isinstance(payload, str) else json.dumps(payload)
        prefix = f"event: {event}\n" if event else ""
        out.append(f"{prefix}data: {data}\n\n")
    return "".join(out).encode("utf-8")


DONE = b"data: [DONE]\n\n"


def visible_marker(message_id: str = "m1") -> dict:
    return {"type": "message_marker", "message_id": message_id, "marker": "user_visible_token", "event": "first"}


def add_message(message_id: str, recipient: str = "all", role: str = "assistant") -> dict:
    return {
        "p": "",
        "o": "add",
        "v": {
            "message": {
                "id": message_id,
                "author": {"role": role},
                "recipient": recipient,
                "content": {"content_type": "text", "parts": [""]},
                "status": "in_progress",
            }
        },
    }


def append_part(text: str, index: int = 0) -> dict:
    return {"p": f"/message/content/parts/{index}", "o": "append", "v": text}


def finished(status: str = "finished_successfully") -> dict:
    return {"p": "/message/status", "o": "replace", "v": status}


def hello_script() -> List[bytes]:
    """输入 Hello：可见标记 + 两段文本 + 终态"""
    return [
        sse(visible_marker("m1"), event=None),
        sse(append_part("He")),
        sse({"v": "llo"}),
        sse(finished()),
        DONE,
    ]


def write_tool_script() -> List[bytes]:
    """recipient=write 的函数调用，参数分两段到达"""
    return [
        sse(add_message("m2", recipient="write")),
        sse(append_part('{"pa')),
        sse({"v": 'th":"x"}'}),
        sse(finished()),
        DONE,
    ]


class FakeBackend(GenerationBackend):
    name = "fake"

    def __init__(
        self,
        scripts: Optional[List[List[bytes]]] = None,
        final_text: str = "",
        instrumented: bool = True,
        start_errors: Optional[List[Exception]] = None,
        chunk_delay: float = 0.0,
        hang: bool = False,
        models: Optional[List[str]] = None,
    ) -> None:
        self.scripts = list(scripts or [])
        self.final_text = final_text
        self._instrumented = instrumented
        self.start_errors = list(start_errors or [])
        self.chunk_delay = chunk_delay
        self.hang = hang
        self.models = list(models or [])
        self.calls: List[str] = []
        self.prompts: List[str] = []
        self.switched: List[str] = []

    @property
    def instrumented(self) -> bool:
        return self._instrumented

    async def start(self) -> None:
        self.calls.append("start")
        if self.start_errors:
            raise self.start_errors.pop(0)

    async def submit_prompt(self, prompt: str):
        self.calls.append(f"submit:{prompt}")
        self.prompts.append(prompt)
        chunks = self.scripts.pop(0) if self.scripts else []
        for chunk in chunks:
            if self.chunk_delay:
                await asyncio.sleep(self.chunk_delay)
            yield chunk
        if self.hang:
            await asyncio.Event().wait()
        self.calls.append(f"done:{prompt}")

    async def read_final_text(self) -> str:
        return self.final_text

    async def persist(self) -> None:
        self.calls.append("persist")

    async def teardown(self) -> None:
        self.calls.append("teardown")

    async def rebuild(self) -> None:
        self.calls.append("rebuild")

    async def list_models(self) -> List[str]:
        return list(self.models)

    async def switch_model(self, model: str) -> bool:
        self.switched.append(model)
        return True

    async def close(self) -> None:
        self.calls.append("close")
