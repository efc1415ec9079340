"""
Handler 基础工具函数
"""

import json
from typing import Any, Dict, Optional

from src.config.constants import SSEFrame


def build_sse_headers(extra_headers: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    """
    构建 SSE（text/event-stream）推荐响应头，用于减少代理缓冲带来的卡顿/成段输出。

    说明：
    - Cache-Control: no-transform 可避免部分代理对流做压缩/改写导致缓冲
    - X-Accel-Buffering: no 可显式提示 Nginx 关闭缓冲（即使全局已关闭也无害）
    """
    headers: Dict[str, str] = {
        "Cache-Control": "no-cache, no-transform",
        "Connection": "keep-alive",
        "X-Accel-Buffering": "no",
    }
    if extra_headers:
        headers.update(extra_headers)
    return headers


def format_sse_data(payload: Dict[str, Any]) -> bytes:
    """
    把一个 JSON 对象编码为 `data: {...}\\n\\n` 帧

    Raises:
        TypeError / ValueError: payload 无法序列化
    """
    return f"{SSEFrame.DATA_PREFIX} {json.dumps(payload, ensure_ascii=False)}\n\n".encode("utf-8")


def wants_event_stream(body: Dict[str, Any], accept: Optional[str]) -> bool:
    """请求体 stream=true 或 Accept 包含 text/event-stream 时走流式"""
    if body.get("stream") is True:
        return True
    return "text/event-stream" in (accept or "").lower()
