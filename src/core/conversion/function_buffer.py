"""
函数参数累积缓冲

每个进行中的函数调用对应一个 FunctionCallBuffer，
按消息 ID 关联；没有消息 ID 时使用合成的 `anon:{name}:{n}` 键。
参数按 UTF-8 字节数设上限，超过上限时截断而不是报错。
"""

from __future__ import annotations

from typing import Dict, List, Optional

from src.config.constants import StreamDefaults
from src.core.logger import logger


class FunctionCallBuffer:
    """单个函数调用的参数缓冲"""

    def __init__(
        self,
        name: str,
        max_bytes: int = StreamDefaults.MAX_FUNCTION_ARGS_BYTES,
        request_id: str = "",
    ) -> None:
        self.name = name
        self.max_bytes = max_bytes
        self.request_id = request_id
        self.truncated = False
        self._data = bytearray()

    @property
    def byte_count(self) -> int:
        return len(self._data)

    @property
    def arguments(self) -> str:
        # 截断点可能落在多字节字符中间
        return bytes(self._data).decode("utf-8", errors="ignore")

    def append(self, fragment: str) -> str:
        """
        追加参数片段

        Args:
            fragment: 新的参数片段

        Returns:
            实际被接收的部分（超过上限后为空串）
        """
        if not fragment:
            return ""
        if self.truncated:
            return ""

        encoded = fragment.encode("utf-8")
        room = self.max_bytes - len(self._data)
        if len(encoded) <= room:
            self._data.extend(encoded)
            return fragment

        accepted = encoded[: max(room, 0)]
        self._data.extend(accepted)
        self.truncated = True
        logger.warning(
            f"[{self.request_id}] 函数 {self.name} 的参数超过 {self.max_bytes} 字节，已截断"
        )
        return accepted.decode("utf-8", errors="ignore")


class FunctionBufferRegistry:
    """
    一次请求内所有函数缓冲的注册表

    键优先使用消息 ID；缺失时按名称查找已打开的缓冲，
    仍找不到则分配 `anon:{name}:{n}`。
    """

    def __init__(
        self,
        max_bytes: int = StreamDefaults.MAX_FUNCTION_ARGS_BYTES,
        request_id: str = "",
    ) -> None:
        self.max_bytes = max_bytes
        self.request_id = request_id
        self._buffers: Dict[str, FunctionCallBuffer] = {}
        self._anon_counter = 0

    def __len__(self) -> int:
        return len(self._buffers)

    def _anon_key(self, name: str) -> str:
        self._anon_counter += 1
        return f"anon:{name}:{self._anon_counter}"

    def _find_key_by_name(self, name: str) -> Optional[str]:
        for key, buf in self._buffers.items():
            if buf.name == name:
                return key
        return None

    def open(self, name: str, message_id: Optional[str] = None) -> str:
        key = message_id or self._anon_key(name)
        self._buffers[key] = FunctionCallBuffer(name, self.max_bytes, self.request_id)
        return key

    def get(self, name: Optional[str] = None, message_id: Optional[str] = None) -> Optional[FunctionCallBuffer]:
        if message_id and message_id in self._buffers:
            return self._buffers[message_id]
        if name:
            key = self._find_key_by_name(name)
            if key is not None:
                return self._buffers[key]
        return None

    def append(self, name: str, fragment: str, message_id: Optional[str] = None) -> str:
        buf = self.get(name, message_id)
        if buf is None:
            key = message_id or self._anon_key(name)
            buf = self._buffers[key] = FunctionCallBuffer(name, self.max_bytes, self.request_id)
        return buf.append(fragment)

    def close(self, name: Optional[str] = None, message_id: Optional[str] = None) -> Optional[FunctionCallBuffer]:
        """移除并返回对应缓冲，不存在时返回 None"""
        if message_id and message_id in self._buffers:
            return self._buffers.pop(message_id)
        if name:
            key = self._find_key_by_name(name)
            if key is not None:
                return self._buffers.pop(key)
        return None

    def drain(self) -> List[FunctionCallBuffer]:
        """移除并返回所有未关闭的缓冲（按打开顺序）"""
        buffers = list(self._buffers.values())
        self._buffers.clear()
        return buffers


__all__ = ["FunctionCallBuffer", "FunctionBufferRegistry"]
