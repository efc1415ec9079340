"""
生成会话协作方接口（GenerationBackend）

核心层只通过这个接口与浏览器会话交互：提交 prompt、读取拦截到的原始流、
以及 persist / teardown / rebuild 生命周期。具体的 DOM 自动化由实现方提供。
"""

from __future__ import annotations

import importlib
from abc import ABC, abstractmethod
from typing import AsyncIterator, Callable, List, Optional, Union

from src.config.settings import config
from src.core.exceptions import SessionInitializationError
from src.core.logger import logger

RawChunk = Union[bytes, str]


class GenerationBackend(ABC):
    """
    浏览器会话的抽象

    约定：
    - 同一时刻只会有一个调用方（由 SessionCoordinator 保证）
    - submit_prompt 返回的迭代器产出原始 text/event-stream 字节，上游结束时迭代结束
    """

    name: str = "backend"

    @property
    def instrumented(self) -> bool:
        """是否成功注入了流拦截；为 False 时只能依赖 read_final_text 兜底"""
        return True

    @abstractmethod
    async def start(self) -> None:
        """首次使用时建立会话"""

    @abstractmethod
    def submit_prompt(self, prompt: str) -> AsyncIterator[RawChunk]:
        """提交 prompt 并返回拦截到的原始流"""

    async def read_final_text(self) -> str:
        """交互结束后页面上显示的完整回复"""
        return ""

    @abstractmethod
    async def persist(self) -> None:
        """保存会话状态（cookie / storage）"""

    @abstractmethod
    async def teardown(self) -> None:
        """关闭当前执行上下文"""

    @abstractmethod
    async def rebuild(self) -> None:
        """基于已保存的状态重建执行上下文"""

    async def list_models(self) -> List[str]:
        return []

    async def switch_model(self, model: str) -> bool:
        """切换模型，返回是否成功"""
        logger.warning(f"{self.name} 不支持切换模型: {model}")
        return False

    async def close(self) -> None:
        """进程退出时释放资源"""
        await self.teardown()


BackendFactory = Callable[[], GenerationBackend]


def load_backend_factory(path: Optional[str] = None) -> BackendFactory:
    """
    按 `module:attribute` 导入后端工厂

    Args:
        path: 导入路径，默认取 config.session_backend

    Raises:
        SessionInitializationError: 未配置或无法导入
    """
    path = (path if path is not None else config.session_backend).strip()
    if not path:
        raise SessionInitializationError(
            "未配置 SESSION_BACKEND（格式: package.module:factory），无法启动会话"
        )

    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise SessionInitializationError(f"SESSION_BACKEND 格式错误: {path}")

    try:
        module = importlib.import_module(module_name)
        factory = getattr(module, attr)
    except (ImportError, AttributeError) as e:
        raise SessionInitializationError(f"无法加载会话后端 {path}: {e}") from e

    if not callable(factory):
        raise SessionInitializationError(f"会话后端 {path} 不可调用")
    return factory


def create_backend(path: Optional[str] = None) -> GenerationBackend:
    backend = load_backend_factory(path)()
    if not isinstance(backend, GenerationBackend):
        raise SessionInitializationError(
            f"会话后端工厂返回了 {type(backend).__name__}，而不是 GenerationBackend"
        )
    logger.info(f"已加载会话后端: {backend.name}")
    return backend


__all__ = [
    "RawChunk",
    "GenerationBackend",
    "BackendFactory",
    "load_backend_factory",
    "create_backend",
]
