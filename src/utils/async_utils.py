"""
异步工具函数

回调既可以是同步函数也可以是协程函数，统一用 maybe_await 调用。
"""

from __future__ import annotations

import inspect
from typing import Any, AsyncIterator, Awaitable, TypeVar, Union

T = TypeVar("T")


async def maybe_await(value: Union[T, Awaitable[T]]) -> T:
    """
    如果是 awaitable 则等待其结果，否则原样返回

    用法:
        await maybe_await(callback(event))
    """
    if inspect.isawaitable(value):
        return await value
    return value  # type: ignore[return-value]


async def close_async_iterator(iterator: AsyncIterator[Any]) -> None:
    """提前结束 async 迭代时关闭底层生成器"""
    aclose = getattr(iterator, "aclose", None)
    if aclose is not None:
        await aclose()
