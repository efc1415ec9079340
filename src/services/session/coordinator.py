"""
会话协调器（SessionCoordinator）

独占唯一的生成会话：
- 用 asyncio.Lock 串行化所有请求（按到达顺序 FIFO）
- 首次使用时惰性初始化，初始化失败直接报给调用方
- 每次交互结束后 persist -> teardown -> rebuild，限制执行上下文的资源增长
- 锁总是在 finally 中释放，超时也不会让锁被永久占用
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, List, Optional

from src.config.settings import config
from src.core.conversion.pipeline import TranslationPipeline
from src.core.conversion.stream_events import AssistantEvent, DoneEvent
from src.core.exceptions import (
    GenerationFailedException,
    GenerationTimeoutException,
    ProxyException,
    SessionInitializationError,
)
from src.core.logger import logger
from src.services.session.backend import GenerationBackend
from src.utils.async_utils import close_async_iterator, maybe_await

EventSink = Callable[[AssistantEvent], Any]
PipelineFactory = Callable[[str], TranslationPipeline]


class SessionCoordinator:
    """单会话的串行化与生命周期管理"""

    def __init__(
        self,
        backend: GenerationBackend,
        recycle: Optional[bool] = None,
        recycle_timeout: Optional[float] = None,
        pipeline_factory: Optional[PipelineFactory] = None,
    ) -> None:
        self.backend = backend
        self.recycle_enabled = config.session_recycle if recycle is None else recycle
        self.recycle_timeout = recycle_timeout or config.recycle_timeout
        self._pipeline_factory = pipeline_factory or (lambda request_id: TranslationPipeline(request_id))

        # asyncio.Lock 的等待队列按 FIFO 唤醒
        self._lock = asyncio.Lock()
        self._initialized = False
        self._init_error: Optional[BaseException] = None
        self._closed = False
        self.active_request_id: Optional[str] = None
        self.completed_exchanges = 0

    # ------------------------------------------------------------------
    # 状态
    # ------------------------------------------------------------------

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    @property
    def status(self) -> str:
        if self._closed:
            return "closed"
        if self._init_error is not None:
            return "failed"
        if not self._initialized:
            return "cold"
        return "busy" if self.busy else "idle"

    # ------------------------------------------------------------------
    # 生命周期
    # ------------------------------------------------------------------

    async def _ensure_initialized(self) -> None:
        """调用方必须持有锁"""
        if self._closed:
            raise SessionInitializationError("会话已关闭")
        if self._initialized:
            return
        try:
            await self.backend.start()
        except Exception as e:
            self._init_error = e
            logger.error(f"会话初始化失败: {e}")
            raise SessionInitializationError(f"会话初始化失败: {e}") from e
        self._initialized = True
        self._init_error = None
        logger.info(f"会话已就绪 (backend={self.backend.name})")

    async def initialize(self) -> None:
        """启动时主动初始化"""
        async with self._lock:
            await self._ensure_initialized()

    async def _recycle_steps(self) -> None:
        await self.backend.persist()
        await self.backend.teardown()
        await self.backend.rebuild()

    async def _recycle(self, request_id: str) -> None:
        """交互后的回收；失败只记录日志，下次请求会重新初始化"""
        if not self.recycle_enabled or not self._initialized:
            return
        try:
            await asyncio.wait_for(self._recycle_steps(), timeout=self.recycle_timeout)
            logger.debug(f"[{request_id}] 会话已回收重建")
        except asyncio.TimeoutError:
            self._initialized = False
            logger.error(f"[{request_id}] 会话回收超过 {self.recycle_timeout}s，下次请求将重新初始化")
        except Exception as e:
            self._initialized = False
            logger.exception(f"[{request_id}] 会话回收失败，下次请求将重新初始化: {e}")

    async def refresh(self) -> None:
        """手动回收（persist -> teardown -> rebuild）"""
        async with self._lock:
            await self._ensure_initialized()
            try:
                await asyncio.wait_for(self._recycle_steps(), timeout=self.recycle_timeout)
            except asyncio.TimeoutError as e:
                self._initialized = False
                raise GenerationTimeoutException(f"会话回收超过 {self.recycle_timeout}s") from e
            except Exception as e:
                self._initialized = False
                logger.exception(f"会话回收失败: {e}")
                raise GenerationFailedException(f"会话回收失败: {e}") from e
            logger.info("会话已手动刷新")

    async def save(self) -> None:
        """手动保存会话状态"""
        async with self._lock:
            await self._ensure_initialized()
            try:
                await self.backend.persist()
            except Exception as e:
                logger.exception(f"保存会话状态失败: {e}")
                raise GenerationFailedException(f"保存会话状态失败: {e}") from e
            logger.info("会话状态已保存")

    async def list_models(self) -> List[str]:
        async with self._lock:
            await self._ensure_initialized()
            try:
                return list(await self.backend.list_models())
            except Exception as e:
                logger.warning(f"获取模型列表失败: {e}")
                return []

    async def switch_model(self, model: str) -> bool:
        async with self._lock:
            await self._ensure_initialized()
            try:
                switched = await self.backend.switch_model(model)
            except Exception as e:
                logger.exception(f"切换模型失败: {e}")
                raise GenerationFailedException(f"切换模型失败: {e}") from e
            logger.info(f"切换模型 {model}: {'成功' if switched else '未生效'}")
            return bool(switched)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self.backend.close()
        except Exception as e:
            logger.warning(f"关闭会话后端失败: {e}")

    # ------------------------------------------------------------------
    # 生成
    # ------------------------------------------------------------------

    async def submit(
        self,
        prompt: str,
        event_sink: EventSink,
        timeout: Optional[float] = None,
        request_id: str = "",
    ) -> str:
        """
        在独占会话上执行一次生成

        Args:
            prompt: 提交到页面的文本
            event_sink: 每个 AssistantEvent 的回调（同步或异步），最后一定收到一个 DoneEvent
            timeout: 生成阶段的上限（秒），默认 config.stream_timeout
            request_id: 日志用请求 ID

        Returns:
            最终文本

        Raises:
            SessionInitializationError: 会话无法初始化
            GenerationTimeoutException: 超时
            GenerationFailedException: 会话协作方出错
        """
        timeout = timeout or config.stream_timeout
        if self.busy:
            logger.debug(f"[{request_id}] 会话忙，排队等待 (当前: {self.active_request_id})")

        async with self._lock:
            self.active_request_id = request_id
            try:
                await self._ensure_initialized()
                try:
                    final_text = await asyncio.wait_for(
                        self._exchange(prompt, event_sink, request_id), timeout=timeout
                    )
                except asyncio.TimeoutError as e:
                    logger.warning(f"[{request_id}] 生成超过 {timeout}s，放弃本次交互")
                    raise GenerationTimeoutException(f"生成超时 ({timeout}s)") from e
                except ProxyException:
                    raise
                except Exception as e:
                    logger.exception(f"[{request_id}] 生成失败: {e}")
                    raise GenerationFailedException(f"生成失败: {e}") from e
                finally:
                    await self._recycle(request_id)
                self.completed_exchanges += 1
                return final_text
            finally:
                self.active_request_id = None

    async def _exchange(self, prompt: str, event_sink: EventSink, request_id: str) -> str:
        pipeline = self._pipeline_factory(request_id)
        stream = self.backend.submit_prompt(prompt)
        chunk_count = 0
        try:
            async for chunk in stream:
                chunk_count += 1
                for event in pipeline.feed(chunk):
                    await maybe_await(event_sink(event))
                if pipeline.finished:
                    break
        finally:
            await close_async_iterator(stream)

        for event in pipeline.finish():
            await maybe_await(event_sink(event))

        final_text = pipeline.collected_text
        if not pipeline.produced_text and not pipeline.produced_function:
            if not self.backend.instrumented:
                logger.warning(f"[{request_id}] 会话未注入流拦截，使用页面文本兜底")
            final_text = await self.backend.read_final_text() or ""

        logger.info(
            f"[{request_id}] 交互完成: chunks={chunk_count}, "
            f"text={pipeline.produced_text}, function={pipeline.produced_function}"
        )
        await maybe_await(event_sink(DoneEvent(final_text=final_text)))
        return final_text


__all__ = ["SessionCoordinator", "EventSink"]
