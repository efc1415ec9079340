import asyncio

import pytest

from src.core.conversion.stream_events import DoneEvent, FunctionEndEvent, TextEvent
from src.core.exceptions import (
    GenerationFailedException,
    GenerationTimeoutException,
    SessionInitializationError,
)
from src.services.session.coordinator import SessionCoordinator
from tests.helpers import FakeBackend, hello_script, write_tool_script


class _Collector:
    def __init__(self) -> None:
        self.events = []

    def __call__(self, event) -> None:
        self.events.append(event)


@pytest.mark.asyncio
async def test_submit_forwards_events_and_recycles() -> None:
    backend = FakeBackend(scripts=[hello_script()])
    coordinator = SessionCoordinator(backend, recycle=True, recycle_timeout=5)
    sink = _Collector()

    final_text = await coordinator.submit("Hello", sink, timeout=5, request_id="req_1")

    assert final_text == "Hello"
    assert sink.events == [
        TextEvent(content="He", part_index=0),
        TextEvent(content="llo", part_index=0),
        DoneEvent(final_text="Hello"),
    ]
    assert backend.calls == ["start", "submit:Hello", "persist", "teardown", "rebuild"]
    assert coordinator.status == "idle"
    assert coordinator.completed_exchanges == 1


@pytest.mark.asyncio
async def test_async_sink_is_awaited() -> None:
    backend = FakeBackend(scripts=[write_tool_script()])
    coordinator = SessionCoordinator(backend, recycle=False)
    received = []

    async def sink(event) -> None:
        await asyncio.sleep(0)
        received.append(event)

    await coordinator.submit("call", sink, timeout=5)
    assert isinstance(received[-2], FunctionEndEvent)
    assert received[-1] == DoneEvent(final_text="")


@pytest.mark.asyncio
async def test_exactly_one_done_per_submit() -> None:
    backend = FakeBackend(scripts=[hello_script() + hello_script()])
    coordinator = SessionCoordinator(backend, recycle=False)
    sink = _Collector()
    await coordinator.submit("x", sink, timeout=5)
    assert sum(isinstance(e, DoneEvent) for e in sink.events) == 1


@pytest.mark.asyncio
async def test_concurrent_submits_are_serialized_fifo() -> None:
    backend = FakeBackend(scripts=[hello_script(), hello_script(), hello_script()], chunk_delay=0.01)
    coordinator = SessionCoordinator(backend, recycle=True, recycle_timeout=5)

    results = await asyncio.gather(
        coordinator.submit("first", _Collector(), timeout=5),
        coordinator.submit("second", _Collector(), timeout=5),
        coordinator.submit("third", _Collector(), timeout=5),
    )

    assert results == ["Hello", "Hello", "Hello"]
    submits = [c for c in backend.calls if c.startswith("submit:")]
    assert submits == ["submit:first", "submit:second", "submit:third"]
    # 后一个请求一定在前一个请求回收完成之后才到达会话
    rebuilds = [i for i, c in enumerate(backend.calls) if c == "rebuild"]
    assert backend.calls.index("submit:second") > rebuilds[0]
    assert backend.calls.index("submit:third") > rebuilds[1]


@pytest.mark.asyncio
async def test_timeout_releases_lock_and_recycles() -> None:
    backend = FakeBackend(scripts=[hello_script()[:2], hello_script()], hang=True)
    coordinator = SessionCoordinator(backend, recycle=True, recycle_timeout=5)

    with pytest.raises(GenerationTimeoutException):
        await coordinator.submit("slow", _Collector(), timeout=0.05)

    assert not coordinator.busy
    assert backend.calls[-3:] == ["persist", "teardown", "rebuild"]

    backend.hang = False
    assert await coordinator.submit("next", _Collector(), timeout=5) == "Hello"


@pytest.mark.asyncio
async def test_init_failure_is_fatal_and_retried_once_per_submit() -> None:
    backend = FakeBackend(
        scripts=[hello_script()],
        start_errors=[RuntimeError("site unreachable"), RuntimeError("still down")],
    )
    coordinator = SessionCoordinator(backend, recycle=False)

    with pytest.raises(SessionInitializationError):
        await coordinator.submit("a", _Collector(), timeout=5)
    assert coordinator.status == "failed"
    assert not coordinator.busy

    with pytest.raises(SessionInitializationError):
        await coordinator.submit("b", _Collector(), timeout=5)
    assert backend.calls.count("start") == 2

    assert await coordinator.submit("c", _Collector(), timeout=5) == "Hello"
    assert backend.calls.count("start") == 3
    assert coordinator.status == "idle"


@pytest.mark.asyncio
async def test_backend_error_becomes_generation_failure() -> None:
    class BrokenBackend(FakeBackend):
        async def submit_prompt(self, prompt):
            yield b"data: {}\n\n"
            raise RuntimeError("page crashed")

    backend = BrokenBackend()
    coordinator = SessionCoordinator(backend, recycle=True, recycle_timeout=5)
    with pytest.raises(GenerationFailedException):
        await coordinator.submit("x", _Collector(), timeout=5)
    assert not coordinator.busy
    assert "rebuild" in backend.calls


@pytest.mark.asyncio
async def test_recycle_failure_forces_reinitialization(log_output) -> None:
    class FlakyBackend(FakeBackend):
        async def teardown(self) -> None:
            await super().teardown()
            raise RuntimeError("context already closed")

    backend = FlakyBackend(scripts=[hello_script(), hello_script()])
    coordinator = SessionCoordinator(backend, recycle=True, recycle_timeout=5)

    assert await coordinator.submit("a", _Collector(), timeout=5, request_id="req_r") == "Hello"
    assert "[req_r] 会话回收失败" in log_output.getvalue()
    await coordinator.submit("b", _Collector(), timeout=5)
    assert backend.calls.count("start") == 2


@pytest.mark.asyncio
async def test_uninstrumented_session_uses_page_text(log_output) -> None:
    backend = FakeBackend(scripts=[[]], final_text="typed by page", instrumented=False)
    coordinator = SessionCoordinator(backend, recycle=False)
    sink = _Collector()

    assert await coordinator.submit("x", sink, timeout=5, request_id="req_u") == "typed by page"
    assert sink.events == [DoneEvent(final_text="typed by page")]
    assert "[req_u] 会话未注入流拦截" in log_output.getvalue()


@pytest.mark.asyncio
async def test_refresh_save_and_model_controls() -> None:
    backend = FakeBackend(models=["gpt-5", "gpt-5-thinking"])
    coordinator = SessionCoordinator(backend)

    await coordinator.refresh()
    await coordinator.save()
    assert backend.calls == ["start", "persist", "teardown", "rebuild", "persist"]
    assert await coordinator.list_models() == ["gpt-5", "gpt-5-thinking"]
    assert await coordinator.switch_model("gpt-5-thinking") is True
    assert backend.switched == ["gpt-5-thinking"]

    await coordinator.close()
    assert backend.calls[-1] == "close"
    assert coordinator.status == "closed"
    with pytest.raises(SessionInitializationError):
        await coordinator.submit("x", _Collector(), timeout=1)
