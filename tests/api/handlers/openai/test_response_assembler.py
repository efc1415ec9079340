import json

import pytest

from src.api.handlers.openai.response_assembler import (
    AssemblerState,
    NonStreamingResponseAssembler,
    StreamingResponseAssembler,
)
from src.core.conversion.stream_events import (
    AttachmentEvent,
    DoneEvent,
    FunctionAppendEvent,
    FunctionEndEvent,
    FunctionStartEvent,
    TextEvent,
    ThoughtEvent,
)
from src.core.exceptions import GenerationTimeoutException


def _decode(frames) -> list:
    """SSE 帧 -> JSON 对象列表（[DONE] 保留为字符串）"""
    out = []
    for frame in frames:
        text = frame.decode("utf-8")
        assert text.startswith("data: ") and text.endswith("\n\n")
        body = text[len("data: ") : -2]
        out.append(body if body == "[DONE]" else json.loads(body))
    return out


def _run_stream(events, **kwargs):
    assembler = StreamingResponseAssembler("gpt-5", request_id="req_asm", **kwargs)
    frames = assembler.start()
    for event in events:
        frames.extend(assembler.handle(event))
    return assembler, _decode(frames)


def _deltas(chunks) -> list:
    return [c["choices"][0]["delta"] for c in chunks if c != "[DONE]"]


class TestStreamingAssembler:
    def test_text_exchange(self) -> None:
        assembler, chunks = _run_stream(
            [TextEvent(content="He"), TextEvent(content="llo"), DoneEvent(final_text="Hello")]
        )
        assert _deltas(chunks) == [{"role": "assistant"}, {"content": "He"}, {"content": "llo"}, {}]
        assert chunks[-2]["choices"][0]["finish_reason"] == "stop"
        assert all(c["choices"][0]["finish_reason"] is None for c in chunks[:-2])
        assert chunks[-1] == "[DONE]"
        assert chunks[0]["object"] == "chat.completion.chunk"
        assert chunks[0]["model"] == "gpt-5"
        assert len({c["id"] for c in chunks[:-1]}) == 1
        assert assembler.state == AssemblerState.CLOSED

    def test_tool_call_arguments_sent_once_at_end(self) -> None:
        _, chunks = _run_stream(
            [
                FunctionStartEvent(name="write", id="m2"),
                FunctionAppendEvent(name="write", args_fragment='{"pa'),
                FunctionAppendEvent(name="write", args_fragment='th":"x"}'),
                FunctionEndEvent(name="write", arguments='{"path":"x"}'),
                DoneEvent(),
            ]
        )
        deltas = _deltas(chunks)
        announce = deltas[1]["tool_calls"][0]
        assert announce["index"] == 0
        assert announce["type"] == "function"
        assert announce["id"].startswith("call_")
        assert announce["function"] == {"name": "write"}
        assert deltas[2] == {"tool_calls": [{"index": 0, "function": {"arguments": '{"path":"x"}'}}]}
        assert len(deltas) == 4
        assert chunks[-2]["choices"][0]["finish_reason"] == "tool_calls"

    def test_stream_tool_arguments_emits_each_fragment(self) -> None:
        _, chunks = _run_stream(
            [
                FunctionStartEvent(name="write", id="m2"),
                FunctionAppendEvent(name="write", args_fragment='{"pa'),
                FunctionAppendEvent(name="write", args_fragment='th":"x"}'),
                FunctionEndEvent(name="write", arguments='{"path":"x"}'),
                DoneEvent(),
            ],
            stream_tool_arguments=True,
        )
        fragments = [
            d["tool_calls"][0]["function"]["arguments"]
            for d in _deltas(chunks)
            if "tool_calls" in d and "arguments" in d["tool_calls"][0]["function"]
        ]
        assert fragments == ['{"pa', 'th":"x"}']

    def test_function_end_without_start_announces_with_arguments(self) -> None:
        _, chunks = _run_stream([TextEvent(content="ok "), FunctionEndEvent(name="run", arguments="{}"), DoneEvent()])
        tool_call = _deltas(chunks)[2]["tool_calls"][0]
        assert tool_call["function"] == {"name": "run", "arguments": "{}"}
        assert chunks[-2]["choices"][0]["finish_reason"] == "tool_calls"

    def test_finish_reason_follows_last_segment(self) -> None:
        _, chunks = _run_stream(
            [FunctionEndEvent(name="run", arguments="{}"), TextEvent(content="after"), DoneEvent()]
        )
        assert chunks[-2]["choices"][0]["finish_reason"] == "stop"

    def test_second_done_is_noop(self) -> None:
        assembler = StreamingResponseAssembler("m")
        first = assembler.handle(DoneEvent())
        assert first[-1] == b"data: [DONE]\n\n"
        assert assembler.handle(DoneEvent()) == []
        assert assembler.handle(TextEvent(content="late")) == []

    def test_degraded_exchange_falls_back_to_final_text(self, log_output) -> None:
        _, chunks = _run_stream([DoneEvent(final_text="from page")])
        assert _deltas(chunks) == [{"role": "assistant"}, {"content": "from page"}, {}]
        assert "使用页面最终文本兜底" in log_output.getvalue()

    def test_thoughts_and_attachments_are_not_on_the_wire(self) -> None:
        assembler, chunks = _run_stream(
            [
                ThoughtEvent(group=1, content="secret"),
                AttachmentEvent(name="a.png", mime="image/png", data="file-service://a"),
                TextEvent(content="hi"),
                DoneEvent(),
            ]
        )
        assert _deltas(chunks) == [{"role": "assistant"}, {"content": "hi"}, {}]
        assert assembler.attachments == [{"name": "a.png", "mime": "image/png", "data": "file-service://a"}]

    def test_serialization_failure_skips_chunk_only(self, log_output) -> None:
        assembler = StreamingResponseAssembler("m", request_id="req_bad")
        assembler.start()
        assembler.model = object()  # 之后的块都无法序列化
        assert assembler.handle(TextEvent(content="x")) == []
        assembler.model = "m"
        frames = assembler.handle(TextEvent(content="y")) + assembler.handle(DoneEvent())
        assert _deltas(_decode(frames)) == [{"content": "y"}, {}]
        assert "[req_bad] 输出块序列化失败" in log_output.getvalue()

    def test_fail_emits_error_frame_then_done(self) -> None:
        assembler = StreamingResponseAssembler("m")
        assembler.start()
        chunks = _decode(assembler.fail(GenerationTimeoutException("生成超时 (1s)")))
        assert chunks[0] == {"error": {"type": "timeout_error", "message": "生成超时 (1s)"}}
        assert chunks[1] == "[DONE]"
        assert assembler.closed
        assert assembler.fail(RuntimeError("again")) == []


class TestNonStreamingAssembler:
    def test_text_response_with_usage(self) -> None:
        assembler = NonStreamingResponseAssembler("gpt-5", prompt="Hello")
        for event in [TextEvent(content="He"), TextEvent(content="llo"), DoneEvent(final_text="Hello")]:
            assembler.handle(event)
        response = assembler.build_response()
        assert response["object"] == "chat.completion"
        choice = response["choices"][0]
        assert choice["message"] == {"role": "assistant", "content": "Hello"}
        assert choice["finish_reason"] == "stop"
        assert response["usage"] == {"prompt_tokens": 5, "completion_tokens": 5, "total_tokens": 10}

    def test_tool_call_replaces_content_with_json_string(self) -> None:
        assembler = NonStreamingResponseAssembler("gpt-5")
        for event in [
            FunctionStartEvent(name="write", id="m2"),
            FunctionAppendEvent(name="write", args_fragment='{"pa'),
            FunctionAppendEvent(name="write", args_fragment='th":"x"}'),
            FunctionEndEvent(name="write", arguments='{"path":"x"}'),
            DoneEvent(),
        ]:
            assembler.handle(event)
        choice = assembler.build_response()["choices"][0]
        assert choice["finish_reason"] == "tool_calls"
        assert json.loads(choice["message"]["content"]) == {"path": "x"}
        tool_call = choice["message"]["tool_calls"][0]
        assert tool_call["function"] == {"name": "write", "arguments": '{"path":"x"}'}
        assert tool_call["type"] == "function"

    def test_invalid_json_arguments_use_raw_envelope(self) -> None:
        assembler = NonStreamingResponseAssembler("m")
        assembler.handle(FunctionEndEvent(name="run", arguments="not json"))
        assembler.handle(DoneEvent())
        message = assembler.build_response()["choices"][0]["message"]
        assert json.loads(message["content"]) == {"__raw": "not json"}

    @pytest.mark.parametrize(
        "arguments, content, tool_arguments",
        [
            ('  {"path":"x"}\n', {"path": "x"}, '{"path":"x"}'),
            ("  not json  ", {"__raw": "not json"}, "not json"),
            ("", {"__raw": None}, ""),
            ("   ", {"__raw": None}, ""),
            ("null", {"__raw": "null"}, "null"),
        ],
    )
    def test_arguments_are_trimmed_before_parsing(self, arguments, content, tool_arguments) -> None:
        assembler = NonStreamingResponseAssembler("m")
        assembler.handle(FunctionEndEvent(name="run", arguments=arguments))
        assembler.handle(DoneEvent())
        message = assembler.build_response()["choices"][0]["message"]
        assert json.loads(message["content"]) == content
        assert message["tool_calls"][0]["function"]["arguments"] == tool_arguments

    def test_degraded_fallback_and_attachments(self) -> None:
        assembler = NonStreamingResponseAssembler("m")
        assembler.handle(AttachmentEvent(name="a.png", mime="image/png", data="file-service://a"))
        assembler.handle(DoneEvent(final_text="page text"))
        message = assembler.build_response()["choices"][0]["message"]
        assert message["content"] == "page text"
        assert message["attachments"][0]["name"] == "a.png"

    def test_events_after_done_are_ignored(self) -> None:
        assembler = NonStreamingResponseAssembler("m")
        assembler.handle(TextEvent(content="a"))
        assembler.handle(DoneEvent())
        assembler.handle(TextEvent(content="b"))
        assert assembler.build_response()["choices"][0]["message"]["content"] == "a"

    def test_build_without_done_finalizes_empty(self) -> None:
        response = NonStreamingResponseAssembler("m").build_response()
        assert response["choices"][0]["message"]["content"] == ""
        assert response["choices"][0]["finish_reason"] == "stop"
