import pytest

from src.core.exceptions import InvalidRequestException
from src.models.openai import ChatMessage, extract_last_user_message, parse_chat_request


class TestExtractLastUserMessage:
    def test_returns_last_user_text(self) -> None:
        messages = [
            {"role": "user", "content": "first"},
            {"role": "assistant", "content": "reply"},
            {"role": "user", "content": "second"},
        ]
        assert extract_last_user_message(messages) == "second"

    def test_list_content_joins_text_parts(self) -> None:
        messages = [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": "look at "},
                    {"type": "image_url", "image_url": {"url": "data:image/png;base64,AA=="}},
                    {"type": "text", "text": "this"},
                ],
            }
        ]
        assert extract_last_user_message(messages) == "look at this"

    def test_trailing_assistant_tool_call_is_allowed(self) -> None:
        messages = [
            {"role": "user", "content": "write x"},
            {"role": "assistant", "content": None, "tool_calls": [{"id": "call_1"}]},
        ]
        assert extract_last_user_message(messages) == "write x"

    def test_messages_before_last_user_are_not_inspected(self) -> None:
        messages = [{"role": "", "content": ""}, {"role": "user", "content": "ok"}]
        assert extract_last_user_message(messages) == "ok"

    @pytest.mark.parametrize(
        "messages, expected",
        [
            ([], "'messages' must be a non-empty array"),
            (None, "'messages' must be a non-empty array"),
            ([42], "Invalid message at index 0"),
            ([{"role": "user", "content": "a"}, {"content": "b"}], "Invalid role at index 1"),
            ([{"role": "user", "content": ""}], "Invalid content at index 0"),
            ([{"role": "system", "content": "rules"}], "No user message"),
        ],
    )
    def test_rejections(self, messages, expected) -> None:
        with pytest.raises(InvalidRequestException) as exc_info:
            extract_last_user_message(messages)
        assert expected in exc_info.value.message
        assert exc_info.value.param == "messages"
        assert exc_info.value.status_code == 400


class TestParseChatRequest:
    def test_keeps_unknown_fields(self) -> None:
        request = parse_chat_request({"model": "gpt-5", "messages": [], "temperature": 0.2})
        assert request.model == "gpt-5"
        assert request.model_extra == {"temperature": 0.2}

    def test_rejects_non_object(self) -> None:
        with pytest.raises(InvalidRequestException):
            parse_chat_request(["not", "an", "object"])

    def test_rejects_wrong_messages_type(self) -> None:
        with pytest.raises(InvalidRequestException) as exc_info:
            parse_chat_request({"messages": "hello"})
        assert exc_info.value.param == "messages"


def test_chat_message_text_for_missing_content() -> None:
    assert ChatMessage(role="user").text == ""
