"""
OpenAI Chat Completions 请求模型

只校验本服务真正依赖的字段，其余字段（tools、temperature 等）原样保留，
以便 body 模式下把完整请求体提交给会话。
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from src.core.exceptions import InvalidRequestException, translate_pydantic_error


class ChatMessage(BaseModel):
    model_config = ConfigDict(extra="allow")

    role: str = ""
    content: Optional[Union[str, List[Any]]] = None
    name: Optional[str] = None
    tool_calls: Optional[List[Any]] = None

    @property
    def text(self) -> str:
        """content 的纯文本形式（列表形式只取 type=text 的部分）"""
        if isinstance(self.content, str):
            return self.content
        if isinstance(self.content, list):
            parts = []
            for part in self.content:
                if isinstance(part, dict) and part.get("type") == "text":
                    parts.append(str(part.get("text") or ""))
                elif isinstance(part, str):
                    parts.append(part)
            return "".join(parts)
        return ""


class ChatCompletionRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    model: Optional[str] = None
    messages: List[Any] = Field(default_factory=list)
    stream: Optional[bool] = None
    tools: Optional[List[Any]] = None


def extract_last_user_message(messages: List[Any]) -> str:
    """
    从后往前校验消息并返回最后一条 user 消息的文本

    校验规则：
    - messages 必须是非空列表
    - 经过的每条消息必须是对象，role 非空
    - 经过的每条消息 content 不能为空（带 tool_calls 的 assistant 消息除外）

    Raises:
        InvalidRequestException: 任一规则不满足，或没有 user 消息
    """
    if not isinstance(messages, list) or not messages:
        raise InvalidRequestException("Invalid request: 'messages' must be a non-empty array.", param="messages")

    for index in range(len(messages) - 1, -1, -1):
        raw = messages[index]
        if not isinstance(raw, dict):
            raise InvalidRequestException(f"Invalid message at index {index}.", param="messages")
        try:
            message = ChatMessage.model_validate(raw)
        except ValidationError as exc:
            errors = exc.errors()
            detail = translate_pydantic_error(errors[0]) if errors else "invalid message"
            raise InvalidRequestException(
                f"Invalid message at index {index}: {detail}", param="messages"
            ) from exc

        if not message.role.strip():
            raise InvalidRequestException(f"Invalid role at index {index}.", param="messages")
        if not message.text.strip():
            if message.role == "assistant" and message.tool_calls:
                continue
            raise InvalidRequestException(f"Invalid content at index {index}.", param="messages")
        if message.role == "user":
            return message.text

    raise InvalidRequestException("No user message with content found in 'messages'.", param="messages")


def parse_chat_request(body: Any) -> ChatCompletionRequest:
    """
    校验请求体

    Raises:
        InvalidRequestException: 请求体不是对象或字段类型错误
    """
    if not isinstance(body, dict):
        raise InvalidRequestException("Request body must be a JSON object")
    try:
        request = ChatCompletionRequest.model_validate(body)
    except ValidationError as exc:
        errors = exc.errors()
        raise InvalidRequestException(
            translate_pydantic_error(errors[0]) if errors else "请求数据验证失败",
            param="messages" if errors and errors[0].get("loc", ("",))[0] == "messages" else None,
        ) from exc
    return request


__all__ = [
    "ChatMessage",
    "ChatCompletionRequest",
    "extract_last_user_message",
    "parse_chat_request",
]
