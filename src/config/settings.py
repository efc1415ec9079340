"""
服务配置

所有配置均从环境变量（以及可选的 .env 文件）读取，进程启动时加载一次。
测试中可以直接修改 `config` 的属性（记得在 finally 中还原）。
"""

from __future__ import annotations

import re
from typing import Any, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.config.constants import StreamDefaults

_SIZE_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(b|kb|mb|gb)?\s*$", re.IGNORECASE)
_SIZE_UNITS = {"b": 1, "kb": 1024, "mb": 1024**2, "gb": 1024**3}


def parse_size(value: Any) -> int:
    """
    解析 "100mb" / "512kb" / "1048576" 形式的大小配置

    Args:
        value: 原始配置（字符串或整数）

    Returns:
        字节数

    Raises:
        ValueError: 无法识别的格式
    """
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    match = _SIZE_PATTERN.match(str(value))
    if not match:
        raise ValueError(f"无法解析的大小配置: {value!r}")
    number, unit = match.groups()
    return int(float(number) * _SIZE_UNITS[(unit or "b").lower()])


class Config(BaseSettings):
    """进程级配置对象"""

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        extra="ignore",
    )

    # HTTP 监听
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=3000, alias="PORT")

    # 未指定 model 时回显的模型名，同时也是 /v1/models 的默认条目
    default_model: str = Field(default="gpt-5", alias="OPENAI_MODEL")

    # 环境变量以毫秒给出，属性值为秒
    # 单次 submit 的硬性上限（默认 30 分钟）
    stream_timeout: float = Field(default=30 * 60.0, alias="STREAM_TIMEOUT_MS")
    # persist + teardown + rebuild 的上限
    recycle_timeout: float = Field(default=60.0, alias="RECYCLE_TIMEOUT_MS")

    max_body_bytes: int = Field(default=100 * 1024**2, alias="MAX_BODY")
    # 读取请求体的超时（秒），防止客户端不发送完整请求体导致卡死
    request_body_timeout: float = Field(default=60.0, alias="REQUEST_BODY_TIMEOUT")
    max_function_args_bytes: int = Field(
        default=StreamDefaults.MAX_FUNCTION_ARGS_BYTES, alias="MAX_FUNC_ARGS_BYTES"
    )
    max_event_bytes: int = Field(default=StreamDefaults.MAX_EVENT_BYTES, alias="MAX_EVENT_BYTES")

    # body: 整个请求体（JSON）作为 prompt；last_user: 仅最后一条 user 消息
    prompt_mode: str = Field(default="body", alias="PROMPT_MODE")

    # off / sentinel / json / auto
    hidden_function_mode: str = Field(default="off", alias="HIDDEN_FUNCTION_MODE")
    function_start_marker: str = Field(
        default=StreamDefaults.FUNCTION_START_MARKER, alias="FUNCTION_START_MARKER"
    )
    function_end_marker: str = Field(
        default=StreamDefaults.FUNCTION_END_MARKER, alias="FUNCTION_END_MARKER"
    )
    stream_tool_arguments: bool = Field(default=False, alias="STREAM_TOOL_ARGUMENTS")

    session_recycle: bool = Field(default=True, alias="SESSION_RECYCLE")
    # module:attribute 形式的 GenerationBackend 工厂
    session_backend: str = Field(default="", alias="SESSION_BACKEND")

    cors_allow_origin_regex: str = Field(
        default=r"^(null|http://localhost(:\d+)?)$", alias="CORS_ALLOW_ORIGIN_REGEX"
    )

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_file: Optional[str] = Field(default=None, alias="LOG_FILE")
    expose_thoughts: bool = Field(default=False, alias="EXPOSE_THOUGHTS")

    @field_validator("stream_timeout", "recycle_timeout", mode="before")
    @classmethod
    def _milliseconds_to_seconds(cls, value: Any) -> float:
        return float(value) / 1000.0

    @field_validator("max_body_bytes", mode="before")
    @classmethod
    def _parse_body_size(cls, value: Any) -> int:
        return parse_size(value)

    @field_validator("prompt_mode", "hidden_function_mode", mode="before")
    @classmethod
    def _normalize_mode(cls, value: Any) -> str:
        return str(value).strip().lower()

    @field_validator("hidden_function_mode")
    @classmethod
    def _check_hidden_function_mode(cls, value: str) -> str:
        if value not in ("off", "sentinel", "json", "auto"):
            raise ValueError(f"HIDDEN_FUNCTION_MODE 必须是 off/sentinel/json/auto，当前为 {value!r}")
        return value

    @field_validator("prompt_mode")
    @classmethod
    def _check_prompt_mode(cls, value: str) -> str:
        if value not in ("body", "last_user"):
            raise ValueError(f"PROMPT_MODE 必须是 body/last_user，当前为 {value!r}")
        return value

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: Any) -> str:
        return str(value).strip().upper()


config = Config()
