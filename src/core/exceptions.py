"""
业务异常定义

所有需要映射为 HTTP 错误响应的异常都继承 ProxyException，
携带 status_code / error_type / message 三个字段。
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class ProxyException(Exception):
    """可直接转换为 OpenAI 风格错误对象的异常基类"""

    status_code: int = 500
    error_type: str = "api_error"

    def __init__(self, message: str, param: Optional[str] = None) -> None:
        self.message = message
        self.param = param
        super().__init__(message)

    def to_error_body(self) -> Dict[str, Any]:
        error: Dict[str, Any] = {"type": self.error_type, "message": self.message}
        if self.param is not None:
            error["param"] = self.param
        return {"error": error}


class InvalidRequestException(ProxyException):
    """请求体不合法（在接触会话之前就被拒绝）"""

    status_code = 400
    error_type = "invalid_request_error"


class PayloadTooLargeException(ProxyException):
    """请求体超过 MAX_BODY"""

    status_code = 413
    error_type = "invalid_request_error"


class RequestBodyTimeoutException(ProxyException):
    """读取请求体超时"""

    status_code = 408
    error_type = "timeout_error"


class SessionInitializationError(ProxyException):
    """会话冷启动失败，通常意味着外部依赖不可用"""

    status_code = 503
    error_type = "service_unavailable"


class GenerationTimeoutException(ProxyException):
    """单次生成超过 stream_timeout"""

    status_code = 504
    error_type = "timeout_error"


class GenerationFailedException(ProxyException):
    """生成过程中会话协作方出错"""

    status_code = 502
    error_type = "api_error"


def translate_pydantic_error(error: Dict[str, Any]) -> str:
    """把 pydantic 的单条错误转换为可读消息"""
    location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
    message = error.get("msg", "invalid value")
    return f"{location}: {message}" if location else message


__all__ = [
    "ProxyException",
    "InvalidRequestException",
    "PayloadTooLargeException",
    "RequestBodyTimeoutException",
    "SessionInitializationError",
    "GenerationTimeoutException",
    "GenerationFailedException",
    "translate_pydantic_error",
]
