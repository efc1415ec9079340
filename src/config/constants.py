"""
协议相关常量

网页端会话的增量事件词汇表、SSE 帧格式以及默认的函数调用哨兵标记。
"""


class StreamDefaults:
    """流式处理默认值"""

    # 函数参数累计上限（1 MiB）
    MAX_FUNCTION_ARGS_BYTES = 1024 * 1024
    # 单个 SSE 块的字节预算
    MAX_EVENT_BYTES = 8 * 1024 * 1024

    FUNCTION_START_MARKER = "<function_call>"
    FUNCTION_END_MARKER = "</function_call>"


class ProviderVocabulary:
    """上游网页端增量协议中出现的字段值"""

    MESSAGE_MARKER = "message_marker"
    STREAM_COMPLETE = "message_stream_complete"

    MARKER_COT = "cot_token"
    MARKER_VISIBLE = "user_visible_token"

    # 普通回复的 recipient，其它值表示函数调用
    RECIPIENT_ALL = "all"

    STATUS_PATH = "/message/status"
    TERMINAL_STATUSES = frozenset({"finished_successfully", "finished_with_error", "cancelled"})


class SSEFrame:
    """SSE 帧字面量"""

    DATA_PREFIX = "data:"
    DONE = "[DONE]"
    DONE_FRAME = b"data: [DONE]\n\n"
