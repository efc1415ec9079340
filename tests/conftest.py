from io import StringIO

import pytest

from src.core.logger import logger


@pytest.fixture
def log_output():
    """临时 loguru sink，返回收集到的日志文本"""
    output = StringIO()
    handler_id = logger.add(output, format="{level}|{message}", level="DEBUG")
    try:
        yield output
    finally:
        logger.remove(handler_id)
