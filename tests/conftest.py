"""llmgate 测试 fixtures"""

from collections.abc import Callable
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest


@pytest.fixture
def sample_messages() -> list[dict[str, str]]:
    """标准 messages 格式测试数据"""
    return [{"role": "user", "content": "Hello, world!"}]


@pytest.fixture
def multi_turn_messages() -> list[dict[str, str]]:
    """多轮对话 messages 测试数据"""
    return [
        {"role": "system", "content": "You are a helpful assistant."},
        {"role": "user", "content": "What is Python?"},
        {"role": "assistant", "content": "Python is a programming language."},
        {"role": "user", "content": "Tell me more."},
    ]


@pytest.fixture
def mock_http_client() -> MagicMock:
    """可注入的 httpx.AsyncClient mock

    request 默认返回 200 + 空 JSON 对象；测试中通过
    mock_http_client.request.return_value / side_effect 设置厂商响应。
    """
    client = MagicMock(spec=httpx.AsyncClient)
    client.request = AsyncMock(return_value=httpx.Response(200, json={}))
    return client


@pytest.fixture
def mock_stream(mock_http_client) -> Callable[..., MagicMock]:
    """设置 mock_http_client.stream 的响应体

    用法: mock_stream(b"data: ...\\n\\n") 后，adapter 的流式请求逐行读到该响应体；
    返回 mock_http_client.stream 以便断言调用参数。
    """

    def _set(body: bytes, status_code: int = 200) -> MagicMock:
        @asynccontextmanager
        async def _open(*args, **kwargs):
            yield httpx.Response(status_code, content=body)

        mock_http_client.stream.side_effect = _open
        return mock_http_client.stream

    return _set
