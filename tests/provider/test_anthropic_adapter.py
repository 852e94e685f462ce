"""AnthropicProvider 单元测试"""

import httpx
import pytest
from llmgate.core.exceptions import UnsupportedFeatureError
from llmgate.core.models import ChatOptions, ModelCapability, ToolOptions
from llmgate.provider.adapters.anthropic import ANTHROPIC_VERSION, AnthropicProvider
from llmgate.provider.http import ProviderSettings
from pydantic import SecretStr


@pytest.fixture
def provider(mock_http_client) -> AnthropicProvider:
    settings = ProviderSettings(api_key=SecretStr("sk-ant"), base_url="https://api.anthropic.com/v1")
    return AnthropicProvider("claude", settings, http_client=mock_http_client)


def _messages_response(**overrides) -> httpx.Response:
    body = {
        "model": "claude-sonnet-4-5-20250929",
        "content": [{"type": "text", "text": "Hi "}, {"type": "text", "text": "there"}],
        "stop_reason": "end_turn",
        "usage": {"input_tokens": 12, "output_tokens": 5},
    }
    body.update(overrides)
    return httpx.Response(200, json=body)


class TestAnthropicChat:
    async def test_system_lifted_to_top_level(self, provider, mock_http_client, multi_turn_messages):
        """system 消息提升为顶层 system 字段"""
        mock_http_client.request.return_value = _messages_response()

        response = await provider.chat(multi_turn_messages, ChatOptions(stop_sequences=["\n\n"]))

        call = mock_http_client.request.call_args
        assert call.args == ("POST", "https://api.anthropic.com/v1/messages")
        body = call.kwargs["json"]
        assert body["system"] == "You are a helpful assistant."
        assert [message["role"] for message in body["messages"]] == ["user", "assistant", "user"]
        assert body["stop_sequences"] == ["\n\n"]
        assert body["max_tokens"] == 4096
        headers = call.kwargs["headers"]
        assert headers["x-api-key"] == "sk-ant"
        assert headers["anthropic-version"] == ANTHROPIC_VERSION

        assert response.content == "Hi there"
        assert response.finish_reason == "stop"
        assert response.usage.prompt_tokens == 12
        assert response.usage.total_tokens == 17

    async def test_max_tokens_maps_to_length(self, provider, mock_http_client, sample_messages):
        mock_http_client.request.return_value = _messages_response(stop_reason="max_tokens")
        response = await provider.chat(sample_messages)
        assert response.finish_reason == "length"
        assert response.is_truncated is True

    async def test_tool_use_blocks(self, provider, mock_http_client, sample_messages):
        mock_http_client.request.return_value = _messages_response(
            content=[{"type": "tool_use", "id": "tu_1", "name": "search", "input": {"q": "x"}}],
            stop_reason="tool_use",
        )

        response = await provider.chat(sample_messages)

        assert response.finish_reason == "tool_calls"
        assert response.tool_calls == [
            {"id": "tu_1", "type": "function", "function": {"name": "search", "arguments": {"q": "x"}}}
        ]


class TestAnthropicTools:
    async def test_tools_converted(self, provider, mock_http_client, multi_turn_messages):
        mock_http_client.request.return_value = _messages_response(
            content=[
                {"type": "text", "text": "Checking."},
                {"type": "tool_use", "id": "tu_2", "name": "get_weather", "input": {"city": "Oslo"}},
            ],
            stop_reason="tool_use",
        )
        tool = {
            "type": "function",
            "function": {
                "name": "get_weather",
                "description": "Current weather",
                "parameters": {"type": "object", "properties": {"city": {"type": "string"}}},
            },
        }

        response = await provider.chat_with_tools(multi_turn_messages, [tool], ToolOptions.required())

        body = mock_http_client.request.call_args.kwargs["json"]
        assert body["tools"] == [
            {
                "name": "get_weather",
                "description": "Current weather",
                "input_schema": {"type": "object", "properties": {"city": {"type": "string"}}},
            }
        ]
        assert body["tool_choice"] == {"type": "any"}
        assert body["system"] == "You are a helpful assistant."
        assert response.content == "Checking."
        assert response.tool_calls[0]["function"] == {"name": "get_weather", "arguments": {"city": "Oslo"}}

    @pytest.mark.parametrize(
        ("options", "expected"),
        [
            (ToolOptions(), None),
            (ToolOptions.auto(), {"type": "auto"}),
            (ToolOptions.no_tools(), {"type": "none"}),
            (ToolOptions(parallel_tool_calls=False), {"type": "auto", "disable_parallel_tool_use": True}),
            (ToolOptions(tool_choice="none", parallel_tool_calls=False), {"type": "none"}),
        ],
    )
    def test_map_tool_choice(self, options, expected):
        assert AnthropicProvider.map_tool_choice(options) == expected


class TestAnthropicStream:
    async def test_text_deltas(self, provider, mock_stream, sample_messages):
        stream = mock_stream(
            b"event: message_start\n"
            b'data: {"type": "message_start", "message": {"id": "msg_1"}}\n\n'
            b"event: content_block_delta\n"
            b'data: {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Hi"}}\n\n'
            b'data: {"type": "content_block_delta", "index": 1, '
            b'"delta": {"type": "input_json_delta", "partial_json": "{"}}\n\n'
            b'data: {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": " there"}}\n\n'
            b'data: {"type": "message_stop"}\n\n'
        )

        chunks = [chunk async for chunk in provider.stream_chat(sample_messages)]

        assert chunks == ["Hi", " there"]
        assert stream.call_args.args == ("POST", "https://api.anthropic.com/v1/messages")
        assert stream.call_args.kwargs["json"]["stream"] is True
        assert stream.call_args.kwargs["headers"]["x-api-key"] == "sk-ant"


class TestAnthropicVision:
    async def test_data_uri_becomes_base64_source(self, provider, mock_http_client):
        mock_http_client.request.return_value = _messages_response()
        content = [
            {"type": "text", "text": "What is this?"},
            {"type": "image_url", "image_url": {"url": "data:image/png;base64,iVBORw0KGgo=", "detail": "auto"}},
        ]

        response = await provider.vision(content)

        blocks = mock_http_client.request.call_args.kwargs["json"]["messages"][0]["content"]
        assert blocks[0] == {
            "type": "image",
            "source": {"type": "base64", "media_type": "image/png", "data": "iVBORw0KGgo="},
        }
        assert blocks[1] == {"type": "text", "text": "What is this?"}
        assert response.description == "Hi there"

    def test_url_image_block(self):
        assert AnthropicProvider.image_block("https://example.com/a.jpg") == {
            "type": "image",
            "source": {"type": "url", "url": "https://example.com/a.jpg"},
        }


class TestAnthropicCapabilities:
    async def test_embeddings_unsupported(self, provider, mock_http_client):
        assert provider.supports_feature(ModelCapability.EMBEDDINGS) is False
        with pytest.raises(UnsupportedFeatureError):
            await provider.embed(["text"])
        mock_http_client.request.assert_not_awaited()

    async def test_static_model_list(self, provider, mock_http_client):
        models = await provider.get_available_models()
        assert "claude-sonnet-4-5-20250929" in models
        mock_http_client.request.assert_not_awaited()

    def test_split_system_without_system(self, sample_messages):
        system, conversation = AnthropicProvider.split_system(sample_messages)
        assert system is None
        assert conversation == sample_messages
