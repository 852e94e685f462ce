"""LlmServiceManager 单元测试

验证 provider 解析顺序、配置默认值填充、配额检查先于网络调用、
成功后记账，以及能力检查。
"""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
import structlog
from llmgate.core.exceptions import (
    ProviderConfigurationError,
    QuotaExceededError,
    UnsupportedFeatureError,
)
from llmgate.core.models import (
    AdapterType,
    ChatOptions,
    EmbeddingOptions,
    LlmConfiguration,
    Model,
    ModelCapability,
    ModelSelectionCriteria,
    ModelSelectionMode,
    Provider,
    QuotaStatus,
    ToolOptions,
)
from llmgate.provider.registry import ProviderAdapterRegistry
from llmgate.service.manager import LlmServiceManager
from llmgate.service.model_selection import ModelSelector
from llmgate.service.usage import InMemoryUsageAccounting
from pydantic import SecretStr


def _chat_response(model: str = "gpt-5.2") -> httpx.Response:
    return httpx.Response(
        200,
        json={
            "model": model,
            "choices": [{"message": {"content": "ok"}, "finish_reason": "stop"}],
            "usage": {"prompt_tokens": 100, "completion_tokens": 50},
        },
    )


@pytest.fixture
def openai_provider() -> Provider:
    return Provider(identifier="openai", api_key=SecretStr("sk-test"), priority=50)


@pytest.fixture
def anthropic_provider() -> Provider:
    return Provider(
        identifier="claude",
        adapter_type=AdapterType.ANTHROPIC,
        api_key=SecretStr("sk-ant"),
        priority=10,
    )


@pytest.fixture
def registry(mock_http_client, openai_provider, anthropic_provider) -> ProviderAdapterRegistry:
    mock_http_client.request.return_value = _chat_response()
    return ProviderAdapterRegistry(
        providers=[openai_provider, anthropic_provider],
        http_client=mock_http_client,
    )


@pytest.fixture
def accounting() -> MagicMock:
    accounting = MagicMock()
    accounting.check_quota = AsyncMock(return_value=QuotaStatus())
    accounting.record_usage = AsyncMock()
    return accounting


@pytest.fixture
def priced_configuration(openai_provider) -> LlmConfiguration:
    model = Model(
        identifier="gpt",
        model_id="gpt-5-mini",
        provider=openai_provider,
        cost_input=1.0,
        cost_output=2.0,
    )
    return LlmConfiguration(
        identifier="blog",
        model=model,
        system_prompt="You write blog posts.",
        temperature=0.4,
        max_tokens=800,
        max_requests_per_day=100,
    )


class TestResolveAdapter:
    def test_explicit_provider_wins(self, registry, priced_configuration):
        manager = LlmServiceManager(registry)
        assert manager.resolve_adapter("claude", priced_configuration).identifier == "claude"

    def test_configuration_model(self, registry, priced_configuration):
        adapter = LlmServiceManager(registry).resolve_adapter(configuration=priced_configuration)
        assert adapter.identifier == "openai"
        assert adapter.get_default_model() == "gpt-5-mini"

    def test_default_provider(self, registry):
        assert LlmServiceManager(registry).resolve_adapter().identifier == "openai"

    def test_no_provider(self, mock_http_client):
        manager = LlmServiceManager(ProviderAdapterRegistry(http_client=mock_http_client))
        with pytest.raises(ProviderConfigurationError) as exc_info:
            manager.resolve_adapter()
        assert str(exc_info.value) == "No provider available"
        assert manager.has_available_provider() is False


class TestChat:
    async def test_routes_to_explicit_provider(self, registry, mock_http_client, sample_messages):
        mock_http_client.request.return_value = httpx.Response(
            200,
            json={"model": "claude", "content": [{"type": "text", "text": "hi"}], "stop_reason": "end_turn"},
        )

        response = await LlmServiceManager(registry).chat(sample_messages, ChatOptions(provider="claude"))

        assert response.provider == "claude"
        assert mock_http_client.request.call_args.args[1] == "https://api.anthropic.com/v1/messages"

    async def test_system_prompt_prepended(self, registry, mock_http_client, sample_messages):
        await LlmServiceManager(registry).chat(sample_messages, ChatOptions(system_prompt="Be terse."))

        messages = mock_http_client.request.call_args.kwargs["json"]["messages"]
        assert messages[0] == {"role": "system", "content": "Be terse."}
        assert messages[1:] == sample_messages

    async def test_existing_system_message_kept(self, registry, mock_http_client, multi_turn_messages):
        """已有 system 消息时不再追加"""
        await LlmServiceManager(registry).chat(multi_turn_messages, ChatOptions(system_prompt="Ignored"))

        messages = mock_http_client.request.call_args.kwargs["json"]["messages"]
        assert messages == multi_turn_messages

    async def test_configuration_defaults_fill_unset(
        self, registry, mock_http_client, accounting, sample_messages, priced_configuration
    ):
        """配置只填充调用方未设置的字段"""
        manager = LlmServiceManager(registry, accounting=accounting)

        await manager.chat(sample_messages, ChatOptions(temperature=1.0), priced_configuration)

        body = mock_http_client.request.call_args.kwargs["json"]
        assert body["temperature"] == 1.0
        assert body["max_tokens"] == 800
        assert body["model"] == "gpt-5-mini"
        assert body["messages"][0] == {"role": "system", "content": "You write blog posts."}

    async def test_usage_recorded_with_model_pricing(self, registry, accounting, priced_configuration):
        manager = LlmServiceManager(registry, accounting=accounting)

        await manager.complete_with_configuration("Write an intro", priced_configuration)

        accounting.record_usage.assert_awaited_once()
        configuration_id, tokens, cost = accounting.record_usage.await_args.args
        assert configuration_id == "blog"
        assert tokens == 150
        assert cost == pytest.approx((100 * 1.0 + 50 * 2.0) / 1_000_000)

    async def test_quota_exceeded_before_network(
        self, registry, mock_http_client, accounting, priced_configuration
    ):
        """超出配额时在调用 adapter 之前抛出"""
        accounting.check_quota.return_value = QuotaStatus(
            within_limits=False,
            reason="Daily request limit reached (100)",
        )
        manager = LlmServiceManager(registry, accounting=accounting)

        with pytest.raises(QuotaExceededError) as exc_info:
            await manager.chat_with_configuration([{"role": "user", "content": "hi"}], priced_configuration)

        assert exc_info.value.configuration_id == "blog"
        assert "Daily request limit reached (100)" in str(exc_info.value)
        mock_http_client.request.assert_not_awaited()
        accounting.record_usage.assert_not_awaited()

    async def test_no_quota_check_without_limits(self, registry, accounting):
        configuration = LlmConfiguration(identifier="free")
        manager = LlmServiceManager(registry, accounting=accounting)

        await manager.complete("hi", configuration=configuration)

        accounting.check_quota.assert_not_awaited()
        accounting.record_usage.assert_awaited_once()

    async def test_no_accounting_without_configuration(self, registry, accounting):
        await LlmServiceManager(registry, accounting=accounting).complete("hi")
        accounting.record_usage.assert_not_awaited()

    async def test_in_memory_accounting_enforces_daily_requests(self, registry, mock_http_client, openai_provider):
        """未预先登记的配置也按其上限执行配额"""
        configuration = LlmConfiguration(
            identifier="capped",
            model=Model(identifier="gpt", model_id="gpt-5-mini", provider=openai_provider),
            max_requests_per_day=1,
        )
        accounting = InMemoryUsageAccounting()
        manager = LlmServiceManager(registry, accounting=accounting)

        await manager.complete_with_configuration("first", configuration)
        with pytest.raises(QuotaExceededError) as exc_info:
            await manager.complete_with_configuration("second", configuration)

        assert "Daily request limit reached (1)" in str(exc_info.value)
        assert mock_http_client.request.await_count == 1
        assert accounting.get_usage("capped").requests == 1

    async def test_in_memory_accounting_uses_latest_limits(self, registry):
        configuration = LlmConfiguration(identifier="capped", max_requests_per_day=1)
        manager = LlmServiceManager(registry, accounting=InMemoryUsageAccounting())

        await manager.complete_with_configuration("first", configuration)
        raised = configuration.model_copy(update={"max_requests_per_day": 5})
        response = await manager.complete_with_configuration("second", raised)

        assert response.content == "ok"


class TestFeatures:
    async def test_embed_unsupported_provider(self, registry, mock_http_client):
        manager = LlmServiceManager(registry)

        with pytest.raises(UnsupportedFeatureError) as exc_info:
            await manager.embed(["text"], EmbeddingOptions(provider="claude"))

        assert str(exc_info.value) == 'Provider "claude" does not support embeddings'
        mock_http_client.request.assert_not_awaited()

    async def test_embed(self, registry, mock_http_client):
        mock_http_client.request.return_value = httpx.Response(
            200, json={"data": [{"index": 0, "embedding": [0.1, 0.2]}], "usage": {"prompt_tokens": 2}}
        )

        response = await LlmServiceManager(registry).embed(["text"])

        assert response.vector == [0.1, 0.2]
        assert response.provider == "openai"

    def test_supports_feature(self, registry):
        manager = LlmServiceManager(registry)
        assert manager.supports_feature("embeddings") is True
        assert manager.supports_feature("embeddings", provider="claude") is False

    def test_supports_feature_without_provider(self, mock_http_client):
        manager = LlmServiceManager(ProviderAdapterRegistry(http_client=mock_http_client))
        assert manager.supports_feature("chat") is False


_LOOKUP_TOOL = {
    "type": "function",
    "function": {"name": "lookup", "description": "Look up a term", "parameters": {"type": "object"}},
}


class TestModelSelection:
    async def test_criteria_configuration_uses_selected_model(
        self, registry, mock_http_client, openai_provider, anthropic_provider
    ):
        mini = Model(
            identifier="mini",
            model_id="gpt-5-mini",
            provider=openai_provider,
            capabilities=[ModelCapability.CHAT, ModelCapability.TOOLS],
        )
        sonnet = Model(
            identifier="sonnet",
            model_id="claude-sonnet-4-5",
            provider=anthropic_provider,
            capabilities=[ModelCapability.CHAT, ModelCapability.VISION],
        )
        configuration = LlmConfiguration(
            identifier="agent",
            model_selection_mode=ModelSelectionMode.CRITERIA,
            model_selection_criteria=ModelSelectionCriteria(capabilities=[ModelCapability.TOOLS]),
        )
        manager = LlmServiceManager(registry, model_selector=ModelSelector([sonnet, mini]))

        await manager.complete_with_configuration("hi", configuration)

        call = mock_http_client.request.call_args
        assert call.args[1] == "https://api.openai.com/v1/chat/completions"
        assert call.kwargs["json"]["model"] == "gpt-5-mini"

    async def test_no_matching_model(self, registry, mock_http_client):
        configuration = LlmConfiguration(
            identifier="agent",
            model_selection_mode=ModelSelectionMode.CRITERIA,
            model_selection_criteria=ModelSelectionCriteria(min_context_length=1_000_000),
        )

        with pytest.raises(ProviderConfigurationError) as exc_info:
            await LlmServiceManager(registry).complete_with_configuration("hi", configuration)

        assert str(exc_info.value) == 'No model matches the selection criteria of configuration "agent"'
        mock_http_client.request.assert_not_awaited()

    def test_fixed_configuration_unchanged(self, registry, priced_configuration):
        assert LlmServiceManager(registry).resolve_configuration(priced_configuration) is priced_configuration


class TestTools:
    async def test_configuration_defaults_and_usage(
        self, registry, mock_http_client, accounting, priced_configuration, sample_messages
    ):
        manager = LlmServiceManager(registry, accounting=accounting)

        await manager.chat_with_tools(sample_messages, [_LOOKUP_TOOL], ToolOptions.auto(), priced_configuration)

        body = mock_http_client.request.call_args.kwargs["json"]
        assert body["tools"] == [_LOOKUP_TOOL]
        assert body["tool_choice"] == "auto"
        assert body["model"] == "gpt-5-mini"
        assert body["max_tokens"] == 800
        assert body["temperature"] == 0.7
        accounting.record_usage.assert_awaited_once()

    async def test_unsupported_provider(self, mock_http_client, sample_messages):
        registry = ProviderAdapterRegistry(
            providers=[Provider(identifier="local", adapter_type=AdapterType.OLLAMA)],
            http_client=mock_http_client,
        )

        with pytest.raises(UnsupportedFeatureError) as exc_info:
            await LlmServiceManager(registry).chat_with_tools(sample_messages, [_LOOKUP_TOOL])

        assert exc_info.value.feature == "tools"
        mock_http_client.request.assert_not_awaited()


class TestStreaming:
    async def test_chunks_and_request_counted(self, registry, mock_stream, sample_messages):
        mock_stream(
            b'data: {"choices": [{"delta": {"content": "o"}}]}\n\n'
            b'data: {"choices": [{"delta": {"content": "k"}}]}\n\n'
            b"data: [DONE]\n\n"
        )
        accounting = InMemoryUsageAccounting()
        configuration = LlmConfiguration(identifier="stream", max_requests_per_day=1)
        manager = LlmServiceManager(registry, accounting=accounting)

        chunks = [chunk async for chunk in manager.stream_chat_with_configuration(sample_messages, configuration)]

        assert "".join(chunks) == "ok"
        assert accounting.get_usage("stream").requests == 1
        with pytest.raises(QuotaExceededError):
            async for _ in manager.stream_chat_with_configuration(sample_messages, configuration):
                pass

    async def test_system_prompt_and_provider(self, registry, mock_stream, sample_messages):
        stream = mock_stream(b'data: {"type": "message_stop"}\n\n')

        options = ChatOptions(provider="claude", system_prompt="Be brief.")
        chunks = [chunk async for chunk in LlmServiceManager(registry).stream_chat(sample_messages, options)]

        assert chunks == []
        assert stream.call_args.args[1] == "https://api.anthropic.com/v1/messages"
        assert stream.call_args.kwargs["json"]["system"] == "Be brief."


class TestLogContext:
    async def test_bound_during_dispatch(self, registry, mock_http_client, priced_configuration):
        seen: dict = {}

        async def _respond(*args, **kwargs):
            seen.update(structlog.contextvars.get_contextvars())
            return _chat_response()

        mock_http_client.request.side_effect = _respond

        await LlmServiceManager(registry).complete_with_configuration("hi", priced_configuration)

        assert seen["operation"] == "chat"
        assert seen["provider"] == "openai"
        assert seen["configuration_id"] == "blog"
        assert "operation" not in structlog.contextvars.get_contextvars()

    async def test_embed_context_has_no_configuration(self, registry, mock_http_client):
        seen: dict = {}

        async def _respond(*args, **kwargs):
            seen.update(structlog.contextvars.get_contextvars())
            return httpx.Response(200, json={"data": [{"index": 0, "embedding": [1.0]}]})

        mock_http_client.request.side_effect = _respond

        await LlmServiceManager(registry).embed(["text"])

        assert seen["operation"] == "embed"
        assert "configuration_id" not in seen
