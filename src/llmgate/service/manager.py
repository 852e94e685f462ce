"""LlmServiceManager -- 所有 feature service 的唯一调用入口

调用流程：
1. criteria 模式的配置先经 ModelSelector 解析出具体模型
2. 用 configuration 的默认参数填充 options 中未设置的字段（调用方的值优先）
3. 解析 adapter: options.provider -> configuration.model -> registry 默认 provider
4. 配置了配额时，调用 adapter 之前检查配额
5. 分派到 adapter；adapter 异常原样向上传播
6. 成功后向 accounting 记录 token 与成本
"""

import time
from collections.abc import AsyncIterator
from typing import Any, TypeVar

import structlog

from llmgate.core.cost import CostCalculator
from llmgate.core.exceptions import (
    ProviderConfigurationError,
    QuotaExceededError,
    UnsupportedFeatureError,
)
from llmgate.core.logging_config import call_context
from llmgate.core.models import (
    ChatOptions,
    CompletionResponse,
    EmbeddingOptions,
    EmbeddingResponse,
    LlmConfiguration,
    ModelCapability,
    ToolOptions,
    VisionOptions,
    VisionResponse,
)
from llmgate.core.protocols import ConfigurationAwareAccounting, UsageAccounting
from llmgate.provider.adapters import BaseProvider
from llmgate.provider.registry import ProviderAdapterRegistry

from .model_selection import ModelSelector

log = structlog.get_logger()

Message = dict[str, Any]

_OptionsT = TypeVar("_OptionsT", bound=ChatOptions)


class LlmServiceManager:
    """Provider 选择、配置默认值、配额检查与用量记账"""

    def __init__(
        self,
        registry: ProviderAdapterRegistry,
        accounting: UsageAccounting | None = None,
        cost_calculator: CostCalculator | None = None,
        model_selector: ModelSelector | None = None,
    ) -> None:
        """
        Args:
            registry: adapter registry
            accounting: 外部用量记账（None 时不检查配额、不记账）
            cost_calculator: 成本估算器
            model_selector: criteria 模式配置使用的模型目录
        """
        self._registry = registry
        self._accounting = accounting
        self._cost_calculator = cost_calculator or CostCalculator()
        self._model_selector = model_selector or ModelSelector()

    @property
    def registry(self) -> ProviderAdapterRegistry:
        return self._registry

    @property
    def model_selector(self) -> ModelSelector:
        return self._model_selector

    def resolve_adapter(
        self,
        provider: str | None = None,
        configuration: LlmConfiguration | None = None,
    ) -> BaseProvider:
        """按 显式 provider -> 配置的模型 -> 默认 provider 的顺序解析 adapter

        Raises:
            ProviderConfigurationError: 无可用 provider
        """
        if provider:
            return self._registry.get_adapter(provider)
        if configuration is not None and configuration.model is not None:
            return self._registry.create_adapter_from_model(configuration.model)
        adapter = self._registry.get_default_provider()
        if adapter is None:
            raise ProviderConfigurationError("No provider available")
        return adapter

    def resolve_configuration(self, configuration: LlmConfiguration) -> LlmConfiguration:
        """criteria 模式下返回绑定了选中模型的配置副本；fixed 模式原样返回

        Raises:
            ProviderConfigurationError: 没有模型满足选择条件
        """
        if not configuration.uses_criteria_selection:
            return configuration
        model = self._model_selector.resolve_model(configuration)
        if model is None:
            log.warning("model_selection_no_match", configuration_id=configuration.identifier)
            raise ProviderConfigurationError(
                f'No model matches the selection criteria of configuration "{configuration.identifier}"'
            )
        return configuration.model_copy(update={"model": model})

    def has_available_provider(self) -> bool:
        return self._registry.has_available_provider()

    def supports_feature(self, feature: str, provider: str | None = None) -> bool:
        try:
            adapter = self.resolve_adapter(provider)
        except ProviderConfigurationError:
            return False
        return adapter.supports_feature(feature)

    # ---- chat / completion ----

    async def chat(
        self,
        messages: list[Message],
        options: ChatOptions | None = None,
        configuration: LlmConfiguration | None = None,
    ) -> CompletionResponse:
        adapter, messages, options, configuration = await self._prepare_chat(
            messages, options or ChatOptions(), configuration
        )
        with call_context(operation="chat", provider=adapter.identifier, configuration_id=_identifier(configuration)):
            start_time = time.monotonic()
            log.debug("llm_request_dispatched", message_count=len(messages))
            response = await adapter.chat(messages, options)
            self._log_completed(response.model, response.usage.total_tokens, start_time)
            await self._record_usage(configuration, response)
        return response

    async def complete(
        self,
        prompt: str,
        options: ChatOptions | None = None,
        configuration: LlmConfiguration | None = None,
    ) -> CompletionResponse:
        return await self.chat([{"role": "user", "content": prompt}], options, configuration)

    async def chat_with_configuration(
        self,
        messages: list[Message],
        configuration: LlmConfiguration,
    ) -> CompletionResponse:
        return await self.chat(messages, configuration=configuration)

    async def complete_with_configuration(
        self,
        prompt: str,
        configuration: LlmConfiguration,
    ) -> CompletionResponse:
        return await self.complete(prompt, configuration=configuration)

    async def chat_with_tools(
        self,
        messages: list[Message],
        tools: list[dict[str, Any]],
        options: ToolOptions | None = None,
        configuration: LlmConfiguration | None = None,
    ) -> CompletionResponse:
        """工具调用；模型请求的调用在 response.tool_calls 中返回，由调用方执行"""
        adapter, messages, options, configuration = await self._prepare_chat(
            messages, options or ToolOptions(), configuration, ModelCapability.TOOLS
        )
        with call_context(
            operation="chat_with_tools",
            provider=adapter.identifier,
            configuration_id=_identifier(configuration),
        ):
            start_time = time.monotonic()
            log.debug("llm_request_dispatched", message_count=len(messages), tool_count=len(tools))
            response = await adapter.chat_with_tools(messages, tools, options)
            self._log_completed(response.model, response.usage.total_tokens, start_time)
            await self._record_usage(configuration, response)
        return response

    async def stream_chat(
        self,
        messages: list[Message],
        options: ChatOptions | None = None,
        configuration: LlmConfiguration | None = None,
    ) -> AsyncIterator[str]:
        """逐段产出回复文本

        provider 解析、能力与配额检查在取第一个片段时执行。流式响应不带 token 统计，
        完整结束后只计一次请求。
        """
        adapter, messages, options, configuration = await self._prepare_chat(
            messages, options or ChatOptions(), configuration, ModelCapability.STREAMING
        )
        start_time = time.monotonic()
        chunk_count = 0
        log.debug("llm_stream_started", operation="stream_chat", provider=adapter.identifier)
        async for chunk in adapter.stream_chat(messages, options):
            chunk_count += 1
            yield chunk
        log.info(
            "llm_stream_completed",
            operation="stream_chat",
            provider=adapter.identifier,
            chunk_count=chunk_count,
            duration_ms=int((time.monotonic() - start_time) * 1000),
        )
        if configuration is not None and self._accounting is not None:
            await self._accounting.record_usage(configuration.identifier, 0, 0.0)

    def stream_chat_with_configuration(
        self,
        messages: list[Message],
        configuration: LlmConfiguration,
    ) -> AsyncIterator[str]:
        return self.stream_chat(messages, configuration=configuration)

    # ---- embeddings / vision ----

    async def embed(
        self,
        texts: list[str],
        options: EmbeddingOptions | None = None,
    ) -> EmbeddingResponse:
        options = options or EmbeddingOptions()
        adapter = self.resolve_adapter(options.provider)
        self._require_feature(adapter, ModelCapability.EMBEDDINGS)

        with call_context(operation="embed", provider=adapter.identifier):
            start_time = time.monotonic()
            log.debug("llm_request_dispatched", input_count=len(texts))
            response = await adapter.embed(texts, options)
            self._log_completed(response.model, response.usage.total_tokens, start_time)
        return response

    async def vision(
        self,
        content: list[dict[str, Any]],
        options: VisionOptions | None = None,
    ) -> VisionResponse:
        options = options or VisionOptions()
        adapter = self.resolve_adapter(options.provider)
        self._require_feature(adapter, ModelCapability.VISION)

        with call_context(operation="vision", provider=adapter.identifier):
            start_time = time.monotonic()
            log.debug("llm_request_dispatched")
            response = await adapter.vision(content, options)
            self._log_completed(response.model, response.usage.total_tokens, start_time)
        return response

    # ---- 内部 ----

    async def _prepare_chat(
        self,
        messages: list[Message],
        options: _OptionsT,
        configuration: LlmConfiguration | None,
        feature: ModelCapability | None = None,
    ) -> tuple[BaseProvider, list[Message], _OptionsT, LlmConfiguration | None]:
        """配置解析 + 默认值填充 + adapter 解析 + 能力 / 配额检查，全部先于网络调用"""
        if configuration is not None:
            configuration = self.resolve_configuration(configuration)
            options = options.with_defaults(**configuration.to_chat_options().to_request())

        adapter = self.resolve_adapter(options.provider, configuration)
        if feature is not None:
            self._require_feature(adapter, feature)
        await self._check_quota(configuration)
        return adapter, self._with_system_prompt(messages, options.system_prompt), options, configuration

    @staticmethod
    def _require_feature(adapter: BaseProvider, feature: ModelCapability) -> None:
        if not adapter.supports_feature(feature):
            raise UnsupportedFeatureError(
                f'Provider "{adapter.identifier}" does not support {feature}',
                provider=adapter.identifier,
                feature=feature,
            )

    @staticmethod
    def _with_system_prompt(messages: list[Message], system_prompt: str | None) -> list[Message]:
        """已有 system 消息时不再追加"""
        if not system_prompt or any(message.get("role") == "system" for message in messages):
            return messages
        return [{"role": "system", "content": system_prompt}, *messages]

    async def _check_quota(self, configuration: LlmConfiguration | None) -> None:
        if configuration is None or self._accounting is None or not configuration.has_limits:
            return
        if isinstance(self._accounting, ConfigurationAwareAccounting):
            self._accounting.register_configuration(configuration)
        status = await self._accounting.check_quota(configuration.identifier)
        if not status.within_limits:
            reason = status.reason or "Quota exceeded"
            log.warning(
                "quota_exceeded",
                configuration_id=configuration.identifier,
                reason=reason,
            )
            raise QuotaExceededError(configuration.identifier, reason)

    async def _record_usage(
        self,
        configuration: LlmConfiguration | None,
        response: CompletionResponse,
    ) -> None:
        if configuration is None or self._accounting is None:
            return
        cost, _ = self._cost_calculator.calculate(response.usage, response.model, configuration.model)
        await self._accounting.record_usage(
            configuration.identifier,
            response.usage.total_tokens,
            cost,
        )

    @staticmethod
    def _log_completed(model: str, total_tokens: int, start_time: float) -> None:
        log.info(
            "llm_request_completed",
            model=model,
            total_tokens=total_tokens,
            duration_ms=int((time.monotonic() - start_time) * 1000),
        )


def _identifier(configuration: LlmConfiguration | None) -> str | None:
    return configuration.identifier if configuration is not None else None
