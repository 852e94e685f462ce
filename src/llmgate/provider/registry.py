"""ProviderAdapterRegistry -- AdapterType 到 adapter 的分派与实例缓存

- 内置映射: openai/groq/mistral/openrouter/azure_openai/custom -> OpenAI 兼容协议，
  anthropic / gemini / ollama 各自独立协议
- 未知类型回退到 OpenAI 兼容协议（记录 warning）
- adapter 实例按 provider identifier 缓存
"""

from collections.abc import Callable, Iterable
from functools import partial

import httpx
import structlog

from llmgate.core.config import GatewayConfig
from llmgate.core.exceptions import ProviderConfigurationError
from llmgate.core.models import (
    AdapterType,
    ConnectionTestResult,
    DetectedProvider,
    DiscoveredModel,
    Model,
    Provider,
)

from .adapters import (
    PROFILES,
    AnthropicProvider,
    BaseProvider,
    GeminiProvider,
    OllamaProvider,
    OpenAICompatibleProvider,
)
from .adapters.openai import OPENAI
from .discovery import ModelDiscovery
from .http import ProviderSettings

log = structlog.get_logger()

AdapterFactory = Callable[..., BaseProvider]

_BUILTIN_FACTORIES: dict[str, AdapterFactory] = {
    AdapterType.ANTHROPIC: AnthropicProvider,
    AdapterType.GEMINI: GeminiProvider,
    AdapterType.OLLAMA: OllamaProvider,
    **{
        adapter_type: partial(OpenAICompatibleProvider, profile=profile)
        for adapter_type, profile in PROFILES.items()
    },
}

_OPENAI_COMPATIBLE_FALLBACK: AdapterFactory = partial(OpenAICompatibleProvider, profile=OPENAI)


class ProviderAdapterRegistry:
    """Provider 记录 + adapter 工厂 + adapter 实例缓存

    factory 调用约定: factory(identifier=..., settings=..., name=..., http_client=...)
    """

    def __init__(
        self,
        providers: Iterable[Provider] = (),
        config: GatewayConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
        discovery: ModelDiscovery | None = None,
    ) -> None:
        """
        Args:
            providers: 初始 provider 记录
            config: 全局配置（默认 provider、超时与重试的兜底值）
            http_client: 所有 adapter 共享的 httpx 客户端（可选）
            discovery: 模型发现服务（可选，默认按需创建）
        """
        self._config = config or GatewayConfig()
        self._http_client = http_client
        self._discovery = discovery
        self._custom_factories: dict[str, AdapterFactory] = {}
        self._providers: dict[str, Provider] = {}
        self._adapters: dict[str, BaseProvider] = {}
        self._default_provider: str | None = self._config.default_provider
        for provider in providers:
            self.register_provider(provider)

    # ---- adapter 工厂 ----

    def register_adapter(self, adapter_type: str, factory: AdapterFactory) -> None:
        """注册自定义 adapter 工厂（覆盖同名内置映射）

        Raises:
            ProviderConfigurationError: factory 不可调用
        """
        if not callable(factory):
            raise ProviderConfigurationError(
                f"Adapter factory for '{adapter_type}' must be callable"
            )
        self._custom_factories[str(adapter_type)] = factory
        log.debug("adapter_registered", adapter_type=str(adapter_type))

    def get_adapter_factory(self, adapter_type: str) -> AdapterFactory:
        adapter_type = str(adapter_type)
        if factory := self._custom_factories.get(adapter_type):
            return factory
        if factory := _BUILTIN_FACTORIES.get(adapter_type):
            return factory
        log.warning("unknown_adapter_type_fallback", adapter_type=adapter_type)
        return _OPENAI_COMPATIBLE_FALLBACK

    def has_adapter(self, adapter_type: str) -> bool:
        adapter_type = str(adapter_type)
        return adapter_type in self._custom_factories or adapter_type in _BUILTIN_FACTORIES

    def get_registered_adapters(self) -> dict[str, str]:
        """{adapter_type: 显示名}，含自定义 adapter"""
        adapters = {member.value: member.label for member in AdapterType}
        for adapter_type in self._custom_factories:
            adapters.setdefault(adapter_type, adapter_type)
        return adapters

    # ---- provider 记录 ----

    def register_provider(self, provider: Provider) -> None:
        """注册 provider 记录；同名覆盖并丢弃旧 adapter 缓存"""
        self._providers[provider.identifier] = provider
        self.clear_cache(provider.identifier)
        log.debug(
            "provider_registered",
            provider=provider.identifier,
            adapter_type=str(provider.adapter_type),
            has_credentials=provider.has_credentials,
        )

    def get_provider_list(self) -> dict[str, str]:
        """全部已注册 provider（含未配置凭据的）: {identifier: name}"""
        return {
            identifier: provider.name or identifier
            for identifier, provider in self._providers.items()
        }

    def get_available_providers(self) -> list[Provider]:
        """已启用且凭据齐备的 provider，按 priority 降序"""
        available = [
            provider
            for provider in self._providers.values()
            if provider.is_active and provider.has_credentials
        ]
        return sorted(available, key=lambda provider: provider.priority, reverse=True)

    def has_available_provider(self) -> bool:
        return bool(self.get_available_providers())

    def set_default_provider(self, identifier: str) -> None:
        if identifier not in self._providers:
            raise ProviderConfigurationError(
                f'Provider "{identifier}" not found',
                provider=identifier,
            )
        self._default_provider = identifier

    def get_default_provider(self) -> BaseProvider | None:
        """显式默认 provider；否则取 priority 最高的可用 provider；都没有返回 None"""
        if self._default_provider and self._default_provider in self._providers:
            return self.get_adapter(self._default_provider)
        available = self.get_available_providers()
        if not available:
            return None
        return self.get_adapter(available[0].identifier)

    def get_adapter(self, identifier: str) -> BaseProvider:
        """按 provider identifier 获取（缓存的）adapter

        Raises:
            ProviderConfigurationError: provider 未注册
        """
        provider = self._providers.get(identifier)
        if provider is None:
            raise ProviderConfigurationError(
                f'Provider "{identifier}" not found',
                provider=identifier,
            )
        return self.create_adapter_from_provider(provider)

    # ---- adapter 创建 ----

    def _build_settings(self, provider: Provider, default_model: str | None = None) -> ProviderSettings:
        return ProviderSettings(
            api_key=provider.api_key,
            base_url=provider.effective_endpoint_url,
            default_model=default_model or provider.options.get("default_model"),
            timeout_s=provider.api_timeout or self._config.request_timeout_s,
            max_retries=provider.max_retries or self._config.max_retries,
            retry_backoff_s=self._config.retry_backoff_s,
            organization_id=provider.organization_id,
            options=provider.options,
        )

    def _instantiate(self, provider: Provider, settings: ProviderSettings) -> BaseProvider:
        factory = self.get_adapter_factory(provider.adapter_type)
        adapter = factory(
            identifier=provider.identifier,
            settings=settings,
            name=provider.name,
            http_client=self._http_client,
        )
        log.debug(
            "adapter_created",
            provider=provider.identifier,
            adapter_type=str(provider.adapter_type),
            adapter_class=type(adapter).__name__,
        )
        return adapter

    def create_adapter_from_provider(self, provider: Provider, use_cache: bool = True) -> BaseProvider:
        if use_cache and (cached := self._adapters.get(provider.identifier)):
            return cached
        adapter = self._instantiate(provider, self._build_settings(provider))
        if use_cache:
            self._adapters[provider.identifier] = adapter
        return adapter

    def create_adapter_from_model(self, model: Model, use_cache: bool = True) -> BaseProvider:
        """以模型的 model_id 作为默认模型创建 adapter

        Raises:
            ProviderConfigurationError: 模型未绑定 provider
        """
        provider = model.provider
        if provider is None:
            raise ProviderConfigurationError(
                f'Model "{model.identifier}" has no associated provider'
            )
        cache_key = f"{provider.identifier}/{model.model_id}"
        if use_cache and (cached := self._adapters.get(cache_key)):
            return cached
        adapter = self._instantiate(provider, self._build_settings(provider, model.model_id))
        if use_cache:
            self._adapters[cache_key] = adapter
        return adapter

    def clear_cache(self, identifier: str | None = None) -> None:
        """丢弃 adapter 缓存（含按模型创建的实例）"""
        if identifier is None:
            self._adapters.clear()
            return
        for key in [k for k in self._adapters if k == identifier or k.startswith(f"{identifier}/")]:
            del self._adapters[key]

    # ---- 诊断 ----

    async def test_provider_connection(self, provider: Provider) -> ConnectionTestResult:
        """测试 provider 连通性

        注意: 此方法不抛出异常，所有异常内部捕获并返回失败结果。
        """
        try:
            adapter = self.create_adapter_from_provider(provider, use_cache=False)
            if not adapter.is_available():
                return ConnectionTestResult(
                    success=False,
                    message="Provider is not available (API key may be missing)",
                )
            try:
                return await adapter.test_connection()
            finally:
                await adapter.aclose()
        except Exception as e:
            log.warning("provider_connection_test_failed", provider=provider.identifier, error=str(e))
            return ConnectionTestResult(success=False, message=f"Connection failed: {e}")

    async def discover_models(self, provider: Provider) -> list[DiscoveredModel]:
        """委托 ModelDiscovery 列举 provider 的模型"""
        if self._discovery is None:
            self._discovery = ModelDiscovery(http_client=self._http_client)
        detected = DetectedProvider(
            adapter_type=str(provider.adapter_type),
            suggested_name=provider.name or provider.identifier,
            endpoint=provider.effective_endpoint_url,
        )
        return await self._discovery.discover(detected, provider.api_key.get_secret_value())

    async def aclose(self) -> None:
        for adapter in self._adapters.values():
            await adapter.aclose()
        self._adapters.clear()
        if self._discovery is not None:
            await self._discovery.aclose()
