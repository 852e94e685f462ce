"""BaseProvider -- adapter 公共契约

每个具体 adapter 负责一种厂商协议：把规范化请求编码为厂商 payload，
把厂商响应解析为 CompletionResponse / EmbeddingResponse / VisionResponse。
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import Any

import httpx
import structlog

from llmgate.core.exceptions import UnsupportedFeatureError
from llmgate.core.models import (
    ChatOptions,
    CompletionResponse,
    ConnectionTestResult,
    EmbeddingOptions,
    EmbeddingResponse,
    ModelCapability,
    ToolOptions,
    VisionOptions,
    VisionResponse,
)

from ..http import ProviderHttpClient, ProviderSettings

log = structlog.get_logger()

DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 4096

Message = dict[str, Any]


class BaseProvider(ABC):
    """Provider adapter 基类"""

    #: 子类覆盖：adapter 支持的能力
    supported_features: frozenset[str] = frozenset({ModelCapability.CHAT})
    default_chat_model: str = ""
    default_embedding_model: str | None = None

    def __init__(
        self,
        identifier: str,
        settings: ProviderSettings,
        name: str = "",
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._identifier = identifier
        self._name = name or identifier
        self._settings = settings
        self._http = ProviderHttpClient(
            base_url=settings.base_url,
            headers=self._build_headers(),
            timeout_s=settings.timeout_s,
            max_retries=settings.max_retries,
            retry_backoff_s=settings.retry_backoff_s,
            provider=identifier,
            http_client=http_client,
        )

    @property
    def identifier(self) -> str:
        return self._identifier

    @property
    def name(self) -> str:
        return self._name

    @property
    def settings(self) -> ProviderSettings:
        return self._settings

    def _build_headers(self) -> dict[str, str]:
        """鉴权等默认 header，由子类覆盖"""
        return {}

    def is_available(self) -> bool:
        """凭据是否齐备"""
        return bool(self._settings.api_key_value)

    def supports_feature(self, feature: str) -> bool:
        return feature in self.supported_features

    def get_default_model(self) -> str:
        return self._settings.default_model or self.default_chat_model

    def get_embedding_model(self, options: EmbeddingOptions | None = None) -> str:
        if options is not None and options.model:
            return options.model
        return self.default_embedding_model or self.get_default_model()

    async def get_available_models(self) -> list[str]:
        """厂商侧可用模型 ID 列表；未实现列举的 adapter 返回默认模型"""
        return [self.get_default_model()]

    async def complete(
        self,
        prompt: str | list[Message],
        options: ChatOptions | None = None,
    ) -> CompletionResponse:
        """单条 prompt 包装为一条 user 消息后走 chat"""
        if isinstance(prompt, str):
            messages: list[Message] = [{"role": "user", "content": prompt}]
        else:
            messages = prompt
        return await self.chat(messages, options)

    @abstractmethod
    async def chat(
        self,
        messages: list[Message],
        options: ChatOptions | None = None,
    ) -> CompletionResponse:
        """多轮对话"""

    def stream_chat(
        self,
        messages: list[Message],
        options: ChatOptions | None = None,
    ) -> AsyncIterator[str]:
        """逐段产出回复文本；支持 streaming 的子类以 async generator 覆盖"""
        raise UnsupportedFeatureError(
            f"{self._name} does not support streaming",
            provider=self._identifier,
            feature=ModelCapability.STREAMING,
        )

    async def chat_with_tools(
        self,
        messages: list[Message],
        tools: list[dict[str, Any]],
        options: ToolOptions | None = None,
    ) -> CompletionResponse:
        """tools 使用 OpenAI function 格式: {"type": "function", "function": {name, description, parameters}}"""
        raise UnsupportedFeatureError(
            f"{self._name} does not support tool calling",
            provider=self._identifier,
            feature=ModelCapability.TOOLS,
        )

    async def embed(
        self,
        texts: list[str],
        options: EmbeddingOptions | None = None,
    ) -> EmbeddingResponse:
        raise UnsupportedFeatureError(
            f"{self._name} does not support embeddings",
            provider=self._identifier,
            feature=ModelCapability.EMBEDDINGS,
        )

    async def vision(
        self,
        content: list[dict[str, Any]],
        options: VisionOptions | None = None,
    ) -> VisionResponse:
        raise UnsupportedFeatureError(
            f"{self._name} does not support vision",
            provider=self._identifier,
            feature=ModelCapability.VISION,
        )

    async def test_connection(self) -> ConnectionTestResult:
        """列举模型以验证连通性

        注意: 此方法不抛出异常，所有异常内部捕获并返回失败结果。
        """
        try:
            models = await self.get_available_models()
        except Exception as e:
            log.warning(
                "provider_connection_test_failed",
                provider=self._identifier,
                error=str(e),
                error_type=type(e).__name__,
            )
            return ConnectionTestResult(success=False, message=str(e))
        return ConnectionTestResult(
            success=True,
            message=f"Connection successful. Found {len(models)} models.",
            models=models,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    @staticmethod
    def split_image_content(content: list[dict[str, Any]]) -> tuple[str, list[dict[str, str]]]:
        """把规范化的 vision content parts 拆成 (文本 prompt, 图像列表)

        图像项为 {"url": ..., "detail": ...}。
        """
        texts: list[str] = []
        images: list[dict[str, str]] = []
        for part in content:
            if part.get("type") == "text":
                texts.append(part.get("text", ""))
            elif part.get("type") == "image_url":
                image = part.get("image_url") or {}
                images.append({"url": image.get("url", ""), "detail": image.get("detail", "auto")})
        return "\n".join(texts), images
