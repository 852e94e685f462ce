"""OpenAI 兼容协议 adapter

OpenAI / Groq / Mistral / OpenRouter / Azure OpenAI / 自定义端点共用同一套
chat/completions + embeddings 协议，差异（默认模型、能力、附加 header）
由 ProviderProfile 描述，而不是子类化。
"""

import json
from collections.abc import AsyncIterator
from typing import Any

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field

from llmgate.core.exceptions import ProviderResponseError, UnsupportedFeatureError
from llmgate.core.models import (
    AdapterType,
    ChatOptions,
    CompletionResponse,
    EmbeddingOptions,
    EmbeddingResponse,
    ModelCapability,
    ResponseFormat,
    ToolOptions,
    UsageStatistics,
    VisionOptions,
    VisionResponse,
)

from ..http import ProviderSettings
from .base import DEFAULT_MAX_TOKENS, DEFAULT_TEMPERATURE, BaseProvider, Message

log = structlog.get_logger()

_CHAT_FEATURES = frozenset(
    {
        ModelCapability.CHAT,
        ModelCapability.COMPLETION,
        ModelCapability.STREAMING,
        ModelCapability.TOOLS,
    }
)


class ProviderProfile(BaseModel):
    """OpenAI 兼容厂商的差异描述"""

    model_config = ConfigDict(frozen=True)

    adapter_type: AdapterType
    name: str
    default_chat_model: str = ""
    default_embedding_model: str | None = None
    features: frozenset[str] = _CHAT_FEATURES
    auth_header: str = "Authorization"
    auth_prefix: str = "Bearer "
    extra_headers: dict[str, str] = Field(default_factory=dict)


OPENAI = ProviderProfile(
    adapter_type=AdapterType.OPENAI,
    name="OpenAI",
    default_chat_model="gpt-5.2",
    default_embedding_model="text-embedding-3-small",
    features=_CHAT_FEATURES | {ModelCapability.EMBEDDINGS, ModelCapability.VISION},
)

GROQ = ProviderProfile(
    adapter_type=AdapterType.GROQ,
    name="Groq",
    default_chat_model="llama-3.3-70b-versatile",
    features=_CHAT_FEATURES | {ModelCapability.VISION},
)

MISTRAL = ProviderProfile(
    adapter_type=AdapterType.MISTRAL,
    name="Mistral AI",
    default_chat_model="mistral-large-latest",
    default_embedding_model="mistral-embed",
    features=_CHAT_FEATURES | {ModelCapability.EMBEDDINGS},
)

OPENROUTER = ProviderProfile(
    adapter_type=AdapterType.OPENROUTER,
    name="OpenRouter",
    default_chat_model="anthropic/claude-sonnet-4-5",
    default_embedding_model="openai/text-embedding-3-small",
    features=_CHAT_FEATURES | {ModelCapability.EMBEDDINGS, ModelCapability.VISION},
    extra_headers={
        "HTTP-Referer": "https://github.com/llmgate/llmgate",
        "X-Title": "llmgate",
    },
)

AZURE_OPENAI = ProviderProfile(
    adapter_type=AdapterType.AZURE_OPENAI,
    name="Azure OpenAI",
    default_chat_model="gpt-5.2",
    default_embedding_model="text-embedding-3-small",
    features=_CHAT_FEATURES | {ModelCapability.EMBEDDINGS, ModelCapability.VISION},
    auth_header="api-key",
    auth_prefix="",
)

CUSTOM = ProviderProfile(
    adapter_type=AdapterType.CUSTOM,
    name="Custom (OpenAI-compatible)",
    default_chat_model="gpt-5.2",
    default_embedding_model="text-embedding-3-small",
    features=_CHAT_FEATURES | {ModelCapability.EMBEDDINGS, ModelCapability.VISION},
)

PROFILES: dict[AdapterType, ProviderProfile] = {
    profile.adapter_type: profile
    for profile in (OPENAI, GROQ, MISTRAL, OPENROUTER, AZURE_OPENAI, CUSTOM)
}


def parse_usage(usage: dict[str, Any] | None) -> UsageStatistics:
    usage = usage or {}
    return UsageStatistics.from_tokens(
        int(usage.get("prompt_tokens") or 0),
        int(usage.get("completion_tokens") or 0),
    )


class OpenAICompatibleProvider(BaseProvider):
    """OpenAI chat/completions 协议 adapter"""

    def __init__(
        self,
        identifier: str,
        settings: ProviderSettings,
        profile: ProviderProfile = OPENAI,
        name: str = "",
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._profile = profile
        self.supported_features = profile.features
        self.default_chat_model = profile.default_chat_model
        self.default_embedding_model = profile.default_embedding_model
        super().__init__(identifier, settings, name=name or profile.name, http_client=http_client)

    @property
    def profile(self) -> ProviderProfile:
        return self._profile

    def _build_headers(self) -> dict[str, str]:
        headers = dict(self._profile.extra_headers)
        if api_key := self._settings.api_key_value:
            headers[self._profile.auth_header] = f"{self._profile.auth_prefix}{api_key}"
        if self._settings.organization_id:
            headers["OpenAI-Organization"] = self._settings.organization_id
        return headers

    def build_chat_payload(
        self,
        messages: list[Message],
        options: ChatOptions | None = None,
    ) -> dict[str, Any]:
        """ChatOptions -> chat/completions 请求体"""
        options = options or ChatOptions()
        payload: dict[str, Any] = {
            "model": options.model or self.get_default_model(),
            "messages": messages,
            "temperature": (
                options.temperature if options.temperature is not None else DEFAULT_TEMPERATURE
            ),
            "max_tokens": options.max_tokens or DEFAULT_MAX_TOKENS,
        }
        if options.top_p is not None:
            payload["top_p"] = options.top_p
        if options.frequency_penalty is not None:
            payload["frequency_penalty"] = options.frequency_penalty
        if options.presence_penalty is not None:
            payload["presence_penalty"] = options.presence_penalty
        if options.stop_sequences:
            payload["stop"] = options.stop_sequences
        if options.seed is not None:
            payload["seed"] = options.seed
        if options.response_format == ResponseFormat.JSON:
            payload["response_format"] = {"type": "json_object"}
        return payload

    async def chat(
        self,
        messages: list[Message],
        options: ChatOptions | None = None,
    ) -> CompletionResponse:
        return await self._chat_completion(self.build_chat_payload(messages, options))

    async def _chat_completion(self, payload: dict[str, Any]) -> CompletionResponse:
        data = await self._http.post("chat/completions", payload)

        choices = data.get("choices") or [{}]
        choice = choices[0]
        message = choice.get("message") or {}
        return CompletionResponse(
            content=message.get("content") or "",
            model=data.get("model") or payload["model"],
            usage=parse_usage(data.get("usage")),
            finish_reason=choice.get("finish_reason") or "stop",
            provider=self._identifier,
            tool_calls=self.parse_tool_calls(message.get("tool_calls")),
        )

    async def chat_with_tools(
        self,
        messages: list[Message],
        tools: list[dict[str, Any]],
        options: ToolOptions | None = None,
    ) -> CompletionResponse:
        options = options or ToolOptions()
        payload = self.build_chat_payload(messages, options)
        payload["tools"] = tools
        if options.tool_choice is not None:
            payload["tool_choice"] = options.tool_choice
        if options.parallel_tool_calls is not None:
            payload["parallel_tool_calls"] = options.parallel_tool_calls
        return await self._chat_completion(payload)

    async def stream_chat(
        self,
        messages: list[Message],
        options: ChatOptions | None = None,
    ) -> AsyncIterator[str]:
        payload = {**self.build_chat_payload(messages, options), "stream": True}
        async for line in self._http.stream_lines("chat/completions", payload):
            if not line.startswith("data:"):
                continue
            data = line[len("data:"):].strip()
            if data == "[DONE]":
                return
            try:
                chunk = json.loads(data)
            except json.JSONDecodeError:
                log.debug("stream_chunk_skipped", provider=self._identifier)
                continue
            delta = ((chunk.get("choices") or [{}])[0]).get("delta") or {}
            if content := delta.get("content"):
                yield content

    def parse_tool_calls(self, raw_calls: list[dict[str, Any]] | None) -> list[dict[str, Any]] | None:
        """arguments 由 JSON 字符串解码为 dict"""
        if not raw_calls:
            return None
        calls = []
        for call in raw_calls:
            function = call.get("function") or {}
            arguments = function.get("arguments") or {}
            if isinstance(arguments, str):
                try:
                    arguments = json.loads(arguments) if arguments.strip() else {}
                except json.JSONDecodeError as e:
                    raise ProviderResponseError(
                        f"Invalid tool call arguments for \"{function.get('name', '')}\": {e}",
                        provider=self._identifier,
                    ) from e
            calls.append(
                {
                    "id": call.get("id", ""),
                    "type": call.get("type", "function"),
                    "function": {"name": function.get("name", ""), "arguments": arguments},
                }
            )
        return calls

    async def embed(
        self,
        texts: list[str],
        options: EmbeddingOptions | None = None,
    ) -> EmbeddingResponse:
        if not self.supports_feature(ModelCapability.EMBEDDINGS):
            raise UnsupportedFeatureError(
                f"{self._name} does not support embeddings",
                provider=self._identifier,
                feature=ModelCapability.EMBEDDINGS,
            )
        model = self.get_embedding_model(options)
        payload: dict[str, Any] = {"model": model, "input": list(texts)}
        if options is not None and options.dimensions is not None:
            payload["dimensions"] = options.dimensions

        data = await self._http.post("embeddings", payload)

        items = sorted(data.get("data") or [], key=lambda item: item.get("index", 0))
        usage = data.get("usage") or {}
        return EmbeddingResponse(
            embeddings=[item.get("embedding") or [] for item in items],
            model=data.get("model") or model,
            usage=UsageStatistics.from_tokens(int(usage.get("prompt_tokens") or 0), 0),
            provider=self._identifier,
        )

    async def vision(
        self,
        content: list[dict[str, Any]],
        options: VisionOptions | None = None,
    ) -> VisionResponse:
        if not self.supports_feature(ModelCapability.VISION):
            return await super().vision(content, options)
        options = options or VisionOptions()
        messages: list[Message] = [{"role": "user", "content": content}]
        if options.system_prompt:
            messages.insert(0, {"role": "system", "content": options.system_prompt})

        payload: dict[str, Any] = {
            "model": options.model or self.get_default_model(),
            "messages": messages,
            "max_tokens": options.max_tokens or DEFAULT_MAX_TOKENS,
        }
        if options.temperature is not None:
            payload["temperature"] = options.temperature

        data = await self._http.post("chat/completions", payload)

        choice = (data.get("choices") or [{}])[0]
        return VisionResponse(
            description=(choice.get("message") or {}).get("content") or "",
            model=data.get("model") or payload["model"],
            usage=parse_usage(data.get("usage")),
            provider=self._identifier,
        )

    async def get_available_models(self) -> list[str]:
        data = await self._http.get("models")
        return [item["id"] for item in data.get("data") or [] if item.get("id")]
