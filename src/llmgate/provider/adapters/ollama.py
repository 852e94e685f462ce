"""Ollama 本地模型 adapter -- 无需 API key"""

import asyncio
import base64
import json
from collections.abc import AsyncIterator
from typing import Any

import structlog

from llmgate.core.exceptions import InvalidArgumentError
from llmgate.core.models import (
    ChatOptions,
    CompletionResponse,
    EmbeddingOptions,
    EmbeddingResponse,
    ModelCapability,
    ResponseFormat,
    UsageStatistics,
    VisionOptions,
    VisionResponse,
)

from .base import DEFAULT_TEMPERATURE, BaseProvider, Message

log = structlog.get_logger()

_BASE64_PREFIX = ";base64,"


class OllamaProvider(BaseProvider):
    supported_features = frozenset(
        {
            ModelCapability.CHAT,
            ModelCapability.COMPLETION,
            ModelCapability.EMBEDDINGS,
            ModelCapability.VISION,
            ModelCapability.STREAMING,
        }
    )
    default_chat_model = "llama3.2"
    default_embedding_model = "nomic-embed-text"

    def is_available(self) -> bool:
        return bool(self._settings.base_url)

    def _build_options(
        self,
        temperature: float | None,
        top_p: float | None = None,
        max_tokens: int | None = None,
    ) -> dict[str, Any]:
        options: dict[str, Any] = {
            "temperature": temperature if temperature is not None else DEFAULT_TEMPERATURE,
        }
        if top_p is not None:
            options["top_p"] = top_p
        if max_tokens is not None:
            options["num_predict"] = max_tokens
        return options

    def _chat_payload(self, messages: list[Message], options: ChatOptions | None, stream: bool) -> dict[str, Any]:
        options = options or ChatOptions()
        request_options = self._build_options(options.temperature, options.top_p, options.max_tokens)
        if options.stop_sequences:
            request_options["stop"] = options.stop_sequences
        if options.seed is not None:
            request_options["seed"] = options.seed

        payload: dict[str, Any] = {
            "model": options.model or self.get_default_model(),
            "messages": messages,
            "stream": stream,
            "options": request_options,
        }
        if options.response_format == ResponseFormat.JSON:
            payload["format"] = "json"
        return payload

    async def chat(
        self,
        messages: list[Message],
        options: ChatOptions | None = None,
    ) -> CompletionResponse:
        payload = self._chat_payload(messages, options, stream=False)
        data = await self._http.post("api/chat", payload)
        return self._completion(data, payload["model"])

    async def stream_chat(
        self,
        messages: list[Message],
        options: ChatOptions | None = None,
    ) -> AsyncIterator[str]:
        """api/chat 流式响应为 NDJSON，每行一个片段，done 为 true 时结束"""
        payload = self._chat_payload(messages, options, stream=True)
        async for line in self._http.stream_lines("api/chat", payload):
            try:
                chunk = json.loads(line)
            except json.JSONDecodeError:
                log.debug("stream_chunk_skipped", provider=self._identifier)
                continue
            if content := (chunk.get("message") or {}).get("content"):
                yield content
            if chunk.get("done"):
                return

    async def embed(
        self,
        texts: list[str],
        options: EmbeddingOptions | None = None,
    ) -> EmbeddingResponse:
        model = self.get_embedding_model(options)

        async def _embed_one(text: str) -> list[float]:
            data = await self._http.post("api/embeddings", {"model": model, "prompt": text})
            return list(data.get("embedding") or [])

        embeddings = await asyncio.gather(*(_embed_one(text) for text in texts))
        return EmbeddingResponse(
            embeddings=list(embeddings),
            model=model,
            usage=UsageStatistics(),
            provider=self._identifier,
        )

    async def vision(
        self,
        content: list[dict[str, Any]],
        options: VisionOptions | None = None,
    ) -> VisionResponse:
        options = options or VisionOptions()
        prompt, images = self.split_image_content(content)
        encoded = [await self._encode_image(image["url"]) for image in images]
        messages: list[Message] = [{"role": "user", "content": prompt, "images": encoded}]
        if options.system_prompt:
            messages.insert(0, {"role": "system", "content": options.system_prompt})

        payload: dict[str, Any] = {
            "model": options.model or self.get_default_model(),
            "messages": messages,
            "stream": False,
            "options": self._build_options(options.temperature, max_tokens=options.max_tokens),
        }
        data = await self._http.post("api/chat", payload)
        completion = self._completion(data, payload["model"])
        return VisionResponse(
            description=completion.content,
            model=completion.model,
            usage=completion.usage,
            provider=self._identifier,
        )

    async def _encode_image(self, url: str) -> str:
        """Ollama 只接受裸 base64 图像: data URI 去前缀，http(s) URL 先下载再编码"""
        if _BASE64_PREFIX in url:
            return url.split(_BASE64_PREFIX, 1)[1]
        if url.startswith(("http://", "https://")):
            return base64.b64encode(await self._http.fetch_bytes(url)).decode("ascii")
        raise InvalidArgumentError("Invalid image URL or base64 data URI", field="image")

    async def get_available_models(self) -> list[str]:
        data = await self._http.get("api/tags")
        return [item["name"] for item in data.get("models") or [] if item.get("name")]

    def _completion(self, data: dict[str, Any], model: str) -> CompletionResponse:
        return CompletionResponse(
            content=(data.get("message") or {}).get("content") or "",
            model=data.get("model") or model,
            usage=UsageStatistics.from_tokens(
                int(data.get("prompt_eval_count") or 0),
                int(data.get("eval_count") or 0),
            ),
            finish_reason=data.get("done_reason") or "stop",
            provider=self._identifier,
        )
