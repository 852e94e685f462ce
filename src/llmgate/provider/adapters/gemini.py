"""Google Gemini generateContent / embedContent adapter"""

import asyncio
import re
from typing import Any

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

from .base import DEFAULT_MAX_TOKENS, DEFAULT_TEMPERATURE, BaseProvider, Message

_DATA_URI_RE = re.compile(r"^data:(image/\w+);base64,(.+)$", re.DOTALL)

_FINISH_REASONS = {
    "STOP": "stop",
    "MAX_TOKENS": "length",
    "SAFETY": "content_filter",
    "RECITATION": "content_filter",
}

# embedContent 不返回 token 数，按 4 字符 / token 估算
_CHARS_PER_TOKEN = 4


class GeminiProvider(BaseProvider):
    """Gemini 协议：assistant 角色映射为 model，system 消息进入 systemInstruction"""

    supported_features = frozenset(
        {
            ModelCapability.CHAT,
            ModelCapability.COMPLETION,
            ModelCapability.EMBEDDINGS,
            ModelCapability.VISION,
        }
    )
    default_chat_model = "gemini-3-flash-preview"
    default_embedding_model = "text-embedding-004"

    def _build_headers(self) -> dict[str, str]:
        return {"x-goog-api-key": self._settings.api_key_value}

    @staticmethod
    def convert_messages(messages: list[Message]) -> tuple[dict[str, Any] | None, list[dict[str, Any]]]:
        """规范化消息 -> (systemInstruction, contents)"""
        system_parts: list[dict[str, str]] = []
        contents: list[dict[str, Any]] = []
        for message in messages:
            role = message.get("role", "user")
            text = str(message.get("content", ""))
            if role == "system":
                system_parts.append({"text": text})
                continue
            contents.append(
                {
                    "role": "model" if role == "assistant" else "user",
                    "parts": [{"text": text}],
                }
            )
        system_instruction = {"parts": system_parts} if system_parts else None
        return system_instruction, contents

    @staticmethod
    def map_finish_reason(reason: str | None) -> str:
        if not reason:
            return "stop"
        return _FINISH_REASONS.get(reason, reason.lower())

    async def chat(
        self,
        messages: list[Message],
        options: ChatOptions | None = None,
    ) -> CompletionResponse:
        options = options or ChatOptions()
        model = options.model or self.get_default_model()
        system_instruction, contents = self.convert_messages(messages)

        generation_config: dict[str, Any] = {
            "temperature": (
                options.temperature if options.temperature is not None else DEFAULT_TEMPERATURE
            ),
            "maxOutputTokens": options.max_tokens or DEFAULT_MAX_TOKENS,
        }
        if options.top_p is not None:
            generation_config["topP"] = options.top_p
        if options.stop_sequences:
            generation_config["stopSequences"] = options.stop_sequences
        if options.response_format == ResponseFormat.JSON:
            generation_config["responseMimeType"] = "application/json"

        payload: dict[str, Any] = {"contents": contents, "generationConfig": generation_config}
        if system_instruction:
            payload["systemInstruction"] = system_instruction

        data = await self._http.post(f"models/{model}:generateContent", payload)
        return CompletionResponse(
            content=self._first_text(data),
            model=model,
            usage=self._parse_usage(data),
            finish_reason=self.map_finish_reason(self._first_candidate(data).get("finishReason")),
            provider=self._identifier,
        )

    async def embed(
        self,
        texts: list[str],
        options: EmbeddingOptions | None = None,
    ) -> EmbeddingResponse:
        model = self.get_embedding_model(options)

        async def _embed_one(text: str) -> list[float]:
            payload: dict[str, Any] = {
                "model": f"models/{model}",
                "content": {"parts": [{"text": text}]},
            }
            if options is not None and options.dimensions is not None:
                payload["outputDimensionality"] = options.dimensions
            data = await self._http.post(f"models/{model}:embedContent", payload)
            return list((data.get("embedding") or {}).get("values") or [])

        # embedContent 一次只接受一条文本
        embeddings = await asyncio.gather(*(_embed_one(text) for text in texts))
        estimated_tokens = sum(len(text) for text in texts) // _CHARS_PER_TOKEN
        return EmbeddingResponse(
            embeddings=list(embeddings),
            model=model,
            usage=UsageStatistics.from_tokens(estimated_tokens, 0),
            provider=self._identifier,
        )

    async def vision(
        self,
        content: list[dict[str, Any]],
        options: VisionOptions | None = None,
    ) -> VisionResponse:
        options = options or VisionOptions()
        model = options.model or self.get_default_model()
        prompt, images = self.split_image_content(content)

        parts: list[dict[str, Any]] = [self.image_part(image["url"]) for image in images]
        if prompt:
            parts.append({"text": prompt})

        generation_config: dict[str, Any] = {
            "maxOutputTokens": options.max_tokens or DEFAULT_MAX_TOKENS,
        }
        if options.temperature is not None:
            generation_config["temperature"] = options.temperature

        payload: dict[str, Any] = {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": generation_config,
        }
        if options.system_prompt:
            payload["systemInstruction"] = {"parts": [{"text": options.system_prompt}]}

        data = await self._http.post(f"models/{model}:generateContent", payload)
        return VisionResponse(
            description=self._first_text(data),
            model=model,
            usage=self._parse_usage(data),
            provider=self._identifier,
        )

    async def get_available_models(self) -> list[str]:
        data = await self._http.get("models")
        return [
            item["name"].removeprefix("models/")
            for item in data.get("models") or []
            if item.get("name")
        ]

    @staticmethod
    def image_part(url: str) -> dict[str, Any]:
        if match := _DATA_URI_RE.match(url):
            return {"inlineData": {"mimeType": match.group(1), "data": match.group(2)}}
        return {"fileData": {"mimeType": "image/jpeg", "fileUri": url}}

    @staticmethod
    def _first_candidate(data: dict[str, Any]) -> dict[str, Any]:
        candidates = data.get("candidates") or [{}]
        return candidates[0]

    def _first_text(self, data: dict[str, Any]) -> str:
        parts = (self._first_candidate(data).get("content") or {}).get("parts") or [{}]
        return parts[0].get("text") or ""

    @staticmethod
    def _parse_usage(data: dict[str, Any]) -> UsageStatistics:
        usage = data.get("usageMetadata") or {}
        return UsageStatistics.from_tokens(
            int(usage.get("promptTokenCount") or 0),
            int(usage.get("candidatesTokenCount") or 0),
        )
