"""Anthropic Messages API adapter"""

import json
import re
from collections.abc import AsyncIterator
from typing import Any

import structlog

from llmgate.core.models import (
    ChatOptions,
    CompletionResponse,
    ModelCapability,
    ToolChoice,
    ToolOptions,
    UsageStatistics,
    VisionOptions,
    VisionResponse,
)

from .base import DEFAULT_MAX_TOKENS, DEFAULT_TEMPERATURE, BaseProvider, Message

log = structlog.get_logger()

ANTHROPIC_VERSION = "2023-06-01"

_DATA_URI_RE = re.compile(r"^data:(image/\w+);base64,(.+)$", re.DOTALL)

# stop_reason -> 规范化 finish_reason
_STOP_REASONS = {
    "end_turn": "stop",
    "stop_sequence": "stop",
    "max_tokens": "length",
    "tool_use": "tool_calls",
}

# 规范化 tool_choice -> Anthropic tool_choice.type
_TOOL_CHOICES = {
    ToolChoice.AUTO: "auto",
    ToolChoice.NONE: "none",
    ToolChoice.REQUIRED: "any",
}

_KNOWN_MODELS = [
    "claude-opus-4-5-20251101",
    "claude-sonnet-4-5-20250929",
    "claude-haiku-4-5-20251001",
    "claude-opus-4-1-20250805",
]


class AnthropicProvider(BaseProvider):
    """Claude 系列模型；不支持 embeddings"""

    supported_features = frozenset(
        {
            ModelCapability.CHAT,
            ModelCapability.COMPLETION,
            ModelCapability.VISION,
            ModelCapability.STREAMING,
            ModelCapability.TOOLS,
        }
    )
    default_chat_model = "claude-sonnet-4-5-20250929"

    def _build_headers(self) -> dict[str, str]:
        return {
            "x-api-key": self._settings.api_key_value,
            "anthropic-version": ANTHROPIC_VERSION,
        }

    @staticmethod
    def split_system(messages: list[Message]) -> tuple[str | None, list[Message]]:
        """system 消息提升到顶层 system 字段，其余消息保持顺序"""
        system_parts: list[str] = []
        conversation: list[Message] = []
        for message in messages:
            if message.get("role") == "system":
                system_parts.append(str(message.get("content", "")))
            else:
                conversation.append(message)
        return ("\n\n".join(system_parts) or None), conversation

    def build_messages_payload(
        self,
        messages: list[Message],
        options: ChatOptions | None = None,
    ) -> dict[str, Any]:
        """ChatOptions -> Messages API 请求体"""
        options = options or ChatOptions()
        system, conversation = self.split_system(messages)
        payload: dict[str, Any] = {
            "model": options.model or self.get_default_model(),
            "messages": conversation,
            "max_tokens": options.max_tokens or DEFAULT_MAX_TOKENS,
            "temperature": (
                options.temperature if options.temperature is not None else DEFAULT_TEMPERATURE
            ),
        }
        if system:
            payload["system"] = system
        if options.top_p is not None:
            payload["top_p"] = options.top_p
        if options.stop_sequences:
            payload["stop_sequences"] = options.stop_sequences
        return payload

    async def chat(
        self,
        messages: list[Message],
        options: ChatOptions | None = None,
    ) -> CompletionResponse:
        return await self._messages(self.build_messages_payload(messages, options))

    async def chat_with_tools(
        self,
        messages: list[Message],
        tools: list[dict[str, Any]],
        options: ToolOptions | None = None,
    ) -> CompletionResponse:
        options = options or ToolOptions()
        payload = self.build_messages_payload(messages, options)
        payload["tools"] = [self.tool_definition(tool) for tool in tools]
        if tool_choice := self.map_tool_choice(options):
            payload["tool_choice"] = tool_choice
        return await self._messages(payload)

    async def stream_chat(
        self,
        messages: list[Message],
        options: ChatOptions | None = None,
    ) -> AsyncIterator[str]:
        payload = {**self.build_messages_payload(messages, options), "stream": True}
        async for line in self._http.stream_lines("messages", payload):
            if not line.startswith("data:"):
                continue
            try:
                event = json.loads(line[len("data:"):].strip())
            except json.JSONDecodeError:
                log.debug("stream_chunk_skipped", provider=self._identifier)
                continue
            if event.get("type") == "message_stop":
                return
            delta = event.get("delta") or {}
            if event.get("type") == "content_block_delta" and delta.get("type") == "text_delta":
                if text := delta.get("text"):
                    yield text

    async def _messages(self, payload: dict[str, Any]) -> CompletionResponse:
        data = await self._http.post("messages", payload)
        return CompletionResponse(
            content=self._join_text(data),
            model=data.get("model") or payload["model"],
            usage=self._parse_usage(data),
            finish_reason=self.map_stop_reason(data.get("stop_reason")),
            provider=self._identifier,
            tool_calls=self._tool_calls(data),
        )

    async def vision(
        self,
        content: list[dict[str, Any]],
        options: VisionOptions | None = None,
    ) -> VisionResponse:
        options = options or VisionOptions()
        prompt, images = self.split_image_content(content)
        blocks: list[dict[str, Any]] = [self.image_block(image["url"]) for image in images]
        if prompt:
            blocks.append({"type": "text", "text": prompt})

        payload: dict[str, Any] = {
            "model": options.model or self.get_default_model(),
            "messages": [{"role": "user", "content": blocks}],
            "max_tokens": options.max_tokens or DEFAULT_MAX_TOKENS,
        }
        if options.system_prompt:
            payload["system"] = options.system_prompt
        if options.temperature is not None:
            payload["temperature"] = options.temperature

        data = await self._http.post("messages", payload)
        return VisionResponse(
            description=self._join_text(data),
            model=data.get("model") or payload["model"],
            usage=self._parse_usage(data),
            provider=self._identifier,
        )

    async def get_available_models(self) -> list[str]:
        return list(_KNOWN_MODELS)

    @staticmethod
    def image_block(url: str) -> dict[str, Any]:
        """data URI -> base64 source，其余按 url source"""
        if match := _DATA_URI_RE.match(url):
            return {
                "type": "image",
                "source": {"type": "base64", "media_type": match.group(1), "data": match.group(2)},
            }
        return {"type": "image", "source": {"type": "url", "url": url}}

    @staticmethod
    def tool_definition(tool: dict[str, Any]) -> dict[str, Any]:
        """OpenAI function 格式 -> Anthropic tool 格式"""
        function = tool.get("function") or tool
        return {
            "name": function.get("name", ""),
            "description": function.get("description", ""),
            "input_schema": function.get("parameters") or {"type": "object", "properties": {}},
        }

    @staticmethod
    def map_tool_choice(options: ToolOptions) -> dict[str, Any] | None:
        choice: dict[str, Any] | None = None
        if options.tool_choice is not None:
            choice = {"type": _TOOL_CHOICES[ToolChoice(options.tool_choice)]}
        if options.parallel_tool_calls is False and (choice is None or choice["type"] != "none"):
            choice = {**(choice or {"type": "auto"}), "disable_parallel_tool_use": True}
        return choice

    @staticmethod
    def map_stop_reason(stop_reason: str | None) -> str:
        if not stop_reason:
            return "stop"
        return _STOP_REASONS.get(stop_reason, stop_reason)

    @staticmethod
    def _join_text(data: dict[str, Any]) -> str:
        return "".join(
            block.get("text", "")
            for block in data.get("content") or []
            if block.get("type") == "text"
        )

    @staticmethod
    def _tool_calls(data: dict[str, Any]) -> list[dict[str, Any]] | None:
        calls = [
            {
                "id": block.get("id", ""),
                "type": "function",
                "function": {"name": block.get("name", ""), "arguments": block.get("input", {})},
            }
            for block in data.get("content") or []
            if block.get("type") == "tool_use"
        ]
        return calls or None

    @staticmethod
    def _parse_usage(data: dict[str, Any]) -> UsageStatistics:
        usage = data.get("usage") or {}
        return UsageStatistics.from_tokens(
            int(usage.get("input_tokens") or 0),
            int(usage.get("output_tokens") or 0),
        )
