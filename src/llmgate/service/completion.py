"""CompletionService -- 文本补全

在 LlmServiceManager 之上提供 JSON / Markdown / factual / creative 变体，
可选地通过 CacheManager 缓存补全结果。
"""

import json
from typing import Any, Self

import structlog

from llmgate.core.config import GatewayConfig
from llmgate.core.exceptions import ResponseDecodeError
from llmgate.core.models import ChatOptions, CompletionResponse, ResponseFormat
from llmgate.core.models.options import (
    check_max_tokens,
    check_response_format,
    check_temperature,
    check_top_p,
)

from .cache import DEFAULT_COMPLETION_TTL, CacheManager
from .manager import LlmServiceManager

log = structlog.get_logger()

MARKDOWN_INSTRUCTION = "\n\nFormat your response in clean, well-structured Markdown."


class CompletionService:
    def __init__(
        self,
        manager: LlmServiceManager,
        cache: CacheManager | None = None,
        cache_ttl: int = DEFAULT_COMPLETION_TTL,
    ) -> None:
        """
        Args:
            manager: 服务入口
            cache: 补全缓存（None 时不缓存）
            cache_ttl: 缓存有效期（秒），0 表示不缓存
        """
        self._manager = manager
        self._cache = cache
        self._cache_ttl = cache_ttl

    @classmethod
    def from_config(
        cls,
        manager: LlmServiceManager,
        cache: CacheManager | None,
        config: GatewayConfig,
    ) -> Self:
        return cls(manager, cache, cache_ttl=config.completion_cache_ttl_s)

    @staticmethod
    def _validate(options: ChatOptions) -> None:
        """分派前校验最终生效的选项（含默认值填充后的字段）"""
        check_temperature(options.temperature)
        check_max_tokens(options.max_tokens)
        check_top_p(options.top_p)
        check_response_format(options.response_format)

    async def complete(self, prompt: str, options: ChatOptions | None = None) -> CompletionResponse:
        """单轮补全；options.system_prompt 作为 system 消息置于 user 消息之前"""
        options = options or ChatOptions()
        self._validate(options)

        messages: list[dict[str, Any]] = []
        if options.system_prompt:
            messages.append({"role": "system", "content": options.system_prompt})
        messages.append({"role": "user", "content": prompt})

        cache_key = None
        if self._cache is not None and self._cache_ttl > 0:
            cache_key = CacheManager.generate_cache_key(
                options.provider or "default",
                "completion",
                {"messages": messages, "options": options.to_request()},
            )
            if (cached := self._cache.get_cached_completion(cache_key)) is not None:
                log.debug("completion_cache_hit", cache_key=cache_key)
                return CompletionResponse.model_validate(cached)

        response = await self._manager.chat(messages, options)

        if cache_key is not None:
            self._cache.cache_completion(
                cache_key,
                response.model_dump(),
                provider=response.provider,
                lifetime=self._cache_ttl,
            )
        return response

    async def complete_json(self, prompt: str, options: ChatOptions | None = None) -> dict[str, Any]:
        """JSON 模式补全，返回解码后的 JSON 对象

        Raises:
            ResponseDecodeError: 内容不是合法 JSON，或顶层不是对象
        """
        options = (options or ChatOptions()).with_overrides(response_format=ResponseFormat.JSON)
        response = await self.complete(prompt, options)
        try:
            decoded = json.loads(response.content)
        except json.JSONDecodeError as e:
            raise ResponseDecodeError(f"Failed to decode JSON response: {e}", field="content") from e
        if not isinstance(decoded, dict):
            raise ResponseDecodeError("JSON response must be an object", field="content")
        return decoded

    async def complete_markdown(self, prompt: str, options: ChatOptions | None = None) -> str:
        """追加 Markdown 格式指令后补全，返回文本内容"""
        options = options or ChatOptions()
        system_prompt = ((options.system_prompt or "") + MARKDOWN_INSTRUCTION).strip()
        options = options.with_overrides(
            response_format=ResponseFormat.MARKDOWN,
            system_prompt=system_prompt,
        )
        response = await self.complete(prompt, options)
        return response.content

    async def complete_factual(self, prompt: str, options: ChatOptions | None = None) -> CompletionResponse:
        """低温度补全：temperature 0.2 / top_p 0.9（调用方的值优先）"""
        options = (options or ChatOptions()).with_defaults(temperature=0.2, top_p=0.9)
        return await self.complete(prompt, options)

    async def complete_creative(self, prompt: str, options: ChatOptions | None = None) -> CompletionResponse:
        """高温度补全：temperature 1.2 / top_p 1.0 / presence_penalty 0.6（调用方的值优先）"""
        options = (options or ChatOptions()).with_defaults(
            temperature=1.2,
            top_p=1.0,
            presence_penalty=0.6,
        )
        return await self.complete(prompt, options)
