"""LlmTranslator -- 基于 LlmServiceManager 的翻译后端"""

import asyncio

from llmgate.core.models import TranslationOptions, TranslatorResult

from ..manager import LlmServiceManager
from .prompt import (
    build_detection_messages,
    build_translation_messages,
    confidence_from_finish_reason,
    parse_detected_language,
    short_answer_chat_options,
    translation_chat_options,
)

SUPPORTED_LANGUAGES = [
    "en", "de", "fr", "es", "it", "pt", "nl", "pl", "ru", "ja", "zh", "ko",
    "ar", "cs", "da", "fi", "el", "hu", "id", "no", "ro", "sk", "sv", "th",
    "tr", "uk", "vi", "bg", "hr", "et", "lv", "lt", "sl", "he", "hi", "ms",
]  # fmt: skip

# 语言检测只取文本前缀
DETECTION_SAMPLE_CHARS = 500


class LlmTranslator:
    """任一已配置的 LLM provider 都可作为翻译后端"""

    identifier = "llm"
    name = "LLM-based Translation"

    def __init__(self, manager: LlmServiceManager) -> None:
        self._manager = manager

    def is_available(self) -> bool:
        return self._manager.has_available_provider()

    async def translate(
        self,
        text: str,
        target_language: str,
        source_language: str | None = None,
        options: TranslationOptions | None = None,
    ) -> TranslatorResult:
        options = options or TranslationOptions()
        if source_language is None:
            source_language = await self.detect_language(text, options)

        messages = build_translation_messages(text, source_language, target_language, options)
        response = await self._manager.chat(messages, translation_chat_options(options))

        return TranslatorResult(
            translated_text=response.content,
            source_language=source_language,
            target_language=target_language,
            translator=f"llm:{options.provider or 'default'}",
            confidence=confidence_from_finish_reason(response.finish_reason),
            metadata={
                "model": response.model,
                "usage": {
                    "prompt_tokens": response.usage.prompt_tokens,
                    "completion_tokens": response.usage.completion_tokens,
                    "total_tokens": response.usage.total_tokens,
                },
            },
        )

    async def translate_batch(
        self,
        texts: list[str],
        target_language: str,
        source_language: str | None = None,
        options: TranslationOptions | None = None,
    ) -> list[TranslatorResult]:
        if not texts:
            return []
        return list(
            await asyncio.gather(
                *(self.translate(text, target_language, source_language, options) for text in texts)
            )
        )

    def get_supported_languages(self) -> list[str]:
        return list(SUPPORTED_LANGUAGES)

    async def detect_language(self, text: str, options: TranslationOptions | None = None) -> str:
        response = await self._manager.chat(
            build_detection_messages(text[:DETECTION_SAMPLE_CHARS]),
            short_answer_chat_options(options or TranslationOptions()),
        )
        return parse_detected_language(response.content)

    def supports_language_pair(self, source_language: str, target_language: str) -> bool:
        return True
