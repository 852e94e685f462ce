"""TranslationService -- LLM 翻译、语言检测与质量评分

未给出源语言时先调用一次模型检测语言，再发起翻译请求。
translate_with_translator 把请求路由到 TranslatorRegistry 中的后端
（DeepL 等），未指定后端时选第一个支持该语言对的，兜底为 "llm"。
"""

import asyncio

import structlog

from llmgate.core.exceptions import InvalidArgumentError
from llmgate.core.models import (
    TranslationOptions,
    TranslationResult,
    TranslatorResult,
    validate_language_code,
)
from llmgate.core.protocols import Translator

from .manager import LlmServiceManager
from .translators import LlmTranslator, TranslatorRegistry
from .translators.prompt import (
    build_detection_messages,
    build_quality_messages,
    build_translation_messages,
    confidence_from_finish_reason,
    parse_detected_language,
    parse_quality_score,
    short_answer_chat_options,
    translation_chat_options,
)

log = structlog.get_logger()


def _check_text(text: str) -> None:
    if not text:
        raise InvalidArgumentError("Text cannot be empty", field="text")


class TranslationService:
    def __init__(
        self,
        manager: LlmServiceManager,
        translator_registry: TranslatorRegistry | None = None,
    ) -> None:
        """
        Args:
            manager: 服务入口
            translator_registry: 翻译后端注册表（None 时仅注册 LlmTranslator）
        """
        self._manager = manager
        self._translators = translator_registry or TranslatorRegistry([LlmTranslator(manager)])

    @property
    def translators(self) -> TranslatorRegistry:
        return self._translators

    async def translate(
        self,
        text: str,
        target_language: str,
        source_language: str | None = None,
        options: TranslationOptions | None = None,
    ) -> TranslationResult:
        """翻译单条文本

        Raises:
            InvalidArgumentError: 文本为空或语言代码非法（在任何模型调用之前）
        """
        _check_text(text)
        validate_language_code(target_language)
        if source_language is not None:
            validate_language_code(source_language)
        options = options or TranslationOptions()

        if source_language is None:
            source_language = await self.detect_language(text, options)

        messages = build_translation_messages(text, source_language, target_language, options)
        response = await self._manager.chat(messages, translation_chat_options(options))

        return TranslationResult(
            translation=response.content,
            source_language=source_language,
            target_language=target_language,
            confidence=confidence_from_finish_reason(response.finish_reason),
            usage=response.usage,
        )

    async def translate_batch(
        self,
        texts: list[str],
        target_language: str,
        source_language: str | None = None,
        options: TranslationOptions | None = None,
    ) -> list[TranslationResult]:
        """批量翻译，结果顺序与输入一致"""
        if not texts:
            return []
        return list(
            await asyncio.gather(
                *(self.translate(text, target_language, source_language, options) for text in texts)
            )
        )

    async def detect_language(self, text: str, options: TranslationOptions | None = None) -> str:
        """返回 ISO 639-1 代码；模型回答无法识别时为 "en" """
        _check_text(text)
        options = options or TranslationOptions()
        response = await self._manager.chat(
            build_detection_messages(text),
            short_answer_chat_options(options),
        )
        detected = parse_detected_language(response.content)
        log.debug("language_detected", language=detected)
        return detected

    async def score_translation_quality(
        self,
        source_text: str,
        translated_text: str,
        target_language: str,
        options: TranslationOptions | None = None,
    ) -> float:
        """让模型给译文打分，结果落在 [0, 1]；无法解析时为 0.0"""
        _check_text(source_text)
        _check_text(translated_text)
        validate_language_code(target_language)
        options = options or TranslationOptions()
        response = await self._manager.chat(
            build_quality_messages(source_text, translated_text, target_language),
            short_answer_chat_options(options),
        )
        return parse_quality_score(response.content)

    # ---- 翻译后端 ----

    def _resolve_translator(
        self,
        translator: str | None,
        source_language: str | None,
        target_language: str,
    ) -> Translator:
        if translator:
            return self._translators.get(translator)
        best = self._translators.find_best_translator(source_language or target_language, target_language)
        return best if best is not None else self._translators.get(LlmTranslator.identifier)

    async def translate_with_translator(
        self,
        text: str,
        target_language: str,
        source_language: str | None = None,
        translator: str | None = None,
        options: TranslationOptions | None = None,
    ) -> TranslatorResult:
        """经指定（或自动选择）的后端翻译

        Raises:
            ServiceUnavailableError: 后端未注册或未配置
        """
        _check_text(text)
        validate_language_code(target_language)
        if source_language is not None:
            validate_language_code(source_language)

        backend = self._resolve_translator(translator, source_language, target_language)
        log.debug("translator_selected", translator=backend.identifier, target_language=target_language)
        return await backend.translate(text, target_language, source_language, options)

    async def translate_batch_with_translator(
        self,
        texts: list[str],
        target_language: str,
        source_language: str | None = None,
        translator: str | None = None,
        options: TranslationOptions | None = None,
    ) -> list[TranslatorResult]:
        if not texts:
            return []
        for text in texts:
            _check_text(text)
        validate_language_code(target_language)
        if source_language is not None:
            validate_language_code(source_language)

        backend = self._resolve_translator(translator, source_language, target_language)
        return await backend.translate_batch(texts, target_language, source_language, options)
