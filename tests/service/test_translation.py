"""TranslationService 单元测试

验证自动检测语言（两次模型调用）、prompt 内容、置信度映射、
质量评分截断，以及经 TranslatorRegistry 的后端路由。
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from llmgate.core.exceptions import InvalidArgumentError, ServiceUnavailableError
from llmgate.core.models import CompletionResponse, TranslationOptions, TranslatorResult, UsageStatistics
from llmgate.service.manager import LlmServiceManager
from llmgate.service.translation import TranslationService
from llmgate.service.translators import TranslatorRegistry


def _reply(content: str, finish_reason: str = "stop") -> CompletionResponse:
    return CompletionResponse(
        content=content,
        model="gpt-5.2",
        usage=UsageStatistics(prompt_tokens=20, completion_tokens=10, total_tokens=30),
        finish_reason=finish_reason,
        provider="openai",
    )


@pytest.fixture
def manager() -> MagicMock:
    manager = MagicMock(spec=LlmServiceManager)
    manager.chat = AsyncMock(return_value=_reply("Hallo Welt"))
    manager.has_available_provider.return_value = True
    return manager


@pytest.fixture
def service(manager) -> TranslationService:
    return TranslationService(manager)


def _fake_translator(identifier: str, supported: bool = True, available: bool = True) -> MagicMock:
    translator = MagicMock()
    translator.identifier = identifier
    translator.name = identifier.title()
    translator.is_available.return_value = available
    translator.supports_language_pair.return_value = supported
    translator.translate = AsyncMock(
        return_value=TranslatorResult(
            translated_text="Bonjour",
            source_language="en",
            target_language="fr",
            translator=identifier,
        )
    )
    return translator


class TestTranslate:
    async def test_with_source_language(self, service, manager):
        result = await service.translate("Hello world", "de", "en")

        assert result.translation == "Hallo Welt"
        assert result.source_language == "en"
        assert result.target_language == "de"
        assert result.confidence == 0.9
        assert result.usage.total_tokens == 30
        manager.chat.assert_awaited_once()

    async def test_auto_detect_makes_two_calls(self, service, manager):
        manager.chat.side_effect = [_reply("fr"), _reply("Hello")]

        result = await service.translate("Bonjour", "en")

        assert manager.chat.await_count == 2
        assert result.source_language == "fr"
        detect_options = manager.chat.await_args_list[0].args[1]
        assert detect_options.temperature == 0.1
        assert detect_options.max_tokens == 10

    async def test_prompt_content(self, service, manager):
        options = TranslationOptions(
            formality="formal",
            domain="legal",
            glossary={"contract": "Vertrag"},
            context="Terms of service",
        )

        await service.translate("The contract", "de", "en", options)

        messages, chat_options = manager.chat.await_args.args
        system = messages[0]["content"]
        assert system.startswith(
            "You are a professional legal translator. Translate the following text from English to German."
        )
        assert "Maintain formal tone." in system
        assert "- contract → Vertrag" in system
        assert "Context (for reference only):\nTerms of service" in system
        assert system.endswith("Provide ONLY the translation, no explanations or notes.")
        assert messages[1] == {"role": "user", "content": "Translate this text:\n\nThe contract"}
        assert chat_options.temperature == 0.3
        assert chat_options.max_tokens == 2000

    async def test_default_formality_omitted(self, service, manager):
        await service.translate("Hi", "de", "en", TranslationOptions(formality="default", preserve_formatting=False))

        system = manager.chat.await_args.args[0][0]["content"]
        assert "tone" not in system
        assert "Preserve all formatting" not in system

    @pytest.mark.parametrize(("finish_reason", "confidence"), [("length", 0.6), ("content_filter", 0.5)])
    async def test_confidence_from_finish_reason(self, service, manager, finish_reason, confidence):
        manager.chat.return_value = _reply("Hallo", finish_reason)

        result = await service.translate("Hello", "de", "en")

        assert result.confidence == confidence

    async def test_empty_text(self, service, manager):
        with pytest.raises(InvalidArgumentError) as exc_info:
            await service.translate("", "de")
        assert str(exc_info.value) == "Text cannot be empty"
        manager.chat.assert_not_awaited()

    @pytest.mark.parametrize("code", ["deu", "DE", "de_DE", "d"])
    async def test_invalid_language_code(self, service, manager, code):
        with pytest.raises(InvalidArgumentError):
            await service.translate("Hello", code)
        manager.chat.assert_not_awaited()

    async def test_batch(self, service, manager):
        assert await service.translate_batch([], "de") == []

        results = await service.translate_batch(["a", "b"], "de", "en")
        assert len(results) == 2
        assert manager.chat.await_count == 2


class TestDetectAndScore:
    @pytest.mark.parametrize(("reply", "expected"), [(" FR \n", "fr"), ("French", "en"), ("", "en")])
    async def test_detect_language(self, service, manager, reply, expected):
        manager.chat.return_value = _reply(reply)
        assert await service.detect_language("Bonjour") == expected

    @pytest.mark.parametrize(("reply", "expected"), [("0.85", 0.85), ("1.7", 1.0), ("-0.2", 0.0), ("great", 0.0)])
    async def test_quality_score(self, service, manager, reply, expected):
        manager.chat.return_value = _reply(reply)

        score = await service.score_translation_quality("Hello", "Hallo", "de")

        assert score == pytest.approx(expected)
        user_prompt = manager.chat.await_args.args[0][1]["content"]
        assert user_prompt == "Source text:\nHello\n\nTranslation to German:\nHallo\n\nQuality score:"


class TestTranslatorRouting:
    async def test_default_registry_uses_llm(self, service, manager):
        result = await service.translate_with_translator("Hello", "de", "en")

        assert result.translator == "llm:default"
        assert result.translated_text == "Hallo Welt"
        assert result.metadata["model"] == "gpt-5.2"

    async def test_named_translator(self, manager):
        deepl = _fake_translator("deepl")
        service = TranslationService(manager, TranslatorRegistry([deepl]))

        result = await service.translate_with_translator("Hello", "fr", "en", translator="deepl")

        assert result.translator == "deepl"
        deepl.translate.assert_awaited_once_with("Hello", "fr", "en", None)
        manager.chat.assert_not_awaited()

    async def test_best_translator_skips_unsupported_pair(self, manager):
        narrow = _fake_translator("narrow", supported=False)
        wide = _fake_translator("wide")
        service = TranslationService(manager, TranslatorRegistry([narrow, wide]))

        result = await service.translate_with_translator("Hello", "fr", "en")

        assert result.translator == "wide"
        narrow.translate.assert_not_awaited()

    async def test_unknown_translator(self, service):
        with pytest.raises(ServiceUnavailableError) as exc_info:
            await service.translate_with_translator("Hello", "fr", translator="missing")
        assert exc_info.value.identifier == "missing"

    async def test_no_backend_available(self, manager):
        service = TranslationService(manager, TranslatorRegistry([_fake_translator("deepl", available=False)]))

        with pytest.raises(ServiceUnavailableError):
            await service.translate_with_translator("Hello", "fr", "en")
