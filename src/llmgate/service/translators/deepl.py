"""DeepLTranslator -- DeepL REST API v2 翻译后端

- 以 ":fx" 结尾的 key 走免费端点 api-free.deepl.com，否则走 api.deepl.com
- 鉴权: Authorization: DeepL-Auth-Key {key}
- 语言代码规范化: NO -> NB；作为目标语言时 ZH -> ZH-HANS
- formality 仅对支持的目标语言发送
"""

from typing import Any

import httpx
import structlog
from pydantic import SecretStr

from llmgate.core.exceptions import ServiceUnavailableError
from llmgate.core.models import Formality, TranslationOptions, TranslatorResult
from llmgate.provider.http import ProviderHttpClient

log = structlog.get_logger()

FREE_API_URL = "https://api-free.deepl.com"
PRO_API_URL = "https://api.deepl.com"
API_VERSION = "v2"

DEEPL_CONFIDENCE = 0.95
DETECTION_SAMPLE_CHARS = 100

SUPPORTED_SOURCE_LANGUAGES = frozenset({
    "bg", "cs", "da", "de", "el", "en", "es", "et", "fi", "fr",
    "hu", "id", "it", "ja", "ko", "lt", "lv", "nb", "nl", "pl",
    "pt", "ro", "ru", "sk", "sl", "sv", "tr", "uk", "zh", "ar",
})  # fmt: skip

SUPPORTED_TARGET_LANGUAGES = frozenset({
    "bg", "cs", "da", "de", "el", "en", "en-gb", "en-us", "es", "et",
    "fi", "fr", "hu", "id", "it", "ja", "ko", "lt", "lv", "nb", "nl",
    "pl", "pt", "pt-br", "pt-pt", "ro", "ru", "sk", "sl", "sv", "tr",
    "uk", "zh", "zh-hans", "zh-hant", "ar",
})  # fmt: skip

FORMALITY_SUPPORTED_LANGUAGES = frozenset({
    "de", "fr", "it", "es", "nl", "pl", "pt", "pt-br", "pt-pt", "ru", "ja",
})  # fmt: skip

_FORMALITY_MAP = {
    Formality.FORMAL.value: "more",
    Formality.INFORMAL.value: "less",
}


def normalize_language_code(code: str, is_source: bool) -> str:
    upper = code.upper()
    if upper == "NO":
        return "NB"
    if upper == "ZH" and not is_source:
        return "ZH-HANS"
    return upper


class DeepLTranslator:
    identifier = "deepl"
    name = "DeepL Translation"

    def __init__(
        self,
        api_key: str | SecretStr = "",
        base_url: str | None = None,
        timeout_s: int = 30,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Args:
            api_key: DeepL API key（为空时后端不可用）
            base_url: 自定义端点；免费 key 总是走免费端点
            timeout_s: 请求超时（秒）
            http_client: 外部注入的 httpx.AsyncClient
        """
        self._api_key = api_key if isinstance(api_key, SecretStr) else SecretStr(api_key)
        key = self._api_key.get_secret_value()
        if key.endswith(":fx"):
            base_url = FREE_API_URL
        self._base_url = base_url or PRO_API_URL
        self._http = ProviderHttpClient(
            base_url=f"{self._base_url.rstrip('/')}/{API_VERSION}",
            headers={"Authorization": f"DeepL-Auth-Key {key}"},
            timeout_s=timeout_s,
            provider=self.identifier,
            http_client=http_client,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    def is_available(self) -> bool:
        return bool(self._api_key.get_secret_value())

    def _ensure_available(self) -> None:
        if not self.is_available():
            raise ServiceUnavailableError.not_configured("translation", self.identifier)

    def supports_formality(self, target_language: str) -> bool:
        normalized = normalize_language_code(target_language, is_source=False).lower()
        return normalized in FORMALITY_SUPPORTED_LANGUAGES or normalized.split("-")[0] in FORMALITY_SUPPORTED_LANGUAGES

    def _build_payload(
        self,
        texts: list[str],
        target_language: str,
        source_language: str | None,
        options: TranslationOptions | None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {"text": texts, "target_lang": target_language}
        if source_language is not None:
            payload["source_lang"] = source_language
        if options is not None:
            formality = _FORMALITY_MAP.get(options.formality or "")
            if formality and self.supports_formality(target_language):
                payload["formality"] = formality
            payload["preserve_formatting"] = options.preserve_formatting
        return payload

    def _to_result(self, translation: dict[str, Any], text: str, target: str, source: str | None) -> TranslatorResult:
        detected = (translation.get("detected_source_language") or source or "en").lower()
        return TranslatorResult(
            translated_text=translation.get("text", ""),
            source_language=detected,
            target_language=target.lower(),
            translator=self.identifier,
            confidence=DEEPL_CONFIDENCE,
            metadata={
                "detected_source_language": detected,
                "billed_characters": len(text),
            },
        )

    async def translate(
        self,
        text: str,
        target_language: str,
        source_language: str | None = None,
        options: TranslationOptions | None = None,
    ) -> TranslatorResult:
        """
        Raises:
            ServiceUnavailableError: 未配置 key，或 DeepL 返回空结果
        """
        self._ensure_available()
        target = normalize_language_code(target_language, is_source=False)
        source = normalize_language_code(source_language, is_source=True) if source_language else None

        data = await self._http.post("translate", self._build_payload([text], target, source, options))
        translations = data.get("translations") or []
        if not translations:
            raise ServiceUnavailableError(
                "DeepL returned empty translation response",
                service="translation",
                identifier=self.identifier,
            )
        log.debug("deepl_translation_completed", characters=len(text), target_language=target)
        return self._to_result(translations[0], text, target, source)

    async def translate_batch(
        self,
        texts: list[str],
        target_language: str,
        source_language: str | None = None,
        options: TranslationOptions | None = None,
    ) -> list[TranslatorResult]:
        """所有文本合并为一次请求"""
        if not texts:
            return []
        self._ensure_available()
        target = normalize_language_code(target_language, is_source=False)
        source = normalize_language_code(source_language, is_source=True) if source_language else None

        data = await self._http.post("translate", self._build_payload(list(texts), target, source, options))
        translations = data.get("translations") or []
        if len(translations) != len(texts):
            raise ServiceUnavailableError(
                f"DeepL returned {len(translations)} translations for {len(texts)} texts",
                service="translation",
                identifier=self.identifier,
            )
        log.debug(
            "deepl_translation_completed",
            characters=sum(len(text) for text in texts),
            batch_size=len(texts),
            target_language=target,
        )
        return [
            self._to_result(translation, text, target, source)
            for translation, text in zip(translations, texts, strict=True)
        ]

    def get_supported_languages(self) -> list[str]:
        """源语言与目标语言（折叠为基础代码）的并集"""
        base_targets = {code.split("-")[0] for code in SUPPORTED_TARGET_LANGUAGES}
        return sorted(SUPPORTED_SOURCE_LANGUAGES | base_targets)

    async def detect_language(self, text: str, options: TranslationOptions | None = None) -> str:
        """DeepL 没有独立的检测接口，借助翻译到英语时返回的 detected_source_language"""
        self._ensure_available()
        data = await self._http.post(
            "translate",
            {"text": [text[:DETECTION_SAMPLE_CHARS]], "target_lang": "EN"},
        )
        translations = data.get("translations") or []
        if not translations:
            return "en"
        return (translations[0].get("detected_source_language") or "en").lower()

    def supports_language_pair(self, source_language: str, target_language: str) -> bool:
        source = normalize_language_code(source_language, is_source=True).lower()
        target = normalize_language_code(target_language, is_source=False).lower()
        return source in SUPPORTED_SOURCE_LANGUAGES and target in SUPPORTED_TARGET_LANGUAGES

    async def get_usage(self) -> dict[str, int]:
        """当前计费周期的字符用量"""
        self._ensure_available()
        data = await self._http.get("usage")
        return {
            "character_count": int(data.get("character_count", 0)),
            "character_limit": int(data.get("character_limit", 0)),
        }

    async def get_glossaries(self) -> list[dict[str, Any]]:
        self._ensure_available()
        data = await self._http.get("glossaries")
        return list(data.get("glossaries") or [])

    async def aclose(self) -> None:
        await self._http.aclose()
