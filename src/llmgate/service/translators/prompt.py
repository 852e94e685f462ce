"""LLM 翻译 prompt 构造与响应解析

TranslationService 与 LlmTranslator 共用同一套模板。
"""

import re
from typing import Any

from llmgate.core.models import ChatOptions, Formality, TranslationDomain, TranslationOptions

LANGUAGE_NAMES = {
    "en": "English",
    "de": "German",
    "fr": "French",
    "es": "Spanish",
    "it": "Italian",
    "pt": "Portuguese",
    "nl": "Dutch",
    "pl": "Polish",
    "ru": "Russian",
    "ja": "Japanese",
    "zh": "Chinese",
    "ko": "Korean",
    "ar": "Arabic",
    "cs": "Czech",
    "da": "Danish",
    "fi": "Finnish",
    "el": "Greek",
    "hu": "Hungarian",
    "id": "Indonesian",
    "no": "Norwegian",
    "ro": "Romanian",
    "sk": "Slovak",
    "sv": "Swedish",
    "th": "Thai",
    "tr": "Turkish",
    "uk": "Ukrainian",
    "vi": "Vietnamese",
    "bg": "Bulgarian",
    "hr": "Croatian",
    "et": "Estonian",
    "lv": "Latvian",
    "lt": "Lithuanian",
    "sl": "Slovenian",
    "he": "Hebrew",
    "hi": "Hindi",
    "ms": "Malay",
}

DETECT_SYSTEM_PROMPT = (
    "You are a language detection expert. Respond with ONLY the ISO 639-1 language code "
    '(e.g., "en", "de", "fr"). No explanation.'
)
QUALITY_SYSTEM_PROMPT = (
    "You are a translation quality expert. Evaluate the translation quality based on "
    'accuracy, fluency, and consistency. Respond with ONLY a number between 0.0 and 1.0 (e.g., "0.85"). '
    "No explanation."
)

DEFAULT_TRANSLATION_TEMPERATURE = 0.3
DEFAULT_TRANSLATION_MAX_TOKENS = 2000
FALLBACK_LANGUAGE = "en"

_DETECTED_CODE_RE = re.compile(r"^[a-z]{2}$")

Message = dict[str, Any]


def translation_chat_options(options: TranslationOptions) -> ChatOptions:
    """翻译请求的 ChatOptions；未设置的温度与长度使用翻译默认值"""
    return ChatOptions(
        temperature=options.temperature if options.temperature is not None else DEFAULT_TRANSLATION_TEMPERATURE,
        max_tokens=options.max_tokens or DEFAULT_TRANSLATION_MAX_TOKENS,
        provider=options.provider,
        model=options.model,
    )


def short_answer_chat_options(options: TranslationOptions) -> ChatOptions:
    """语言检测与质量评分只需要极短的确定性回答"""
    return ChatOptions(temperature=0.1, max_tokens=10, provider=options.provider, model=options.model)


def language_name(code: str) -> str:
    """语言代码 -> 英文名称；未知代码原样返回"""
    return LANGUAGE_NAMES.get(code.lower(), code)


def build_translation_messages(
    text: str,
    source_language: str,
    target_language: str,
    options: TranslationOptions,
) -> list[Message]:
    domain = options.domain or TranslationDomain.GENERAL.value
    system_prompt = (
        f"You are a professional {domain} translator. Translate the following text "
        f"from {language_name(source_language)} to {language_name(target_language)}.\n"
    )
    if options.formality and options.formality != Formality.DEFAULT:
        system_prompt += f"Maintain {options.formality} tone.\n"
    if options.preserve_formatting:
        system_prompt += "Preserve all formatting, HTML tags, markdown, and special characters.\n"
    if options.glossary:
        system_prompt += "\nUse these exact term translations:\n"
        for term, translation in options.glossary.items():
            system_prompt += f"- {term} → {translation}\n"
    if options.context:
        system_prompt += f"\nContext (for reference only):\n{options.context}\n"
    system_prompt += "\nProvide ONLY the translation, no explanations or notes."

    return [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": "Translate this text:\n\n" + text},
    ]


def build_detection_messages(text: str) -> list[Message]:
    return [
        {"role": "system", "content": DETECT_SYSTEM_PROMPT},
        {"role": "user", "content": "Detect the language of this text:\n\n" + text},
    ]


def build_quality_messages(source_text: str, translated_text: str, target_language: str) -> list[Message]:
    return [
        {"role": "system", "content": QUALITY_SYSTEM_PROMPT},
        {
            "role": "user",
            "content": (
                f"Source text:\n{source_text}\n\n"
                f"Translation to {language_name(target_language)}:\n{translated_text}\n\n"
                "Quality score:"
            ),
        },
    ]


def parse_detected_language(content: str) -> str:
    """模型回答不是两位小写代码时回退为 "en" """
    code = content.strip().lower()
    return code if _DETECTED_CODE_RE.match(code) else FALLBACK_LANGUAGE


def parse_quality_score(content: str) -> float:
    try:
        score = float(content.strip())
    except ValueError:
        return 0.0
    return min(1.0, max(0.0, score))


def confidence_from_finish_reason(finish_reason: str) -> float:
    match finish_reason:
        case "stop":
            return 0.9
        case "length":
            return 0.6
        case _:
            return 0.5
