"""翻译后端：LLM / DeepL 与注册表"""

from .deepl import DeepLTranslator
from .llm import LlmTranslator
from .registry import TranslatorRegistry

__all__ = [
    "DeepLTranslator",
    "LlmTranslator",
    "TranslatorRegistry",
]
