"""TranslatorRegistry -- 翻译后端注册表"""

from collections.abc import Iterable
from typing import Any

import structlog

from llmgate.core.exceptions import ServiceUnavailableError
from llmgate.core.protocols import Translator

log = structlog.get_logger()


class TranslatorRegistry:
    """按 identifier 管理翻译后端，保持注册顺序"""

    def __init__(self, translators: Iterable[Translator] = ()) -> None:
        self._translators: dict[str, Translator] = {}
        for translator in translators:
            self.register(translator)

    def register(self, translator: Translator) -> None:
        """注册后端；同名后注册者覆盖先注册者"""
        self._translators[translator.identifier] = translator
        log.debug("translator_registered", translator=translator.identifier)

    def get(self, identifier: str) -> Translator:
        """获取可用的后端

        Raises:
            ServiceUnavailableError: 未注册或未配置
        """
        translator = self._translators.get(identifier)
        if translator is None:
            raise ServiceUnavailableError.translator_not_found(identifier)
        if not translator.is_available():
            raise ServiceUnavailableError.not_configured("translation", identifier)
        return translator

    def has(self, identifier: str) -> bool:
        translator = self._translators.get(identifier)
        return translator is not None and translator.is_available()

    def get_available(self) -> dict[str, Translator]:
        return {
            identifier: translator
            for identifier, translator in self._translators.items()
            if translator.is_available()
        }

    def get_registered_identifiers(self) -> list[str]:
        return list(self._translators)

    def get_translator_info(self) -> dict[str, dict[str, Any]]:
        return {
            identifier: {
                "identifier": identifier,
                "name": translator.name,
                "available": translator.is_available(),
            }
            for identifier, translator in self._translators.items()
        }

    def find_best_translator(self, source_language: str, target_language: str) -> Translator | None:
        """按注册顺序返回第一个支持该语言对的可用后端"""
        for translator in self.get_available().values():
            if translator.supports_language_pair(source_language, target_language):
                return translator
        return None
