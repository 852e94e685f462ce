"""外部协作方接口定义

使用 Python Protocol 描述 llmgate 消费、但由调用方实现的接口：
用量记账（配额）、embedding 缓存存储、翻译后端。
"""

from typing import Any, Protocol, runtime_checkable

from .models.entities import LlmConfiguration
from .models.options import TranslationOptions
from .models.responses import QuotaStatus, TranslatorResult


class UsageAccounting(Protocol):
    """用量记账接口

    计数器的存储与生命周期属于外部；同一配置的累加必须是原子的。
    """

    async def record_usage(self, configuration_id: str, tokens_used: int, cost: float) -> None:
        """记录一次成功调用的 token 数与成本（同时计一次请求）"""
        ...

    async def check_quota(self, configuration_id: str) -> QuotaStatus:
        """检查配置当日是否仍在配额内"""
        ...


@runtime_checkable
class ConfigurationAwareAccounting(UsageAccounting, Protocol):
    """自行比对配额上限的记账实现

    LlmServiceManager 在检查配额前会把当前配置登记给它，
    配额上限始终以最近一次登记的配置为准。
    """

    def register_configuration(self, configuration: LlmConfiguration) -> None: ...


class EmbeddingCache(Protocol):
    """Embedding 缓存存储接口"""

    def get_cached_embeddings(self, cache_key: str) -> dict[str, Any] | None:
        """返回 {embeddings, model, usage}，未命中返回 None"""
        ...

    def cache_embeddings(
        self,
        cache_key: str,
        embeddings: list[list[float]],
        model: str,
        usage: dict[str, int],
        ttl_seconds: int,
        provider: str = "",
    ) -> None:
        """写入 embedding 缓存；provider 用于按 provider 批量失效"""
        ...


class Translator(Protocol):
    """翻译后端接口 -- LLM 与第三方翻译引擎统一到同一契约"""

    @property
    def identifier(self) -> str: ...

    @property
    def name(self) -> str: ...

    def is_available(self) -> bool:
        """后端是否已配置可用"""
        ...

    async def translate(
        self,
        text: str,
        target_language: str,
        source_language: str | None = None,
        options: TranslationOptions | None = None,
    ) -> TranslatorResult:
        """翻译单条文本"""
        ...

    async def translate_batch(
        self,
        texts: list[str],
        target_language: str,
        source_language: str | None = None,
        options: TranslationOptions | None = None,
    ) -> list[TranslatorResult]:
        """批量翻译，结果顺序与输入一致"""
        ...

    def get_supported_languages(self) -> list[str]:
        """支持的语言代码"""
        ...

    async def detect_language(self, text: str, options: TranslationOptions | None = None) -> str:
        """检测文本语言，返回 ISO 639-1 代码"""
        ...

    def supports_language_pair(self, source_language: str, target_language: str) -> bool:
        """是否支持该语言对"""
        ...
