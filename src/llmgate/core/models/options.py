"""请求选项值类型

每个 feature 一个不可变 Options 类型，构造时即校验不变量；
违反约束抛出 InvalidArgumentError，保证在任何网络调用之前失败。
"""

import re
from typing import Any, Self

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from ..exceptions import InvalidArgumentError
from .enums import DetailLevel, Formality, ResponseFormat, ToolChoice, TranslationDomain

DEFAULT_EMBEDDING_CACHE_TTL = 86400

_LANGUAGE_CODE_RE = re.compile(r"^[a-z]{2}(-[A-Z]{2})?$")

TEMPERATURE_ERROR = "Temperature must be between 0.0 and 2.0"
TOP_P_ERROR = "top_p must be between 0.0 and 1.0"
MAX_TOKENS_ERROR = "max_tokens must be a positive integer"
RESPONSE_FORMAT_ERROR = 'response_format must be "text", "json", or "markdown"'


def check_temperature(value: float | None) -> None:
    if value is not None and not 0.0 <= value <= 2.0:
        raise InvalidArgumentError(TEMPERATURE_ERROR, field="temperature")


def check_top_p(value: float | None) -> None:
    if value is not None and not 0.0 <= value <= 1.0:
        raise InvalidArgumentError(TOP_P_ERROR, field="top_p")


def check_max_tokens(value: int | None) -> None:
    if value is not None and (isinstance(value, bool) or value < 1):
        raise InvalidArgumentError(MAX_TOKENS_ERROR, field="max_tokens")


def check_response_format(value: str | None) -> None:
    if value is not None and value not in {member.value for member in ResponseFormat}:
        raise InvalidArgumentError(RESPONSE_FORMAT_ERROR, field="response_format")


def _check_penalty(value: float | None, field: str) -> None:
    if value is not None and not -2.0 <= value <= 2.0:
        raise InvalidArgumentError(f"{field} must be between -2.0 and 2.0", field=field)


def _check_choice(value: str | None, allowed: type[Any], field: str) -> None:
    choices = [member.value for member in allowed]
    if value is not None and value not in choices:
        raise InvalidArgumentError(
            f'{field} must be one of: {", ".join(choices)}, got "{value}"',
            field=field,
        )


def validate_language_code(code: str) -> None:
    """校验 ISO 639-1 语言代码，可带地区后缀（如 "de"、"de-DE"）"""
    if not isinstance(code, str) or not _LANGUAGE_CODE_RE.match(code):
        raise InvalidArgumentError(
            'Invalid language code format. Expected ISO 639-1 (e.g., "en", "de-DE")',
            field="language",
        )


class BaseOptions(BaseModel):
    """Options 公共行为：不可变、带校验的复制"""

    model_config = ConfigDict(frozen=True, extra="forbid")

    def with_overrides(self, **changes: Any) -> Self:
        """返回应用了 changes 的新实例（重新校验）"""
        return type(self)(**{**self.model_dump(), **changes})

    def with_defaults(self, **defaults: Any) -> Self:
        """仅为值为 None 的字段填充默认值，调用方显式设置的值优先"""
        current = self.model_dump()
        updates = {
            key: value
            for key, value in defaults.items()
            if value is not None and current.get(key) is None
        }
        if not updates:
            return self
        return type(self)(**{**current, **updates})

    def to_request(self) -> dict[str, Any]:
        """非 None 字段组成的 dict"""
        return self.model_dump(exclude_none=True)


class ChatOptions(BaseOptions):
    """Chat / completion 选项"""

    temperature: float | None = None
    max_tokens: int | None = None
    top_p: float | None = None
    frequency_penalty: float | None = None
    presence_penalty: float | None = None
    response_format: str | None = None
    system_prompt: str | None = None
    stop_sequences: list[str] | None = None
    seed: int | None = None
    provider: str | None = None
    model: str | None = None

    @model_validator(mode="after")
    def _validate(self) -> Self:
        check_temperature(self.temperature)
        check_max_tokens(self.max_tokens)
        check_top_p(self.top_p)
        _check_penalty(self.frequency_penalty, "frequency_penalty")
        _check_penalty(self.presence_penalty, "presence_penalty")
        check_response_format(self.response_format)
        return self

    @classmethod
    def factual(cls) -> Self:
        return cls(temperature=0.2, top_p=0.9)

    @classmethod
    def creative(cls) -> Self:
        return cls(temperature=1.2, top_p=1.0, presence_penalty=0.6)

    @classmethod
    def balanced(cls) -> Self:
        return cls(temperature=0.7, max_tokens=4096)

    @classmethod
    def json_mode(cls) -> Self:
        return cls(temperature=0.3, response_format=ResponseFormat.JSON)

    @classmethod
    def code(cls) -> Self:
        return cls(temperature=0.2, max_tokens=8192, top_p=0.95, frequency_penalty=0.0)


class ToolOptions(ChatOptions):
    """工具调用选项 -- 在 ChatOptions 基础上增加工具策略"""

    tool_choice: str | None = None
    parallel_tool_calls: bool | None = None

    @model_validator(mode="after")
    def _validate_tools(self) -> Self:
        _check_choice(self.tool_choice, ToolChoice, "tool_choice")
        return self

    @classmethod
    def auto(cls) -> Self:
        return cls(tool_choice=ToolChoice.AUTO, temperature=0.7)

    @classmethod
    def required(cls) -> Self:
        return cls(tool_choice=ToolChoice.REQUIRED, temperature=0.3)

    @classmethod
    def no_tools(cls) -> Self:
        return cls(tool_choice=ToolChoice.NONE, temperature=0.7)

    @classmethod
    def parallel(cls) -> Self:
        return cls(tool_choice=ToolChoice.AUTO, parallel_tool_calls=True, temperature=0.7)


class EmbeddingOptions(BaseOptions):
    """Embedding 选项 -- cache_ttl 为 0 表示不缓存，为空时使用服务的默认有效期"""

    model: str | None = None
    dimensions: int | None = None
    cache_ttl: int | None = None
    provider: str | None = None

    @model_validator(mode="after")
    def _validate(self) -> Self:
        if self.dimensions is not None and self.dimensions < 1:
            raise InvalidArgumentError(
                f"dimensions must be a positive integer, got {self.dimensions}",
                field="dimensions",
            )
        if self.cache_ttl is not None and self.cache_ttl < 0:
            raise InvalidArgumentError(
                f"cache_ttl must not be negative, got {self.cache_ttl}",
                field="cache_ttl",
            )
        return self

    def cache_fingerprint(self) -> dict[str, Any]:
        """影响向量结果的字段；cache_ttl 不参与缓存 key"""
        return self.model_dump(include={"model", "dimensions", "provider"}, exclude_none=True)

    @classmethod
    def standard(cls) -> Self:
        return cls(cache_ttl=DEFAULT_EMBEDDING_CACHE_TTL)

    @classmethod
    def no_cache(cls) -> Self:
        return cls(cache_ttl=0)

    @classmethod
    def compact(cls) -> Self:
        return cls(dimensions=256)

    @classmethod
    def high_precision(cls) -> Self:
        return cls(dimensions=1536)


class VisionOptions(BaseOptions):
    """图像分析选项"""

    detail_level: str | None = None
    max_tokens: int | None = None
    temperature: float | None = None
    system_prompt: str | None = None
    provider: str | None = None
    model: str | None = None

    @model_validator(mode="after")
    def _validate(self) -> Self:
        _check_choice(self.detail_level, DetailLevel, "detail_level")
        check_max_tokens(self.max_tokens)
        check_temperature(self.temperature)
        return self

    @classmethod
    def alt_text(cls) -> Self:
        return cls(detail_level=DetailLevel.LOW, max_tokens=100, temperature=0.5)

    @classmethod
    def detailed(cls) -> Self:
        return cls(detail_level=DetailLevel.HIGH, max_tokens=500, temperature=0.7)

    @classmethod
    def quick(cls) -> Self:
        return cls(detail_level=DetailLevel.LOW, max_tokens=200, temperature=0.5)

    @classmethod
    def comprehensive(cls) -> Self:
        return cls(detail_level=DetailLevel.HIGH, max_tokens=1000, temperature=0.7)


class TranslationOptions(BaseOptions):
    """翻译选项

    glossary 只保留 str -> str 的词条，其他值静默丢弃。
    """

    formality: str | None = None
    domain: str | None = None
    glossary: dict[str, str] | None = None
    context: str | None = None
    preserve_formatting: bool = True
    temperature: float | None = None
    max_tokens: int | None = None
    provider: str | None = None
    model: str | None = None

    @field_validator("glossary", mode="before")
    @classmethod
    def _filter_glossary(cls, value: Any) -> dict[str, str] | None:
        if value is None:
            return None
        if not isinstance(value, dict):
            raise InvalidArgumentError(
                "Glossary must be a mapping of term to translation",
                field="glossary",
            )
        return {
            term: translation
            for term, translation in value.items()
            if isinstance(term, str) and isinstance(translation, str)
        }

    @model_validator(mode="after")
    def _validate(self) -> Self:
        _check_choice(self.formality, Formality, "formality")
        _check_choice(self.domain, TranslationDomain, "domain")
        check_temperature(self.temperature)
        check_max_tokens(self.max_tokens)
        return self

    @classmethod
    def formal(cls) -> Self:
        return cls(formality=Formality.FORMAL, domain=TranslationDomain.GENERAL, temperature=0.2)

    @classmethod
    def informal(cls) -> Self:
        return cls(formality=Formality.INFORMAL, domain=TranslationDomain.GENERAL, temperature=0.5)

    @classmethod
    def technical(cls) -> Self:
        return cls(formality=Formality.FORMAL, domain=TranslationDomain.TECHNICAL, temperature=0.1)

    @classmethod
    def marketing(cls) -> Self:
        return cls(formality=Formality.DEFAULT, domain=TranslationDomain.MARKETING, temperature=0.6)

    @classmethod
    def medical(cls) -> Self:
        return cls(formality=Formality.FORMAL, domain=TranslationDomain.MEDICAL, temperature=0.1)

    @classmethod
    def legal(cls) -> Self:
        return cls(formality=Formality.FORMAL, domain=TranslationDomain.LEGAL, temperature=0.1)
