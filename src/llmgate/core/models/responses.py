"""规范化响应类型

所有 adapter 都把厂商响应解析为这里的类型；创建后不可变。
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..exceptions import InvalidArgumentError


class UsageStatistics(BaseModel):
    """Token 使用统计"""

    model_config = ConfigDict(frozen=True)

    prompt_tokens: int = Field(default=0, ge=0, description="输入 token 数")
    completion_tokens: int = Field(default=0, ge=0, description="输出 token 数")
    total_tokens: int = Field(default=0, ge=0, description="总 token 数")
    estimated_cost: float | None = Field(default=None, ge=0, description="估算成本（USD）")

    @classmethod
    def from_tokens(
        cls,
        prompt_tokens: int,
        completion_tokens: int,
        estimated_cost: float | None = None,
    ) -> "UsageStatistics":
        """由 prompt / completion 计数构造，total 恒等于两者之和"""
        return cls(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
            estimated_cost=estimated_cost,
        )


class CompletionResponse(BaseModel):
    """Chat / completion 响应"""

    model_config = ConfigDict(frozen=True)

    content: str = ""
    model: str = ""
    usage: UsageStatistics = Field(default_factory=UsageStatistics)
    finish_reason: str = Field(default="stop", description="规范化后的结束原因")
    provider: str = ""
    tool_calls: list[dict[str, Any]] | None = None

    @property
    def is_truncated(self) -> bool:
        return self.finish_reason == "length"

    @property
    def is_complete(self) -> bool:
        return not self.is_truncated

    @property
    def was_filtered(self) -> bool:
        return self.finish_reason == "content_filter"

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


class EmbeddingResponse(BaseModel):
    """Embedding 响应 -- 同一响应内的向量维度一致"""

    model_config = ConfigDict(frozen=True)

    embeddings: list[list[float]] = Field(default_factory=list)
    model: str = ""
    usage: UsageStatistics = Field(default_factory=UsageStatistics)
    provider: str = ""

    @model_validator(mode="after")
    def _check_dimensions(self) -> "EmbeddingResponse":
        if len({len(vector) for vector in self.embeddings}) > 1:
            raise InvalidArgumentError(
                "Embedding vectors in one response must share dimensionality",
                field="embeddings",
            )
        return self

    @property
    def vector(self) -> list[float]:
        """第一个向量（单文本请求的结果）"""
        return self.embeddings[0] if self.embeddings else []

    @property
    def dimensions(self) -> int:
        return len(self.vector)

    @property
    def count(self) -> int:
        return len(self.embeddings)


class VisionResponse(BaseModel):
    """图像分析响应"""

    model_config = ConfigDict(frozen=True)

    description: str = ""
    model: str = ""
    usage: UsageStatistics = Field(default_factory=UsageStatistics)
    provider: str = ""
    confidence: float | None = Field(default=None, ge=0, le=1)

    def meets_confidence(self, threshold: float) -> bool:
        return self.confidence is not None and self.confidence >= threshold


class TranslationResult(BaseModel):
    """TranslationService.translate() 的结果"""

    model_config = ConfigDict(frozen=True)

    translation: str
    source_language: str
    target_language: str
    confidence: float = Field(ge=0, le=1)
    usage: UsageStatistics = Field(default_factory=UsageStatistics)


class TranslatorResult(BaseModel):
    """任一翻译后端（LLM / DeepL）产出的统一结果"""

    model_config = ConfigDict(frozen=True)

    translated_text: str
    source_language: str
    target_language: str
    translator: str = Field(description="后端标识，LLM 后端为 'llm:{provider}'")
    confidence: float | None = Field(default=None, ge=0, le=1)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_from_llm(self) -> bool:
        return self.translator.startswith("llm:")

    @property
    def confidence_percent(self) -> str | None:
        if self.confidence is None:
            return None
        return f"{self.confidence * 100:.1f}%"


class ConnectionTestResult(BaseModel):
    """连接测试结果 -- 诊断类操作不抛异常，统一返回该结构"""

    model_config = ConfigDict(frozen=True)

    success: bool
    message: str
    models: list[str] = Field(default_factory=list)


class QuotaStatus(BaseModel):
    """配额检查结果"""

    model_config = ConfigDict(frozen=True)

    within_limits: bool = True
    reason: str | None = None


class SimilarityMatch(BaseModel):
    """find_most_similar 的单条结果"""

    model_config = ConfigDict(frozen=True)

    index: int = Field(ge=0, description="候选向量在输入列表中的原始下标")
    similarity: float
