"""llmgate 数据模型"""

from .entities import (
    DetectedProvider,
    DiscoveredModel,
    LlmConfiguration,
    Model,
    ModelSelectionCriteria,
    Provider,
)
from .enums import (
    AdapterType,
    DetailLevel,
    Formality,
    ModelCapability,
    ModelSelectionMode,
    ResponseFormat,
    ToolChoice,
    TranslationDomain,
)
from .options import (
    BaseOptions,
    ChatOptions,
    EmbeddingOptions,
    ToolOptions,
    TranslationOptions,
    VisionOptions,
    validate_language_code,
)
from .responses import (
    CompletionResponse,
    ConnectionTestResult,
    EmbeddingResponse,
    QuotaStatus,
    SimilarityMatch,
    TranslationResult,
    TranslatorResult,
    UsageStatistics,
    VisionResponse,
)

__all__ = [
    # 枚举
    "AdapterType",
    "DetailLevel",
    "Formality",
    "ModelCapability",
    "ModelSelectionMode",
    "ResponseFormat",
    "ToolChoice",
    "TranslationDomain",
    # 实体
    "DetectedProvider",
    "DiscoveredModel",
    "LlmConfiguration",
    "Model",
    "ModelSelectionCriteria",
    "Provider",
    # 选项
    "BaseOptions",
    "ChatOptions",
    "EmbeddingOptions",
    "ToolOptions",
    "TranslationOptions",
    "VisionOptions",
    "validate_language_code",
    # 响应
    "CompletionResponse",
    "ConnectionTestResult",
    "EmbeddingResponse",
    "QuotaStatus",
    "SimilarityMatch",
    "TranslationResult",
    "TranslatorResult",
    "UsageStatistics",
    "VisionResponse",
]
