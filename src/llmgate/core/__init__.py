"""llmgate 核心：规范化类型、选项、异常、向量运算与全局配置"""

from .config import GatewayConfig, load_gateway_config
from .cost import CostCalculator
from .exceptions import (
    InvalidArgumentError,
    LlmGateError,
    ProviderConfigurationError,
    ProviderConnectionError,
    ProviderError,
    ProviderResponseError,
    QuotaExceededError,
    ResponseDecodeError,
    ServiceUnavailableError,
    UnsupportedFeatureError,
)
from .logging_config import call_context, setup_logging
from .protocols import ConfigurationAwareAccounting, EmbeddingCache, Translator, UsageAccounting

__all__ = [
    # 配置
    "GatewayConfig",
    "load_gateway_config",
    "setup_logging",
    "call_context",
    "CostCalculator",
    # 异常
    "InvalidArgumentError",
    "LlmGateError",
    "ProviderConfigurationError",
    "ProviderConnectionError",
    "ProviderError",
    "ProviderResponseError",
    "QuotaExceededError",
    "ResponseDecodeError",
    "ServiceUnavailableError",
    "UnsupportedFeatureError",
    # 接口
    "ConfigurationAwareAccounting",
    "EmbeddingCache",
    "Translator",
    "UsageAccounting",
]
