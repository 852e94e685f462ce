"""llmgate provider 层：HTTP 调用、厂商 adapter、registry、模型发现"""

from .adapters import (
    PROFILES,
    AnthropicProvider,
    BaseProvider,
    GeminiProvider,
    OllamaProvider,
    OpenAICompatibleProvider,
    ProviderProfile,
)
from .detector import ProviderDetector
from .discovery import ModelDiscovery
from .http import ProviderHttpClient, ProviderSettings
from .registry import ProviderAdapterRegistry

__all__ = [
    # adapter
    "AnthropicProvider",
    "BaseProvider",
    "GeminiProvider",
    "OllamaProvider",
    "OpenAICompatibleProvider",
    "PROFILES",
    "ProviderProfile",
    # HTTP
    "ProviderHttpClient",
    "ProviderSettings",
    # registry / 发现
    "ModelDiscovery",
    "ProviderAdapterRegistry",
    "ProviderDetector",
]
