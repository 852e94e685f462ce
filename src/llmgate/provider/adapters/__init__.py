"""厂商协议 adapter"""

from .anthropic import AnthropicProvider
from .base import BaseProvider
from .gemini import GeminiProvider
from .ollama import OllamaProvider
from .openai import PROFILES, OpenAICompatibleProvider, ProviderProfile

__all__ = [
    "AnthropicProvider",
    "BaseProvider",
    "GeminiProvider",
    "OllamaProvider",
    "OpenAICompatibleProvider",
    "PROFILES",
    "ProviderProfile",
]
