"""llmgate service 层：统一入口、feature service、缓存与用量记账"""

from .cache import CacheManager
from .completion import CompletionService
from .embedding import EmbeddingService
from .manager import LlmServiceManager
from .model_selection import ModelSelector
from .translation import TranslationService
from .translators import DeepLTranslator, LlmTranslator, TranslatorRegistry
from .usage import InMemoryUsageAccounting
from .vision import VisionService

__all__ = [
    "LlmServiceManager",
    "ModelSelector",
    # feature service
    "CompletionService",
    "EmbeddingService",
    "TranslationService",
    "VisionService",
    # 翻译后端
    "DeepLTranslator",
    "LlmTranslator",
    "TranslatorRegistry",
    # 缓存 / 记账
    "CacheManager",
    "InMemoryUsageAccounting",
]
