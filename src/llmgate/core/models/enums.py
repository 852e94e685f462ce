"""枚举定义

AdapterType（厂商协议标签）、ModelCapability（能力标记），
以及各 Options 使用的封闭取值集合。
"""

from enum import StrEnum


class AdapterType(StrEnum):
    """Provider adapter 类型标签 -- registry 按此分派到具体 adapter"""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GEMINI = "gemini"
    OPENROUTER = "openrouter"
    MISTRAL = "mistral"
    GROQ = "groq"
    OLLAMA = "ollama"
    AZURE_OPENAI = "azure_openai"
    CUSTOM = "custom"

    @property
    def label(self) -> str:
        return _ADAPTER_LABELS[self]

    @property
    def default_endpoint(self) -> str:
        """厂商默认 API 地址；azure_openai / custom 必须显式配置"""
        return _DEFAULT_ENDPOINTS[self]

    @property
    def requires_api_key(self) -> bool:
        return self is not AdapterType.OLLAMA


_ADAPTER_LABELS: dict[AdapterType, str] = {
    AdapterType.OPENAI: "OpenAI",
    AdapterType.ANTHROPIC: "Anthropic (Claude)",
    AdapterType.GEMINI: "Google Gemini",
    AdapterType.OPENROUTER: "OpenRouter",
    AdapterType.MISTRAL: "Mistral AI",
    AdapterType.GROQ: "Groq",
    AdapterType.OLLAMA: "Ollama (Local)",
    AdapterType.AZURE_OPENAI: "Azure OpenAI",
    AdapterType.CUSTOM: "Custom (OpenAI-compatible)",
}

_DEFAULT_ENDPOINTS: dict[AdapterType, str] = {
    AdapterType.OPENAI: "https://api.openai.com/v1",
    AdapterType.ANTHROPIC: "https://api.anthropic.com/v1",
    AdapterType.GEMINI: "https://generativelanguage.googleapis.com/v1beta",
    AdapterType.OPENROUTER: "https://openrouter.ai/api/v1",
    AdapterType.MISTRAL: "https://api.mistral.ai/v1",
    AdapterType.GROQ: "https://api.groq.com/openai/v1",
    AdapterType.OLLAMA: "http://localhost:11434",
    AdapterType.AZURE_OPENAI: "",
    AdapterType.CUSTOM: "",
}


class ModelCapability(StrEnum):
    """模型 / adapter 能力"""

    CHAT = "chat"
    COMPLETION = "completion"
    EMBEDDINGS = "embeddings"
    VISION = "vision"
    STREAMING = "streaming"
    TOOLS = "tools"
    JSON_MODE = "json_mode"
    AUDIO = "audio"


class ResponseFormat(StrEnum):
    TEXT = "text"
    JSON = "json"
    MARKDOWN = "markdown"


class DetailLevel(StrEnum):
    """Vision 图像细节级别"""

    AUTO = "auto"
    LOW = "low"
    HIGH = "high"


class Formality(StrEnum):
    DEFAULT = "default"
    FORMAL = "formal"
    INFORMAL = "informal"


class TranslationDomain(StrEnum):
    GENERAL = "general"
    TECHNICAL = "technical"
    MEDICAL = "medical"
    LEGAL = "legal"
    MARKETING = "marketing"


class ToolChoice(StrEnum):
    """工具调用策略"""

    AUTO = "auto"
    NONE = "none"
    REQUIRED = "required"


class ModelSelectionMode(StrEnum):
    """LlmConfiguration 的模型选择方式"""

    FIXED = "fixed"
    CRITERIA = "criteria"
