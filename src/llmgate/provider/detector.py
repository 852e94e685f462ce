"""ProviderDetector -- 根据端点 URL 推断 adapter 类型"""

import re
from urllib.parse import urlsplit

from llmgate.core.models import DetectedProvider

OLLAMA_DEFAULT_PORT = 11434

# 按顺序匹配 host 子串: pattern -> (adapter_type, 显示名, 置信度)
DETECTION_PATTERNS: dict[str, tuple[str, str, float]] = {
    "api.openai.com": ("openai", "OpenAI", 1.0),
    "openai.com": ("openai", "OpenAI", 0.9),
    "api.anthropic.com": ("anthropic", "Anthropic", 1.0),
    "anthropic.com": ("anthropic", "Anthropic", 0.9),
    "generativelanguage.googleapis.com": ("gemini", "Google Gemini", 1.0),
    "aiplatform.googleapis.com": ("gemini", "Google Vertex AI", 0.95),
    "openrouter.ai": ("openrouter", "OpenRouter", 1.0),
    "api.mistral.ai": ("mistral", "Mistral AI", 1.0),
    "mistral.ai": ("mistral", "Mistral AI", 0.9),
    "api.groq.com": ("groq", "Groq", 1.0),
    "groq.com": ("groq", "Groq", 0.9),
    "api.together.xyz": ("together", "Together AI", 1.0),
    "api.fireworks.ai": ("fireworks", "Fireworks AI", 1.0),
    "api.perplexity.ai": ("perplexity", "Perplexity", 1.0),
}

SUPPORTED_ADAPTER_TYPES: dict[str, str] = {
    "openai": "OpenAI",
    "anthropic": "Anthropic",
    "gemini": "Google Gemini",
    "openrouter": "OpenRouter",
    "mistral": "Mistral AI",
    "groq": "Groq",
    "ollama": "Ollama (Local)",
    "azure_openai": "Azure OpenAI",
    "together": "Together AI",
    "fireworks": "Fireworks AI",
    "perplexity": "Perplexity",
    "custom": "Custom/Other",
}

_AZURE_HOST_RE = re.compile(r"^([^.]+)\.openai\.azure\.com$")
_OPENAI_COMPATIBLE_PATHS = ("/v1/chat/completions", "/v1/completions", "/v1/models", "/v1/embeddings")


def normalize_endpoint(endpoint: str) -> str:
    """补全 scheme（本地地址用 http，其余 https）并去掉末尾 '/'"""
    endpoint = endpoint.strip()
    if not endpoint.startswith(("http://", "https://")):
        if endpoint.startswith(("localhost", "127.0.0.1")):
            endpoint = f"http://{endpoint}"
        else:
            endpoint = f"https://{endpoint}"
    return endpoint.rstrip("/")


def _looks_openai_compatible(endpoint: str, path: str) -> bool:
    if any(known in endpoint for known in _OPENAI_COMPATIBLE_PATHS):
        return True
    if path.rstrip("/").endswith("/v1"):
        return True
    return "openai" in endpoint.lower()


class ProviderDetector:
    """纯函数式探测：只解析 URL，不发起网络请求"""

    def detect(self, endpoint: str) -> DetectedProvider:
        endpoint = normalize_endpoint(endpoint)
        parts = urlsplit(endpoint)
        host = (parts.hostname or "").lower()
        try:
            port = parts.port
        except ValueError:
            port = None

        if "ollama" in host or port == OLLAMA_DEFAULT_PORT:
            return DetectedProvider(
                adapter_type="ollama",
                suggested_name="Local Ollama",
                endpoint=endpoint,
                confidence=1.0,
                metadata={"local": True},
            )

        if host.endswith(".openai.azure.com"):
            match = _AZURE_HOST_RE.match(host)
            resource_name = match.group(1) if match else ""
            return DetectedProvider(
                adapter_type="azure_openai",
                suggested_name=f"Azure OpenAI ({resource_name})" if resource_name else "Azure OpenAI",
                endpoint=endpoint,
                confidence=1.0,
                metadata={"resource_name": resource_name},
            )

        for pattern, (adapter_type, suggested_name, confidence) in DETECTION_PATTERNS.items():
            if pattern in host:
                return DetectedProvider(
                    adapter_type=adapter_type,
                    suggested_name=suggested_name,
                    endpoint=endpoint,
                    confidence=confidence,
                )

        if _looks_openai_compatible(endpoint, parts.path):
            return DetectedProvider(
                adapter_type="openai",
                suggested_name=f"OpenAI-Compatible ({host})",
                endpoint=endpoint,
                confidence=0.6,
                metadata={"openai_compatible": True},
            )

        return DetectedProvider(
            adapter_type="openai",
            suggested_name=f"Custom Provider ({host})",
            endpoint=endpoint,
            confidence=0.3,
            metadata={"unknown": True, "openai_compatible": True},
        )

    @staticmethod
    def get_supported_adapter_types() -> dict[str, str]:
        return dict(SUPPORTED_ADAPTER_TYPES)
