"""ModelDiscovery -- 连接测试与模型列举

按 adapter 类型调用厂商的模型列表接口，用已知规格表补全上下文长度与定价；
接口不可用时回退到内置列表。所有公开方法不抛异常。
"""

import re
from typing import Any

import httpx
import structlog

from llmgate.core.models import ConnectionTestResult, DetectedProvider, DiscoveredModel

from .adapters.anthropic import ANTHROPIC_VERSION

log = structlog.get_logger()

DEFAULT_DISCOVERY_TIMEOUT_S = 10
OPENROUTER_MODELS_URL = "https://openrouter.ai/api/v1/models"
OPENROUTER_MAX_MODELS = 20

# 已配置的 endpoint 可能自带版本路径，发现接口按 host 级地址拼接
_VERSION_SUFFIX_RE = re.compile(r"(/openai)?/v1(beta)?$")
_OPENAI_MODEL_PATTERNS = [re.compile(p) for p in (r"^gpt-5", r"^gpt-4o", r"^o[34]-", r"^gpt-image")]
_GEMINI_PREFIXES = ("gemini-3", "gemini-2.5", "gemini-2.0")
_NUM_CTX_RE = re.compile(r"num_ctx\s+(\d+)", re.IGNORECASE)

# 成本单位: 美分 / 1M token
OPENAI_MODEL_SPECS: dict[str, dict[str, Any]] = {
    "gpt-5.2": {
        "name": "GPT-5.2 Thinking",
        "description": "Flagship model for coding, reasoning, and agentic tasks",
        "capabilities": ["chat", "vision", "tools", "streaming", "reasoning"],
        "context_length": 400000,
        "max_output_tokens": 128000,
        "cost_input": 175,
        "cost_output": 1400,
        "recommended": True,
    },
    "gpt-5.2-pro": {
        "name": "GPT-5.2 Pro",
        "description": "Extended thinking for complex tasks",
        "capabilities": ["chat", "vision", "tools", "streaming", "reasoning"],
        "context_length": 400000,
        "max_output_tokens": 128000,
        "cost_input": 350,
        "cost_output": 2800,
        "recommended": False,
    },
    "gpt-5.2-chat-latest": {
        "name": "GPT-5.2 Instant",
        "description": "Fast responses for interactive use",
        "capabilities": ["chat", "vision", "tools", "streaming"],
        "context_length": 400000,
        "max_output_tokens": 32000,
        "cost_input": 100,
        "cost_output": 400,
        "recommended": True,
    },
    "gpt-5": {
        "name": "GPT-5",
        "description": "Previous generation flagship model",
        "capabilities": ["chat", "vision", "tools", "streaming", "reasoning"],
        "context_length": 200000,
        "max_output_tokens": 64000,
        "cost_input": 150,
        "cost_output": 600,
        "recommended": False,
    },
    "gpt-5-mini": {
        "name": "GPT-5 Mini",
        "description": "Smaller, faster, cost-effective",
        "capabilities": ["chat", "vision", "tools", "streaming"],
        "context_length": 128000,
        "max_output_tokens": 32000,
        "cost_input": 30,
        "cost_output": 120,
        "recommended": True,
    },
    "o4-mini": {
        "name": "O4 Mini",
        "description": "Fast reasoning for math, coding, visual tasks",
        "capabilities": ["chat", "vision", "tools", "reasoning"],
        "context_length": 200000,
        "max_output_tokens": 100000,
        "cost_input": 110,
        "cost_output": 440,
        "recommended": False,
    },
    "gpt-4o": {
        "name": "GPT-4o",
        "description": "Legacy multimodal model",
        "capabilities": ["chat", "vision", "tools", "streaming"],
        "context_length": 128000,
        "max_output_tokens": 16384,
        "cost_input": 250,
        "cost_output": 1000,
        "recommended": False,
    },
}

OPENAI_FALLBACK_MODELS = ["gpt-5.2", "gpt-5.2-chat-latest", "gpt-5-mini", "o4-mini"]

ANTHROPIC_MODELS = [
    DiscoveredModel(
        model_id="claude-opus-4-5",
        name="Claude Opus 4.5",
        description="Most intelligent, best for coding, agents, and computer use",
        capabilities=["chat", "vision", "tools", "streaming"],
        context_length=200000,
        max_output_tokens=32000,
        cost_input=500,
        cost_output=2500,
        recommended=True,
    ),
    DiscoveredModel(
        model_id="claude-sonnet-4-5",
        name="Claude Sonnet 4.5",
        description="Balanced performance and cost, 1M context available",
        capabilities=["chat", "vision", "tools", "streaming"],
        context_length=200000,
        max_output_tokens=32000,
        cost_input=300,
        cost_output=1500,
        recommended=True,
    ),
    DiscoveredModel(
        model_id="claude-haiku-4-5",
        name="Claude Haiku 4.5",
        description="Fast and cost-effective for simple tasks",
        capabilities=["chat", "vision", "tools", "streaming"],
        context_length=200000,
        max_output_tokens=16000,
        cost_input=100,
        cost_output=500,
        recommended=True,
    ),
    DiscoveredModel(
        model_id="claude-opus-4",
        name="Claude Opus 4",
        description="Previous generation Opus model",
        capabilities=["chat", "vision", "tools", "streaming"],
        context_length=200000,
        max_output_tokens=16000,
        cost_input=1500,
        cost_output=7500,
        recommended=False,
    ),
]

GEMINI_MODEL_SPECS: dict[str, dict[str, Any]] = {
    "gemini-3-flash": {
        "name": "Gemini 3 Flash",
        "description": "Frontier intelligence built for speed",
        "capabilities": ["chat", "vision", "tools", "streaming"],
        "cost_input": 50,
        "cost_output": 300,
        "recommended": True,
    },
    "gemini-3-pro": {
        "name": "Gemini 3 Pro",
        "description": "Advanced reasoning for agentic workflows",
        "capabilities": ["chat", "vision", "tools", "streaming", "reasoning"],
        "cost_input": 125,
        "cost_output": 500,
        "recommended": True,
    },
    "gemini-2.5-flash": {
        "name": "Gemini 2.5 Flash",
        "description": "Previous generation fast model",
        "capabilities": ["chat", "vision", "tools", "streaming"],
        "cost_input": 35,
        "cost_output": 150,
        "recommended": False,
    },
    "gemini-2.0-flash": {
        "name": "Gemini 2.0 Flash",
        "description": "Cost-effective general purpose",
        "capabilities": ["chat", "vision", "tools", "streaming"],
        "cost_input": 10,
        "cost_output": 40,
        "recommended": False,
    },
}

# 回退列表: (model_id, context_length, max_output_tokens)
_GEMINI_FALLBACK = [
    ("gemini-3-flash", 1000000, 65536),
    ("gemini-3-pro", 1000000, 65536),
    ("gemini-2.5-flash", 1000000, 8192),
]

MISTRAL_FALLBACK_MODELS = [
    DiscoveredModel(
        model_id="mistral-large-latest",
        name="Mistral Large",
        description="Flagship model for complex tasks",
        capabilities=["chat", "tools", "streaming"],
        context_length=128000,
        max_output_tokens=8192,
        cost_input=200,
        cost_output=600,
        recommended=True,
    ),
    DiscoveredModel(
        model_id="mistral-medium-latest",
        name="Mistral Medium",
        description="Balanced performance",
        capabilities=["chat", "tools", "streaming"],
        context_length=32000,
        max_output_tokens=8192,
        cost_input=100,
        cost_output=300,
        recommended=True,
    ),
]

# Ollama 不暴露最大输出 token，按模型家族估算（按顺序匹配）
_OLLAMA_OUTPUT_LIMITS = [
    ("qwen", 8192),
    ("llama3", 8192),
    ("llama-3", 8192),
    ("mistral", 8192),
    ("mixtral", 8192),
    ("gemma", 8192),
    ("phi", 4096),
    ("codellama", 16384),
    ("deepseek", 8192),
    ("yi", 4096),
]
_OLLAMA_TOOL_FAMILIES = ("qwen", "llama3", "mistral", "mixtral")


def api_base(endpoint: str) -> str:
    """去掉末尾的 '/' 与版本路径（/v1、/v1beta、/openai/v1）"""
    return _VERSION_SUFFIX_RE.sub("", endpoint.rstrip("/"))


def enrich_openai_model(model_id: str) -> DiscoveredModel:
    spec = OPENAI_MODEL_SPECS.get(model_id)
    if spec is None:
        return DiscoveredModel(model_id=model_id, name=model_id, description="OpenAI model")
    return DiscoveredModel(model_id=model_id, **spec)


def enrich_gemini_model(model_id: str, api_data: dict[str, Any]) -> DiscoveredModel:
    spec = GEMINI_MODEL_SPECS.get(model_id, {})
    context_length = api_data.get("inputTokenLimit")
    max_output = api_data.get("outputTokenLimit")
    return DiscoveredModel(
        model_id=model_id,
        name=spec.get("name") or api_data.get("displayName") or model_id,
        description=spec.get("description") or api_data.get("description") or "Gemini model",
        capabilities=spec.get("capabilities") or ["chat", "vision"],
        context_length=context_length if isinstance(context_length, int) else 1000000,
        max_output_tokens=max_output if isinstance(max_output, int) else 8192,
        cost_input=spec.get("cost_input", 0),
        cost_output=spec.get("cost_output", 0),
        recommended=spec.get("recommended", False),
    )


def estimate_ollama_max_output(model_id: str, context_length: int) -> int:
    model_id = model_id.lower()
    for family, limit in _OLLAMA_OUTPUT_LIMITS:
        if family in model_id:
            return limit
    if context_length > 0:
        return min(context_length // 4, 16384)
    return 4096


class ModelDiscovery:
    """按 adapter 类型发现可用模型"""

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        timeout_s: int = DEFAULT_DISCOVERY_TIMEOUT_S,
    ) -> None:
        self._http_client = http_client
        self._owns_client = http_client is None
        self._timeout_s = timeout_s

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient()
        return self._http_client

    async def _get_json(
        self,
        method: str,
        url: str,
        headers: dict[str, str] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> Any:
        """非 200 返回 None；网络错误向上抛出，由调用方回退"""
        response = await self._client().request(
            method,
            url,
            headers=headers or {},
            json=json_body,
            timeout=self._timeout_s,
        )
        if response.status_code != 200:
            return None
        return response.json()

    async def test_connection(self, provider: DetectedProvider, api_key: str) -> ConnectionTestResult:
        """向厂商发送一次轻量请求验证凭据

        注意: 此方法不抛出异常，所有异常内部捕获并返回失败结果。
        """
        base = api_base(provider.endpoint)
        match provider.adapter_type:
            case "anthropic":
                url = f"{base}/v1/messages"
                headers = {"x-api-key": api_key, "anthropic-version": ANTHROPIC_VERSION}
            case "gemini":
                url = f"{base}/v1/models"
                headers = {"x-goog-api-key": api_key}
            case "ollama":
                url = f"{base}/api/tags"
                headers = {}
            case _:
                url = f"{base}/v1/models"
                headers = {"Authorization": f"Bearer {api_key}"}

        try:
            response = await self._client().request(
                "GET", url, headers=headers, timeout=self._timeout_s
            )
        except Exception as e:
            log.warning("discovery_connection_failed", adapter_type=provider.adapter_type, error=str(e))
            return ConnectionTestResult(success=False, message=f"Connection error: {e}")

        status = response.status_code
        if 200 <= status < 300:
            return ConnectionTestResult(
                success=True,
                message=f"Connected to {provider.suggested_name} successfully",
            )
        if status == 401:
            return ConnectionTestResult(
                success=False,
                message="Authentication failed. Please check your API key.",
            )
        return ConnectionTestResult(
            success=False,
            message=f"Connection failed with status code {status}",
        )

    async def discover(self, provider: DetectedProvider, api_key: str) -> list[DiscoveredModel]:
        """列举 provider 的可用模型"""
        endpoint = api_base(provider.endpoint)
        match provider.adapter_type:
            case "openai":
                return await self._discover_openai(endpoint, api_key)
            case "anthropic":
                return list(ANTHROPIC_MODELS)
            case "gemini":
                return await self._discover_gemini(endpoint, api_key)
            case "openrouter":
                return await self._discover_openrouter(api_key)
            case "ollama":
                return await self._discover_ollama(endpoint)
            case "mistral":
                return await self._discover_mistral(endpoint, api_key)
            case "groq":
                return await self._discover_groq(endpoint, api_key)
            case _:
                return [
                    DiscoveredModel(
                        model_id="default",
                        name="Default Model",
                        description=f"Default model for {provider.adapter_type}",
                        capabilities=["chat"],
                        recommended=True,
                    )
                ]

    @staticmethod
    def _fallback(adapter_type: str, models: list[DiscoveredModel], reason: str) -> list[DiscoveredModel]:
        log.info("model_discovery_fallback", adapter_type=adapter_type, reason=reason)
        return models

    async def _discover_openai(self, endpoint: str, api_key: str) -> list[DiscoveredModel]:
        fallback = [enrich_openai_model(model_id) for model_id in OPENAI_FALLBACK_MODELS]
        try:
            data = await self._get_json(
                "GET", f"{endpoint}/v1/models", headers={"Authorization": f"Bearer {api_key}"}
            )
        except Exception as e:
            return self._fallback("openai", fallback, str(e))
        if not isinstance(data, dict) or not isinstance(data.get("data"), list):
            return self._fallback("openai", fallback, "unexpected response")

        models = [
            enrich_openai_model(item["id"])
            for item in data["data"]
            if isinstance(item, dict)
            and isinstance(item.get("id"), str)
            and any(pattern.match(item["id"]) for pattern in _OPENAI_MODEL_PATTERNS)
        ]
        if not models:
            return self._fallback("openai", fallback, "no relevant models")
        # 推荐模型排在前面（稳定排序）
        return sorted(models, key=lambda model: not model.recommended)

    async def _discover_gemini(self, endpoint: str, api_key: str) -> list[DiscoveredModel]:
        fallback = [
            DiscoveredModel(
                model_id=model_id,
                context_length=context_length,
                max_output_tokens=max_output,
                **GEMINI_MODEL_SPECS[model_id],
            )
            for model_id, context_length, max_output in _GEMINI_FALLBACK
        ]
        try:
            data = await self._get_json(
                "GET", f"{endpoint}/v1/models", headers={"x-goog-api-key": api_key}
            )
        except Exception as e:
            return self._fallback("gemini", fallback, str(e))
        if not isinstance(data, dict) or not isinstance(data.get("models"), list):
            return self._fallback("gemini", fallback, "unexpected response")

        models = []
        for item in data["models"]:
            if not isinstance(item, dict) or not isinstance(item.get("name"), str):
                continue
            model_id = item["name"].replace("models/", "")
            if model_id.startswith(_GEMINI_PREFIXES):
                models.append(enrich_gemini_model(model_id, item))
        return models or self._fallback("gemini", fallback, "no relevant models")

    async def _discover_ollama(self, endpoint: str) -> list[DiscoveredModel]:
        try:
            data = await self._get_json("GET", f"{endpoint}/api/tags")
        except Exception as e:
            return self._fallback("ollama", [], str(e))
        if not isinstance(data, dict) or not isinstance(data.get("models"), list):
            return []

        models = []
        for item in data["models"]:
            if not isinstance(item, dict) or not isinstance(item.get("name"), str) or not item["name"]:
                continue
            model_id = item["name"]
            details = await self._ollama_model_details(endpoint, model_id)
            models.append(
                DiscoveredModel(
                    model_id=model_id,
                    name=model_id,
                    description="Local Ollama model",
                    recommended=True,
                    **details,
                )
            )
        return models

    async def _ollama_model_details(self, endpoint: str, model_id: str) -> dict[str, Any]:
        """POST /api/show 获取上下文长度并推断能力"""
        defaults: dict[str, Any] = {
            "capabilities": ["chat"],
            "context_length": 0,
            "max_output_tokens": 0,
        }
        try:
            data = await self._get_json("POST", f"{endpoint}/api/show", json_body={"name": model_id})
        except Exception as e:
            log.debug("ollama_model_details_failed", model=model_id, error=str(e))
            return defaults
        if not isinstance(data, dict):
            return defaults

        context_length = 0
        model_info = data.get("model_info")
        if isinstance(model_info, dict):
            for key, value in model_info.items():
                if "context" in str(key).lower() and isinstance(value, int | float):
                    context_length = int(value)
                    break
        parameters = data.get("parameters")
        if context_length == 0 and isinstance(parameters, str):
            if match := _NUM_CTX_RE.search(parameters):
                context_length = int(match.group(1))

        lowered = model_id.lower()
        capabilities = ["chat"]
        if "vision" in lowered or "llava" in lowered:
            capabilities.append("vision")
        if any(family in lowered for family in _OLLAMA_TOOL_FAMILIES):
            capabilities.append("tools")

        return {
            "capabilities": capabilities,
            "context_length": context_length,
            "max_output_tokens": estimate_ollama_max_output(lowered, context_length),
        }

    async def _discover_openrouter(self, api_key: str) -> list[DiscoveredModel]:
        try:
            data = await self._get_json(
                "GET", OPENROUTER_MODELS_URL, headers={"Authorization": f"Bearer {api_key}"}
            )
        except Exception as e:
            return self._fallback("openrouter", [], str(e))
        if not isinstance(data, dict) or not isinstance(data.get("data"), list):
            return []

        models = []
        for item in data["data"]:
            if not isinstance(item, dict) or not isinstance(item.get("id"), str) or not item["id"]:
                continue
            pricing = item.get("pricing") if isinstance(item.get("pricing"), dict) else {}
            models.append(
                DiscoveredModel(
                    model_id=item["id"],
                    name=item.get("name") or item["id"],
                    description=item.get("description") or "OpenRouter model",
                    capabilities=["chat"],
                    context_length=_as_int(item.get("context_length")),
                    # 美元 / token -> 美分 / 1M token
                    cost_input=round(_as_float(pricing.get("prompt")) * 100_000_000),
                    cost_output=round(_as_float(pricing.get("completion")) * 100_000_000),
                )
            )
        return models[:OPENROUTER_MAX_MODELS]

    async def _discover_mistral(self, endpoint: str, api_key: str) -> list[DiscoveredModel]:
        fallback = list(MISTRAL_FALLBACK_MODELS)
        try:
            data = await self._get_json(
                "GET", f"{endpoint}/v1/models", headers={"Authorization": f"Bearer {api_key}"}
            )
        except Exception as e:
            return self._fallback("mistral", fallback, str(e))
        if not isinstance(data, dict) or not isinstance(data.get("data"), list):
            return self._fallback("mistral", fallback, "unexpected response")

        models = [
            DiscoveredModel(
                model_id=item["id"],
                name=item["id"],
                description="Mistral AI model",
                capabilities=["chat", "tools"],
                recommended="large" in item["id"] or "medium" in item["id"],
            )
            for item in data["data"]
            if isinstance(item, dict) and isinstance(item.get("id"), str) and item["id"]
        ]
        return models or self._fallback("mistral", fallback, "no models")

    async def _discover_groq(self, endpoint: str, api_key: str) -> list[DiscoveredModel]:
        try:
            data = await self._get_json(
                "GET", f"{endpoint}/openai/v1/models", headers={"Authorization": f"Bearer {api_key}"}
            )
        except Exception as e:
            return self._fallback("groq", [], str(e))
        if not isinstance(data, dict) or not isinstance(data.get("data"), list):
            return []

        return [
            DiscoveredModel(
                model_id=item["id"],
                name=item["id"],
                description="Groq-accelerated model",
                capabilities=["chat"],
                context_length=_as_int(item.get("context_window")),
                recommended=True,
            )
            for item in data["data"]
            if isinstance(item, dict) and isinstance(item.get("id"), str) and item["id"]
        ]

    async def aclose(self) -> None:
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None


def _as_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _as_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0
