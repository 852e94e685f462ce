"""外部提供的配置实体

Provider / Model / LlmConfiguration 由调用方（持久化层）加载后传入，
llmgate 内部只读不写。DiscoveredModel / DetectedProvider 是模型发现的输出。
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, SecretStr

from .enums import AdapterType, ModelCapability, ModelSelectionMode
from .options import ChatOptions


class Provider(BaseModel):
    """LLM 厂商端点 + 凭据"""

    model_config = ConfigDict(frozen=True)

    identifier: str = Field(min_length=1, description="唯一标识，registry 以此缓存 adapter")
    name: str = ""
    adapter_type: AdapterType = AdapterType.OPENAI
    endpoint_url: str = Field(default="", description="为空时使用 adapter 类型的默认地址")
    api_key: SecretStr = Field(default=SecretStr(""))
    organization_id: str = ""
    api_timeout: int | None = Field(
        default=None, ge=1, description="请求超时（秒），为空时用全局配置"
    )
    max_retries: int | None = Field(
        default=None, ge=1, description="最大尝试次数（含首次），为空时用全局配置"
    )
    options: dict[str, Any] = Field(default_factory=dict, description="adapter 附加配置")
    is_active: bool = True
    priority: int = Field(default=50, description="选择默认 provider 时的优先级，越大越优先")

    @property
    def effective_endpoint_url(self) -> str:
        return self.endpoint_url or self.adapter_type.default_endpoint

    @property
    def has_credentials(self) -> bool:
        if not self.adapter_type.requires_api_key:
            return bool(self.effective_endpoint_url)
        return bool(self.api_key.get_secret_value())


class Model(BaseModel):
    """厂商模型元数据"""

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    identifier: str = Field(min_length=1)
    name: str = ""
    model_id: str = Field(min_length=1, description="厂商侧模型 ID，如 gpt-5.2")
    provider: Provider | None = None
    context_length: int = Field(default=0, ge=0)
    max_output_tokens: int = Field(default=0, ge=0)
    capabilities: list[ModelCapability] = Field(
        default_factory=lambda: [ModelCapability.CHAT],
    )
    cost_input: float = Field(default=0.0, ge=0, description="USD / 1M 输入 token")
    cost_output: float = Field(default=0.0, ge=0, description="USD / 1M 输出 token")
    is_active: bool = True
    is_default: bool = False
    sorting: int = Field(default=0, description="同等条件下的排序，越小越靠前")

    def has_capability(self, capability: ModelCapability | str) -> bool:
        return capability in self.capabilities

    @property
    def has_pricing(self) -> bool:
        return self.cost_input > 0 or self.cost_output > 0


class ModelSelectionCriteria(BaseModel):
    """按条件动态选择模型

    空列表 / 0 表示该项不限制。max_cost_input 与 Model.cost_input 同单位（USD / 1M token），
    成本未知（0）的模型不会因成本上限被排除。
    """

    model_config = ConfigDict(frozen=True)

    capabilities: list[ModelCapability] = Field(default_factory=list)
    adapter_types: list[AdapterType] = Field(default_factory=list)
    min_context_length: int = Field(default=0, ge=0)
    max_cost_input: float = Field(default=0.0, ge=0)
    prefer_lowest_cost: bool = False

    @property
    def has_criteria(self) -> bool:
        return bool(
            self.capabilities
            or self.adapter_types
            or self.min_context_length > 0
            or self.max_cost_input > 0
        )

    def requires_capability(self, capability: ModelCapability | str) -> bool:
        return capability in self.capabilities

    def allows_adapter_type(self, adapter_type: AdapterType | str) -> bool:
        return not self.adapter_types or adapter_type in self.adapter_types

    def matches(self, model: Model) -> bool:
        if not all(model.has_capability(capability) for capability in self.capabilities):
            return False
        if self.adapter_types and (
            model.provider is None or not self.allows_adapter_type(model.provider.adapter_type)
        ):
            return False
        # 上下文长度未知（0）的模型不满足最小长度要求
        if self.min_context_length > 0 and model.context_length < self.min_context_length:
            return False
        if self.max_cost_input > 0 and model.cost_input > self.max_cost_input:
            return False
        return True


class LlmConfiguration(BaseModel):
    """调用配置：模型引用 + 默认参数 + 每日配额

    配额字段为 0 表示不限制。计数器存放在外部 accounting 实现中。
    """

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    identifier: str = Field(min_length=1)
    name: str = ""
    model: Model | None = None
    system_prompt: str = ""
    temperature: float = Field(default=0.7, ge=0, le=2)
    max_tokens: int = Field(default=1000, ge=1)
    top_p: float = Field(default=1.0, ge=0, le=1)
    frequency_penalty: float = Field(default=0.0, ge=-2, le=2)
    presence_penalty: float = Field(default=0.0, ge=-2, le=2)
    max_requests_per_day: int = Field(default=0, ge=0)
    max_tokens_per_day: int = Field(default=0, ge=0)
    max_cost_per_day: float = Field(default=0.0, ge=0, description="USD")
    model_selection_mode: ModelSelectionMode = ModelSelectionMode.FIXED
    model_selection_criteria: ModelSelectionCriteria = Field(default_factory=ModelSelectionCriteria)
    is_active: bool = True
    is_default: bool = False

    @property
    def uses_criteria_selection(self) -> bool:
        return self.model_selection_mode == ModelSelectionMode.CRITERIA

    @property
    def has_limits(self) -> bool:
        return (
            self.max_requests_per_day > 0
            or self.max_tokens_per_day > 0
            or self.max_cost_per_day > 0
        )

    def to_chat_options(self) -> ChatOptions:
        """配置中的默认参数，作为调用方未设置字段的兜底"""
        return ChatOptions(
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            top_p=self.top_p,
            frequency_penalty=self.frequency_penalty,
            presence_penalty=self.presence_penalty,
            system_prompt=self.system_prompt or None,
            model=self.model.model_id if self.model else None,
        )


class DiscoveredModel(BaseModel):
    """模型发现结果 -- 成本单位为美分 / 1M token"""

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    model_id: str
    name: str
    description: str = ""
    capabilities: list[str] = Field(default_factory=lambda: ["chat"])
    context_length: int = 0
    max_output_tokens: int = 0
    cost_input: int = 0
    cost_output: int = 0
    recommended: bool = False


class DetectedProvider(BaseModel):
    """ProviderDetector 从端点 URL 推断出的 provider 描述"""

    model_config = ConfigDict(frozen=True)

    adapter_type: str
    suggested_name: str
    endpoint: str
    confidence: float = Field(default=1.0, ge=0, le=1)
    metadata: dict[str, Any] = Field(default_factory=dict)
