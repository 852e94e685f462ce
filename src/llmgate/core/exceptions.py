"""llmgate 异常体系

三类错误必须可区分：参数校验错误、Provider 调用错误、配额错误。
调用方按异常类型分支处理，而不是匹配错误消息。
"""


class LlmGateError(Exception):
    """llmgate 基础异常"""


class InvalidArgumentError(LlmGateError):
    """参数校验失败 -- 在任何网络调用之前抛出

    不继承 ValueError：在 pydantic 校验器中抛出时不会被包装为
    pydantic.ValidationError，调用方可以直接捕获。
    """

    def __init__(self, message: str, field: str = "") -> None:
        """
        Args:
            message: 错误描述
            field: 出错的字段名（可选）
        """
        super().__init__(message)
        self.field = field


class ResponseDecodeError(InvalidArgumentError):
    """模型返回内容无法按要求解码（如 complete_json 收到非 JSON 对象）"""


class ProviderError(LlmGateError):
    """Provider 调用基础异常"""

    def __init__(
        self,
        message: str,
        recoverable: bool = True,
        provider: str = "",
    ) -> None:
        """
        Args:
            message: 错误描述（尽量保留厂商返回的原始消息）
            recoverable: 是否可通过重试或切换 provider 恢复
            provider: 出错的 provider 标识
        """
        super().__init__(message)
        self.recoverable = recoverable
        self.provider = provider


class ProviderConnectionError(ProviderError):
    """网络失败、5xx 或重试耗尽"""

    def __init__(
        self,
        message: str,
        provider: str = "",
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message, recoverable=True, provider=provider)
        self.original_error = original_error


class ProviderResponseError(ProviderError):
    """厂商返回 4xx 或无法解析的响应体"""

    def __init__(
        self,
        message: str,
        status_code: int = 0,
        provider: str = "",
    ) -> None:
        super().__init__(message, recoverable=False, provider=provider)
        self.status_code = status_code


class ProviderConfigurationError(ProviderError):
    """Provider 配置不完整（缺少凭据、找不到 provider、模型未绑定 provider 等）"""

    def __init__(self, message: str, provider: str = "") -> None:
        super().__init__(message, recoverable=False, provider=provider)


class UnsupportedFeatureError(ProviderError):
    """Adapter 不支持请求的能力（如 Anthropic 不支持 embeddings）"""

    def __init__(self, message: str, provider: str = "", feature: str = "") -> None:
        super().__init__(message, recoverable=False, provider=provider)
        self.feature = feature


class QuotaExceededError(LlmGateError):
    """配置的每日请求数 / token / 成本上限已达到

    在调用 adapter 之前抛出，与 ProviderError 互不继承。
    """

    def __init__(self, configuration_id: str, reason: str) -> None:
        """
        Args:
            configuration_id: 触发配额的 LlmConfiguration 标识
            reason: 人类可读的超限原因
        """
        super().__init__(f"Quota exceeded for configuration '{configuration_id}': {reason}")
        self.configuration_id = configuration_id
        self.reason = reason


class ServiceUnavailableError(LlmGateError):
    """请求的翻译后端未注册或未配置"""

    def __init__(self, message: str, service: str = "", identifier: str = "") -> None:
        super().__init__(message)
        self.service = service
        self.identifier = identifier

    @classmethod
    def translator_not_found(cls, identifier: str) -> "ServiceUnavailableError":
        return cls(
            f'Translator "{identifier}" is not registered',
            service="translation",
            identifier=identifier,
        )

    @classmethod
    def not_configured(cls, service: str, identifier: str) -> "ServiceUnavailableError":
        return cls(
            f'{service} backend "{identifier}" is not configured',
            service=service,
            identifier=identifier,
        )
