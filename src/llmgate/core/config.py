"""GatewayConfig -- 全局配置加载

从环境变量加载，不硬编码 provider / 模型名。
"""

import os

import structlog
from pydantic import BaseModel, Field

log = structlog.get_logger()


class GatewayConfig(BaseModel):
    """llmgate 全局配置 -- 从环境变量加载

    环境变量:
        LLMGATE_DEFAULT_PROVIDER: 默认 provider 标识
        LLMGATE_TIMEOUT_S: HTTP 请求超时（秒，默认 30）
        LLMGATE_MAX_RETRIES: 最大尝试次数（默认 3）
        LLMGATE_RETRY_BACKOFF_S: 重试退避基数（秒，默认 0.1）
        LLMGATE_EMBEDDING_CACHE_TTL_S: embedding 缓存 TTL（默认 86400）
        LLMGATE_COMPLETION_CACHE_TTL_S: completion 缓存 TTL（默认 3600）
        LLMGATE_CACHE_MAX_ENTRIES: 缓存最大条目数（默认 1000）
    """

    default_provider: str | None = Field(
        default=None,
        description="未显式指定 provider 时使用的 provider 标识",
    )
    request_timeout_s: int = Field(default=30, ge=1, description="HTTP 请求超时（秒）")
    max_retries: int = Field(default=3, ge=1, description="最大尝试次数（含首次）")
    retry_backoff_s: float = Field(default=0.1, ge=0, description="指数退避基数（秒）")
    embedding_cache_ttl_s: int = Field(default=86400, ge=0)
    completion_cache_ttl_s: int = Field(default=3600, ge=0)
    cache_max_entries: int = Field(default=1000, ge=1)


# 整数类配置: 环境变量 -> (字段名, 默认值, 最小值)
_INT_ENV_FIELDS: dict[str, tuple[str, int, int]] = {
    "LLMGATE_TIMEOUT_S": ("request_timeout_s", 30, 1),
    "LLMGATE_MAX_RETRIES": ("max_retries", 3, 1),
    "LLMGATE_EMBEDDING_CACHE_TTL_S": ("embedding_cache_ttl_s", 86400, 0),
    "LLMGATE_COMPLETION_CACHE_TTL_S": ("completion_cache_ttl_s", 3600, 0),
    "LLMGATE_CACHE_MAX_ENTRIES": ("cache_max_entries", 1000, 1),
}


def load_gateway_config() -> GatewayConfig:
    """从环境变量加载全局配置

    非法数值记录 warning 并使用默认值，不阻塞启动。

    Returns:
        GatewayConfig 实例
    """
    kwargs: dict = {}

    if val := os.environ.get("LLMGATE_DEFAULT_PROVIDER"):
        kwargs["default_provider"] = val

    for env_var, (field_name, fallback, minimum) in _INT_ENV_FIELDS.items():
        if val := os.environ.get(env_var):
            try:
                parsed = int(val)
            except ValueError:
                parsed = None
            if parsed is None or parsed < minimum:
                log.warning(
                    "invalid_int_config",
                    env_var=env_var,
                    value=val,
                    minimum=minimum,
                    fallback=fallback,
                )
                continue
            kwargs[field_name] = parsed

    if val := os.environ.get("LLMGATE_RETRY_BACKOFF_S"):
        try:
            backoff = float(val)
        except ValueError:
            backoff = -1.0
        if backoff >= 0:
            kwargs["retry_backoff_s"] = backoff
        else:
            log.warning(
                "invalid_float_config",
                env_var="LLMGATE_RETRY_BACKOFF_S",
                value=val,
                fallback=0.1,
            )

    return GatewayConfig(**kwargs)
