"""GatewayConfig + load_gateway_config 单元测试

验证环境变量映射、默认值、非法值回退。
"""

import pytest
from llmgate.core.config import GatewayConfig, load_gateway_config
from pydantic import ValidationError

_ENV_VARS = (
    "LLMGATE_DEFAULT_PROVIDER",
    "LLMGATE_TIMEOUT_S",
    "LLMGATE_MAX_RETRIES",
    "LLMGATE_RETRY_BACKOFF_S",
    "LLMGATE_EMBEDDING_CACHE_TTL_S",
    "LLMGATE_COMPLETION_CACHE_TTL_S",
    "LLMGATE_CACHE_MAX_ENTRIES",
)


@pytest.fixture
def clean_env(monkeypatch):
    """清除所有 LLMGATE_* 环境变量"""
    for env_var in _ENV_VARS:
        monkeypatch.delenv(env_var, raising=False)
    return monkeypatch


class TestGatewayConfig:
    """GatewayConfig 数据模型测试"""

    def test_default_values(self):
        config = GatewayConfig()
        assert config.default_provider is None
        assert config.request_timeout_s == 30
        assert config.max_retries == 3
        assert config.retry_backoff_s == 0.1
        assert config.embedding_cache_ttl_s == 86400
        assert config.completion_cache_ttl_s == 3600
        assert config.cache_max_entries == 1000

    def test_timeout_min_value(self):
        """超时最小值为 1"""
        with pytest.raises(ValidationError):
            GatewayConfig(request_timeout_s=0)

    def test_negative_backoff_rejected(self):
        with pytest.raises(ValidationError):
            GatewayConfig(retry_backoff_s=-1)


class TestLoadGatewayConfig:
    """load_gateway_config() 环境变量映射测试"""

    def test_default_when_no_env(self, clean_env):
        config = load_gateway_config()
        assert config == GatewayConfig()

    def test_reads_env(self, clean_env):
        clean_env.setenv("LLMGATE_DEFAULT_PROVIDER", "openai-main")
        clean_env.setenv("LLMGATE_TIMEOUT_S", "60")
        clean_env.setenv("LLMGATE_MAX_RETRIES", "5")
        clean_env.setenv("LLMGATE_RETRY_BACKOFF_S", "0.5")
        clean_env.setenv("LLMGATE_CACHE_MAX_ENTRIES", "50")

        config = load_gateway_config()
        assert config.default_provider == "openai-main"
        assert config.request_timeout_s == 60
        assert config.max_retries == 5
        assert config.retry_backoff_s == 0.5
        assert config.cache_max_entries == 50

    def test_invalid_int_falls_back(self, clean_env):
        """非法整数不阻塞启动，使用默认值"""
        clean_env.setenv("LLMGATE_TIMEOUT_S", "abc")
        config = load_gateway_config()
        assert config.request_timeout_s == 30

    def test_invalid_float_falls_back(self, clean_env):
        clean_env.setenv("LLMGATE_RETRY_BACKOFF_S", "slow")
        config = load_gateway_config()
        assert config.retry_backoff_s == 0.1

    @pytest.mark.parametrize(
        ("env_var", "value", "field", "expected"),
        [
            ("LLMGATE_MAX_RETRIES", "0", "max_retries", 3),
            ("LLMGATE_TIMEOUT_S", "-5", "request_timeout_s", 30),
            ("LLMGATE_CACHE_MAX_ENTRIES", "0", "cache_max_entries", 1000),
            ("LLMGATE_EMBEDDING_CACHE_TTL_S", "-1", "embedding_cache_ttl_s", 86400),
            ("LLMGATE_COMPLETION_CACHE_TTL_S", "0", "completion_cache_ttl_s", 0),
        ],
    )
    def test_out_of_range_int_falls_back(self, clean_env, env_var, value, field, expected):
        """低于字段下限的整数与非法整数同样回退，0 TTL 合法（表示不缓存）"""
        clean_env.setenv(env_var, value)
        config = load_gateway_config()
        assert getattr(config, field) == expected

    def test_negative_backoff_falls_back(self, clean_env):
        clean_env.setenv("LLMGATE_RETRY_BACKOFF_S", "-0.5")
        config = load_gateway_config()
        assert config.retry_backoff_s == 0.1
