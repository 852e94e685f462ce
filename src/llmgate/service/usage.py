"""InMemoryUsageAccounting -- 进程内每日用量计数

UsageAccounting 协议的参考实现：按配置累计当日请求数 / token / 成本，
日期变化时计数归零。累加在 asyncio.Lock 内完成。
"""

import asyncio
from collections.abc import Callable, Iterable
from datetime import date

import structlog
from pydantic import BaseModel, Field

from llmgate.core.models import LlmConfiguration, QuotaStatus

log = structlog.get_logger()


class DailyUsage(BaseModel):
    """单个配置的当日用量快照"""

    day: date
    requests: int = Field(default=0, ge=0)
    tokens: int = Field(default=0, ge=0)
    cost: float = Field(default=0.0, ge=0)


class InMemoryUsageAccounting:
    """内存计数器；多进程部署需换成共享存储实现"""

    def __init__(
        self,
        configurations: Iterable[LlmConfiguration] = (),
        clock: Callable[[], date] = date.today,
    ) -> None:
        self._configurations: dict[str, LlmConfiguration] = {}
        self._usage: dict[str, DailyUsage] = {}
        self._clock = clock
        self._lock = asyncio.Lock()
        for configuration in configurations:
            self.register_configuration(configuration)

    def register_configuration(self, configuration: LlmConfiguration) -> None:
        self._configurations[configuration.identifier] = configuration

    def _current(self, configuration_id: str) -> DailyUsage:
        today = self._clock()
        usage = self._usage.get(configuration_id)
        if usage is None or usage.day != today:
            usage = DailyUsage(day=today)
            self._usage[configuration_id] = usage
        return usage

    async def record_usage(self, configuration_id: str, tokens_used: int, cost: float) -> None:
        async with self._lock:
            usage = self._current(configuration_id)
            self._usage[configuration_id] = usage.model_copy(
                update={
                    "requests": usage.requests + 1,
                    "tokens": usage.tokens + max(0, tokens_used),
                    "cost": usage.cost + max(0.0, cost),
                }
            )
        log.debug(
            "usage_recorded",
            configuration_id=configuration_id,
            tokens_used=tokens_used,
            cost=cost,
        )

    async def check_quota(self, configuration_id: str) -> QuotaStatus:
        configuration = self._configurations.get(configuration_id)
        if configuration is None or not configuration.has_limits:
            return QuotaStatus()

        async with self._lock:
            usage = self._current(configuration_id)

        if 0 < configuration.max_requests_per_day <= usage.requests:
            return QuotaStatus(
                within_limits=False,
                reason=f"Daily request limit reached ({configuration.max_requests_per_day})",
            )
        if 0 < configuration.max_tokens_per_day <= usage.tokens:
            return QuotaStatus(
                within_limits=False,
                reason=f"Daily token limit reached ({configuration.max_tokens_per_day})",
            )
        if 0 < configuration.max_cost_per_day <= usage.cost:
            return QuotaStatus(
                within_limits=False,
                reason=f"Daily cost limit reached ({configuration.max_cost_per_day:.2f})",
            )
        return QuotaStatus()

    def get_usage(self, configuration_id: str) -> DailyUsage:
        """当日用量快照（未记录过返回全零）"""
        return self._current(configuration_id)
