"""CostCalculator -- 调用成本估算

双通道策略: Model 定价字段 -> litellm.cost_per_token() -> (0.0, True)。
所有方法不抛异常。
"""

import structlog
from litellm import cost_per_token as litellm_cost_per_token

from .models.entities import Model
from .models.responses import UsageStatistics

log = structlog.get_logger()

_TOKENS_PER_PRICING_UNIT = 1_000_000


class CostCalculator:
    """成本计算器

    成本用于配额记账（max_cost_per_day），估算失败时按 0 记账并标记 unavailable。
    """

    @staticmethod
    def calculate(
        usage: UsageStatistics,
        model_name: str,
        model: Model | None = None,
    ) -> tuple[float, bool]:
        """估算一次调用的 USD 成本

        1. 主路径: Model.cost_input / cost_output（USD / 1M token）
        2. 兜底路径: litellm.cost_per_token(model=model_name, ...)
        3. 全失败: (0.0, True)

        Args:
            usage: 调用返回的 token 统计
            model_name: 响应中的模型名（litellm 定价表的 key）
            model: 已知的模型元数据（可选）

        Returns:
            (cost_usd, cost_unavailable) 元组
        """
        if usage.estimated_cost is not None:
            return usage.estimated_cost, False

        if model is not None and model.has_pricing:
            cost = (
                usage.prompt_tokens * model.cost_input
                + usage.completion_tokens * model.cost_output
            ) / _TOKENS_PER_PRICING_UNIT
            return cost, False

        if model_name:
            try:
                prompt_cost, completion_cost = litellm_cost_per_token(
                    model=model_name,
                    prompt_tokens=usage.prompt_tokens,
                    completion_tokens=usage.completion_tokens,
                )
                cost = float(prompt_cost) + float(completion_cost)
                if cost >= 0:
                    return cost, False
            except Exception as e:
                log.debug("cost_per_token_failed", model=model_name, error=str(e))

        log.debug("cost_unavailable", model=model_name)
        return 0.0, True
