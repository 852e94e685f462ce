"""CostCalculator 单元测试

验证 estimated_cost -> Model 定价 -> litellm.cost_per_token 的优先级，
以及全部失败时的 (0.0, True)。
"""

from unittest.mock import patch

import pytest
from llmgate.core.cost import CostCalculator
from llmgate.core.models import Model, UsageStatistics


@pytest.fixture
def usage() -> UsageStatistics:
    return UsageStatistics.from_tokens(1000, 500)


class TestCostCalculator:
    """calculate() 多通道策略测试"""

    @patch("llmgate.core.cost.litellm_cost_per_token")
    def test_estimated_cost_wins(self, mock_cost):
        """响应自带成本时直接使用"""
        usage = UsageStatistics.from_tokens(10, 20, estimated_cost=0.003)

        cost, unavailable = CostCalculator.calculate(usage, "gpt-5.2")
        assert cost == 0.003
        assert unavailable is False
        mock_cost.assert_not_called()

    @patch("llmgate.core.cost.litellm_cost_per_token")
    def test_model_pricing(self, mock_cost, usage):
        """Model 定价单位为 USD / 1M token"""
        model = Model(identifier="m", model_id="gpt-5.2", cost_input=2.0, cost_output=10.0)

        cost, unavailable = CostCalculator.calculate(usage, "gpt-5.2", model)
        assert cost == pytest.approx((1000 * 2.0 + 500 * 10.0) / 1_000_000)
        assert unavailable is False
        mock_cost.assert_not_called()

    @patch("llmgate.core.cost.litellm_cost_per_token")
    def test_litellm_fallback(self, mock_cost, usage):
        """无定价时使用 litellm 定价表"""
        mock_cost.return_value = (0.001, 0.002)

        cost, unavailable = CostCalculator.calculate(usage, "gpt-5.2")
        assert cost == pytest.approx(0.003)
        assert unavailable is False
        mock_cost.assert_called_once_with(model="gpt-5.2", prompt_tokens=1000, completion_tokens=500)

    @patch("llmgate.core.cost.litellm_cost_per_token")
    def test_litellm_failure(self, mock_cost, usage):
        """litellm 未收录该模型: (0.0, True)，不抛异常"""
        mock_cost.side_effect = Exception("model not mapped")

        cost, unavailable = CostCalculator.calculate(usage, "unknown-model")
        assert cost == 0.0
        assert unavailable is True

    @patch("llmgate.core.cost.litellm_cost_per_token")
    def test_empty_model_name(self, mock_cost, usage):
        cost, unavailable = CostCalculator.calculate(usage, "")
        assert (cost, unavailable) == (0.0, True)
        mock_cost.assert_not_called()
