"""ModelSelector -- 按 ModelSelectionCriteria 从模型目录中挑选模型

排序规则：
1. provider 优先级高者在前
2. prefer_lowest_cost 时，输入 + 输出成本低者在前（成本未知视为最贵）
3. 默认模型在前
4. sorting 小者在前
"""

import math
from collections.abc import Iterable

import structlog

from llmgate.core.models import LlmConfiguration, Model, ModelSelectionCriteria

log = structlog.get_logger()


class ModelSelector:
    """模型目录 + 条件匹配"""

    def __init__(self, models: Iterable[Model] = ()) -> None:
        self._models: dict[str, Model] = {}
        for model in models:
            self.register_model(model)

    def register_model(self, model: Model) -> None:
        self._models[model.identifier] = model

    def get_models(self) -> list[Model]:
        return list(self._models.values())

    def find_candidates(self, criteria: ModelSelectionCriteria) -> list[Model]:
        """满足条件的启用模型（目录顺序）"""
        return [model for model in self._models.values() if model.is_active and criteria.matches(model)]

    def find_matching_model(self, criteria: ModelSelectionCriteria) -> Model | None:
        candidates = self.find_candidates(criteria)
        if not candidates:
            return None
        return min(candidates, key=lambda model: self._sort_key(model, criteria.prefer_lowest_cost))

    def resolve_model(self, configuration: LlmConfiguration) -> Model | None:
        """fixed 模式返回配置的模型；criteria 模式按条件挑选"""
        if not configuration.uses_criteria_selection:
            return configuration.model
        model = self.find_matching_model(configuration.model_selection_criteria)
        log.debug(
            "model_selected",
            configuration_id=configuration.identifier,
            model=model.model_id if model else None,
        )
        return model

    @staticmethod
    def _sort_key(model: Model, prefer_lowest_cost: bool) -> tuple[int, float, bool, int]:
        priority = model.provider.priority if model.provider else 0
        cost = 0.0
        if prefer_lowest_cost:
            cost = (model.cost_input + model.cost_output) or math.inf
        return (-priority, cost, not model.is_default, model.sorting)
