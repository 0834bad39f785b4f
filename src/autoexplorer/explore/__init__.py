"""探索执行：自动化能力提供方、停止条件评估与编排器"""

from .provider import (
    ActionKind,
    ActionOutcome,
    AutomationProvider,
    PlaywrightProvider,
    RawDocument,
)
from .runner import ExplorationResult, ExplorationRunner
from .stopping import (
    ExplorationStats,
    QuickCheckResult,
    StoppingConditionEvaluator,
    StoppingDecision,
    calculate_feature_completion,
    coverage_ratio,
    default_decision,
    predict_feature_completion,
    quick_check,
)

__all__ = [
    "ActionKind",
    "ActionOutcome",
    "AutomationProvider",
    "PlaywrightProvider",
    "RawDocument",
    "ExplorationResult",
    "ExplorationRunner",
    "ExplorationStats",
    "QuickCheckResult",
    "StoppingConditionEvaluator",
    "StoppingDecision",
    "calculate_feature_completion",
    "coverage_ratio",
    "default_decision",
    "predict_feature_completion",
    "quick_check",
]
