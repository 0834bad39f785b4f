"""决策 Oracle：请求、判断结果与带缓存的裁判"""

from .judge import DecisionJudge
from .judgments import (
    LoginJudgment,
    ModalJudgment,
    NavigationItem,
    NavigationJudgment,
    PageAnalysisJudgment,
    StoppingJudgment,
    classify_priority,
    fallback_judgment,
    get_explorable_urls,
    identify_feature_entry_points,
    parse_judgment,
)
from .oracle import DecisionOracle, LLMDecisionOracle, OracleKind, OracleRequest

__all__ = [
    "DecisionJudge",
    "LoginJudgment",
    "ModalJudgment",
    "NavigationItem",
    "NavigationJudgment",
    "PageAnalysisJudgment",
    "StoppingJudgment",
    "classify_priority",
    "fallback_judgment",
    "get_explorable_urls",
    "identify_feature_entry_points",
    "parse_judgment",
    "DecisionOracle",
    "LLMDecisionOracle",
    "OracleKind",
    "OracleRequest",
]
