"""停止条件评估

两级判断：
1. 快速确定性检查（页面数 / 深度 / 时间上限、收益递减、高覆盖率），命中即停止，不调用 Oracle
2. 否则询问 Oracle；Oracle 失败或输出无法解析时，退回确定性默认规则

所有以"预估页面总数"或"页面上限"为分母的除法都统一做了非正数保护。
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from typing import Any

from ..common.llm.judge import DecisionJudge
from ..common.llm.judgments import StoppingFactors
from ..common.logger import get_logger

logger = get_logger(__name__)

DIMINISHING_MIN_PAGES = 10
COVERAGE_MIN_PAGES = 5
QUICK_COVERAGE_RATIO = 0.9
FALLBACK_COVERAGE_PERCENT = 80.0
# 没有预估值时，假设已发现的页面占总数的 60%
DISCOVERED_SHARE_GUESS = 0.6


@dataclass
class ExplorationStats:
    """单个功能的探索统计"""

    pages_explored: int
    max_pages_limit: int
    depth_reached: int = 0
    max_depth_limit: int = 5
    new_pages_last_batch: int = 0
    new_pages_this_batch: int = 0
    estimated_total_pages: int = 0
    unique_page_types_found: int = 0
    last_page_types: list[str] = field(default_factory=list)
    time_elapsed_s: float = 0.0
    time_limit_s: float = 600.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class QuickCheckResult:
    should_stop: bool
    reason: str


@dataclass
class StoppingDecision:
    """停止判断结果

    source: quick（快速检查）/ oracle / fallback（Oracle 不可用时的默认规则）
    """

    should_stop: bool
    confidence: float
    reason: str
    source: str
    factors: StoppingFactors = field(default_factory=StoppingFactors)
    recommendations: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "should_stop": self.should_stop,
            "confidence": self.confidence,
            "reason": self.reason,
            "source": self.source,
            "factors": self.factors.to_dict(),
            "recommendations": list(self.recommendations),
        }


def coverage_ratio(stats: ExplorationStats) -> float:
    """explored / estimated；预估值非正时为 0"""
    if stats.estimated_total_pages <= 0:
        return 0.0
    return stats.pages_explored / stats.estimated_total_pages


def quick_check(stats: ExplorationStats) -> QuickCheckResult:
    """不调用 Oracle 的确定性检查"""
    if stats.pages_explored >= stats.max_pages_limit:
        return QuickCheckResult(
            True, f"达到页面数上限 ({stats.pages_explored}/{stats.max_pages_limit})"
        )
    if stats.depth_reached >= stats.max_depth_limit:
        return QuickCheckResult(
            True, f"达到深度上限 ({stats.depth_reached}/{stats.max_depth_limit})"
        )
    if stats.time_elapsed_s >= stats.time_limit_s:
        return QuickCheckResult(True, f"达到时间上限 ({stats.time_elapsed_s:.1f}s)")

    if (
        stats.pages_explored > DIMINISHING_MIN_PAGES
        and stats.new_pages_last_batch == 0
        and stats.new_pages_this_batch < 2
    ):
        return QuickCheckResult(True, "收益递减：几乎没有发现新页面")

    if stats.pages_explored > COVERAGE_MIN_PAGES and stats.estimated_total_pages > 0:
        ratio = coverage_ratio(stats)
        if ratio > QUICK_COVERAGE_RATIO:
            return QuickCheckResult(True, f"覆盖率已足够 ({ratio * 100:.1f}%)")

    return QuickCheckResult(False, "继续探索")


def _factors(stats: ExplorationStats, diminishing: bool) -> StoppingFactors:
    return StoppingFactors(
        coverage_percentage=coverage_ratio(stats) * 100,
        pattern_detected=stats.unique_page_types_found < 5 and stats.pages_explored > 5,
        depth_reached=stats.depth_reached >= stats.max_depth_limit,
        time_limit=stats.time_elapsed_s >= stats.time_limit_s,
        diminishing_returns=diminishing,
        resource_constraint=stats.pages_explored >= stats.max_pages_limit * 0.9,
    )


def default_decision(stats: ExplorationStats) -> StoppingDecision:
    """Oracle 不可用时的确定性默认规则"""
    coverage_percent = coverage_ratio(stats) * 100
    should_stop = (
        coverage_percent > FALLBACK_COVERAGE_PERCENT
        or stats.new_pages_last_batch == 0
        or stats.pages_explored >= stats.max_pages_limit
    )
    return StoppingDecision(
        should_stop=should_stop,
        confidence=0.6,
        reason="覆盖率足够或已达上限" if should_stop else "继续探索",
        source="fallback",
        factors=_factors(stats, diminishing=stats.new_pages_last_batch == 0),
    )


def predict_feature_completion(stats: ExplorationStats) -> dict[str, Any]:
    """预估功能总页面数和剩余页面数"""
    estimated_total = stats.estimated_total_pages
    if estimated_total <= 0:
        estimated_total = math.ceil(stats.pages_explored / DISCOVERED_SHARE_GUESS)

    if stats.pages_explored > 20:
        confidence = 0.8
    elif stats.pages_explored > 10:
        confidence = 0.7
    else:
        confidence = 0.5

    return {
        "estimated_total_pages": estimated_total,
        "estimated_remaining_pages": max(0, estimated_total - stats.pages_explored),
        "estimated_completion_pages": stats.max_pages_limit,
        "confidence": confidence,
    }


def calculate_feature_completion(stats: ExplorationStats) -> float:
    """功能完成度百分比 [0, 100]"""
    if stats.estimated_total_pages > 0:
        return min(100.0, stats.pages_explored / stats.estimated_total_pages * 100)
    if stats.max_pages_limit > 0:
        return min(100.0, stats.pages_explored / stats.max_pages_limit * 100)
    return 0.0


class StoppingConditionEvaluator:
    """功能探索的停止条件评估器"""

    def __init__(self, judge: DecisionJudge | None = None):
        self.judge = judge

    def quick_check(self, stats: ExplorationStats) -> QuickCheckResult:
        return quick_check(stats)

    async def evaluate(
        self,
        feature_id: str,
        feature_name: str,
        stats: ExplorationStats,
        explored_page_types: list[str] | set[str] | tuple[str, ...] = (),
    ) -> StoppingDecision:
        """先快速检查，再询问 Oracle，最后退回默认规则；不会抛出 Oracle 故障"""
        quick = quick_check(stats)
        if quick.should_stop:
            logger.info("[停止判断] %s: 停止 (%s)", feature_name, quick.reason)
            return StoppingDecision(
                should_stop=True,
                confidence=1.0,
                reason=quick.reason,
                source="quick",
                factors=_factors(
                    stats,
                    diminishing=stats.new_pages_last_batch == 0 and stats.new_pages_this_batch < 2,
                ),
            )

        judgment = None
        if self.judge is not None:
            judgment = await self.judge.evaluate_stopping(
                feature_id,
                feature_name,
                stats.to_dict(),
                sorted(set(explored_page_types)),
            )

        if judgment is None:
            decision = default_decision(stats)
            logger.info(
                "[停止判断] %s: Oracle 不可用，使用默认规则 -> %s",
                feature_name,
                "停止" if decision.should_stop else "继续",
            )
            return decision

        logger.info(
            "[停止判断] %s: %s (%s)",
            feature_name,
            "停止" if judgment.should_stop else "继续",
            judgment.reason,
        )
        return StoppingDecision(
            should_stop=judgment.should_stop,
            confidence=judgment.confidence,
            reason=judgment.reason,
            source="oracle",
            factors=judgment.factors,
            recommendations=list(judgment.recommendations),
        )

    def predict_feature_completion(self, stats: ExplorationStats) -> dict[str, Any]:
        return predict_feature_completion(stats)

    def calculate_feature_completion(self, stats: ExplorationStats) -> float:
        return calculate_feature_completion(stats)
