"""决策裁判：在 Oracle 外面包一层缓存、超时和降级

调用方只和 DecisionJudge 打交道：
- 先查决策缓存，命中则不调用 Oracle
- Oracle 调用受 asyncio.wait_for 超时约束，这是核心流程中唯一的挂起点
- 超时 / 异常 / 输出无法解析时返回安全默认值（停止判断返回 None，由评估器兜底）
"""

from __future__ import annotations

import asyncio
from typing import Any

from ...state.cache import DecisionCache, make_cache_key
from ..config import config
from ..logger import get_logger
from .judgments import (
    Judgment,
    LoginJudgment,
    ModalJudgment,
    NavigationJudgment,
    PageAnalysisJudgment,
    StoppingJudgment,
    fallback_judgment,
    parse_judgment,
)
from .oracle import DecisionOracle, OracleKind, OracleRequest

logger = get_logger(__name__)


class DecisionJudge:
    """带缓存与超时的 Oracle 封装，任何情况下都不向调用方抛出 Oracle 故障"""

    def __init__(
        self,
        oracle: DecisionOracle | None,
        cache: DecisionCache | None = None,
        timeout_s: float | None = None,
    ):
        self.oracle = oracle
        self.cache = cache if cache is not None else DecisionCache(config.cache.ttl_s)
        self.timeout_s = config.llm.timeout_s if timeout_s is None else timeout_s
        self.stats = {"oracle_calls": 0, "cache_hits": 0, "failures": 0}

    async def _ask(self, request: OracleRequest, cache_key: str | None = None) -> Judgment | None:
        if cache_key is not None:
            cached = self.cache.get(cache_key)
            if cached is not None:
                self.stats["cache_hits"] += 1
                logger.debug("[裁判] 缓存命中: %s", cache_key)
                return cached

        if self.oracle is None:
            return None

        self.stats["oracle_calls"] += 1
        try:
            raw = await asyncio.wait_for(self.oracle.ask(request), timeout=self.timeout_s)
        except asyncio.TimeoutError:
            self.stats["failures"] += 1
            logger.warning(
                "[裁判] Oracle 超时 (%s, %.1fs): %s", request.kind.value, self.timeout_s, request.url
            )
            return None
        except Exception as e:
            self.stats["failures"] += 1
            logger.error("[裁判] Oracle 调用失败 (%s): %s", request.kind.value, e)
            return None

        judgment = parse_judgment(request.kind, raw)
        if judgment is None:
            self.stats["failures"] += 1
            return None

        if cache_key is not None:
            self.cache.set(cache_key, judgment)
        return judgment

    async def detect_modal(
        self,
        url: str,
        html: str,
        trigger_action: str | None = None,
    ) -> ModalJudgment:
        """检测是否有打开的弹窗（页面状态随时变化，不缓存）"""
        request = OracleRequest(
            kind=OracleKind.MODAL_DETECT,
            url=url,
            html=html,
            context={"trigger_action": trigger_action},
        )
        judgment = await self._ask(request)
        if isinstance(judgment, ModalJudgment):
            return judgment
        return fallback_judgment(OracleKind.MODAL_DETECT)

    async def detect_login(self, url: str, html: str, title: str = "") -> LoginJudgment:
        request = OracleRequest(kind=OracleKind.LOGIN_DETECT, url=url, html=html, title=title)
        judgment = await self._ask(request, make_cache_key(OracleKind.LOGIN_DETECT.value, url))
        if isinstance(judgment, LoginJudgment):
            return judgment
        return fallback_judgment(OracleKind.LOGIN_DETECT)

    async def analyze_navigation(self, url: str, html: str, title: str = "") -> NavigationJudgment:
        request = OracleRequest(kind=OracleKind.NAVIGATION_ANALYSIS, url=url, html=html, title=title)
        judgment = await self._ask(
            request, make_cache_key(OracleKind.NAVIGATION_ANALYSIS.value, url)
        )
        if isinstance(judgment, NavigationJudgment):
            return judgment
        return fallback_judgment(OracleKind.NAVIGATION_ANALYSIS)

    async def analyze_page(
        self,
        url: str,
        html: str,
        title: str = "",
        feature_name: str = "",
        known_features: list[str] | None = None,
    ) -> PageAnalysisJudgment:
        request = OracleRequest(
            kind=OracleKind.PAGE_ANALYSIS,
            url=url,
            html=html,
            title=title,
            context={"feature_name": feature_name, "known_features": known_features or []},
        )
        judgment = await self._ask(request, make_cache_key(OracleKind.PAGE_ANALYSIS.value, url))
        if isinstance(judgment, PageAnalysisJudgment):
            return judgment
        return fallback_judgment(OracleKind.PAGE_ANALYSIS)

    async def evaluate_stopping(
        self,
        feature_id: str,
        feature_name: str,
        stats: dict[str, Any],
        page_types: list[str],
    ) -> StoppingJudgment | None:
        """请 Oracle 判断是否停止；失败返回 None"""
        request = OracleRequest(
            kind=OracleKind.STOPPING_EVAL,
            context={
                "feature_id": feature_id,
                "feature_name": feature_name,
                "stats": stats,
                "page_types": page_types,
            },
        )
        judgment = await self._ask(request)
        return judgment if isinstance(judgment, StoppingJudgment) else None
