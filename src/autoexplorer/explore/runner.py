"""探索编排器

一次运行的完整流程：
1. 打开落地页，必要时登录
2. 导航分析，识别功能入口，按优先级放入功能队列
3. 最多 max_parallel_features 个 worker 并行探索功能（每个 worker 一个独立页面）
   - 每个页面：提取指纹并匹配模式；命中则快速归档，否则（先查缓存）请 Oracle 完整分析
   - 记录动作、跨功能引用，把同源链接放入功能自己的页面队列
   - 每个页面做一次快速停止检查，每 stop_check_interval 个页面做一次完整停止判断
4. 汇总知识图谱和站点地图，写出产物

单个页面或单个功能失败只会被记录，不会中止整次运行。
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import urldefrag, urljoin, urlparse

from ..common.config import config
from ..common.exceptions import InvalidStateTransitionError, PageLoadError, StorageError
from ..common.llm.judge import DecisionJudge
from ..common.llm.judgments import (
    LoginJudgment,
    PageAnalysisJudgment,
    identify_feature_entry_points,
)
from ..common.logger import get_logger
from ..common.storage.artifacts import ArtifactStorage
from ..fingerprint.matcher import PatternMatcher
from ..graph.knowledge_graph import KnowledgeGraphBuilder
from ..graph.sitemap import FeatureInfo, PatternInfo, SitemapBuilder, generate_page_id
from ..state.exploration_state import (
    ActionInfo,
    ActionType,
    ExplorationState,
    FeatureState,
    FeatureStatus,
)
from .provider import ActionKind, AutomationProvider
from .stopping import ExplorationStats, StoppingConditionEvaluator

logger = get_logger(__name__)

LANDING_FEATURE = "landing"
LOGIN_CONFIDENCE_THRESHOLD = 0.7


@dataclass
class ExplorationResult:
    """一次运行的产出"""

    sitemap: dict[str, Any]
    knowledge_graph: dict[str, Any]
    statistics: dict[str, Any]
    patterns: list[dict[str, Any]]
    run_dir: Path | None = None
    report: str = ""


@dataclass
class _FeatureProgress:
    """功能探索过程中的批次计数（worker 私有）"""

    started: float = field(default_factory=time.monotonic)
    page_types: list[str] = field(default_factory=list)
    depth_reached: int = 0
    new_pages_last_batch: int = 0
    new_pages_this_batch: int = 0
    pages_since_check: int = 0


def _normalize_url(url: str) -> str:
    return urldefrag(url)[0]


class ExplorationRunner:
    """探索编排器"""

    def __init__(
        self,
        start_url: str,
        provider: AutomationProvider,
        judge: DecisionJudge,
        app_name: str | None = None,
        storage: ArtifactStorage | None = None,
        state: ExplorationState | None = None,
        matcher: PatternMatcher | None = None,
        credentials: tuple[str, str] | None = None,
        max_pages_per_feature: int | None = None,
        max_depth: int | None = None,
        feature_time_limit_s: float | None = None,
        max_parallel_features: int | None = None,
        stop_check_interval: int | None = None,
        modal_confidence_threshold: float | None = None,
        max_features: int | None = None,
    ):
        exploration = config.exploration
        self.start_url = start_url
        self.provider = provider
        self.judge = judge
        self.app_name = app_name or (urlparse(start_url).netloc or start_url)
        self.storage = storage
        self.state = state if state is not None else ExplorationState(cache=judge.cache)
        self.matcher = matcher or PatternMatcher(config.pattern.confidence_threshold)
        self.credentials = credentials
        self.evaluator = StoppingConditionEvaluator(judge)

        self.max_pages_per_feature = max_pages_per_feature or exploration.max_pages_per_feature
        self.max_depth = max_depth if max_depth is not None else exploration.max_depth
        self.feature_time_limit_s = feature_time_limit_s or exploration.feature_time_limit_s
        self.max_parallel_features = max(
            1, max_parallel_features or exploration.max_parallel_features
        )
        self.stop_check_interval = max(1, stop_check_interval or exploration.stop_check_interval)
        self.modal_confidence_threshold = (
            modal_confidence_threshold
            if modal_confidence_threshold is not None
            else exploration.modal_confidence_threshold
        )
        self.max_features = max_features or exploration.max_features

        self.sitemap = SitemapBuilder(start_url, self.app_name)
        self._origin = urlparse(start_url).netloc

    # ------------------------------------------------------------------
    # 入口
    # ------------------------------------------------------------------

    async def run(self) -> ExplorationResult:
        """执行一次完整的探索"""
        started = time.monotonic()
        self._log_event("run_started", url=self.start_url)
        logger.info("[探索] 开始: %s", self.start_url)

        try:
            await self._discover_features()
        except PageLoadError as e:
            logger.error("[探索] 落地页无法打开: %s", e)
            self._log_event("landing_failed", error=str(e))

        workers = min(self.max_parallel_features, len(self.state.features))
        if workers:
            await asyncio.gather(*(self._worker(i + 1) for i in range(workers)))

        return self._finalize(time.monotonic() - started)

    # ------------------------------------------------------------------
    # 落地页与功能发现
    # ------------------------------------------------------------------

    async def _discover_features(self) -> None:
        landing_url = await self.provider.navigate(self.start_url)
        doc = await self.provider.read_document()
        self.state.push_navigation(landing_url)
        self.state.add_visited_page(landing_url, LANDING_FEATURE, 0)

        login = await self.judge.detect_login(doc.url, doc.html, doc.title)
        if login.is_login_page and login.confidence >= LOGIN_CONFIDENCE_THRESHOLD:
            if await self._login(login):
                doc = await self.provider.read_document()
            else:
                logger.warning("[探索] 检测到登录页但未能登录，继续探索公开页面")

        navigation = await self.judge.analyze_navigation(doc.url, doc.html, doc.title)
        for item in [*navigation.side_navigation, *navigation.top_navigation]:
            if item.presumed_global and item.url and item.url != "#":
                self.sitemap.add_global_nav_item(item.text, urljoin(doc.url, item.url))

        entries = identify_feature_entry_points(navigation, base_url=doc.url)
        if not entries:
            logger.warning("[探索] 未识别到功能入口，把落地页作为唯一功能")
            entries = [
                {
                    "id": "feature_main",
                    "name": self.app_name,
                    "entry_url": doc.url,
                    "priority": None,
                    "description": "Landing page",
                }
            ]

        for entry in entries[: self.max_features]:
            self.state.add_feature(
                FeatureState(
                    id=entry["id"],
                    name=entry["name"],
                    entry_url=_normalize_url(entry["entry_url"]),
                    priority=entry["priority"],
                    description=entry.get("description", ""),
                )
            )
        self._log_event("features_discovered", count=len(self.state.features))

    async def _login(self, login: LoginJudgment) -> bool:
        """按 Oracle 给出的表单选择器填写凭据并提交"""
        plan = login.action_plan
        if self.credentials is None or plan is None:
            return False

        username, password = self.credentials
        steps = (
            (plan.username_field, ActionKind.FILL, username),
            (plan.password_field, ActionKind.FILL, password),
            (plan.submit_button, ActionKind.CLICK, None),
        )
        for selector, kind, value in steps:
            if not selector:
                return False
            outcome = await self.provider.act(selector, kind, value)
            if not outcome.ok:
                logger.warning("[探索] 登录步骤失败: %s", outcome.message)
                return False
        logger.info("[探索] 已提交登录表单")
        return True

    # ------------------------------------------------------------------
    # 功能探索
    # ------------------------------------------------------------------

    async def _worker(self, worker_id: int) -> None:
        provider = await self.provider.fork()
        try:
            while True:
                feature = self.state.get_next_feature()
                if feature is None:
                    return
                logger.info("[探索] worker-%d 开始功能: %s", worker_id, feature.name)
                await self._explore_feature(provider, feature)
        finally:
            await provider.stop()

    def _build_stats(self, feature: FeatureState, progress: _FeatureProgress) -> ExplorationStats:
        return ExplorationStats(
            pages_explored=feature.page_count,
            max_pages_limit=self.max_pages_per_feature,
            depth_reached=progress.depth_reached,
            max_depth_limit=self.max_depth,
            new_pages_last_batch=progress.new_pages_last_batch,
            new_pages_this_batch=progress.new_pages_this_batch,
            estimated_total_pages=feature.page_count + len(feature.page_queue),
            unique_page_types_found=len(set(progress.page_types)),
            last_page_types=progress.page_types[-5:],
            time_elapsed_s=time.monotonic() - progress.started,
            time_limit_s=self.feature_time_limit_s,
        )

    async def _explore_feature(self, provider: AutomationProvider, feature: FeatureState) -> None:
        self.state.update_feature_status(feature.id, FeatureStatus.EXPLORING)
        feature.queue_page(feature.entry_url, 0)
        progress = _FeatureProgress()

        try:
            while (item := feature.next_page()) is not None:
                # 运行中被取消（外部把状态置为 failed）
                if feature.status.is_terminal:
                    logger.info("[探索] %s 已被终止: %s", feature.name, feature.error)
                    self._log_event("feature_cancelled", feature=feature.id, reason=feature.error)
                    break

                url, depth = item
                if not feature.mark_visited(url):
                    continue
                # 入口页总是属于本功能；其它页面由第一个认领的功能探索
                if depth == 0:
                    self.state.add_visited_page(url, feature.id, depth)
                elif not self.state.claim_page(url, feature.id, depth):
                    continue

                progress.new_pages_this_batch += await self._explore_page(
                    provider, feature, url, depth, progress
                )
                progress.depth_reached = max(progress.depth_reached, depth)
                progress.pages_since_check += 1

                if progress.pages_since_check >= self.stop_check_interval:
                    # 刚结束的这一批就是"上一批"
                    progress.new_pages_last_batch = progress.new_pages_this_batch
                    progress.new_pages_this_batch = 0
                    progress.pages_since_check = 0
                    decision = await self.evaluator.evaluate(
                        feature.id,
                        feature.name,
                        self._build_stats(feature, progress),
                        progress.page_types,
                    )
                    if decision.should_stop:
                        self._log_event(
                            "feature_stopped",
                            feature=feature.id,
                            reason=decision.reason,
                            source=decision.source,
                        )
                        break
                else:
                    quick = self.evaluator.quick_check(self._build_stats(feature, progress))
                    if quick.should_stop:
                        logger.info("[探索] %s 停止: %s", feature.name, quick.reason)
                        self._log_event("feature_stopped", feature=feature.id, reason=quick.reason)
                        break

            self._finish_feature(feature, FeatureStatus.COMPLETED)
        except asyncio.CancelledError:
            self._finish_feature(feature, FeatureStatus.FAILED, "cancelled")
            raise
        except Exception as e:
            logger.error("[探索] 功能 %s 失败: %s", feature.name, e)
            self._finish_feature(feature, FeatureStatus.FAILED, str(e))
            self._log_event("feature_failed", feature=feature.id, error=str(e))

    def _finish_feature(
        self,
        feature: FeatureState,
        status: FeatureStatus,
        error: str | None = None,
    ) -> None:
        """功能已处于终态（例如被取消）时保留原状态"""
        if feature.status.is_terminal:
            return
        try:
            self.state.update_feature_status(feature.id, status, error)
        except InvalidStateTransitionError as e:
            logger.warning("[探索] 功能 %s 状态未更新: %s", feature.name, e)

    async def _explore_page(
        self,
        provider: AutomationProvider,
        feature: FeatureState,
        url: str,
        depth: int,
        progress: _FeatureProgress,
    ) -> int:
        """探索单个页面，返回新入队的页面数；页面级失败只跳过该页面"""
        try:
            await provider.navigate(url)
        except PageLoadError as e:
            logger.warning("[探索] 页面加载失败，跳过: %s", e)
            self._log_event("page_failed", feature=feature.id, url=url, error=str(e))
            return 0

        try:
            return await self._analyze_current_page(provider, feature, url, depth, progress)
        except Exception as e:
            logger.warning("[探索] 页面处理失败，跳过: %s (%s)", url, e)
            self._log_event("page_failed", feature=feature.id, url=url, error=str(e))
            return 0

    async def _analyze_current_page(
        self,
        provider: AutomationProvider,
        feature: FeatureState,
        url: str,
        depth: int,
        progress: _FeatureProgress,
    ) -> int:
        doc = await provider.read_document()
        fingerprint, match = self.matcher.analyze_page(doc.html, url)

        if fingerprint.modal_count > 0:
            await self._close_modal(provider, doc.url, doc.html)

        if match is not None and match.matched:
            self.sitemap.quick_catalog_page(url, match.pattern.id, feature.id, depth)
            progress.page_types.append(match.pattern.name)
            self._log_event("page_cataloged", feature=feature.id, url=url, pattern=match.pattern.id)
            return 0

        analysis = await self.judge.analyze_page(
            doc.url,
            doc.html,
            doc.title,
            feature_name=feature.name,
            known_features=[f.name for f in self.state.features],
        )
        progress.page_types.append(analysis.page_type)

        if analysis.confidence > 0:
            pattern = self.matcher.register(analysis.page_type, fingerprint)
            self.sitemap.add_pattern(
                PatternInfo(
                    pattern_id=pattern.id,
                    page_type=pattern.name,
                    sample_pages=list(pattern.example_urls),
                    common_structure=fingerprint.to_dict(),
                    confidence=pattern.confidence,
                    total_instances=pattern.frequency,
                )
            )

        new_pages = self._record_analysis(feature, url, doc.url, doc.title, depth, analysis)
        self._log_event(
            "page_analyzed",
            feature=feature.id,
            url=url,
            page_type=analysis.page_type,
            new_pages=new_pages,
        )
        return new_pages

    async def _close_modal(self, provider: AutomationProvider, url: str, html: str) -> None:
        modal = await self.judge.detect_modal(url, html)
        if not modal.is_modal_open or modal.confidence <= self.modal_confidence_threshold:
            return
        action = modal.closing_action
        if action is None:
            return

        if action.type == "click":
            outcome = await provider.act(action.target, ActionKind.CLICK)
        elif action.type == "keyboard":
            outcome = await provider.act(None, ActionKind.PRESS, action.key or "Escape")
        else:
            outcome = await provider.act(None, ActionKind.WAIT, "1000")

        if outcome.ok:
            logger.info("[探索] 已关闭弹窗: %s", action.description or action.type)
        else:
            logger.warning("[探索] 关闭弹窗失败: %s", outcome.message)

    # ------------------------------------------------------------------
    # 分析结果落地
    # ------------------------------------------------------------------

    def _resolve_feature(self, name: str | None, url: str | None) -> str | None:
        """把 Oracle 给出的目标功能名 / URL 对应到已知功能 id"""
        features = self.state.features
        if name:
            folded = name.casefold()
            for f in features:
                if f.id == name or f.name.casefold() == folded:
                    return f.id
        if url:
            for f in features:
                if f.entry_url == url:
                    return f.id
        return name or None

    def _is_same_origin(self, url: str) -> bool:
        parsed = urlparse(url)
        return parsed.scheme in ("http", "https") and parsed.netloc == self._origin

    def _record_analysis(
        self,
        feature: FeatureState,
        url: str,
        current_url: str,
        title: str,
        depth: int,
        analysis: PageAnalysisJudgment,
    ) -> int:
        page_id = generate_page_id(url)
        links: list[str] = []
        cross_links: dict[str, list[str]] = {}

        def add_link(raw: str | None) -> None:
            if not raw or raw == "#":
                return
            absolute = _normalize_url(urljoin(current_url, raw))
            if self._is_same_origin(absolute) and absolute not in links:
                links.append(absolute)

        def add_cross(target_name: str | None, raw_url: str | None, trigger: str) -> None:
            target_url = _normalize_url(urljoin(current_url, raw_url)) if raw_url else ""
            target = self._resolve_feature(target_name, target_url)
            if not target or target == feature.id:
                if target_url:
                    add_link(target_url)
                return
            self.state.record_cross_feature_ref(url, feature.id, target, target_url, trigger)
            feature.add_cross_ref(target, target_url)
            self.sitemap.add_cross_feature_ref(feature.id, target, url, target_url, trigger)
            urls = cross_links.setdefault(target, [])
            if target_url and target_url not in urls:
                urls.append(target_url)

        for index, element in enumerate(analysis.elements):
            try:
                action_type = ActionType(element.action_type)
            except ValueError:
                action_type = ActionType.NON_NAVIGATION
            self.state.add_action_to_feature(
                feature.id,
                ActionInfo(
                    id=f"{page_id}#{index}",
                    selector=element.selector,
                    type=action_type,
                    description=element.description or element.text,
                    target_url=element.target_url,
                    target_feature=element.target_feature,
                ),
            )
            if action_type == ActionType.NAVIGATION:
                add_link(element.target_url)
            elif action_type == ActionType.CROSS_FEATURE:
                add_cross(element.target_feature, element.target_url, element.text or element.description)

        for link in analysis.navigation_links:
            add_link(link)
        for cross in analysis.cross_feature_links:
            add_cross(cross.target_feature, cross.url, cross.text)

        new_pages = 0
        if depth + 1 <= self.max_depth:
            for link in links:
                if self.state.is_page_visited(link):
                    continue
                if feature.queue_page(link, depth + 1):
                    new_pages += 1

        self.sitemap.add_page(
            url,
            title=analysis.page_title or title,
            type=analysis.page_type,
            feature=feature.id,
            depth=depth,
            description=analysis.page_description or None,
            primary_actions=[e.text for e in analysis.elements if e.text][:5],
            actions=[e.action_type for e in analysis.elements],
            interactions=[e.description or e.text for e in analysis.elements],
            links_to=links,
            cross_feature_links=cross_links,
            modals=analysis.modals,
            observations={
                "business_value": analysis.business_value,
                "confidence": analysis.confidence,
                "forms": analysis.forms,
            },
        )
        return new_pages

    # ------------------------------------------------------------------
    # 收尾
    # ------------------------------------------------------------------

    def _log_event(self, event: str, **fields: Any) -> None:
        if self.storage is None:
            return
        try:
            self.storage.append_exploration_log(event, **fields)
        except StorageError as e:
            logger.warning("[探索] 事件日志写入失败: %s", e)

    def _finalize(self, duration_s: float) -> ExplorationResult:
        for feature in self.state.features:
            self.sitemap.add_feature(
                FeatureInfo(
                    id=feature.id,
                    name=feature.name,
                    entry_url=feature.entry_url,
                    priority=feature.priority,
                    page_count=feature.page_count,
                    action_count=len(feature.actions),
                    status="explored" if feature.status == FeatureStatus.COMPLETED else "incomplete",
                    duration_s=feature.duration_s(),
                )
            )
        self.sitemap.finalize(duration_s)

        graph = KnowledgeGraphBuilder(self.start_url).build_from_state(self.state)
        graph.finalize()

        statistics = self.state.get_exploration_stats()
        statistics["oracle"] = dict(self.judge.stats)
        statistics["patterns"] = self.matcher.get_statistics()
        statistics["feature_details"] = [f.to_dict() for f in self.state.features]

        result = ExplorationResult(
            sitemap=self.sitemap.to_dict(),
            knowledge_graph=graph.to_dict(),
            statistics=statistics,
            patterns=self.matcher.to_list(),
        )

        if self.storage is not None:
            self.storage.save_sitemap(result.sitemap)
            self.storage.save_knowledge_graph(result.knowledge_graph)
            self.storage.save_statistics(result.statistics)
            self.storage.save_patterns(result.patterns)
            self.storage.save_metadata({"duration_s": duration_s, "start_url": self.start_url})
            self._log_event("run_finished", duration_s=duration_s)
            result.report = self.storage.create_summary_report(
                {
                    "duration_s": round(duration_s, 2),
                    "total_features": statistics["total_features"],
                    "features_completed": statistics["features_completed"],
                    "features_failed": statistics["features_failed"],
                    "total_pages_explored": statistics["total_pages_explored"],
                    "pages_quick_cataloged": self.sitemap.sitemap.stats["pages_quick_cataloged"],
                    "total_actions_discovered": statistics["total_actions_discovered"],
                    "total_cross_feature_refs": statistics["total_cross_feature_refs"],
                    "oracle_calls": self.judge.stats["oracle_calls"],
                    "cache_hits": self.judge.stats["cache_hits"],
                    "features": statistics["features"],
                }
            )
            result.run_dir = self.storage.run_dir

        logger.info(
            "[探索] 完成: %d 个功能, %d 个页面, 用时 %.1fs",
            statistics["total_features"],
            statistics["total_pages_explored"],
            duration_s,
        )
        return result
