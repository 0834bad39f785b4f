"""站点地图构建器

逐页累积页面记录、功能、页面模式和跨功能连接，探索结束时 finalize 一次，
计算按类型统计和覆盖率，输出 sitemap.json。
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..common.constants import PATTERN_MATCH_PAGE_TYPE
from ..common.logger import get_logger

logger = get_logger(__name__)

EXPLORER_VERSION = "0.1.0"

_PAGE_ID_RE = re.compile(r"[^a-z0-9]", re.IGNORECASE)


def generate_page_id(url: str) -> str:
    """URL 中非字母数字字符替换为下划线并转小写"""
    return _PAGE_ID_RE.sub("_", url).lower()


@dataclass
class PageAnalysis:
    """单个页面的记录"""

    id: str
    url: str
    title: str = "Untitled"
    type: str = "page"
    feature: str = "unknown"
    depth: int = 0
    description: str | None = None
    primary_actions: list[str] = field(default_factory=list)
    actions: list[str] = field(default_factory=list)
    interactions: list[str] = field(default_factory=list)
    links_to: list[str] = field(default_factory=list)
    cross_feature_links: dict[str, list[str]] = field(default_factory=dict)
    modals: list[str] = field(default_factory=list)
    observations: dict[str, Any] = field(default_factory=dict)
    discovered_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "url": self.url,
            "title": self.title,
            "type": self.type,
            "feature": self.feature,
            "depth": self.depth,
            "description": self.description,
            "primary_actions": list(self.primary_actions),
            "actions": list(self.actions),
            "interactions": list(self.interactions),
            "links_to": list(self.links_to),
            "cross_feature_links": {k: list(v) for k, v in self.cross_feature_links.items()},
            "modals": list(self.modals),
            "observations": dict(self.observations),
            "discovered_at": self.discovered_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass
class FeatureInfo:
    """站点地图中的功能条目"""

    id: str
    name: str
    entry_url: str
    priority: int | None = None
    page_count: int = 0
    action_count: int = 0
    # explored / sampling / incomplete
    status: str = "incomplete"
    duration_s: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "entry_url": self.entry_url,
            "priority": self.priority,
            "page_count": self.page_count,
            "action_count": self.action_count,
            "status": self.status,
            "duration_s": self.duration_s,
        }


@dataclass
class PatternInfo:
    """站点地图中的页面模式条目"""

    pattern_id: str
    page_type: str
    sample_pages: list[str] = field(default_factory=list)
    common_structure: dict[str, Any] = field(default_factory=dict)
    confidence: float = 0.0
    total_instances: int = 0
    explored: int = 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "pattern_id": self.pattern_id,
            "page_type": self.page_type,
            "sample_pages": list(self.sample_pages),
            "common_structure": dict(self.common_structure),
            "confidence": self.confidence,
            "total_instances": self.total_instances,
            "explored": self.explored,
        }


@dataclass
class CrossFeatureConnection:
    """功能之间的连接（按有序功能对聚合）"""

    from_feature: str
    to_feature: str
    connection_type: str = "navigation"
    link_count: int = 0
    bidirectional: bool = False
    pages: list[dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "from": self.from_feature,
            "to": self.to_feature,
            "connection_type": self.connection_type,
            "link_count": self.link_count,
            "bidirectional": self.bidirectional,
            "pages": [dict(p) for p in self.pages],
        }


@dataclass
class Sitemap:
    """站点地图"""

    name: str
    base_url: str
    explored_at: datetime = field(default_factory=datetime.now)
    duration_s: float = 0.0
    global_nav: list[dict[str, str]] = field(default_factory=list)
    features: dict[str, FeatureInfo] = field(default_factory=dict)
    pages: dict[str, PageAnalysis] = field(default_factory=dict)
    patterns: dict[str, PatternInfo] = field(default_factory=dict)
    connections: list[CrossFeatureConnection] = field(default_factory=list)
    summary: dict[str, int] = field(
        default_factory=lambda: {"total_connections": 0, "bidirectional_connections": 0}
    )
    stats: dict[str, Any] = field(
        default_factory=lambda: {"total_pages": 0, "pages_fully_explored": 0, "coverage": 0.0}
    )


class SitemapBuilder:
    """站点地图构建器"""

    def __init__(self, base_url: str, app_name: str = "Application"):
        self.sitemap = Sitemap(name=app_name, base_url=base_url)

    @property
    def pages(self) -> dict[str, PageAnalysis]:
        return self.sitemap.pages

    def add_page(self, url: str, **page_data: Any) -> PageAnalysis:
        """添加（或覆盖）一条完整分析过的页面记录"""
        page_id = generate_page_id(url)
        existing = self.sitemap.pages.get(page_id)
        page = PageAnalysis(
            id=page_id,
            url=url,
            title=page_data.get("title") or "Untitled",
            type=page_data.get("type") or "page",
            feature=page_data.get("feature") or "unknown",
            depth=page_data.get("depth") or 0,
            description=page_data.get("description"),
            primary_actions=list(page_data.get("primary_actions") or []),
            actions=list(page_data.get("actions") or []),
            interactions=list(page_data.get("interactions") or []),
            links_to=list(page_data.get("links_to") or []),
            cross_feature_links=dict(page_data.get("cross_feature_links") or {}),
            modals=list(page_data.get("modals") or []),
            observations=dict(page_data.get("observations") or {}),
        )
        if existing is not None:
            page.discovered_at = existing.discovered_at
        self.sitemap.pages[page_id] = page
        logger.info("[站点地图] 添加页面: %s (类型: %s)", url, page.type)
        return page

    def quick_catalog_page(self, url: str, pattern_id: str, feature: str, depth: int) -> PageAnalysis:
        """只登记模式命中的页面，不做完整分析"""
        page_id = generate_page_id(url)
        page = PageAnalysis(
            id=page_id,
            url=url,
            title="Pattern Match",
            type=PATTERN_MATCH_PAGE_TYPE,
            feature=feature,
            depth=depth,
            observations={"pattern_match": pattern_id},
        )
        self.sitemap.pages[page_id] = page
        logger.debug("[站点地图] 快速归档: %s (模式: %s)", url, pattern_id)
        return page

    def add_feature(self, feature: FeatureInfo) -> None:
        self.sitemap.features[feature.id] = feature
        logger.info("[站点地图] 添加功能: %s (%d 个页面)", feature.name, feature.page_count)

    def add_pattern(self, pattern: PatternInfo) -> None:
        self.sitemap.patterns[pattern.pattern_id] = pattern
        logger.info(
            "[站点地图] 添加模式: %s (%d 个实例)", pattern.page_type, pattern.total_instances
        )

    def add_cross_feature_ref(
        self,
        from_feature: str,
        to_feature: str,
        from_page: str,
        to_page: str,
        context: str,
    ) -> CrossFeatureConnection:
        """按 (来源功能, 目标功能) 聚合连接，反向连接存在时两者都标记为双向"""
        connection = next(
            (
                c
                for c in self.sitemap.connections
                if c.from_feature == from_feature and c.to_feature == to_feature
            ),
            None,
        )
        if connection is None:
            connection = CrossFeatureConnection(from_feature=from_feature, to_feature=to_feature)
            self.sitemap.connections.append(connection)
        connection.link_count += 1
        connection.pages.append({"from_page": from_page, "to_page": to_page, "context": context})

        reverse = next(
            (
                c
                for c in self.sitemap.connections
                if c.from_feature == to_feature and c.to_feature == from_feature
            ),
            None,
        )
        if reverse is not None:
            connection.bidirectional = True
            reverse.bidirectional = True
        return connection

    def add_global_nav_item(self, label: str, url: str) -> bool:
        """按 url 去重"""
        if any(item["url"] == url for item in self.sitemap.global_nav):
            return False
        self.sitemap.global_nav.append({"label": label, "url": url})
        logger.debug("[站点地图] 添加全局导航: %s", label)
        return True

    def find_matching_pattern(self, page_structure: dict[str, Any]) -> PatternInfo | None:
        """返回第一个结构吻合度不低于其置信度的模式"""
        for pattern in self.sitemap.patterns.values():
            if _compare_structures(page_structure, pattern.common_structure) >= pattern.confidence:
                return pattern
        return None

    def finalize(self, duration_s: float) -> Sitemap:
        """计算统计与覆盖率（可重复调用，每次重新计算）"""
        pages = list(self.sitemap.pages.values())
        total = len(pages)
        fully_explored = sum(1 for p in pages if p.type != PATTERN_MATCH_PAGE_TYPE)

        pages_by_type: dict[str, int] = {}
        actions_by_type: dict[str, int] = {}
        for page in pages:
            pages_by_type[page.type] = pages_by_type.get(page.type, 0) + 1
            for action in page.actions:
                actions_by_type[action] = actions_by_type.get(action, 0) + 1

        self.sitemap.stats = {
            "total_pages": total,
            "pages_fully_explored": fully_explored,
            "pages_quick_cataloged": total - fully_explored,
            "pages_by_type": pages_by_type,
            "actions_by_type": actions_by_type,
            "coverage": fully_explored / total * 100 if total > 0 else 0.0,
        }
        self.sitemap.summary = {
            "total_connections": len(self.sitemap.connections),
            "bidirectional_connections": sum(
                1 for c in self.sitemap.connections if c.bidirectional
            ),
        }
        self.sitemap.duration_s = duration_s
        self.sitemap.explored_at = datetime.now()

        logger.info(
            "[站点地图] 完成: 共 %d 个页面, 完整分析 %d 个, 覆盖率 %.2f%%",
            total,
            fully_explored,
            self.sitemap.stats["coverage"],
        )
        return self.sitemap

    def to_dict(self) -> dict[str, Any]:
        """导出为 sitemap.json 的结构"""
        sitemap = self.sitemap
        return {
            "metadata": {
                "name": sitemap.name,
                "base_url": sitemap.base_url,
                "explored_at": sitemap.explored_at.isoformat(),
                "duration_s": sitemap.duration_s,
                "explorer_version": EXPLORER_VERSION,
            },
            "navigation": {
                "global_nav": [dict(item) for item in sitemap.global_nav],
                "features": {fid: f.to_dict() for fid, f in sitemap.features.items()},
            },
            "pages": {pid: p.to_dict() for pid, p in sitemap.pages.items()},
            "patterns": {pid: p.to_dict() for pid, p in sitemap.patterns.items()},
            "cross_feature_graph": {
                "summary": dict(sitemap.summary),
                "edges": [c.to_dict() for c in sitemap.connections],
            },
            "stats": dict(sitemap.stats),
        }


def _compare_structures(actual: dict[str, Any], expected: dict[str, Any]) -> float:
    """expected 中各键取值相等的比例；expected 为空时为 0"""
    if not expected:
        return 0.0
    matches = sum(1 for key, value in expected.items() if actual.get(key) == value)
    return matches / len(expected)
