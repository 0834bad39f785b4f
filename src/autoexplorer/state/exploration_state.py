"""探索状态（工作队列引擎）

ExplorationState 是一次探索运行的聚合根：全局已访问页面、全局页面队列、导航栈、
访问历史、功能表与优先级队列、跨功能引用以及决策缓存都归它所有。

并发约定：
- ExplorationState 的所有读写都在同一把 RLock 内完成，可被多个功能 worker 共享
- FeatureState 自身的队列 / 已访问集合由正在探索该功能的 worker 独占，不加锁
"""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from ..common.constants import MISSING_PRIORITY
from ..common.exceptions import InvalidStateTransitionError, UnknownFeatureError
from ..common.logger import get_logger
from .cache import DecisionCache

logger = get_logger(__name__)


class FeatureStatus(str, Enum):
    """功能探索状态"""

    PENDING = "pending"
    EXPLORING = "exploring"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (FeatureStatus.COMPLETED, FeatureStatus.FAILED)


class ActionType(str, Enum):
    """页面上发现的可交互动作类型"""

    NAVIGATION = "navigation"
    NON_NAVIGATION = "non_navigation"
    CROSS_FEATURE = "cross_feature"
    MODAL_TRIGGER = "modal_trigger"
    FORM = "form"


@dataclass
class ActionInfo:
    """一个已发现的动作"""

    id: str
    selector: str
    type: ActionType
    description: str = ""
    target_url: str | None = None
    target_feature: str | None = None
    executed: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "selector": self.selector,
            "type": self.type.value,
            "description": self.description,
            "target_url": self.target_url,
            "target_feature": self.target_feature,
            "executed": self.executed,
        }


@dataclass
class CrossFeatureRef:
    """跨功能引用；同一 (来源页, 来源功能, 目标功能, 目标页) 只保留一条并累加 count"""

    source_url: str
    source_feature: str
    target_feature: str
    target_url: str
    trigger: str
    count: int = 1

    @property
    def key(self) -> tuple[str, str, str, str]:
        return (self.source_url, self.source_feature, self.target_feature, self.target_url)

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_url": self.source_url,
            "source_feature": self.source_feature,
            "target_feature": self.target_feature,
            "target_url": self.target_url,
            "trigger": self.trigger,
            "count": self.count,
        }


@dataclass
class PageVisit:
    """一条页面访问记录（历史只追加）"""

    url: str
    feature: str
    depth: int
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "feature": self.feature,
            "depth": self.depth,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class FeatureState:
    """单个功能的探索状态

    队列元素为 (url, depth)。同一时间只由一个 worker 操作。
    """

    id: str
    name: str
    entry_url: str
    priority: int | None = None
    description: str = ""
    visited_pages: set[str] = field(default_factory=set)
    page_queue: deque[tuple[str, int]] = field(default_factory=deque)
    actions: dict[str, ActionInfo] = field(default_factory=dict)
    cross_feature_refs: dict[str, list[str]] = field(default_factory=dict)
    status: FeatureStatus = FeatureStatus.PENDING
    error: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def effective_priority(self) -> int:
        return MISSING_PRIORITY if self.priority is None else self.priority

    @property
    def page_count(self) -> int:
        return len(self.visited_pages)

    def queue_page(self, url: str, depth: int = 0) -> bool:
        """未访问且未排队时入队"""
        if url in self.visited_pages:
            return False
        if any(queued == url for queued, _ in self.page_queue):
            return False
        self.page_queue.append((url, depth))
        return True

    def next_page(self) -> tuple[str, int] | None:
        return self.page_queue.popleft() if self.page_queue else None

    def mark_visited(self, url: str) -> bool:
        """标记已访问，返回是否为新页面"""
        if url in self.visited_pages:
            return False
        self.visited_pages.add(url)
        return True

    def add_cross_ref(self, target_feature: str, url: str) -> None:
        urls = self.cross_feature_refs.setdefault(target_feature, [])
        if url not in urls:
            urls.append(url)

    def duration_s(self) -> float | None:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "entry_url": self.entry_url,
            "priority": self.priority,
            "description": self.description,
            "status": self.status.value,
            "error": self.error,
            "page_count": self.page_count,
            "visited_pages": sorted(self.visited_pages),
            "actions": [a.to_dict() for a in self.actions.values()],
            "cross_feature_refs": {k: list(v) for k, v in self.cross_feature_refs.items()},
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_s": self.duration_s(),
        }


class ExplorationState:
    """探索运行的聚合根（线程安全）"""

    def __init__(self, cache: DecisionCache | None = None):
        self._lock = threading.RLock()
        self.cache = cache if cache is not None else DecisionCache()
        self._init_fields()

    def _init_fields(self) -> None:
        self.current_page: str | None = None
        self.current_feature: str | None = None
        self.current_depth = 0

        self._visited_pages: set[str] = set()
        self._page_queue: deque[str] = deque()
        self._navigation_stack: list[str] = []
        self._history: list[PageVisit] = []

        self._features: dict[str, FeatureState] = {}
        self._feature_queue: list[str] = []

        self._cross_refs: dict[tuple[str, str, str, str], CrossFeatureRef] = {}

        self.started_at = datetime.now()
        self._started_monotonic = time.monotonic()
        self.last_activity_at = self.started_at
        self.total_actions_discovered = 0

    # ------------------------------------------------------------------
    # 页面
    # ------------------------------------------------------------------

    def add_visited_page(self, url: str, feature: str, depth: int | None = None) -> bool:
        """记录一次页面访问

        已访问集合是幂等的；访问历史每次都会追加。

        Returns:
            是否是首次访问该页面
        """
        with self._lock:
            is_new = url not in self._visited_pages
            self._visited_pages.add(url)
            self.last_activity_at = datetime.now()
            self._history.append(
                PageVisit(
                    url=url,
                    feature=feature,
                    depth=self.current_depth if depth is None else depth,
                )
            )
            return is_new

    def claim_page(self, url: str, feature: str, depth: int | None = None) -> bool:
        """页面未被任何功能访问时记为已访问并返回 True，否则返回 False

        检查和写入在同一把锁内完成，并行的 worker 不会重复探索同一页面。
        """
        with self._lock:
            if url in self._visited_pages:
                return False
            self.add_visited_page(url, feature, depth)
            return True

    def is_page_visited(self, url: str) -> bool:
        with self._lock:
            return url in self._visited_pages

    def queue_page(self, url: str) -> bool:
        """未访问且未排队时入队"""
        with self._lock:
            if url in self._visited_pages or url in self._page_queue:
                return False
            self._page_queue.append(url)
            return True

    def get_next_page(self) -> str | None:
        with self._lock:
            return self._page_queue.popleft() if self._page_queue else None

    @property
    def total_pages_explored(self) -> int:
        with self._lock:
            return len(self._visited_pages)

    @property
    def history(self) -> list[PageVisit]:
        with self._lock:
            return list(self._history)

    @property
    def visited_pages(self) -> set[str]:
        with self._lock:
            return set(self._visited_pages)

    # ------------------------------------------------------------------
    # 导航栈
    # ------------------------------------------------------------------

    def push_navigation(self, url: str) -> None:
        with self._lock:
            self._navigation_stack.append(url)
            self.current_page = url
            self.current_depth = len(self._navigation_stack) - 1

    def pop_navigation(self) -> str | None:
        with self._lock:
            if not self._navigation_stack:
                return None
            url = self._navigation_stack.pop()
            self.current_page = self._navigation_stack[-1] if self._navigation_stack else None
            self.current_depth = max(0, len(self._navigation_stack) - 1)
            return url

    # ------------------------------------------------------------------
    # 功能
    # ------------------------------------------------------------------

    def add_feature(self, feature: FeatureState) -> bool:
        """注册功能并放入优先级队列；重复 id 忽略"""
        with self._lock:
            if feature.id in self._features:
                logger.warning("[状态] 功能已存在，忽略: %s", feature.id)
                return False
            self._features[feature.id] = feature
            self._feature_queue.append(feature.id)
        logger.info("[状态] 添加功能: %s (优先级: %s)", feature.id, feature.effective_priority)
        return True

    def get_feature(self, feature_id: str) -> FeatureState:
        with self._lock:
            feature = self._features.get(feature_id)
            if feature is None:
                raise UnknownFeatureError(feature_id)
            return feature

    def has_feature(self, feature_id: str) -> bool:
        with self._lock:
            return feature_id in self._features

    @property
    def features(self) -> list[FeatureState]:
        with self._lock:
            return list(self._features.values())

    def get_next_feature(self) -> FeatureState | None:
        """弹出优先级数值最小的待探索功能；相同优先级按入队顺序

        排队期间已被标记为终态（例如取消）的功能直接丢弃。
        """
        with self._lock:
            # sorted 是稳定排序，相同优先级保持 FIFO
            self._feature_queue = sorted(
                self._feature_queue,
                key=lambda fid: self._features[fid].effective_priority,
            )
            while self._feature_queue:
                feature = self._features[self._feature_queue.pop(0)]
                if not feature.status.is_terminal:
                    return feature
            return None

    def update_feature_status(
        self,
        feature_id: str,
        status: FeatureStatus,
        error: str | None = None,
    ) -> FeatureState:
        """推进功能状态机

        pending -> exploring -> {completed, failed}；pending 也可直接 failed（取消）。

        Raises:
            UnknownFeatureError: 功能不存在
            InvalidStateTransitionError: 非法迁移
        """
        status = FeatureStatus(status)
        with self._lock:
            feature = self.get_feature(feature_id)
            current = feature.status

            allowed = not current.is_terminal and (
                status == FeatureStatus.EXPLORING
                or status == FeatureStatus.FAILED
                or (status == FeatureStatus.COMPLETED and current == FeatureStatus.EXPLORING)
            )
            if not allowed:
                raise InvalidStateTransitionError(feature_id, current.value, status.value)

            feature.status = status
            feature.error = error
            if status == FeatureStatus.EXPLORING:
                if feature.started_at is None:
                    feature.started_at = datetime.now()
                self.current_feature = feature_id
            if status.is_terminal:
                feature.completed_at = datetime.now()
            self.last_activity_at = datetime.now()

        if error:
            logger.info("[状态] 功能状态: %s -> %s (%s)", feature_id, status.value, error)
        else:
            logger.info("[状态] 功能状态: %s -> %s", feature_id, status.value)
        return feature

    def reset_feature(self, feature_id: str) -> FeatureState:
        """把功能恢复为 pending 并重新入队（清空该功能自身的探索进度）"""
        with self._lock:
            feature = self.get_feature(feature_id)
            feature.status = FeatureStatus.PENDING
            feature.error = None
            feature.started_at = None
            feature.completed_at = None
            feature.visited_pages.clear()
            feature.page_queue.clear()
            if feature_id not in self._feature_queue:
                self._feature_queue.append(feature_id)
        logger.info("[状态] 功能已重置: %s", feature_id)
        return feature

    def add_action_to_feature(self, feature_id: str, action: ActionInfo) -> bool:
        """登记动作，返回是否为新动作"""
        with self._lock:
            feature = self.get_feature(feature_id)
            is_new = action.id not in feature.actions
            feature.actions[action.id] = action
            if is_new:
                self.total_actions_discovered += 1
            return is_new

    # ------------------------------------------------------------------
    # 跨功能引用
    # ------------------------------------------------------------------

    def record_cross_feature_ref(
        self,
        source_url: str,
        source_feature: str,
        target_feature: str,
        target_url: str,
        trigger: str,
    ) -> CrossFeatureRef:
        """记录跨功能引用（存在则 count+1，否则新建）"""
        key = (source_url, source_feature, target_feature, target_url)
        with self._lock:
            ref = self._cross_refs.get(key)
            if ref is None:
                ref = CrossFeatureRef(
                    source_url=source_url,
                    source_feature=source_feature,
                    target_feature=target_feature,
                    target_url=target_url,
                    trigger=trigger,
                )
                self._cross_refs[key] = ref
            else:
                ref.count += 1

        logger.debug("[状态] 跨功能引用: %s -> %s (%s)", source_feature, target_feature, target_url)
        return ref

    @property
    def cross_feature_refs(self) -> list[CrossFeatureRef]:
        with self._lock:
            return list(self._cross_refs.values())

    # ------------------------------------------------------------------
    # 决策缓存
    # ------------------------------------------------------------------

    def get_cache_entry(self, key: str) -> Any | None:
        return self.cache.get(key)

    def set_cache_entry(self, key: str, value: Any, ttl: float | None = None) -> None:
        self.cache.set(key, value, ttl)

    def clear_expired_cache(self) -> int:
        return self.cache.sweep_expired()

    # ------------------------------------------------------------------
    # 统计
    # ------------------------------------------------------------------

    def get_exploration_stats(self) -> dict[str, Any]:
        """只读统计快照"""
        with self._lock:
            features = list(self._features.values())
            duration_s = time.monotonic() - self._started_monotonic
            return {
                "started_at": self.started_at.isoformat(),
                "last_activity_at": self.last_activity_at.isoformat(),
                "duration_s": duration_s,
                "duration_minutes": round(duration_s / 60, 2),
                "total_features": len(features),
                "features_completed": sum(
                    1 for f in features if f.status == FeatureStatus.COMPLETED
                ),
                "features_failed": sum(1 for f in features if f.status == FeatureStatus.FAILED),
                "feature_queue_size": len(self._feature_queue),
                "total_pages_explored": len(self._visited_pages),
                "total_feature_pages": sum(f.page_count for f in features),
                "page_queue_size": len(self._page_queue),
                "history_size": len(self._history),
                "total_actions_discovered": self.total_actions_discovered,
                "total_cross_feature_refs": len(self._cross_refs),
                "cache_size": self.cache.size(),
                "features": [
                    {
                        "id": f.id,
                        "name": f.name,
                        "status": f.status.value,
                        "page_count": f.page_count,
                        "action_count": len(f.actions),
                        "duration_s": f.duration_s(),
                    }
                    for f in features
                ],
            }

    def reset(self) -> None:
        """清空所有状态（包括缓存）"""
        with self._lock:
            self._init_fields()
            self.cache.clear()
        logger.info("[状态] 探索状态已重置")
