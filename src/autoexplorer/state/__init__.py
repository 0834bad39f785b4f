"""探索状态与决策缓存"""

from .cache import CacheEntry, DecisionCache, make_cache_key
from .exploration_state import (
    ActionInfo,
    ActionType,
    CrossFeatureRef,
    ExplorationState,
    FeatureState,
    FeatureStatus,
    PageVisit,
)

__all__ = [
    "CacheEntry",
    "DecisionCache",
    "make_cache_key",
    "ActionInfo",
    "ActionType",
    "CrossFeatureRef",
    "ExplorationState",
    "FeatureState",
    "FeatureStatus",
    "PageVisit",
]
