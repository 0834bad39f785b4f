"""带过期时间的决策缓存

用于记忆 Oracle 的判断结果：同一页面 / 同一类判断在 TTL 窗口内不重复调用 Oracle。
缓存本身不关心值的类型，键由调用方构造（见 make_cache_key）。
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Any

from ..common.constants import DEFAULT_CACHE_TTL_S
from ..common.exceptions import InvalidTTLError
from ..common.logger import get_logger

logger = get_logger(__name__)


@dataclass
class CacheEntry:
    """缓存条目"""

    value: Any
    ttl: float
    created_at: float = field(default_factory=time.monotonic)

    def is_expired(self, now: float | None = None) -> bool:
        now = time.monotonic() if now is None else now
        return now - self.created_at > self.ttl


def make_cache_key(kind: str, *parts: Any) -> str:
    """构造缓存键，例如 make_cache_key("page-analysis", url)"""
    return ":".join([kind, *(str(p) for p in parts)])


class DecisionCache:
    """按 TTL 惰性淘汰的键值缓存（线程安全）

    过期条目在读取时删除，也可以通过 sweep_expired 批量清理。
    除 TTL 之外不限制容量。
    """

    def __init__(self, default_ttl: float = DEFAULT_CACHE_TTL_S):
        if default_ttl < 0:
            raise InvalidTTLError(default_ttl)
        self.default_ttl = default_ttl
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.RLock()

    def get(self, key: str) -> Any | None:
        """读取缓存，过期则删除并返回 None"""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.is_expired():
                del self._entries[key]
                logger.debug("[缓存] 条目已过期: %s", key)
                return None
            return entry.value

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """写入缓存

        Raises:
            InvalidTTLError: ttl 为负数
        """
        ttl = self.default_ttl if ttl is None else ttl
        if ttl < 0:
            raise InvalidTTLError(ttl)
        with self._lock:
            self._entries[key] = CacheEntry(value=value, ttl=ttl)

    def sweep_expired(self) -> int:
        """删除所有过期条目，返回删除数量"""
        now = time.monotonic()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug("[缓存] 清理过期条目 %d 个", len(expired))
        return len(expired)

    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return self.size()

    def __contains__(self, key: object) -> bool:
        # 只查看，不淘汰
        with self._lock:
            entry = self._entries.get(key)  # type: ignore[arg-type]
            return entry is not None and not entry.is_expired()
