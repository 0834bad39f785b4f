"""页面模式匹配器

维护已见过的页面结构（模式）注册表。新页面的指纹与每个模式打分，
最高分超过阈值即视为同一类页面，可以跳过完整的 Oracle 分析，只做快速归档。
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..common.constants import DEFAULT_PATTERN_THRESHOLD, INITIAL_PATTERN_CONFIDENCE
from ..common.logger import get_logger
from .extractor import PageFingerprint, extract_fingerprint

logger = get_logger(__name__)


# 各项相似度的权重；总分按权重之和归一化
LAYOUT_WEIGHT = 15
SECTION_WEIGHT = 15
FORM_WEIGHT = 10
BUTTON_WEIGHT = 10
LINK_WEIGHT = 15
TABLE_WEIGHT = 2
GRID_FLEX_WEIGHT = 2
CARD_WEIGHT = 2
MODAL_WEIGHT = 4
CLASS_WEIGHT = 20
SEMANTIC_WEIGHT = 10
TOTAL_WEIGHT = (
    LAYOUT_WEIGHT
    + SECTION_WEIGHT
    + FORM_WEIGHT
    + BUTTON_WEIGHT
    + LINK_WEIGHT
    + TABLE_WEIGHT
    + GRID_FLEX_WEIGHT
    + CARD_WEIGHT
    + MODAL_WEIGHT
    + CLASS_WEIGHT
    + SEMANTIC_WEIGHT
)


@dataclass
class DetectedPattern:
    """已注册的页面模式"""

    id: str
    name: str
    fingerprint: PageFingerprint
    example_urls: list[str] = field(default_factory=list)
    confidence: float = INITIAL_PATTERN_CONFIDENCE
    frequency: int = 1
    last_seen_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "fingerprint": self.fingerprint.to_dict(),
            "example_urls": list(self.example_urls),
            "confidence": self.confidence,
            "frequency": self.frequency,
            "last_seen_at": self.last_seen_at.isoformat(),
        }


@dataclass
class PatternMatchResult:
    """一次匹配的结果（最佳候选）"""

    pattern: DetectedPattern
    similarity: float
    matched: bool

    @property
    def confidence(self) -> float:
        return self.similarity


def _count_closeness(a: int, b: int, weight: float, step: float) -> float:
    """差值每增加 1 扣 step 分，最低为 0"""
    return max(0.0, weight - abs(a - b) * step)


def _ratio_closeness(a: int, b: int, weight: float, scale: float) -> float:
    """按相对差值（差值 / 较大值）线性扣分"""
    larger = max(a, b)
    if larger == 0:
        return weight
    ratio = abs(a - b) / larger
    return max(0.0, weight - ratio * scale)


def class_jaccard(a: tuple[str, ...], b: tuple[str, ...]) -> float:
    """类名签名的 Jaccard 相似度；两个空签名视为相同"""
    set_a, set_b = set(a), set(b)
    union = set_a | set_b
    if not union:
        return 1.0
    return len(set_a & set_b) / len(union)


def calculate_similarity(a: PageFingerprint, b: PageFingerprint) -> float:
    """计算两个指纹的结构相似度，结果在 [0, 1]

    相同指纹得 1.0；布局、计数、布尔信号、类名和语义结构全都不同的页面接近 0。
    """
    score = 0.0

    if a.layout == b.layout:
        score += LAYOUT_WEIGHT

    score += _count_closeness(a.main_section_count, b.main_section_count, SECTION_WEIGHT, 5)
    score += _count_closeness(a.form_count, b.form_count, FORM_WEIGHT, 5)
    score += _ratio_closeness(a.button_count, b.button_count, BUTTON_WEIGHT, 100)
    score += _ratio_closeness(a.link_count, b.link_count, LINK_WEIGHT, 50)

    if a.has_table == b.has_table:
        score += TABLE_WEIGHT
    if a.has_grid_or_flex == b.has_grid_or_flex:
        score += GRID_FLEX_WEIGHT
    if a.has_card == b.has_card:
        score += CARD_WEIGHT
    if abs(a.modal_count - b.modal_count) <= 1:
        score += MODAL_WEIGHT

    score += class_jaccard(a.class_signature, b.class_signature) * CLASS_WEIGHT

    if a.semantic_structure == b.semantic_structure:
        score += SEMANTIC_WEIGHT

    return min(1.0, score / TOTAL_WEIGHT)


class PatternMatcher:
    """页面模式注册表

    注册与匹配都会修改共享注册表（匹配成功时更新频次），
    两者通过同一把锁串行化，可以被多个探索 worker 共用。
    """

    def __init__(self, confidence_threshold: float = DEFAULT_PATTERN_THRESHOLD):
        self.confidence_threshold = confidence_threshold
        # 插入有序：相同分数时先注册者胜出
        self._patterns: dict[str, DetectedPattern] = {}
        self._lock = threading.RLock()

    @property
    def patterns(self) -> list[DetectedPattern]:
        with self._lock:
            return list(self._patterns.values())

    def register(
        self,
        page_type: str,
        fingerprint: PageFingerprint,
        examples: list[str] | tuple[str, ...] = (),
    ) -> DetectedPattern:
        """注册一个新模式（不做近似去重，去重只发生在匹配阶段）"""
        example_urls: list[str] = []
        for url in (fingerprint.url, *examples):
            if url and url not in example_urls:
                example_urls.append(url)

        pattern = DetectedPattern(
            id=f"pattern_{uuid.uuid4().hex[:12]}",
            name=page_type,
            fingerprint=fingerprint,
            example_urls=example_urls,
        )
        with self._lock:
            self._patterns[pattern.id] = pattern
            total = len(self._patterns)

        logger.info("[模式] 注册新模式: %s (%s)，当前共 %d 个", page_type, fingerprint.url, total)
        return pattern

    def match(self, fingerprint: PageFingerprint) -> PatternMatchResult | None:
        """在注册表中查找最相似的模式

        Returns:
            注册表为空时返回 None；否则返回最佳候选，
            仅当相似度 >= 阈值时 matched=True 并更新该模式的统计
        """
        with self._lock:
            best: DetectedPattern | None = None
            best_score = -1.0
            for pattern in self._patterns.values():
                score = calculate_similarity(fingerprint, pattern.fingerprint)
                if score > best_score:
                    best, best_score = pattern, score

            if best is None:
                return None

            matched = best_score >= self.confidence_threshold
            if matched:
                best.frequency += 1
                best.last_seen_at = datetime.now()
                if fingerprint.url and fingerprint.url not in best.example_urls:
                    best.example_urls.append(fingerprint.url)

        if matched:
            logger.debug(
                "[模式] %s 匹配模式 %s (相似度 %.3f, 频次 %d)",
                fingerprint.url,
                best.name,
                best_score,
                best.frequency,
            )
        return PatternMatchResult(pattern=best, similarity=best_score, matched=matched)

    def analyze_page(self, html: str, url: str) -> tuple[PageFingerprint, PatternMatchResult | None]:
        """提取指纹并立即匹配"""
        fingerprint = extract_fingerprint(html, url)
        return fingerprint, self.match(fingerprint)

    def calculate_similarity(self, a: PageFingerprint, b: PageFingerprint) -> float:
        return calculate_similarity(a, b)

    def get_statistics(self) -> dict[str, Any]:
        """模式统计（按频次降序）"""
        with self._lock:
            patterns = sorted(self._patterns.values(), key=lambda p: p.frequency, reverse=True)
            return {
                "total_patterns": len(patterns),
                "total_matches": sum(p.frequency - 1 for p in patterns),
                "patterns": [
                    {
                        "id": p.id,
                        "name": p.name,
                        "frequency": p.frequency,
                        "example_count": len(p.example_urls),
                    }
                    for p in patterns
                ],
            }

    def to_list(self) -> list[dict[str, Any]]:
        with self._lock:
            return [p.to_dict() for p in self._patterns.values()]

    def reset(self) -> None:
        """清空注册表"""
        with self._lock:
            self._patterns.clear()
        logger.info("[模式] 注册表已清空")
