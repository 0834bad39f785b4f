"""页面结构指纹与模式匹配"""

from .extractor import (
    PageFingerprint,
    PageLayout,
    count_tags,
    detect_layout,
    detect_semantic_structure,
    extract_class_signature,
    extract_fingerprint,
)
from .matcher import (
    DetectedPattern,
    PatternMatcher,
    PatternMatchResult,
    calculate_similarity,
    class_jaccard,
)

__all__ = [
    "PageFingerprint",
    "PageLayout",
    "count_tags",
    "detect_layout",
    "detect_semantic_structure",
    "extract_class_signature",
    "extract_fingerprint",
    "DetectedPattern",
    "PatternMatcher",
    "PatternMatchResult",
    "calculate_similarity",
    "class_jaccard",
]
