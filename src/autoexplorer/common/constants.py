"""常量定义"""

from __future__ import annotations

# ============================================================================
# 功能优先级（数值越小越重要）
# ============================================================================

PRIMARY_PRIORITY_MAX = 300
SECONDARY_PRIORITY_MAX = 600
# 未给出优先级的功能排在最后
MISSING_PRIORITY = 999

# ============================================================================
# 页面指纹
# ============================================================================

# 类名签名最多保留的 token 数量
MAX_CLASS_SIGNATURE_TOKENS = 20
# 超过该长度的类名视为动态生成，不参与签名
MAX_CLASS_TOKEN_LENGTH = 20
# 语义标签（顺序固定）
SEMANTIC_TAGS = ("header", "nav", "main", "aside", "footer", "article", "section")
SEMANTIC_SEPARATOR = "+"

# ============================================================================
# 模式匹配 / 缓存
# ============================================================================

DEFAULT_PATTERN_THRESHOLD = 0.85
# 新注册模式的初始置信度
INITIAL_PATTERN_CONFIDENCE = 0.9
# 决策缓存默认 TTL（秒）
DEFAULT_CACHE_TTL_S = 3600.0

# ============================================================================
# 图分析
# ============================================================================

DEFAULT_PATH_MAX_DEPTH = 5
MOST_CONNECTED_LIMIT = 5
INBOUND_IMPORTANCE_WEIGHT = 0.6
OUTBOUND_IMPORTANCE_WEIGHT = 0.4

# 快速归档页面的类型标记
PATTERN_MATCH_PAGE_TYPE = "pattern_match"
