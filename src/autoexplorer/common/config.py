"""配置管理"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field

# 加载 .env 文件
load_dotenv()


class LLMConfig(BaseModel):
    """决策 Oracle（LLM）配置"""

    api_key: str = Field(default_factory=lambda: os.getenv("OPENAI_API_KEY", ""))
    api_base: str = Field(
        default_factory=lambda: os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
    )
    model: str = Field(default_factory=lambda: os.getenv("AI_MODEL", "gpt-4o-mini"))
    temperature: float = Field(
        default_factory=lambda: float(os.getenv("AI_TEMPERATURE", "0.1"))
    )
    max_tokens: int = Field(default_factory=lambda: int(os.getenv("AI_MAX_TOKENS", "4000")))
    # 单次 Oracle 调用的超时时间（秒），超时按失败处理并走降级默认值
    timeout_s: float = Field(default_factory=lambda: float(os.getenv("ORACLE_TIMEOUT_S", "30")))
    # 发送给 Oracle 的 HTML 最大长度，避免超出 token 限制
    max_html_chars: int = Field(
        default_factory=lambda: int(os.getenv("ORACLE_MAX_HTML_CHARS", "40000"))
    )


class BrowserConfig(BaseModel):
    """浏览器配置"""

    headless: bool = Field(default_factory=lambda: os.getenv("HEADLESS", "true").lower() == "true")
    viewport_width: int = Field(default_factory=lambda: int(os.getenv("VIEWPORT_WIDTH", "1280")))
    viewport_height: int = Field(default_factory=lambda: int(os.getenv("VIEWPORT_HEIGHT", "720")))
    timeout_ms: int = Field(default_factory=lambda: int(os.getenv("BROWSER_TIMEOUT_MS", "30000")))


class ExplorationConfig(BaseModel):
    """探索调度配置"""

    # 单个功能最多探索的页面数
    max_pages_per_feature: int = Field(
        default_factory=lambda: int(os.getenv("MAX_PAGES_PER_FEATURE", "50"))
    )
    # 单个功能内的最大导航深度
    max_depth: int = Field(default_factory=lambda: int(os.getenv("MAX_DEPTH", "5")))
    # 单个功能的探索时间上限（秒）
    feature_time_limit_s: float = Field(
        default_factory=lambda: float(os.getenv("FEATURE_TIME_LIMIT_S", "600"))
    )
    # 并行探索的功能数量（每个 worker 使用独立的浏览器页面）
    max_parallel_features: int = Field(
        default_factory=lambda: int(os.getenv("MAX_PARALLEL_FEATURES", "3"))
    )
    # 每探索多少个页面评估一次停止条件
    stop_check_interval: int = Field(
        default_factory=lambda: int(os.getenv("STOP_CHECK_INTERVAL", "5"))
    )
    # 弹窗判定的置信度阈值，低于该值不尝试关闭
    modal_confidence_threshold: float = Field(
        default_factory=lambda: float(os.getenv("MODAL_CONFIDENCE_THRESHOLD", "0.7"))
    )
    # 从导航分析中最多接收的功能数量
    max_features: int = Field(default_factory=lambda: int(os.getenv("MAX_FEATURES", "20")))


class PatternConfig(BaseModel):
    """页面模式匹配配置"""

    confidence_threshold: float = Field(
        default_factory=lambda: float(os.getenv("PATTERN_CONFIDENCE_THRESHOLD", "0.85"))
    )


class CacheConfig(BaseModel):
    """决策缓存配置"""

    ttl_s: float = Field(default_factory=lambda: float(os.getenv("DECISION_CACHE_TTL_S", "3600")))


class StorageConfig(BaseModel):
    """产物存储配置"""

    output_dir: str = Field(default_factory=lambda: os.getenv("OUTPUT_DIR", "runs"))


class Config(BaseModel):
    """全局配置"""

    llm: LLMConfig = Field(default_factory=LLMConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    exploration: ExplorationConfig = Field(default_factory=ExplorationConfig)
    pattern: PatternConfig = Field(default_factory=PatternConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)

    @classmethod
    def load(cls) -> "Config":
        """加载配置"""
        return cls()

    def ensure_dirs(self) -> None:
        """确保输出目录存在"""
        Path(self.storage.output_dir).mkdir(parents=True, exist_ok=True)


# 全局配置实例
config = Config.load()
