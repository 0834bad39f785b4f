"""自定义异常类

定义项目中使用的所有自定义异常，用于更精细的错误处理。

分三类：
- 调用方错误（不变量被破坏）：立即抛出，拒绝操作
- 外部协作者的瞬时故障（LLM / 浏览器）：由调用处就地降级，不向上传播
- 存储 / 配置错误
"""

from __future__ import annotations


class AutoExplorerError(Exception):
    """AutoExplorer 基础异常类

    所有自定义异常的基类。
    """
    pass


# ============================================================================
# 不变量错误
# ============================================================================


class InvariantViolationError(AutoExplorerError):
    """不变量被破坏（调用方 bug）的基类"""
    pass


class InvalidStateTransitionError(InvariantViolationError):
    """功能状态机的非法迁移

    例如：未经过 exploring 直接标记为 completed。
    """
    def __init__(self, feature_id: str, current: str, target: str):
        super().__init__(f"功能 {feature_id} 不允许从 {current} 迁移到 {target}")
        self.feature_id = feature_id
        self.current = current
        self.target = target


class UnknownFeatureError(InvariantViolationError):
    """引用了未注册的功能"""
    def __init__(self, feature_id: str):
        super().__init__(f"未知功能: {feature_id}")
        self.feature_id = feature_id


class InvalidTTLError(InvariantViolationError):
    """缓存 TTL 非法（负数）"""
    def __init__(self, ttl: float):
        super().__init__(f"TTL 不能为负数: {ttl}")
        self.ttl = ttl


# ============================================================================
# 决策 Oracle（LLM）错误
# ============================================================================


class OracleError(AutoExplorerError):
    """决策 Oracle 相关错误的基类"""
    pass


class OracleResponseError(OracleError):
    """Oracle 响应解析错误

    当 Oracle 返回的响应无法解析为预期格式时抛出。
    """
    def __init__(self, message: str, raw_response: str | None = None):
        super().__init__(message)
        self.raw_response = raw_response


# ============================================================================
# 自动化（浏览器）错误
# ============================================================================


class AutomationError(AutoExplorerError):
    """自动化能力提供方相关错误的基类"""
    pass


class PageLoadError(AutomationError):
    """页面加载失败

    当页面无法在超时时间内加载完成时抛出。
    """
    def __init__(self, url: str, message: str = "页面加载失败"):
        super().__init__(f"{message}: {url}")
        self.url = url


class ProviderNotStartedError(AutomationError):
    """提供方尚未启动"""
    pass


# ============================================================================
# 存储 / 配置错误
# ============================================================================


class StorageError(AutoExplorerError):
    """存储相关错误的基类"""
    pass


class ArtifactNotFoundError(StorageError):
    """产物文件不存在"""
    def __init__(self, path: str):
        super().__init__(f"产物文件不存在: {path}")
        self.path = path


class ConfigError(AutoExplorerError):
    """配置相关错误"""
    pass
