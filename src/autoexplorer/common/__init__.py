"""公共基础设施：配置、日志、异常、常量

llm / storage 子包需要显式导入，避免与 state 之间形成循环依赖。
"""

from .config import Config, config
from .exceptions import AutoExplorerError
from .logger import get_logger

__all__ = [
    "AutoExplorerError",
    "Config",
    "config",
    "get_logger",
]
