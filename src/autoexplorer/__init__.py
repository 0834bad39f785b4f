"""AutoExplorer - LLM 引导的 Web 应用自动探索引擎"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

__version__ = "0.1.0"

if TYPE_CHECKING:
    from .explore.runner import ExplorationRunner as ExplorationRunner
    from .explore.provider import PlaywrightProvider as PlaywrightProvider
    from .common.llm.judge import DecisionJudge as DecisionJudge

__all__ = [
    "__version__",
    "ExplorationRunner",
    "PlaywrightProvider",
    "DecisionJudge",
]


def __getattr__(name: str) -> Any:
    """Lazy exports to avoid importing heavy runtime dependencies at package import time."""
    if name == "ExplorationRunner":
        from .explore.runner import ExplorationRunner

        return ExplorationRunner
    if name == "PlaywrightProvider":
        from .explore.provider import PlaywrightProvider

        return PlaywrightProvider
    if name == "DecisionJudge":
        from .common.llm.judge import DecisionJudge

        return DecisionJudge
    raise AttributeError(f"module 'autoexplorer' has no attribute '{name}'")
