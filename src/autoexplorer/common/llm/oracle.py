"""决策 Oracle

Oracle 是一个黑盒：输入页面原始数据和上下文，输出（期望是）JSON 的文本。
这里只负责"问"，不负责解析和降级；解析见 judgments.py，缓存与降级见 judge.py。
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from ..config import config
from ..exceptions import ConfigError, OracleResponseError
from ..logger import get_logger
from ..utils.paths import get_prompt_path
from ..utils.prompt_template import render_template

logger = get_logger(__name__)


class OracleKind(str, Enum):
    """Oracle 判断类型"""

    MODAL_DETECT = "modal-detect"
    LOGIN_DETECT = "login-detect"
    STOPPING_EVAL = "stopping-eval"
    NAVIGATION_ANALYSIS = "navigation-analysis"
    PAGE_ANALYSIS = "page-analysis"


# 每种判断对应的提示词模板
PROMPT_FILES: dict[OracleKind, str] = {
    OracleKind.MODAL_DETECT: "modal_detect.yaml",
    OracleKind.LOGIN_DETECT: "login_detect.yaml",
    OracleKind.STOPPING_EVAL: "stopping_eval.yaml",
    OracleKind.NAVIGATION_ANALYSIS: "navigation_analysis.yaml",
    OracleKind.PAGE_ANALYSIS: "page_analysis.yaml",
}


@dataclass
class OracleRequest:
    """一次 Oracle 请求"""

    kind: OracleKind
    url: str = ""
    html: str = ""
    text: str = ""
    title: str = ""
    context: dict[str, Any] = field(default_factory=dict)


class DecisionOracle(ABC):
    """决策 Oracle 接口"""

    @abstractmethod
    async def ask(self, request: OracleRequest) -> str:
        """返回 Oracle 的原始文本输出"""


def truncate_html(html: str, max_chars: int) -> str:
    if len(html) <= max_chars:
        return html
    return html[:max_chars] + "...[truncated]"


class LLMDecisionOracle(DecisionOracle):
    """基于 ChatOpenAI 的决策 Oracle"""

    def __init__(
        self,
        api_key: str | None = None,
        api_base: str | None = None,
        model: str | None = None,
        max_html_chars: int | None = None,
    ):
        self.api_key = api_key or config.llm.api_key
        self.api_base = api_base or config.llm.api_base
        self.model = model or config.llm.model
        self.max_html_chars = max_html_chars or config.llm.max_html_chars

        if not self.api_key:
            raise ConfigError("OPENAI_API_KEY not set")

        self.llm = ChatOpenAI(
            api_key=self.api_key,
            base_url=self.api_base,
            model=self.model,
            temperature=config.llm.temperature,
            max_tokens=config.llm.max_tokens,
        )

    def build_messages(self, request: OracleRequest) -> list[SystemMessage | HumanMessage]:
        """按判断类型渲染系统提示词和用户提示词"""
        template_path = get_prompt_path(PROMPT_FILES[request.kind])
        variables = {
            "url": request.url,
            "title": request.title or "",
            "html": truncate_html(request.html, self.max_html_chars),
            "text": request.text,
            **request.context,
        }
        system_prompt = render_template(template_path, section="system_prompt")
        user_prompt = render_template(template_path, section="user_prompt", variables=variables)
        return [
            SystemMessage(content=system_prompt),
            HumanMessage(content=user_prompt),
        ]

    async def ask(self, request: OracleRequest) -> str:
        messages = self.build_messages(request)
        logger.debug("[Oracle] 请求 %s: %s", request.kind.value, request.url)
        response = await self.llm.ainvoke(messages)
        content = response.content
        if isinstance(content, list):
            content = "".join(
                part.get("text", "") if isinstance(part, dict) else str(part) for part in content
            )
        if not str(content).strip():
            raise OracleResponseError(f"Oracle 返回空响应: {request.kind.value}", raw_response=str(content))
        return str(content)
