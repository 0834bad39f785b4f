"""pytest 全局配置和 fixtures

提供测试所需的基础设施和假的协作者（自动化提供方、决策 Oracle）。
"""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Callable

import pytest

# 添加项目路径
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from autoexplorer.common.exceptions import PageLoadError  # noqa: E402
from autoexplorer.common.llm.oracle import DecisionOracle, OracleKind, OracleRequest  # noqa: E402
from autoexplorer.explore.provider import (  # noqa: E402
    ActionKind,
    ActionOutcome,
    AutomationProvider,
    RawDocument,
)


# ============================================================================
# HTML 样例
# ============================================================================

LIST_PAGE_HTML = """
<html><head><title>Orders</title></head>
<body>
  <header class="top-bar"><nav class="menu"><a href="/orders">Orders</a><a href="/customers">Customers</a></nav></header>
  <main class="content flex">
    <section class="card list">
      <table class="data-table"><tr><td><a href="/orders/1">#1</a></td></tr></table>
      <button class="btn">New</button>
    </section>
  </main>
  <footer class="foot">footer</footer>
</body></html>
"""

FORM_PAGE_HTML = """
<html><head><title>Login</title></head>
<body>
  <div class="login-box">
    <form class="login-form">
      <input name="username" /><input name="password" type="password" />
      <button type="submit">Sign in</button>
    </form>
  </div>
</body></html>
"""

MODAL_PAGE_HTML = """
<html><body>
  <main class="content"><p>Dashboard</p></main>
  <div role="dialog" class="modal"><button class="close">x</button></div>
</body></html>
"""


@pytest.fixture
def list_page_html() -> str:
    return LIST_PAGE_HTML


@pytest.fixture
def form_page_html() -> str:
    return FORM_PAGE_HTML


@pytest.fixture
def modal_page_html() -> str:
    return MODAL_PAGE_HTML


def detail_page_html(order_id: int) -> str:
    """结构相同、只有内容不同的详情页"""
    return f"""
<html><head><title>Order {order_id}</title></head>
<body>
  <header class="top-bar"><nav class="menu"><a href="/orders">Back</a></nav></header>
  <main class="detail grid">
    <section class="card summary"><h1>Order {order_id}</h1><p>Total: {order_id * 10}</p></section>
    <section class="card items"><button class="btn">Edit</button><button class="btn">Delete</button></section>
  </main>
</body></html>
"""


@pytest.fixture
def detail_html() -> Callable[[int], str]:
    return detail_page_html


# ============================================================================
# 假的自动化提供方
# ============================================================================


class FakeProvider(AutomationProvider):
    """按 URL 返回固定 HTML 的提供方；未知 URL 视为加载失败"""

    def __init__(self, pages: dict[str, str], shared: dict[str, Any] | None = None):
        self.pages = pages
        self.shared = shared if shared is not None else {"actions": [], "forks": 0, "stopped": 0}
        self.current_url: str | None = None
        self.act_results: dict[str, ActionOutcome] = {}

    @property
    def actions(self) -> list[tuple[str | None, str, str | None]]:
        return self.shared["actions"]

    async def fork(self) -> "FakeProvider":
        self.shared["forks"] += 1
        child = FakeProvider(self.pages, self.shared)
        child.act_results = self.act_results
        return child

    async def stop(self) -> None:
        self.shared["stopped"] += 1

    async def navigate(self, url: str) -> str:
        if url not in self.pages:
            raise PageLoadError(url, "404")
        self.current_url = url
        return url

    async def read_document(self) -> RawDocument:
        html = self.pages.get(self.current_url or "", "")
        return RawDocument(html=html, text="", url=self.current_url or "", title="")

    async def act(self, selector: str | None, kind: ActionKind, value: str | None = None) -> ActionOutcome:
        kind = ActionKind(kind)
        self.actions.append((selector, kind.value, value))
        return self.act_results.get(selector or "", ActionOutcome.success(url=self.current_url))


@pytest.fixture
def fake_provider_factory() -> Callable[[dict[str, str]], FakeProvider]:
    return FakeProvider


# ============================================================================
# 假的决策 Oracle
# ============================================================================

Responder = Callable[[OracleRequest], Any]


class FakeOracle(DecisionOracle):
    """按判断类型返回预设输出

    预设值可以是：dict（序列化为 JSON）、str（原样返回）、异常实例（抛出）、
    或者接收请求返回上述任意一种的函数。未预设的类型抛出 RuntimeError。
    """

    def __init__(self, responses: dict[OracleKind, Any] | None = None, delay_s: float = 0.0):
        self.responses = dict(responses or {})
        self.delay_s = delay_s
        self.requests: list[OracleRequest] = []

    def calls(self, kind: OracleKind) -> list[OracleRequest]:
        return [r for r in self.requests if r.kind == kind]

    async def ask(self, request: OracleRequest) -> str:
        self.requests.append(request)
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if request.kind not in self.responses:
            raise RuntimeError(f"no canned response for {request.kind.value}")

        response = self.responses[request.kind]
        if callable(response):
            response = response(request)
        if isinstance(response, Exception):
            raise response
        if isinstance(response, (dict, list)):
            return json.dumps(response)
        return str(response)


@pytest.fixture
def fake_oracle_factory() -> Callable[..., FakeOracle]:
    return FakeOracle
