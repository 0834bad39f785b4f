"""自动化能力提供方

核心只依赖三个操作：navigate / read_document / act。
PlaywrightProvider 是基于 Playwright 异步 API 的实现；fork() 在同一个浏览器上下文中
打开新页面，供并行的功能 worker 使用（共享登录态，互不干扰导航）。
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from ..common.config import config
from ..common.exceptions import PageLoadError, ProviderNotStartedError
from ..common.logger import get_logger

if TYPE_CHECKING:
    from playwright.async_api import Browser, BrowserContext, Page, Playwright

logger = get_logger(__name__)


class ActionKind(str, Enum):
    """页面操作类型"""

    CLICK = "click"
    FILL = "fill"
    WAIT = "wait"
    PRESS = "press"


@dataclass
class RawDocument:
    """页面原始数据"""

    html: str
    text: str
    url: str
    title: str = ""


@dataclass
class ActionOutcome:
    """一次页面操作的结果；非 success 一律视为可恢复的失败"""

    status: str
    message: str = ""
    url: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == "success"

    @classmethod
    def success(cls, message: str = "", url: str | None = None) -> "ActionOutcome":
        return cls(status="success", message=message, url=url)

    @classmethod
    def error(cls, message: str) -> "ActionOutcome":
        return cls(status="error", message=message)


class AutomationProvider(ABC):
    """自动化能力提供方接口"""

    async def start(self) -> None:
        """启动（默认无操作）"""

    async def stop(self) -> None:
        """释放资源（默认无操作）"""

    @abstractmethod
    async def fork(self) -> "AutomationProvider":
        """创建一个共享会话、独立导航的新提供方（已启动）"""

    @abstractmethod
    async def navigate(self, url: str) -> str:
        """打开 URL，返回（可能发生重定向后的）当前 URL

        Raises:
            PageLoadError: 页面无法加载
        """

    @abstractmethod
    async def read_document(self) -> RawDocument:
        """读取当前页面"""

    @abstractmethod
    async def act(self, selector: str | None, kind: ActionKind, value: str | None = None) -> ActionOutcome:
        """在当前页面上执行操作，不抛出异常"""

    async def __aenter__(self) -> "AutomationProvider":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()


class PlaywrightProvider(AutomationProvider):
    """基于 Playwright 的提供方"""

    def __init__(
        self,
        headless: bool | None = None,
        viewport_width: int | None = None,
        viewport_height: int | None = None,
        timeout_ms: int | None = None,
    ):
        self.headless = headless if headless is not None else config.browser.headless
        self.viewport_width = viewport_width or config.browser.viewport_width
        self.viewport_height = viewport_height or config.browser.viewport_height
        self.timeout_ms = timeout_ms or config.browser.timeout_ms

        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None
        self._page: Page | None = None
        # fork 出来的提供方只拥有自己的页面
        self._owns_browser = True

    @property
    def page(self) -> "Page":
        if self._page is None:
            raise ProviderNotStartedError("Browser provider not started")
        return self._page

    async def start(self) -> None:
        from playwright.async_api import async_playwright

        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(headless=self.headless)
        self._context = await self._browser.new_context(
            viewport={"width": self.viewport_width, "height": self.viewport_height},
        )
        self._context.set_default_timeout(self.timeout_ms)
        self._page = await self._context.new_page()
        logger.info("[浏览器] 已启动 (headless=%s)", self.headless)

    async def fork(self) -> "PlaywrightProvider":
        if self._context is None:
            raise ProviderNotStartedError("Browser provider not started")
        child = PlaywrightProvider(
            headless=self.headless,
            viewport_width=self.viewport_width,
            viewport_height=self.viewport_height,
            timeout_ms=self.timeout_ms,
        )
        child._context = self._context
        child._owns_browser = False
        child._page = await self._context.new_page()
        return child

    async def stop(self) -> None:
        if self._page is not None:
            try:
                await self._page.close()
            except Exception as e:
                logger.debug("[浏览器] 关闭页面失败: %s", e)
        self._page = None

        if not self._owns_browser:
            return
        if self._context is not None:
            await self._context.close()
        if self._browser is not None:
            await self._browser.close()
        if self._playwright is not None:
            await self._playwright.stop()
        self._context = None
        self._browser = None
        self._playwright = None
        logger.info("[浏览器] 已关闭")

    async def _wait_for_stable(self, timeout_ms: int = 3000) -> None:
        """等待网络空闲；超时不算错误"""
        try:
            await self.page.wait_for_load_state("networkidle", timeout=timeout_ms)
        except Exception:
            pass

    async def navigate(self, url: str) -> str:
        try:
            await self.page.goto(url, wait_until="domcontentloaded")
        except ProviderNotStartedError:
            raise
        except Exception as e:
            raise PageLoadError(url, str(e)) from e
        await self._wait_for_stable()
        return self.page.url

    async def read_document(self) -> RawDocument:
        page = self.page
        html = await page.content()
        try:
            text = await page.inner_text("body")
        except Exception:
            text = ""
        return RawDocument(html=html, text=text, url=page.url, title=await page.title())

    async def act(self, selector: str | None, kind: ActionKind, value: str | None = None) -> ActionOutcome:
        kind = ActionKind(kind)
        try:
            page = self.page
            if kind == ActionKind.CLICK:
                if not selector:
                    return ActionOutcome.error("click 需要 selector")
                await page.click(selector)
                await self._wait_for_stable()
            elif kind == ActionKind.FILL:
                if not selector:
                    return ActionOutcome.error("fill 需要 selector")
                await page.fill(selector, value or "")
            elif kind == ActionKind.PRESS:
                if selector:
                    await page.press(selector, value or "Escape")
                else:
                    await page.keyboard.press(value or "Escape")
            elif kind == ActionKind.WAIT:
                if selector:
                    await page.wait_for_selector(selector)
                else:
                    await page.wait_for_timeout(float(value or 1000))
            return ActionOutcome.success(url=page.url)
        except Exception as e:
            return ActionOutcome.error(f"{kind.value} {selector or ''} 失败: {e}")
