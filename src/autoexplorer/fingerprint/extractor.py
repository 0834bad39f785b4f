"""页面结构指纹提取

把原始 HTML 压缩为一个紧凑的结构签名，用于廉价的相似度比较。

这里刻意只做字符串/正则层面的启发式判断，而不是完整的 HTML/CSS 解析：
- 元素计数：按标签名统计开始标签出现次数（大小写不敏感）
- grid/flex/card 等布局信号：子串匹配，允许误判，只作为"软信号"
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..common.constants import (
    MAX_CLASS_SIGNATURE_TOKENS,
    MAX_CLASS_TOKEN_LENGTH,
    SEMANTIC_SEPARATOR,
    SEMANTIC_TAGS,
)


class PageLayout(str, Enum):
    """页面布局类型"""

    GRID = "grid"
    FLEX = "flex"
    SIDEBAR = "sidebar"
    COLUMN = "column"
    OTHER = "other"


# 按优先级排列：先命中者为准
_LAYOUT_HINTS = (
    PageLayout.GRID,
    PageLayout.FLEX,
    PageLayout.SIDEBAR,
    PageLayout.COLUMN,
)

_CLASS_ATTR_RE = re.compile(r"""class\s*=\s*(?:"([^"]*)"|'([^']*)')""", re.IGNORECASE)
_DIALOG_ROLE_RE = re.compile(r"""role\s*=\s*["'](?:alert)?dialog["']""", re.IGNORECASE)


@dataclass(frozen=True)
class PageFingerprint:
    """页面结构指纹（创建后不可变，每次页面访问一份）"""

    url: str
    layout: PageLayout = PageLayout.OTHER
    main_section_count: int = 0
    form_count: int = 0
    button_count: int = 0
    link_count: int = 0
    has_table: bool = False
    has_grid_or_flex: bool = False
    has_card: bool = False
    modal_count: int = 0
    class_signature: tuple[str, ...] = field(default_factory=tuple)
    semantic_structure: str = ""

    def to_dict(self) -> dict[str, Any]:
        """转换为字典"""
        return {
            "url": self.url,
            "layout": self.layout.value,
            "main_section_count": self.main_section_count,
            "form_count": self.form_count,
            "button_count": self.button_count,
            "link_count": self.link_count,
            "has_table": self.has_table,
            "has_grid_or_flex": self.has_grid_or_flex,
            "has_card": self.has_card,
            "modal_count": self.modal_count,
            "class_signature": list(self.class_signature),
            "semantic_structure": self.semantic_structure,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PageFingerprint":
        """从字典创建"""
        try:
            layout = PageLayout(data.get("layout", "other"))
        except ValueError:
            layout = PageLayout.OTHER
        return cls(
            url=data.get("url", ""),
            layout=layout,
            main_section_count=int(data.get("main_section_count", 0)),
            form_count=int(data.get("form_count", 0)),
            button_count=int(data.get("button_count", 0)),
            link_count=int(data.get("link_count", 0)),
            has_table=bool(data.get("has_table", False)),
            has_grid_or_flex=bool(data.get("has_grid_or_flex", False)),
            has_card=bool(data.get("has_card", False)),
            modal_count=int(data.get("modal_count", 0)),
            class_signature=tuple(data.get("class_signature", ())),
            semantic_structure=data.get("semantic_structure", ""),
        )


def count_tags(html: str, *tags: str) -> int:
    """统计若干标签的开始标签出现次数

    `<a` 只匹配 `<a ` / `<a>` / `<a/`，不会把 `<article>`、`<aside>` 算进去。
    """
    total = 0
    for tag in tags:
        pattern = re.compile(rf"<{re.escape(tag)}[\s>/]", re.IGNORECASE)
        total += len(pattern.findall(html))
    return total


def detect_layout(html: str) -> PageLayout:
    """按子串启发式判断布局类型"""
    lowered = html.lower()
    for layout in _LAYOUT_HINTS:
        if layout.value in lowered:
            return layout
    return PageLayout.OTHER


def extract_class_signature(html: str) -> tuple[str, ...]:
    """按首次出现顺序提取最多 20 个去重后的短类名"""
    seen: dict[str, None] = {}
    for match in _CLASS_ATTR_RE.finditer(html):
        raw = match.group(1) if match.group(1) is not None else match.group(2)
        for token in raw.split():
            if len(token) >= MAX_CLASS_TOKEN_LENGTH or token in seen:
                continue
            seen[token] = None
            if len(seen) >= MAX_CLASS_SIGNATURE_TOKENS:
                return tuple(seen)
    return tuple(seen)


def detect_semantic_structure(html: str) -> str:
    """按固定顺序拼接页面中出现过的语义标签"""
    lowered = html.lower()
    present = [tag for tag in SEMANTIC_TAGS if f"<{tag}" in lowered]
    return SEMANTIC_SEPARATOR.join(present)


def extract_fingerprint(html: str | None, url: str) -> PageFingerprint:
    """从原始 HTML 提取页面指纹

    纯函数，不会抛出异常；缺失的信号一律取 0 / False。

    Args:
        html: 页面 HTML
        url: 页面 URL

    Returns:
        页面指纹
    """
    html = html or ""
    lowered = html.lower()

    return PageFingerprint(
        url=url,
        layout=detect_layout(html),
        main_section_count=count_tags(html, "main", "section", "article"),
        form_count=count_tags(html, "form"),
        button_count=count_tags(html, "button"),
        link_count=count_tags(html, "a"),
        has_table="<table" in lowered,
        has_grid_or_flex="grid" in lowered or "flex" in lowered,
        has_card="card" in lowered,
        modal_count=count_tags(html, "dialog") + len(_DIALOG_ROLE_RE.findall(html)),
        class_signature=extract_class_signature(html),
        semantic_structure=detect_semantic_structure(html),
    )
