"""Oracle 判断结果的封闭变体

每种判断类型对应一个 pydantic 模型，字段使用 snake_case，同时接受 Oracle 输出的 camelCase。
解析失败（不是 JSON / 缺少关键字段 / 类型不对）统一返回 None，由调用方使用 fallback_judgment
或各自的确定性默认值，绝不让畸形输出影响调用方。
"""

from __future__ import annotations

import hashlib
import math
from typing import Annotated, Any, Literal, Union
from urllib.parse import urljoin

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from ..constants import MISSING_PRIORITY, PRIMARY_PRIORITY_MAX, SECONDARY_PRIORITY_MAX
from ..logger import get_logger
from ..protocol import clamp_confidence, coerce_bool, parse_json_dict_from_llm
from .oracle import OracleKind

logger = get_logger(__name__)


def _to_confidence(value: Any) -> float:
    return clamp_confidence(value)


def _to_strict_bool(value: Any) -> Any:
    coerced = coerce_bool(value)
    # 无法识别的值原样交给 pydantic，由它报错
    return value if coerced is None else coerced


def _to_flag(value: Any) -> bool:
    return bool(coerce_bool(value, default=False))


def _to_dict_items(value: Any) -> list[Any]:
    """列表字段只保留 dict 元素，丢弃 Oracle 混进来的字符串等杂项"""
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def _to_str_items(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if item is not None and not isinstance(item, (dict, list))]


def _to_text(value: Any) -> str:
    return "" if value is None else str(value)


def _to_number(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return 0.0 if number != number else number


def _to_count(value: Any) -> int:
    number = _to_number(value)
    return int(number) if math.isfinite(number) else 0


def _to_closing_kind(value: Any) -> str:
    return "wait" if value is None else str(value).strip().lower()


def _to_mapping(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _to_priority(value: Any) -> int | None:
    try:
        return None if value is None else int(float(value))
    except (TypeError, ValueError, OverflowError):
        return None


Text = Annotated[str, BeforeValidator(_to_text)]
Number = Annotated[float, BeforeValidator(_to_number)]
Count = Annotated[int, BeforeValidator(_to_count)]
Confidence = Annotated[float, BeforeValidator(_to_confidence)]
JudgmentBool = Annotated[bool, BeforeValidator(_to_strict_bool)]
Flag = Annotated[bool, BeforeValidator(_to_flag)]
StrList = Annotated[list[str], BeforeValidator(_to_str_items)]
Priority = Annotated[int | None, BeforeValidator(_to_priority)]


class _JudgmentModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


# ============================================================================
# 弹窗检测
# ============================================================================


class ClosingAction(_JudgmentModel):
    type: Annotated[Literal["click", "keyboard", "wait"], BeforeValidator(_to_closing_kind)] = "wait"
    target: str | None = None
    key: str | None = None
    description: Text = ""


class ModalJudgment(_JudgmentModel):
    is_modal_open: JudgmentBool
    confidence: Confidence = 0.5
    modal_type: str | None = None
    modal_purpose: str | None = None
    closing_action: ClosingAction | None = None
    reasoning: Text = ""


# ============================================================================
# 登录页识别
# ============================================================================


class LoginActionPlan(_JudgmentModel):
    username_field: str | None = None
    password_field: str | None = None
    submit_button: str | None = None


class LoginJudgment(_JudgmentModel):
    is_login_page: JudgmentBool
    confidence: Confidence = 0.5
    reasoning: Text = ""
    action_plan: LoginActionPlan | None = None


# ============================================================================
# 停止判断
# ============================================================================


class StoppingFactors(_JudgmentModel):
    coverage_percentage: Number = 0.0
    pattern_detected: Flag = False
    depth_reached: Flag = False
    time_limit: Flag = False
    diminishing_returns: Flag = False
    resource_constraint: Flag = False


class StoppingJudgment(_JudgmentModel):
    should_stop: JudgmentBool
    confidence: Confidence = 0.7
    reason: Text = ""
    factors: Annotated[StoppingFactors, BeforeValidator(_to_mapping)] = Field(
        default_factory=StoppingFactors
    )
    recommendations: StrList = Field(default_factory=list)


# ============================================================================
# 导航分析
# ============================================================================


class NavigationItem(_JudgmentModel):
    text: Text = ""
    selector: Text = ""
    url: Text = ""
    location: Text = "other"
    type: Text = "secondary_feature"
    priority: Priority = None
    presumed_global: Flag = False
    is_feature_entry: Flag = False
    feature_name: str | None = None
    confidence: Confidence = 0.5


NavigationItems = Annotated[list[NavigationItem], BeforeValidator(_to_dict_items)]


class NavigationSummary(_JudgmentModel):
    total_elements_found: Count = 0
    navigation_style: Text = "minimal"
    primary_features_count: Count = 0
    estimated_complexity: Text = "simple"
    recommended_starting_point: Text = ""
    has_global_nav: Flag = False
    has_sidebar: Flag = False
    has_header_nav: Flag = False
    has_footer_nav: Flag = False
    navigation_coverage: Number = 0.0


class NavigationJudgment(_JudgmentModel):
    side_navigation: NavigationItems = Field(default_factory=list)
    top_navigation: NavigationItems = Field(default_factory=list)
    primary_features: NavigationItems = Field(default_factory=list)
    utility_pages: NavigationItems = Field(default_factory=list)
    exploration_queue: NavigationItems = Field(default_factory=list)
    analysis: Annotated[NavigationSummary, BeforeValidator(_to_mapping)] = Field(
        default_factory=NavigationSummary
    )

    @field_validator("exploration_queue")
    @classmethod
    def _sort_queue(cls, value: list[NavigationItem]) -> list[NavigationItem]:
        return sorted(
            value,
            key=lambda item: MISSING_PRIORITY if item.priority is None else item.priority,
        )

    def all_items(self) -> list[NavigationItem]:
        return [
            *self.side_navigation,
            *self.top_navigation,
            *self.primary_features,
            *self.utility_pages,
            *self.exploration_queue,
        ]


# ============================================================================
# 页面分析
# ============================================================================


class PageElement(_JudgmentModel):
    selector: Text = ""
    text: Text = ""
    action_type: Text = "non_navigation"
    target_url: str | None = None
    target_feature: str | None = None
    description: Text = ""


class CrossFeatureLink(_JudgmentModel):
    url: Text = ""
    target_feature: Text = ""
    text: Text = ""


class PageAnalysisJudgment(_JudgmentModel):
    page_type: str
    page_title: Text = ""
    page_description: Text = ""
    elements: Annotated[list[PageElement], BeforeValidator(_to_dict_items)] = Field(
        default_factory=list
    )
    navigation_links: StrList = Field(default_factory=list)
    cross_feature_links: Annotated[list[CrossFeatureLink], BeforeValidator(_to_dict_items)] = (
        Field(default_factory=list)
    )
    forms: StrList = Field(default_factory=list)
    modals: StrList = Field(default_factory=list)
    business_value: Text = ""
    confidence: Confidence = 0.5


Judgment = Union[
    ModalJudgment,
    LoginJudgment,
    StoppingJudgment,
    NavigationJudgment,
    PageAnalysisJudgment,
]

JUDGMENT_TYPES: dict[OracleKind, type[_JudgmentModel]] = {
    OracleKind.MODAL_DETECT: ModalJudgment,
    OracleKind.LOGIN_DETECT: LoginJudgment,
    OracleKind.STOPPING_EVAL: StoppingJudgment,
    OracleKind.NAVIGATION_ANALYSIS: NavigationJudgment,
    OracleKind.PAGE_ANALYSIS: PageAnalysisJudgment,
}


def parse_judgment(kind: OracleKind, raw: str | None) -> Judgment | None:
    """把 Oracle 原始文本解码为对应的判断模型

    Returns:
        解码成功返回模型实例；不是 JSON 或字段校验失败返回 None
    """
    data = parse_json_dict_from_llm(raw)
    if data is None:
        logger.warning("[Oracle] %s 输出中没有可解析的 JSON", kind.value)
        return None
    try:
        return JUDGMENT_TYPES[kind].model_validate(data)
    except ValidationError as e:
        logger.warning("[Oracle] %s 输出字段校验失败: %d 处错误", kind.value, e.error_count())
        return None


def fallback_judgment(kind: OracleKind) -> Judgment:
    """Oracle 不可用时的安全默认值

    停止判断没有固定默认值（取决于当前统计），由停止条件评估器自行计算。
    """
    if kind == OracleKind.MODAL_DETECT:
        return ModalJudgment(
            is_modal_open=False,
            confidence=0.5,
            reasoning="弹窗检测失败，按无弹窗处理",
        )
    if kind == OracleKind.LOGIN_DETECT:
        return LoginJudgment(
            is_login_page=False,
            confidence=0.5,
            reasoning="登录页识别失败，按非登录页处理",
        )
    if kind == OracleKind.NAVIGATION_ANALYSIS:
        return NavigationJudgment()
    if kind == OracleKind.PAGE_ANALYSIS:
        return PageAnalysisJudgment(page_type="unknown", confidence=0.0)
    raise ValueError(f"{kind.value} 没有固定的降级结果")


# ============================================================================
# 导航辅助
# ============================================================================


def classify_priority(priority: int | None) -> str:
    """按优先级数值划分 primary / secondary / utility"""
    if priority is None:
        return "utility"
    if priority <= PRIMARY_PRIORITY_MAX:
        return "primary"
    if priority <= SECONDARY_PRIORITY_MAX:
        return "secondary"
    return "utility"


def _is_explorable(url: str) -> bool:
    url = url.strip()
    return bool(url) and url != "#" and not url.lower().startswith(("javascript:", "mailto:", "tel:"))


def make_feature_id(entry_url: str) -> str:
    digest = hashlib.sha1(entry_url.encode("utf-8")).hexdigest()[:10]
    return f"feature_{digest}"


def identify_feature_entry_points(
    navigation: NavigationJudgment,
    base_url: str | None = None,
) -> list[dict[str, Any]]:
    """从导航分析中挑出功能入口（按优先级升序，入口 URL 去重）"""
    candidates = [
        *navigation.primary_features,
        *(item for item in navigation.side_navigation if item.type == "primary_feature"),
        *(item for item in navigation.top_navigation if item.type == "primary_feature"),
    ]

    features: list[dict[str, Any]] = []
    seen_urls: set[str] = set()
    for item in candidates:
        if not item.is_feature_entry or not _is_explorable(item.url):
            continue
        entry_url = urljoin(base_url, item.url) if base_url else item.url
        if entry_url in seen_urls:
            continue
        seen_urls.add(entry_url)
        features.append(
            {
                "id": make_feature_id(entry_url),
                "name": item.feature_name or item.text or entry_url,
                "entry_url": entry_url,
                "priority": item.priority,
                "description": f"Accessed from {item.location} navigation",
            }
        )

    features.sort(key=lambda f: MISSING_PRIORITY if f["priority"] is None else f["priority"])
    logger.info("[导航] 识别到 %d 个功能入口", len(features))
    return features


def get_explorable_urls(navigation: NavigationJudgment, base_url: str | None = None) -> list[str]:
    """探索队列中的 URL（去重，保持优先级顺序）"""
    urls: list[str] = []
    for item in navigation.exploration_queue:
        if not _is_explorable(item.url):
            continue
        url = urljoin(base_url, item.url) if base_url else item.url
        if url not in urls:
            urls.append(url)
    return urls
