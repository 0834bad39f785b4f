"""
Prompt 模板系统测试

验证所有 prompt 模板文件都能正确加载和渲染
"""

import pytest

from autoexplorer.common.llm.oracle import PROMPT_FILES, OracleKind
from autoexplorer.common.utils.paths import get_prompt_path
from autoexplorer.common.utils.prompt_template import (
    get_template_sections,
    render_template,
    render_text,
)

# 每个模板渲染所需的测试变量
TEST_VARIABLES = {
    OracleKind.MODAL_DETECT: {"url": "https://example.com", "html": "<div role='dialog'></div>"},
    OracleKind.LOGIN_DETECT: {"url": "https://example.com/login", "title": "Sign in", "html": "<form></form>"},
    OracleKind.NAVIGATION_ANALYSIS: {"url": "https://example.com", "title": "Home", "html": "<nav></nav>"},
    OracleKind.PAGE_ANALYSIS: {
        "url": "https://example.com/orders",
        "title": "Orders",
        "html": "<table></table>",
        "feature_name": "订单",
        "known_features": ["订单"],
    },
    OracleKind.STOPPING_EVAL: {
        "feature_id": "f1",
        "feature_name": "订单",
        "page_types": ["list"],
        "stats": {"time_elapsed_s": 1.0, "time_limit_s": 600.0, "last_page_types": ["list"]},
    },
}


@pytest.mark.parametrize("kind", list(OracleKind), ids=lambda k: k.value)
def test_template_sections(kind):
    sections = get_template_sections(get_prompt_path(PROMPT_FILES[kind]))
    assert "system_prompt" in sections
    assert "user_prompt" in sections


@pytest.mark.parametrize("kind", list(OracleKind), ids=lambda k: k.value)
def test_template_renders(kind):
    path = get_prompt_path(PROMPT_FILES[kind])

    system_prompt = render_template(path, section="system_prompt")
    user_prompt = render_template(path, section="user_prompt", variables=TEST_VARIABLES[kind])

    assert "JSON" in system_prompt
    assert "{{" not in user_prompt
    assert "{%" not in user_prompt


def test_missing_variables_render_empty():
    assert render_text("a{{ missing.deep }}b", {"x": 1}) == "ab"


def test_render_text_without_variables_is_verbatim():
    assert render_text("{{ keep }}") == "{{ keep }}"
