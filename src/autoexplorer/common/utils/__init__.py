"""通用工具"""

from .paths import get_package_root, get_prompt_path
from .prompt_template import clear_template_cache, get_template_sections, render_template, render_text

__all__ = [
    "get_package_root",
    "get_prompt_path",
    "clear_template_cache",
    "get_template_sections",
    "render_template",
    "render_text",
]
