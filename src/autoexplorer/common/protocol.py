"""Oracle 输出的容错 JSON 解析。

Oracle（LLM）的输出经常"看起来像 JSON 但其实不是"：包在 ```json 代码块里、
夹杂中文引号、末尾多余逗号、前后带解释文字等。这里把文本尽力还原为 dict，
还原不了就返回 None，由调用方走各自的安全默认值。
"""

from __future__ import annotations

import json
import re
from typing import Any


def _strip_code_fences(text: str) -> str:
    if "```" not in text:
        return text
    cleaned = re.sub(r"```(?:json)?", "", text, flags=re.IGNORECASE)
    return cleaned.replace("```", "").strip()


def _normalize_quotes(text: str) -> str:
    # 常见的中文引号/全角符号替换
    return (
        text.replace("“", '"')
        .replace("”", '"')
        .replace("‘", "'")
        .replace("’", "'")
        .replace("\u00a0", " ")
    )


def _cleanup_json_text(json_text: str) -> str:
    # 修复常见的 JSON 问题：末尾多余逗号
    cleaned = re.sub(r",\s*}", "}", json_text)
    cleaned = re.sub(r",\s*]", "]", cleaned)
    return cleaned


def _extract_balanced_object(text: str, start_index: int) -> str | None:
    """从 start_index 指向的 '{' 开始，提取一个按括号匹配的 JSON 对象子串（忽略字符串内的括号）。"""
    if start_index < 0 or start_index >= len(text) or text[start_index] != "{":
        return None

    depth = 0
    in_string = False
    escape = False

    for idx in range(start_index, len(text)):
        ch = text[idx]

        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            continue

        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start_index : idx + 1]

    return None


def _iter_json_object_candidates(text: str) -> list[str]:
    """提取可能的 JSON 对象候选，外层对象优先。"""
    candidates: list[str] = []
    for m in re.finditer(r"\{", text):
        obj = _extract_balanced_object(text, m.start())
        if obj and obj not in candidates:
            candidates.append(obj)
    return candidates


def parse_json_dict_from_llm(text: str | None) -> dict[str, Any] | None:
    """从 Oracle 文本中提取并解析 JSON 对象

    Args:
        text: Oracle 原始输出

    Returns:
        解析出的 dict；无法解析时返回 None
    """
    cleaned = _normalize_quotes(_strip_code_fences(text or ""))
    if not cleaned.strip():
        return None

    # 1) 优先：使用括号匹配提取候选 JSON 对象，逐个尝试解析
    for cand in _iter_json_object_candidates(cleaned):
        try:
            data = json.loads(_cleanup_json_text(cand))
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            return data

    # 2) 兜底：贪婪匹配第一个 { 到最后一个 }
    match = re.search(r"\{[\s\S]*\}", cleaned)
    if match:
        try:
            data = json.loads(_cleanup_json_text(match.group(0)))
        except json.JSONDecodeError:
            return None
        if isinstance(data, dict):
            return data

    return None


def coerce_bool(value: Any | None, default: bool | None = None) -> bool | None:
    """把 Oracle 输出里常见的 bool 表示统一成 bool。

    Oracle 可能输出 true/false、"true"/"false"、0/1，
    直接 bool("false") 会变成 True。
    """
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        v = value.strip().lower()
        if v in {"true", "yes", "y", "1"}:
            return True
        if v in {"false", "no", "n", "0"}:
            return False
        return default
    return default


def clamp_confidence(value: Any, default: float = 0.5) -> float:
    """把置信度规整到 [0, 1]；百分数（如 85）按 0.85 处理。"""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if number != number:  # NaN
        return default
    if number > 1.0 and number <= 100.0:
        number = number / 100.0
    return max(0.0, min(1.0, number))
