"""Oracle 输出容错解析测试"""

import math

from autoexplorer.common.protocol import clamp_confidence, coerce_bool, parse_json_dict_from_llm


class TestParseJson:
    def test_plain_json(self):
        assert parse_json_dict_from_llm('{"a": 1}') == {"a": 1}

    def test_code_fence(self):
        text = 'Here you go:\n```json\n{"isModalOpen": true}\n```'
        assert parse_json_dict_from_llm(text) == {"isModalOpen": True}

    def test_trailing_commas(self):
        assert parse_json_dict_from_llm('{"items": [1, 2,], "b": 3,}') == {"items": [1, 2], "b": 3}

    def test_smart_quotes(self):
        assert parse_json_dict_from_llm("{“key”: “value”}") == {"key": "value"}

    def test_surrounding_prose(self):
        text = '分析结果如下 {"pageType": "list", "nested": {"x": "}"}} 以上'
        assert parse_json_dict_from_llm(text) == {"pageType": "list", "nested": {"x": "}"}}

    def test_unparseable(self):
        assert parse_json_dict_from_llm("not json at all") is None
        assert parse_json_dict_from_llm("") is None
        assert parse_json_dict_from_llm(None) is None

    def test_top_level_array_is_not_a_dict(self):
        assert parse_json_dict_from_llm("[1, 2, 3]") is None


class TestCoerceBool:
    def test_strings(self):
        assert coerce_bool("true") is True
        assert coerce_bool(" No ") is False
        assert coerce_bool("1") is True

    def test_numbers(self):
        assert coerce_bool(0) is False
        assert coerce_bool(2) is True

    def test_unknown_returns_default(self):
        assert coerce_bool("maybe") is None
        assert coerce_bool(None, default=False) is False
        assert coerce_bool({"x": 1}, default=True) is True


class TestClampConfidence:
    def test_in_range(self):
        assert clamp_confidence(0.42) == 0.42

    def test_percentage(self):
        assert math.isclose(clamp_confidence(85), 0.85)

    def test_clamped(self):
        assert clamp_confidence(-3) == 0.0
        assert clamp_confidence(1000) == 1.0

    def test_invalid(self):
        assert clamp_confidence("high") == 0.5
        assert clamp_confidence(float("nan"), default=0.3) == 0.3
        assert clamp_confidence(None) == 0.5
