"""Tests for tolerant JSON extraction from model output."""

import pytest

from storybook.services.json_parser import (
    _clean_json_text,
    _extract_json_object,
    _strip_markdown_fences,
    parse_json_object,
)


class TestStripMarkdownFences:
    def test_strips_json_fence(self):
        assert _strip_markdown_fences('```json\n{"key": "value"}\n```') == '{"key": "value"}'

    def test_strips_plain_fence(self):
        assert _strip_markdown_fences('```\n{"key": "value"}\n```') == '{"key": "value"}'

    def test_handles_no_fence(self):
        assert _strip_markdown_fences('{"key": "value"}') == '{"key": "value"}'

    def test_case_insensitive(self):
        assert _strip_markdown_fences('```JSON\n{"key": "value"}\n```') == '{"key": "value"}'


class TestCleanJsonText:
    def test_removes_trailing_commas(self):
        text = '{"items": [1, 2, 3,], "name": "test",}'
        assert _clean_json_text(text) == '{"items": [1, 2, 3], "name": "test"}'

    def test_removes_surrounding_prose(self):
        text = 'Here is the JSON output:\n{"key": "value"}\n\nI hope this helps!'
        assert _clean_json_text(text) == '{"key": "value"}'


class TestExtractJsonObject:
    def test_finds_outermost_object(self):
        text = 'prefix {"a": {"b": 1}} suffix'
        assert _extract_json_object(text) == '{"a": {"b": 1}}'

    def test_ignores_braces_inside_strings(self):
        text = 'x {"a": "}{", "b": 2} y'
        assert _extract_json_object(text) == '{"a": "}{", "b": 2}'

    def test_returns_none_without_object(self):
        assert _extract_json_object("no json here") is None

    def test_returns_none_for_unbalanced(self):
        assert _extract_json_object('{"a": 1') is None


class TestParseJsonObject:
    def test_direct(self):
        assert parse_json_object('{"title": "Fox"}') == {"title": "Fox"}

    def test_fenced_with_trailing_comma(self):
        assert parse_json_object('```json\n{"title": "Fox",}\n```') == {"title": "Fox"}

    def test_object_embedded_in_prose(self):
        text = 'Sure! {"title": "Fox", "moral": "Be kind"} Let me know {if} you need more.'
        assert parse_json_object(text) == {"title": "Fox", "moral": "Be kind"}

    def test_unicode_content(self):
        assert parse_json_object('{"title": "小狐狸"}') == {"title": "小狐狸"}

    @pytest.mark.parametrize("text", ["", "   ", "not json at all", "[1, 2, 3]"])
    def test_rejects_non_objects(self, text):
        with pytest.raises(ValueError):
            parse_json_object(text)
