"""Tests for {{var}} interpolation, template variables and labels."""

from datetime import datetime, timezone

import pytest

from lorechat.templates import (
    build_template_vars,
    format_value,
    interpolate,
    resolve_label,
    strip_tokens,
    time_of_day,
)


def test_interpolate_replaces_known_tokens():
    assert interpolate("안녕 {{call_sign}}!", {"call_sign": "지훈"}) == "안녕 지훈!"


def test_interpolate_allows_inner_spaces():
    assert interpolate("{{ trust }}점", {"trust": 5}) == "5점"


def test_interpolate_keeps_unknown_and_empty_tokens():
    text = "{{missing}} / {{empty}}"
    assert interpolate(text, {"empty": ""}) == text


def test_interpolate_all_occurrences_identical():
    out = interpolate("{{a}}-{{a}}-{{ a }}", {"a": "x"})
    assert out == "x-x-x"


def test_interpolate_is_deterministic():
    tvars = {"a": 1, "b": "둘"}
    text = "{{b}} {{a}} {{c}}"
    assert interpolate(text, tvars) == interpolate(text, tvars)


@pytest.mark.parametrize("value,expected", [(5.0, "5"), (5.5, "5.5"), (True, "true"), ("x", "x"), (None, "")])
def test_format_value(value, expected):
    assert format_value(value) == expected


def test_strip_tokens():
    assert strip_tokens("a {{x}} b {{ y }}") == "a  b "


@pytest.mark.parametrize("utc_hour,expected", [
    (0, "morning"),     # 09:00 KST
    (3, "afternoon"),   # 12:00 KST
    (9, "evening"),     # 18:00 KST
    (14, "night"),      # 23:00 KST
])
def test_time_of_day_uses_seoul_time(utc_hour, expected):
    assert time_of_day(datetime(2026, 3, 1, utc_hour, tzinfo=timezone.utc)) == expected


def test_build_template_vars_identity_fields():
    tvars = build_template_vars({"trust": 3}, user_id="u1", nickname="지훈", handle="jihoon")
    assert tvars["user_name"] == "지훈"
    assert tvars["call_sign"] == "지훈"
    assert tvars["user_handle"] == "@jihoon"
    assert tvars["user_id"] == "u1"
    assert tvars["trust"] == 3


def test_build_template_vars_keeps_authored_call_sign():
    tvars = build_template_vars({"call_sign": "선배"}, nickname="지훈")
    assert tvars["call_sign"] == "선배"
    assert tvars["user_name"] == "지훈"


def test_build_template_vars_affection_alias():
    assert build_template_vars({"affection_score": 40})["affection"] == 40
    assert build_template_vars({"affection": 12})["affection_score"] == 12


def test_build_template_vars_does_not_mutate_input():
    variables = {"trust": 1}
    build_template_vars(variables, nickname="x", now=datetime.now(timezone.utc))
    assert variables == {"trust": 1}


def test_resolve_label_precedence():
    assert resolve_label("trust", {"trust": "믿음"}) == "믿음"
    assert resolve_label("trust", {}) == "신뢰도"
    assert resolve_label("custom_var", {}) == "custom_var"
