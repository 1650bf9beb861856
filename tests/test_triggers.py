"""Tests for the trigger rule engine."""

from datetime import datetime, timedelta, timezone

import pytest

from lorechat.models import RuntimeState, TriggerRule, TriggerRuleSet
from lorechat.triggers import (
    apply_rules,
    parse_directive_text,
    rule_matches,
    surface_events,
)

NOW = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)


def _rule(conditions: list[dict], actions: list[dict], *, mode: str = "AND", **extra) -> dict:
    return {
        "id": extra.pop("id", "r1"),
        "name": extra.pop("name", "rule"),
        "if": {"type": mode, "conditions": conditions},
        "then": {"actions": actions},
        **extra,
    }


def _rules(*rules: dict, labels: dict | None = None) -> TriggerRuleSet:
    return TriggerRuleSet.model_validate({"rules": list(rules), "varLabels": labels or {}})


INCLUDES_PROMISE = {"type": "text_includes", "values": ["약속"]}
INCLUDES_NEVER = {"type": "text_includes", "values": ["절대없는단어"]}
TRUST_PLUS_5 = {"type": "variable_mod", "var": "trust", "op": "+", "value": 5}


# ── Combinators ──────────────────────────────────────────────


@pytest.mark.parametrize("mode,conds,expected", [
    ("AND", [INCLUDES_PROMISE, INCLUDES_PROMISE], True),
    ("AND", [INCLUDES_PROMISE, INCLUDES_NEVER], False),
    ("OR", [INCLUDES_PROMISE, INCLUDES_NEVER], True),
    ("OR", [INCLUDES_NEVER, INCLUDES_NEVER], False),
    ("AND", [], False),
    ("OR", [], False),
])
def test_rule_combinators(mode, conds, expected):
    rule = TriggerRule.model_validate(_rule(conds, [], mode=mode))
    assert rule_matches(rule, "약속할게", RuntimeState(), NOW) is expected


def test_text_includes_is_case_insensitive():
    rule = TriggerRule.model_validate(_rule([{"type": "text_includes", "values": ["Promise"]}], []))
    assert rule_matches(rule, "I PROMISE", RuntimeState(), NOW)


@pytest.mark.parametrize("op,value,expected", [
    ("<", 10, True), ("<=", 5, True), ("=", 5, True), (">=", 5, True), (">", 5, False),
])
def test_variable_compare(op, value, expected):
    rule = TriggerRule.model_validate(_rule([{"type": "variable_compare", "var": "risk", "op": op, "value": value}], []))
    assert rule_matches(rule, "", RuntimeState(variables={"risk": 5}), NOW) is expected


def test_string_compare():
    eq = TriggerRule.model_validate(_rule([{"type": "string_compare", "var": "location", "op": "=", "value": "부두"}], []))
    ne = TriggerRule.model_validate(_rule([{"type": "string_compare", "var": "location", "op": "!=", "value": "부두"}], []))
    state = RuntimeState(variables={"location": "부두"})
    assert rule_matches(eq, "", state, NOW)
    assert not rule_matches(ne, "", state, NOW)
    assert rule_matches(ne, "", RuntimeState(), NOW)


def test_inactive_time_uses_prior_last_active():
    rule = TriggerRule.model_validate(_rule([{"type": "inactive_time", "hours": 24}], []))
    assert not rule_matches(rule, "", RuntimeState(last_active_at=NOW - timedelta(hours=23)), NOW)
    assert rule_matches(rule, "", RuntimeState(last_active_at=NOW - timedelta(hours=25)), NOW)
    assert not rule_matches(rule, "", RuntimeState(), NOW)


def test_inactive_time_with_offsetless_timestamp():
    rule = TriggerRule.model_validate(_rule([{"type": "inactive_time", "hours": 24}], []))
    state = RuntimeState.model_validate({"lastActiveAt": "2026-04-29T12:00:00"})
    assert state.last_active_at.tzinfo is not None
    assert rule_matches(rule, "", state, NOW)
    assert not rule_matches(rule, "", RuntimeState.model_validate({"lastActiveAt": "2026-05-01T00:00:00"}), NOW)


def test_offsetless_fired_at_and_naive_now():
    state = RuntimeState.model_validate({"firedAt": {"r1": "2026-05-01T11:00:00"}})
    assert state.fired_at["r1"] == datetime(2026, 5, 1, 11, 0, tzinfo=timezone.utc)
    rules = _rules(_rule([{"type": "inactive_time", "hours": 1}], [{"type": "join", "name": "민호"}]))
    result = apply_rules(
        RuntimeState(last_active_at=NOW - timedelta(hours=2)), [rules], "", datetime(2026, 5, 1, 12, 0)
    )
    assert result.state.participants == ["민호"]


def test_participant_present():
    rule = TriggerRule.model_validate(_rule([{"type": "participant_present", "name": "희진"}], []))
    assert rule_matches(rule, "", RuntimeState(participants=["희진"]), NOW)
    assert not rule_matches(rule, "", RuntimeState(), NOW)


# ── Actions and state ────────────────────────────────────────


def test_variable_mod_emits_labelled_delta():
    result = apply_rules(
        RuntimeState(variables={"trust": 10}),
        [_rules(_rule([INCLUDES_PROMISE], [TRUST_PLUS_5]), labels={"trust": "믿음"})],
        "약속할게",
        NOW,
        {"trust": "믿음"},
    )
    assert result.state.variables["trust"] == 15
    assert [e.model_dump() for e in result.events] == [
        {"type": "var_delta", "var": "trust", "label": "믿음", "op": "+", "value": 5}
    ]


def test_no_implicit_clamping():
    rule = _rule([INCLUDES_PROMISE], [{"type": "variable_mod", "var": "risk", "op": "-", "value": 30}])
    result = apply_rules(RuntimeState(variables={"risk": 10}), [_rules(rule)], "약속", NOW)
    assert result.state.variables["risk"] == -20


def test_actions_apply_in_order_and_compose():
    rule = _rule([INCLUDES_PROMISE], [
        {"type": "variable_set", "var": "trust", "value": 1},
        TRUST_PLUS_5,
        {"type": "variable_mod", "var": "trust", "op": "-", "value": 2},
    ])
    result = apply_rules(RuntimeState(variables={"trust": 100}), [_rules(rule)], "약속", NOW)
    assert result.state.variables["trust"] == 4


def test_later_rules_see_earlier_changes():
    first = _rule([INCLUDES_PROMISE], [TRUST_PLUS_5], id="first")
    second = _rule(
        [{"type": "variable_compare", "var": "trust", "op": ">=", "value": 5}],
        [{"type": "join", "name": "희진"}],
        id="second",
    )
    result = apply_rules(RuntimeState(), [_rules(first, second)], "약속", NOW)
    assert result.state.participants == ["희진"]
    assert result.fired == ["first", "second"]


def test_disabled_rules_skipped():
    rule = _rule([INCLUDES_PROMISE], [TRUST_PLUS_5], enabled=False)
    result = apply_rules(RuntimeState(), [_rules(rule)], "약속", NOW)
    assert result.state.variables == {}
    assert result.events == []


def test_join_is_idempotent():
    rule = _rule([INCLUDES_PROMISE], [{"type": "join", "name": "희진"}, {"type": "join", "name": "희진"}])
    result = apply_rules(RuntimeState(participants=["민호"]), [_rules(rule)], "약속", NOW)
    assert result.state.participants == ["민호", "희진"]
    assert [e.type for e in result.events] == ["join"]

    again = apply_rules(result.state, [_rules(rule)], "약속", NOW)
    assert again.state.participants == ["민호", "희진"]
    assert again.events == []


def test_leave_absent_is_noop():
    rule = _rule([INCLUDES_PROMISE], [{"type": "leave", "name": "희진"}])
    result = apply_rules(RuntimeState(participants=["민호"]), [_rules(rule)], "약속", NOW)
    assert result.state.participants == ["민호"]
    assert result.events == []


def test_status_effect_and_system_message_do_not_mutate_state():
    rule = _rule([INCLUDES_PROMISE], [
        {"type": "status_effect", "key": "긴장", "turns": 3},
        {"type": "system_message", "text": "분위기가 바뀌었다."},
    ])
    result = apply_rules(RuntimeState(variables={"trust": 1}), [_rules(rule)], "약속", NOW)
    assert result.state.variables == {"trust": 1}
    assert [e.type for e in result.events] == ["status_effect", "system_message"]


def test_fired_at_and_last_active_at():
    prior = NOW - timedelta(days=1)
    result = apply_rules(
        RuntimeState(last_active_at=prior),
        [_rules(_rule([INCLUDES_PROMISE], [TRUST_PLUS_5], id="promise"))],
        "약속",
        NOW,
    )
    assert result.state.fired_at == {"promise": NOW}
    assert result.state.last_active_at == NOW


def test_last_active_at_updated_when_nothing_fires():
    result = apply_rules(RuntimeState(), [], "hello", NOW)
    assert result.state.last_active_at == NOW
    assert result.events == []


def test_input_state_not_mutated():
    state = RuntimeState(variables={"trust": 1}, participants=["a"])
    apply_rules(state, [_rules(_rule([INCLUDES_PROMISE], [TRUST_PLUS_5, {"type": "join", "name": "b"}]))], "약속", NOW)
    assert state.variables == {"trust": 1}
    assert state.participants == ["a"]
    assert state.last_active_at is None


def test_scopes_flatten_in_given_order():
    project = _rules(_rule([INCLUDES_PROMISE], [{"type": "variable_set", "var": "stage", "value": "project"}], id="p"))
    scene = _rules(_rule([INCLUDES_PROMISE], [{"type": "variable_set", "var": "stage", "value": "scene"}], id="s"))
    character = _rules(_rule([INCLUDES_PROMISE], [{"type": "variable_set", "var": "stage", "value": "character"}], id="c"))
    result = apply_rules(RuntimeState(), [project, scene, character], "약속", NOW)
    assert result.state.variables["stage"] == "character"
    assert result.fired == ["p", "s", "c"]


# ── Directives ───────────────────────────────────────────────


def test_directive_text_expands():
    events = parse_directive_text('join:김희진; system_message:"희진이 영상통화를 걸어왔습니다!"')
    assert [e.model_dump() for e in events] == [
        {"type": "join", "name": "김희진"},
        {"type": "system_message", "text": "희진이 영상통화를 걸어왔습니다!"},
    ]


def test_directive_offers_and_leftover():
    events = parse_directive_text("premium_offer:프리미엄 대화를 열까요?\n그냥 안내문")
    assert [e.type for e in events] == ["premium_offer", "system_message"]
    assert events[1].text == "그냥 안내문"


def test_plain_system_message_passes_through():
    events = parse_directive_text("비가 내리기 시작했다.")
    assert [e.model_dump() for e in events] == [{"type": "system_message", "text": "비가 내리기 시작했다."}]


def test_directive_join_mutates_state():
    rule = _rule([INCLUDES_PROMISE], [{"type": "system_message", "text": "join:희진; variable_mod:trust+3"}])
    result = apply_rules(RuntimeState(), [_rules(rule)], "약속", NOW, {"trust": "신뢰"})
    assert result.state.participants == ["희진"]
    assert result.state.variables["trust"] == 3
    assert [e.type for e in result.events] == ["join", "var_delta"]
    assert result.events[1].label == "신뢰"


# ── First-turn suppression ───────────────────────────────────


def test_surface_events_first_turn_keeps_only_var_delta():
    rule = _rule([INCLUDES_PROMISE], [
        TRUST_PLUS_5,
        {"type": "system_message", "text": "안내"},
        {"type": "join", "name": "희진"},
    ])
    events = apply_rules(RuntimeState(), [_rules(rule)], "약속", NOW).events
    assert [e.type for e in surface_events(events, 1)] == ["var_delta"]
    assert [e.type for e in surface_events(events, 2)] == ["var_delta", "system_message", "join"]
