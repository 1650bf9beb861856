"""Tests for Handlebars rendering and system prompt composition."""

from datetime import datetime, timezone

import pytest

from lorechat.models import (
    Challenge,
    CharacterProfile,
    JoinEvent,
    LorebookEntry,
    PromptPayload,
    StatusEffectEvent,
    SystemMessageEvent,
    VarDeltaEvent,
)
from lorechat.prompts import (
    PromptError,
    compose_challenge_block,
    compose_system_prompt,
    compose_variable_block,
    format_now,
    render_prompt,
)


def _profile(**kw) -> CharacterProfile:
    return CharacterProfile(slug="seoyeon", name="서연", **kw)


def _payload(**author) -> PromptPayload:
    return PromptPayload.model_validate({
        "system": {
            "personalitySummary": "퉁명스럽지만 다정하다.",
            "speechGuide": "반말",
            "coreDesire": "가게를 갖는 것",
            "fewShotPairs": [{"user": f"q{i}", "bot": f"a{i}"} for i in range(1, 11)],
        },
        "author": author,
    })


# ── render_prompt ────────────────────────────────────────────


def test_render_take_helper():
    assert render_prompt("{{#take items 2}}{{this}} {{/take}}", {"items": ["a", "b", "c"]}) == "a b "


def test_render_last_helper():
    assert render_prompt("{{#last items 2}}{{this}} {{/last}}", {"items": ["a", "b", "c"]}) == "b c "


def test_render_triple_stash_not_escaped():
    assert render_prompt("{{{x}}}", {"x": "<b>&</b>"}) == "<b>&</b>"


def test_render_invalid_template_raises():
    with pytest.raises(PromptError):
        render_prompt("{{> missing_partial}}", {})


# ── compose_system_prompt ────────────────────────────────────


def test_block_order():
    lore = [LorebookEntry(key="도시", value="항구 도시")]
    prompt = compose_system_prompt(
        _profile(handle="seoyeon_night", hashtags=["야시장"], mbti="ISTP"),
        _payload(authorNote="마지막 지시"),
        lore,
        call_sign="지훈",
    )
    markers = [
        '너는 "서연" 캐릭터로서',
        "프로필: @seoyeon_night  #야시장  MBTI: ISTP",
        "성격/정체성:",
        "말투 가이드:",
        "핵심 욕망:",
        "로어북(세계관):\n- 도시: 항구 도시",
        "Few-shot 예시:",
        "형식 제어:",
        "오서 노트(최종 지시):\n마지막 지시",
        "AI임을 밝히지 말고",
    ]
    positions = [prompt.index(m) for m in markers]
    assert positions == sorted(positions)
    assert '"지훈"(이)라고 부른다' in prompt


def test_few_shot_capped_at_eight():
    prompt = compose_system_prompt(_profile(), _payload(), [])
    assert "USER: q8" in prompt
    assert "USER: q9" not in prompt
    assert "# Example 8" in prompt


def test_empty_blocks_dropped():
    prompt = compose_system_prompt(CharacterProfile(slug="x"), PromptPayload(), [])
    assert "프로필:" not in prompt
    assert "로어북" not in prompt
    assert "Few-shot" not in prompt
    assert "\n\n\n" not in prompt
    assert prompt.startswith('너는 "캐릭터" 캐릭터로서')


def test_authored_text_not_html_escaped():
    lore = [LorebookEntry(key="A&B", value='"따옴표" <태그>')]
    prompt = compose_system_prompt(_profile(), PromptPayload(), lore)
    assert '- A&B: "따옴표" <태그>' in prompt


def test_safety_instruction_depends_on_unsafe():
    payload = _payload(nsfwFilterOff=True)
    safe = compose_system_prompt(_profile(), payload, [], unsafe=False)
    unsafe = compose_system_prompt(_profile(), payload, [], unsafe=True)
    assert "노골적인 성적 묘사는 하지 않는다" in safe
    assert "NSFW 필터 OFF" in unsafe


def test_bracket_narration_flag():
    assert "행동 묘사는 괄호()로 서술" in compose_system_prompt(_profile(), _payload(forceBracketNarration=True), [])
    assert "행동 묘사는 괄호()로 서술" in compose_system_prompt(_profile(), _payload(), [], force_parenthesis=True)
    assert "행동 묘사는 괄호()로 서술" not in compose_system_prompt(_profile(), _payload(), [])


def test_compose_is_deterministic():
    args = (_profile(), _payload(), [LorebookEntry(key="k", value="v")])
    assert compose_system_prompt(*args) == compose_system_prompt(*args)


# ── variable block ───────────────────────────────────────────


NOW = datetime(2026, 5, 1, 14, 30, tzinfo=timezone.utc)  # Friday 23:30 KST


def test_format_now_in_seoul():
    assert format_now(NOW) == "2026-05-01 (금) 23:30 KST"


def test_variable_block_contents():
    block = compose_variable_block(
        NOW,
        {"trust": 15.0, "risk": 3, "_hidden": 1},
        ["희진"],
        [
            SystemMessageEvent(text="비가 온다"),
            StatusEffectEvent(key="긴장", turns=2),
            JoinEvent(name="희진"),
            VarDeltaEvent(var="trust", label="신뢰도", op="+", value=5),
        ],
        {"trust": "믿음"},
    )
    lines = block.split("\n")
    assert lines[0] == "[현재 시각] 2026-05-01 (금) 23:30 KST"
    assert lines[1] == "[상태 변수] 위험도=3, 믿음=15"
    assert lines[2] == "[참여자] 희진"
    assert lines[3] == "[시스템 이벤트]"
    assert lines[4:] == ["- 비가 온다", "- 상태 효과: 긴장 (2턴)", "- 희진 등장"]


def test_variable_block_minimal():
    assert compose_variable_block(NOW, {}, [], [], {}) == "[현재 시각] 2026-05-01 (금) 23:30 KST"


def test_challenge_block():
    block = compose_challenge_block(Challenge(id="c1", character_slug="s", title="데이트", goal="산책 약속", situation="마감 직전"))
    assert block.startswith("[챌린지 모드]")
    assert "유저의 목표: 산책 약속" in block
