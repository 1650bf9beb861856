"""Handlebars prompt rendering and system prompt composition.

The system prompt is an ordered list of blocks, each a Handlebars template
rendered against the resolved content. Blocks that render empty are dropped;
the rest are joined with a blank line:

  identity     character name + how to address the user
  profile      handle / hashtags / MBTI
  personality  speech guide  core desire
  lorebook     "- key: value" lines (already unlock-filtered and merged)
  few_shot     at most 8 example pairs
  format       bracket narration / length / NSFW-safety instructions
  author_note  author's final directive
  closing      never reveal being an AI

Templates use triple-stash ({{{x}}}) so authored text is not HTML-escaped.
The per-turn variable block is built separately by compose_variable_block()
and is never part of the cacheable prompt.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import Any, Iterable

import pybars

from lorechat.models import (
    CharacterProfile,
    Challenge,
    Event,
    LorebookEntry,
    PromptPayload,
)
from lorechat.templates import CANONICAL_TZ, format_value, resolve_label

_compiler = pybars.Compiler()
_cache: dict[str, Callable] = {}

FEW_SHOT_LIMIT = 8

_WEEKDAYS = ("월", "화", "수", "목", "금", "토", "일")


class PromptError(Exception):
    """Raised when a Handlebars template fails to compile or render."""


# ── Custom Handlebars helpers ────────────────────────────


def _helper_take(this, options, items, count):
    """{{#take array N}}...{{/take}}: iterate over the first N items."""
    result = []
    for item in list(items)[:int(count)]:
        result.extend(options["fn"](item))
    return result


def _helper_last(this, options, items, count):
    """{{#last array N}}...{{/last}}: iterate over the last N items."""
    result = []
    for item in list(items)[-int(count):]:
        result.extend(options["fn"](item))
    return result


_HELPERS: dict[str, Callable] = {
    "take": _helper_take,
    "last": _helper_last,
}


def render_prompt(template_str: str, context: dict[str, Any]) -> str:
    """Compile and render a Handlebars template with the given context.

    Templates are cached by source string to avoid recompilation.
    """
    try:
        compiled = _cache.get(template_str)
        if compiled is None:
            compiled = _compiler.compile(template_str)
            _cache[template_str] = compiled
        return str(compiled(context, helpers=_HELPERS))
    except Exception as e:
        raise PromptError(f"Template error: {e}") from e


# ── System prompt blocks ─────────────────────────────────

DEFAULT_BLOCKS: tuple[tuple[str, str], ...] = (
    ("identity", (
        '너는 "{{{name}}}" 캐릭터로서 유저와 1:1 채팅을 한다.\n'
        '유저를 "유저", "사용자", "당신" 같은 일반 명칭으로 부르지 않는다. '
        '{{#if call_sign}}유저는 반드시 "{{{call_sign}}}"(이)라고 부른다.'
        '{{else}}대화에서 알게 된 이름이나 자연스러운 호칭으로 부른다.{{/if}}'
    )),
    ("profile", "{{#if profile}}프로필: {{{profile}}}{{/if}}"),
    ("personality", "{{#if personality}}성격/정체성:\n{{{personality}}}{{/if}}"),
    ("speech_guide", "{{#if speech_guide}}말투 가이드:\n{{{speech_guide}}}{{/if}}"),
    ("core_desire", "{{#if core_desire}}핵심 욕망:\n{{{core_desire}}}{{/if}}"),
    ("lorebook", (
        "{{#if lore}}로어북(세계관):\n"
        "{{#each lore}}- {{{key}}}: {{{value}}}\n{{/each}}{{/if}}"
    )),
    ("few_shot", (
        "{{#if few_shot}}Few-shot 예시:\n"
        "{{#take few_shot " + str(FEW_SHOT_LIMIT) + "}}"
        "# Example {{n}}\nUSER: {{{user}}}\nASSISTANT: {{{bot}}}\n\n{{/take}}{{/if}}"
    )),
    ("format", (
        "{{#if format_rules}}형식 제어:\n"
        "{{#each format_rules}}- {{{this}}}\n{{/each}}{{/if}}"
    )),
    ("author_note", "{{#if author_note}}오서 노트(최종 지시):\n{{{author_note}}}{{/if}}"),
    ("closing", "AI임을 밝히지 말고, 자연스럽고 몰입감 있게 대화한다."),
)

CONCISE_RULE = "[응답 규칙] 답변은 한국어로 2~3문장 이내로 짧고 단호하게. 불필요한 설명/장황한 서술 금지."

PLAIN_TEXT_RULE = "[출력 규칙] 반드시 한국어 일반 텍스트로만 답하고, JSON/함수호출/도구출력은 금지한다."


def _profile_line(profile: CharacterProfile) -> str:
    handle = profile.handle.strip()
    if handle and not handle.startswith("@"):
        handle = f"@{handle}"
    tags = " ".join(t if t.startswith("#") else f"#{t}" for t in profile.hashtags if t.strip())
    mbti = f"MBTI: {profile.mbti}" if profile.mbti.strip() else ""
    return "  ".join(p for p in (handle, tags, mbti) if p)


def _format_rules(
    prompt: PromptPayload, *, unsafe: bool, force_parenthesis: bool
) -> list[str]:
    author = prompt.author
    rules: list[str] = []
    if author.force_bracket_narration or force_parenthesis:
        rules.append("행동 묘사는 괄호()로 서술")
    if author.short_long_limit:
        rules.append("답변 길이 제한을 지킨다")
    if unsafe and author.nsfw_filter_off:
        rules.append("(주의) NSFW 필터 OFF: 성인 인증된 유저와의 대화")
    else:
        rules.append("선정적이거나 노골적인 성적 묘사는 하지 않는다")
    return rules


def build_prompt_context(
    profile: CharacterProfile,
    prompt: PromptPayload,
    lorebook: list[LorebookEntry],
    *,
    call_sign: str = "",
    unsafe: bool = False,
    force_parenthesis: bool = False,
) -> dict[str, Any]:
    """Assemble template variables for the system prompt blocks."""
    system = prompt.system
    pairs = [p for p in system.few_shot_pairs if p.user.strip() or p.bot.strip()]
    return {
        "name": profile.name or "캐릭터",
        "call_sign": call_sign.strip(),
        "profile": _profile_line(profile),
        "personality": system.personality_summary.strip(),
        "speech_guide": system.speech_guide.strip(),
        "core_desire": system.core_desire.strip(),
        "lore": [{"key": e.key, "value": e.value} for e in lorebook],
        "few_shot": [
            {"n": i + 1, "user": p.user, "bot": p.bot} for i, p in enumerate(pairs)
        ],
        "format_rules": _format_rules(prompt, unsafe=unsafe, force_parenthesis=force_parenthesis),
        "author_note": prompt.author.author_note.strip(),
    }


def compose_system_prompt(
    profile: CharacterProfile,
    prompt: PromptPayload,
    lorebook: list[LorebookEntry],
    *,
    call_sign: str = "",
    unsafe: bool = False,
    force_parenthesis: bool = False,
    blocks: Iterable[tuple[str, str]] = DEFAULT_BLOCKS,
) -> str:
    """Render the cacheable part of the system prompt. Deterministic."""
    ctx = build_prompt_context(
        profile, prompt, lorebook,
        call_sign=call_sign, unsafe=unsafe, force_parenthesis=force_parenthesis,
    )
    parts = [render_prompt(tpl, ctx).strip() for _, tpl in blocks]
    return "\n\n".join(p for p in parts if p)


def compose_challenge_block(challenge: Challenge) -> str:
    lines = ["[챌린지 모드]"]
    if challenge.title:
        lines.append(f"제목: {challenge.title}")
    if challenge.situation:
        lines.append(f"상황: {challenge.situation}")
    if challenge.goal:
        lines.append(f"유저의 목표: {challenge.goal}")
    lines.append("괄호나 별표로 된 행동 묘사 없이 대사로만 답한다. 쉽게 목표를 허락하지 않는다.")
    return "\n".join(lines)


def format_now(now: datetime) -> str:
    local = now.astimezone(CANONICAL_TZ)
    return f"{local:%Y-%m-%d} ({_WEEKDAYS[local.weekday()]}) {local:%H:%M} KST"


def _event_line(event: Event) -> str | None:
    if event.type == "system_message":
        return event.text
    if event.type == "status_effect":
        return f"상태 효과: {event.key} ({event.turns}턴)"
    if event.type == "join":
        return f"{event.name} 등장"
    if event.type == "leave":
        return f"{event.name} 퇴장"
    return None


def compose_variable_block(
    now: datetime,
    variables: dict[str, Any],
    participants: list[str],
    events: list[Event],
    var_labels: dict[str, str],
) -> str:
    """Per-turn block: time, variable snapshot, roster, this turn's events."""
    lines = [f"[현재 시각] {format_now(now)}"]
    snapshot = ", ".join(
        f"{resolve_label(k, var_labels)}={format_value(variables[k])}"
        for k in sorted(variables)
        if not k.startswith("_") and format_value(variables[k]) != ""
    )
    if snapshot:
        lines.append(f"[상태 변수] {snapshot}")
    names = [p for p in participants if p]
    if names:
        lines.append(f"[참여자] {', '.join(names)}")
    event_lines = [line for line in (_event_line(e) for e in events) if line]
    if event_lines:
        lines.append("[시스템 이벤트]")
        lines.extend(f"- {line}" for line in event_lines)
    return "\n".join(lines)
