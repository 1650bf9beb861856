"""IF/THEN trigger rules, one evaluation pass per user turn.

Rule sets are flattened project → scene → character and evaluated
top-to-bottom against a working copy of the runtime state. A rule fires when
its conditions hold (AND: all, OR: any; no conditions: never). Fired actions
apply in order:

  variable_mod    ± delta on a variable, emits var_delta (no clamping)
  variable_set    overwrite a variable
  system_message  emits system_message; inline directives are expanded
  status_effect   emits status_effect
  join / leave    participant roster change (idempotent), emits join/leave

firedAt[rule.id] records the firing time and lastActiveAt is set to now at
the end of the pass. Cooldowns are expressed by content through
inactive_time / variable conditions, not enforced here.

System message directives (authored inside the text):

  join:김희진; system_message:"희진이 영상통화를 걸어왔습니다!"
  variable_mod:trust+5
  unlock_suggest:... / reset_offer:... / premium_offer:... / ep_unlock:...

Fragments that are not directives are joined into one trailing system message.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable

from lorechat.models import (
    Action,
    Condition,
    Event,
    InactiveTime,
    Join,
    JoinEvent,
    Leave,
    LeaveEvent,
    OfferEvent,
    ParticipantPresent,
    RuntimeState,
    StatusEffect,
    StatusEffectEvent,
    StringCompare,
    SystemMessage,
    SystemMessageEvent,
    TextIncludes,
    TriggerRule,
    TriggerRuleSet,
    VarDeltaEvent,
    VariableCompare,
    VariableMod,
    VariableSet,
)
from lorechat.templates import resolve_label
from lorechat.unlock import compare, to_number

logger = logging.getLogger(__name__)

_DIRECTIVE_RE = re.compile(r"^([a-z_]+)\s*:\s*(.+)$", re.IGNORECASE | re.DOTALL)
_VAR_DELTA_RE = re.compile(r"^([A-Za-z0-9_]+)\s*([+-])\s*([0-9]{1,6})$")
_QUOTED_RE = re.compile(r"^[\"'“”‘’](.*)[\"'“”‘’]$", re.DOTALL)

_OFFER_KINDS = ("unlock_suggest", "reset_offer", "premium_offer", "ep_unlock")


@dataclass
class TriggerResult:
    state: RuntimeState
    events: list[Event] = field(default_factory=list)
    fired: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Conditions
# ---------------------------------------------------------------------------

def hours_since(last: datetime | None, now: datetime) -> float:
    if last is None:
        return 0.0
    if last.tzinfo is None:
        last = last.replace(tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    diff = (now - last).total_seconds()
    return diff / 3600 if diff > 0 else 0.0


def eval_condition(
    cond: Condition, user_text: str, state: RuntimeState, now: datetime
) -> bool:
    if isinstance(cond, TextIncludes):
        hay = (user_text or "").casefold()
        return any(
            needle.strip() and needle.strip().casefold() in hay for needle in cond.values
        )
    if isinstance(cond, VariableCompare):
        return compare(to_number(state.variables.get(cond.var, 0)), cond.op, cond.value)
    if isinstance(cond, StringCompare):
        current = state.variables.get(cond.var)
        current_text = "" if current is None else str(current)
        if cond.op == "!=":
            return current_text != cond.value
        return current_text == cond.value
    if isinstance(cond, InactiveTime):
        return hours_since(state.last_active_at, now) >= cond.hours
    if isinstance(cond, ParticipantPresent):
        return cond.name.strip() in state.participants
    raise TypeError(f"Unknown condition: {cond!r}")


def rule_matches(rule: TriggerRule, user_text: str, state: RuntimeState, now: datetime) -> bool:
    conditions = rule.if_.conditions
    if not conditions:
        return False
    results = (eval_condition(c, user_text, state, now) for c in conditions)
    if rule.if_.type == "OR":
        return any(results)
    return all(results)


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------

def _store_number(value: float) -> int | float:
    return int(value) if float(value).is_integer() else value


def _join(state: RuntimeState, name: str) -> bool:
    name = name.strip()
    if not name or name in state.participants:
        return False
    state.participants.append(name)
    return True


def _leave(state: RuntimeState, name: str) -> bool:
    name = name.strip()
    if name not in state.participants:
        return False
    state.participants.remove(name)
    return True


def _apply_delta(
    state: RuntimeState, var: str, op: str, delta: float, labels: dict[str, str]
) -> VarDeltaEvent | None:
    current = to_number(state.variables.get(var, 0))
    state.variables[var] = _store_number(current - delta if op == "-" else current + delta)
    if delta == 0:
        return None
    return VarDeltaEvent(var=var, label=resolve_label(var, labels), op=op, value=_store_number(delta))


def apply_action(
    action: Action, state: RuntimeState, events: list[Event], labels: dict[str, str]
) -> None:
    """Apply one action to the working state, appending emitted events."""
    if isinstance(action, VariableMod):
        if not action.var:
            return
        event = _apply_delta(state, action.var, action.op, action.value, labels)
        if event is not None:
            events.append(event)
    elif isinstance(action, VariableSet):
        if action.var:
            state.variables[action.var] = action.value
    elif isinstance(action, SystemMessage):
        for event in parse_directive_text(action.text, labels):
            _apply_directive(event, state, events, labels)
    elif isinstance(action, StatusEffect):
        if action.key.strip():
            events.append(StatusEffectEvent(key=action.key.strip(), turns=action.turns))
    elif isinstance(action, Join):
        if _join(state, action.name):
            events.append(JoinEvent(name=action.name.strip()))
    elif isinstance(action, Leave):
        if _leave(state, action.name):
            events.append(LeaveEvent(name=action.name.strip()))
    else:
        raise TypeError(f"Unknown action: {action!r}")


def _apply_directive(
    event: Event, state: RuntimeState, events: list[Event], labels: dict[str, str]
) -> None:
    """Directive events carry state changes the same way their actions do."""
    if isinstance(event, JoinEvent):
        if _join(state, event.name):
            events.append(event)
    elif isinstance(event, LeaveEvent):
        if _leave(state, event.name):
            events.append(event)
    elif isinstance(event, VarDeltaEvent):
        applied = _apply_delta(state, event.var, event.op, event.value, labels)
        if applied is not None:
            events.append(applied)
    else:
        events.append(event)


# ---------------------------------------------------------------------------
# Directive text
# ---------------------------------------------------------------------------

def _strip_quotes(text: str) -> str:
    text = text.strip()
    m = _QUOTED_RE.match(text)
    return m.group(1) if m else text


def parse_directive_text(raw: str, labels: dict[str, str] | None = None) -> list[Event]:
    """Expand inline directives in a system message into events."""
    labels = labels or {}
    parts = [p.strip() for p in re.split(r"[;\n]+", raw or "") if p.strip()]
    out: list[Event] = []
    leftover: list[str] = []

    for part in parts:
        m = _DIRECTIVE_RE.match(part)
        if not m:
            leftover.append(part)
            continue
        key = m.group(1).lower()
        val = _strip_quotes(m.group(2))
        if not val:
            leftover.append(part)
        elif key == "join":
            out.append(JoinEvent(name=val))
        elif key == "leave":
            out.append(LeaveEvent(name=val))
        elif key in ("variable_mod", "var", "vardelta"):
            dm = _VAR_DELTA_RE.match(val)
            if dm and int(dm.group(3)):
                var = dm.group(1)
                out.append(VarDeltaEvent(
                    var=var, label=resolve_label(var, labels),
                    op=dm.group(2), value=int(dm.group(3)),
                ))
            else:
                leftover.append(part)
        elif key == "system_message":
            out.append(SystemMessageEvent(text=val))
        elif key in _OFFER_KINDS:
            out.append(OfferEvent(type=key, text=val))
        else:
            leftover.append(part)

    if leftover:
        out.append(SystemMessageEvent(text=" ".join(leftover)))
    return out


# ---------------------------------------------------------------------------
# Evaluation pass
# ---------------------------------------------------------------------------

def flatten_rules(rule_sets: Iterable[TriggerRuleSet | None]) -> list[TriggerRule]:
    """Enabled rules in authored order across scopes (project, scene, character)."""
    return [r for rs in rule_sets if rs is not None for r in rs.rules if r.enabled]


def apply_rules(
    state: RuntimeState | None,
    rule_sets: Iterable[TriggerRuleSet | None],
    user_text: str,
    now: datetime,
    var_labels: dict[str, str] | None = None,
) -> TriggerResult:
    """Run one evaluation pass and return the next state and emitted events.

    The input state is never mutated.
    """
    working = state.model_copy(deep=True) if state is not None else RuntimeState()
    labels = var_labels or {}
    events: list[Event] = []
    fired: list[str] = []

    for rule in flatten_rules(rule_sets):
        if not rule_matches(rule, user_text, working, now):
            continue
        for action in rule.then.actions:
            apply_action(action, working, events, labels)
        if rule.id:
            working.fired_at[rule.id] = now
        fired.append(rule.id or rule.name)
        logger.debug("rule fired id=%s name=%s", rule.id, rule.name)

    working.last_active_at = now
    return TriggerResult(state=working, events=events, fired=fired)


def surface_events(events: list[Event], user_turns: int) -> list[Event]:
    """Events shown to the user: on the first user turn only var_delta survives."""
    if user_turns <= 1:
        return [e for e in events if e.type == "var_delta"]
    return list(events)
