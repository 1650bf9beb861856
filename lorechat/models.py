"""Core domain models.

All pipeline stages and storage functions operate on these types.
Pydantic is used for validation and serialisation at every data boundary.
Wire names are camelCase (as authored content and clients send them);
Python attributes are snake_case.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

ProviderName = Literal["anthropic", "gemini", "deepseek"]
PROVIDERS: tuple[str, ...] = ("anthropic", "gemini", "deepseek")

Scalar = Union[bool, int, float, str]


def _as_utc(value: datetime | None) -> datetime | None:
    """Timestamps without an offset are UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, protected_namespaces=())


# ---------------------------------------------------------------------------
# Runtime state
# ---------------------------------------------------------------------------

class RuntimeState(WireModel):
    """Per (user, character) conversation state, owned by the caller."""

    variables: dict[str, Scalar] = Field(default_factory=dict)
    participants: list[str] = Field(default_factory=list)
    last_active_at: datetime | None = None
    fired_at: dict[str, datetime] = Field(default_factory=dict)

    @field_validator("participants")
    @classmethod
    def _dedupe(cls, names: list[str]) -> list[str]:
        seen: list[str] = []
        for name in names:
            name = name.strip()
            if name and name not in seen:
                seen.append(name)
        return seen

    @field_validator("last_active_at")
    @classmethod
    def _utc_last_active(cls, value: datetime | None) -> datetime | None:
        return _as_utc(value)

    @field_validator("fired_at")
    @classmethod
    def _utc_fired(cls, fired: dict[str, datetime]) -> dict[str, datetime]:
        return {k: _as_utc(v) for k, v in fired.items()}


# ---------------------------------------------------------------------------
# Trigger rules: conditions
# ---------------------------------------------------------------------------

class TextIncludes(WireModel):
    type: Literal["text_includes"] = "text_includes"
    values: list[str] = Field(default_factory=list)


class VariableCompare(WireModel):
    type: Literal["variable_compare"] = "variable_compare"
    var: str
    op: Literal["<", "<=", "=", ">=", ">"] = "="
    value: float = 0


class StringCompare(WireModel):
    type: Literal["string_compare"] = "string_compare"
    var: str
    op: Literal["=", "!="] = "="
    value: str = ""


class InactiveTime(WireModel):
    type: Literal["inactive_time"] = "inactive_time"
    hours: float = 0


class ParticipantPresent(WireModel):
    type: Literal["participant_present"] = "participant_present"
    name: str


Condition = Annotated[
    Union[TextIncludes, VariableCompare, StringCompare, InactiveTime, ParticipantPresent],
    Field(discriminator="type"),
]


# ---------------------------------------------------------------------------
# Trigger rules: actions
# ---------------------------------------------------------------------------

class VariableMod(WireModel):
    type: Literal["variable_mod"] = "variable_mod"
    var: str
    op: Literal["+", "-"] = "+"
    value: float = 0


class VariableSet(WireModel):
    type: Literal["variable_set"] = "variable_set"
    var: str
    value: Scalar


class SystemMessage(WireModel):
    type: Literal["system_message"] = "system_message"
    text: str = ""


class StatusEffect(WireModel):
    type: Literal["status_effect"] = "status_effect"
    key: str
    turns: int = 0


class Join(WireModel):
    type: Literal["join"] = "join"
    name: str


class Leave(WireModel):
    type: Literal["leave"] = "leave"
    name: str


Action = Annotated[
    Union[VariableMod, VariableSet, SystemMessage, StatusEffect, Join, Leave],
    Field(discriminator="type"),
]


class TriggerIf(WireModel):
    type: Literal["AND", "OR"] = "AND"
    conditions: list[Condition] = Field(default_factory=list)


class TriggerThen(WireModel):
    actions: list[Action] = Field(default_factory=list)


class TriggerRule(WireModel):
    """An authored IF/THEN unit."""

    id: str = ""
    name: str = ""
    enabled: bool = True
    if_: TriggerIf = Field(default_factory=TriggerIf, alias="if")
    then: TriggerThen = Field(default_factory=TriggerThen)


class TriggerRuleSet(WireModel):
    """Rules of one scope plus display labels for its variables."""

    rules: list[TriggerRule] = Field(default_factory=list)
    var_labels: dict[str, str] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Events surfaced to the UI
# ---------------------------------------------------------------------------

class SystemMessageEvent(WireModel):
    type: Literal["system_message"] = "system_message"
    text: str


class JoinEvent(WireModel):
    type: Literal["join"] = "join"
    name: str


class LeaveEvent(WireModel):
    type: Literal["leave"] = "leave"
    name: str


class VarDeltaEvent(WireModel):
    type: Literal["var_delta"] = "var_delta"
    var: str
    label: str
    op: Literal["+", "-"]
    value: Union[int, float]


class StatusEffectEvent(WireModel):
    type: Literal["status_effect"] = "status_effect"
    key: str
    turns: int


class OfferEvent(WireModel):
    """Directive-only notices authored inside system messages."""

    type: Literal["unlock_suggest", "reset_offer", "premium_offer", "ep_unlock"]
    text: str


Event = Annotated[
    Union[SystemMessageEvent, JoinEvent, LeaveEvent, VarDeltaEvent, StatusEffectEvent, OfferEvent],
    Field(discriminator="type"),
]


# ---------------------------------------------------------------------------
# Lorebook
# ---------------------------------------------------------------------------

class PublicUnlock(WireModel):
    type: Literal["public"] = "public"


class AffectionUnlock(WireModel):
    type: Literal["affection"] = "affection"
    min: float = 0


class ConditionUnlock(WireModel):
    type: Literal["condition"] = "condition"
    expr: str = ""
    cost_panana: int | None = None


class PaidItemUnlock(WireModel):
    type: Literal["paid_item"] = "paid_item"
    sku: str = ""


class EndingRouteUnlock(WireModel):
    type: Literal["ending_route"] = "ending_route"
    ending_key: str | None = None
    ep_min: int | None = None
    cost_panana: int | None = None


Unlock = Annotated[
    Union[PublicUnlock, AffectionUnlock, ConditionUnlock, PaidItemUnlock, EndingRouteUnlock],
    Field(discriminator="type"),
]


class LorebookEntry(WireModel):
    """An authored world-knowledge fact."""

    key: str
    value: str = ""
    merge_mode: Literal["override", "append"] = "override"
    sort_order: int = 0
    active: bool = True
    unlock: Unlock = Field(default_factory=PublicUnlock)


# ---------------------------------------------------------------------------
# Authored character content
# ---------------------------------------------------------------------------

class FewShotPair(WireModel):
    user: str = ""
    bot: str = ""


class SystemLayer(WireModel):
    personality_summary: str = ""
    speech_guide: str = ""
    core_desire: str = ""
    few_shot_pairs: list[FewShotPair] = Field(default_factory=list)


class AuthorLayer(WireModel):
    force_bracket_narration: bool = False
    short_long_limit: bool = False
    nsfw_filter_off: bool = False
    author_note: str = ""


class PromptPayload(WireModel):
    system: SystemLayer = Field(default_factory=SystemLayer)
    author: AuthorLayer = Field(default_factory=AuthorLayer)


class CharacterProfile(WireModel):
    slug: str
    name: str = "캐릭터"
    handle: str = ""
    hashtags: list[str] = Field(default_factory=list)
    mbti: str = ""
    project_id: str | None = None
    safety_supported: bool = False


# ---------------------------------------------------------------------------
# Settings, memory, identity, challenges
# ---------------------------------------------------------------------------

class ProviderSettings(WireModel):
    """Per-provider defaults; request overrides win."""

    provider: ProviderName
    model: str
    model_heavy: str = ""
    temperature: float = 0.7
    top_p: float = 1.0
    max_tokens: int = 1024
    nsfw_filter: bool = False  # True: relaxed safety is never sent to this provider
    force_parenthesis: bool = False


class MemoryRecord(WireModel):
    profile: dict[str, str] = Field(default_factory=dict)
    summaries: list[str] = Field(default_factory=list)
    summarized_user_turns: int = 0


class Identity(WireModel):
    id: str
    nickname: str = ""
    handle: str = ""
    adult_verified: bool = False
    owned_skus: list[str] = Field(default_factory=list)
    unlocked_ending_keys: list[str] = Field(default_factory=list)
    ep_cleared: list[Union[int, str]] = Field(default_factory=list)


class Challenge(WireModel):
    id: str
    character_slug: str
    title: str = ""
    goal: str = ""
    situation: str = ""
    success_keywords: list[str] = Field(default_factory=list)
    partial_match: bool = False
    min_turns_for_success: int | None = None


# ---------------------------------------------------------------------------
# Turn request
# ---------------------------------------------------------------------------

class ChatMessage(WireModel):
    role: Literal["system", "user", "assistant"]
    content: str = Field(min_length=1)


class EndingProgress(WireModel):
    unlocked_keys: list[str] = Field(default_factory=list)
    ep_cleared: list[Union[int, str]] = Field(default_factory=list)


class ChatState(WireModel):
    participants: list[str] = Field(default_factory=list)
    last_active_at: datetime | None = None
    fired_at: dict[str, datetime] = Field(default_factory=dict)

    @field_validator("last_active_at")
    @classmethod
    def _utc_last_active(cls, value: datetime | None) -> datetime | None:
        return _as_utc(value)

    @field_validator("fired_at")
    @classmethod
    def _utc_fired(cls, fired: dict[str, datetime]) -> dict[str, datetime]:
        return {k: _as_utc(v) for k, v in fired.items()}


class RuntimeSnapshot(WireModel):
    """Caller-held state as it travels over the wire."""

    variables: dict[str, Scalar] = Field(default_factory=dict)
    owned_skus: list[str] = Field(default_factory=list)
    ending: EndingProgress = Field(default_factory=EndingProgress)
    chat: ChatState = Field(default_factory=ChatState)

    def to_state(self) -> RuntimeState:
        return RuntimeState(
            variables=dict(self.variables),
            participants=list(self.chat.participants),
            last_active_at=self.chat.last_active_at,
            fired_at=dict(self.chat.fired_at),
        )


class UserRef(WireModel):
    id: str = ""
    nickname: str = ""
    handle: str = ""


class TurnRequest(WireModel):
    provider: ProviderName
    messages: list[ChatMessage] = Field(min_length=1)
    character_slug: str | None = None
    scene_id: str | None = None
    user_script: str | None = None
    challenge_id: str | None = None
    concise: bool = False
    allow_unsafe: bool = False
    model: str | None = None
    temperature: float | None = Field(default=None, ge=0, le=1)
    max_tokens: int | None = Field(default=None, ge=1, le=8192)
    top_p: float | None = Field(default=None, ge=0, le=1)
    runtime: RuntimeSnapshot = Field(default_factory=RuntimeSnapshot)
    user: UserRef = Field(default_factory=UserRef)
