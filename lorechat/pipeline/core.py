"""One chat turn, end to end."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from lorechat import challenge as challenge_mode
from lorechat import memory, storage
from lorechat.content import ResolvedContent, resolve_content
from lorechat.models import (
    CharacterProfile,
    Challenge,
    ChatState,
    Event,
    Identity,
    RuntimeState,
    TurnRequest,
)
from lorechat.prompts import (
    CONCISE_RULE,
    compose_challenge_block,
    compose_system_prompt,
    compose_variable_block,
)
from lorechat.providers import (
    ContextCache,
    MissingCredentialsError,
    ProviderClient,
    ProviderRouter,
    effective_unsafe,
    make_client,
)
from lorechat.storage.config import get_provider_settings
from lorechat.templates import build_template_vars, interpolate
from lorechat.triggers import apply_rules, surface_events
from lorechat.unlock import build_snapshot

from .segments import sanitize_reply, strip_narration

logger = logging.getLogger(__name__)


class TurnValidationError(ValueError):
    """The request is well-formed JSON but cannot be processed as a turn."""


@dataclass
class TurnResult:
    text: str
    provider: str
    model: str
    runtime: dict[str, Any]
    events: list[Event] = field(default_factory=list)
    challenge_success: bool | None = None

    def to_response(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "ok": True,
            "provider": self.provider,
            "model": self.model,
            "text": self.text,
        }
        if self.challenge_success is not None:
            body["challengeSuccess"] = self.challenge_success
        body["runtime"] = self.runtime
        body["events"] = [e.model_dump(by_alias=True) for e in self.events]
        return body


def _load_identity(request: TurnRequest) -> Identity:
    user = request.user
    stored = storage.get_identity(user.id) if user.id else None
    identity = Identity.model_validate(stored) if stored else Identity(id=user.id)
    # the request names the caller, the identity store vouches for them
    return identity.model_copy(update={
        "nickname": user.nickname.strip() or identity.nickname,
        "handle": user.handle.strip() or identity.handle,
    })


def _load_challenge(request: TurnRequest) -> Challenge | None:
    if not request.challenge_id:
        return None
    try:
        raw = storage.get_challenge(request.challenge_id)
    except ValueError as e:
        raise TurnValidationError(f"Invalid challengeId: {e}") from e
    if not raw:
        raise TurnValidationError(f"Unknown challenge: {request.challenge_id}")
    found = Challenge.model_validate(raw)
    if request.character_slug and found.character_slug.lower() != request.character_slug.strip().lower():
        raise TurnValidationError(
            f"Challenge {found.id} belongs to {found.character_slug}, not {request.character_slug}"
        )
    return found


def validate_turn(request: TurnRequest) -> None:
    if request.user_script and request.challenge_id:
        raise TurnValidationError("userScript and challengeId cannot be used together")
    if not any(m.role == "user" for m in request.messages):
        raise TurnValidationError("messages must contain at least one user message")


def _inject_user_script(messages: list[dict[str, str]], script: str) -> list[dict[str, str]]:
    """Put the stage direction right before the text of the last user message."""
    script = script.strip()
    if not script:
        return messages
    for i in range(len(messages) - 1, -1, -1):
        if messages[i]["role"] == "user":
            messages[i] = {
                "role": "user",
                "content": f"[상황 지시] {script}\n\n{messages[i]['content']}",
            }
            break
    return messages


def _base_system(request: TurnRequest, content: ResolvedContent, **kwargs: Any) -> str:
    caller_system = next((m.content for m in request.messages if m.role == "system"), "")
    if not content.found and caller_system.strip():
        return caller_system.strip()
    return compose_system_prompt(**kwargs)


def _try_client(client_factory: Callable[[str], ProviderClient], provider: str) -> ProviderClient | None:
    try:
        return client_factory(provider)
    except MissingCredentialsError:
        logger.info("no credentials for auxiliary provider %s, skipping", provider)
        return None


def _neutral_content() -> ResolvedContent:
    return ResolvedContent(profile=CharacterProfile(slug=""), found=False)


def _sanitize_event(event: Event, tvars: dict[str, Any]) -> Event:
    """Event text may carry {{tokens}} too; it gets the same treatment as replies."""
    text = getattr(event, "text", None)
    if text is None:
        return event
    return event.model_copy(update={"text": sanitize_reply(text, tvars)})


def _runtime_payload(request: TurnRequest, state: RuntimeState, var_labels: dict[str, str]) -> dict[str, Any]:
    payload = request.runtime.model_dump(by_alias=True, mode="json")
    payload["variables"] = dict(state.variables)
    payload["chat"] = ChatState(
        participants=state.participants,
        last_active_at=state.last_active_at,
        fired_at=state.fired_at,
    ).model_dump(by_alias=True, mode="json")
    payload["varLabels"] = var_labels
    return payload


async def _judge_challenge(
    found: Challenge,
    reply: str,
    history: list[dict[str, str]],
    user_turns: int,
    *,
    config: dict[str, Any],
    reply_provider: str,
    client_factory: Callable[[str], ProviderClient],
) -> bool:
    cfg = config["challenge"]
    judge_provider = cfg.get("judge_provider") or reply_provider
    client = _try_client(client_factory, judge_provider)
    if client is None:
        return False
    return await challenge_mode.evaluate_challenge(
        found, reply, history, user_turns,
        client=client,
        model=get_provider_settings(judge_provider, config).model,
        judge_prompt=cfg["challenge_judge_prompt"],
        default_min_turns=cfg["min_turns_for_success"],
    )


async def run_turn(
    request: TurnRequest,
    *,
    config: dict[str, Any],
    cache: ContextCache,
    client_factory: Callable[[str], ProviderClient] = make_client,
    background=None,
    now: datetime | None = None,
) -> TurnResult:
    """Execute one turn: content → unlock → prompt → rules → templates →
    memory → provider → sanitize → challenge.

    Raises TurnValidationError before doing any work when the request cannot
    be processed. Provider errors propagate.
    """
    validate_turn(request)
    now = now or datetime.now(timezone.utc)
    found_challenge = _load_challenge(request)
    client_factory(request.provider)  # missing credentials fail the turn up front

    provider = request.provider
    settings = get_provider_settings(provider, config)
    slug = (request.character_slug or "").strip().lower()
    identity = _load_identity(request)

    # ── Authored content + unlock filtering (pre-turn state) ──
    content = await resolve_content(slug, request.scene_id) if slug else _neutral_content()
    runtime = request.runtime
    snapshot = build_snapshot(
        runtime.variables,
        owned_skus=[*runtime.owned_skus, *identity.owned_skus],
        unlocked_ending_keys=[*runtime.ending.unlocked_keys, *identity.unlocked_ending_keys],
        ep_cleared=[*runtime.ending.ep_cleared, *identity.ep_cleared],
    )
    lorebook = content.visible_lorebook(snapshot)

    unsafe = effective_unsafe(
        request.allow_unsafe, content.profile.safety_supported, identity.adult_verified, settings
    )
    call_sign = identity.nickname or str(runtime.variables.get("call_sign", "") or "")
    system = _base_system(
        request, content,
        profile=content.profile,
        prompt=content.prompt,
        lorebook=lorebook,
        call_sign=call_sign,
        unsafe=unsafe,
        force_parenthesis=settings.force_parenthesis,
    )
    if found_challenge:
        system = f"{system}\n\n{compose_challenge_block(found_challenge)}"
    if request.concise:
        system = f"{system}\n\n{CONCISE_RULE}"

    # ── Rule pass ──
    history = [{"role": m.role, "content": m.content} for m in request.messages if m.role != "system"]
    user_turns = memory.count_user_turns(history)
    last_user = next((m["content"] for m in reversed(history) if m["role"] == "user"), "")
    var_labels = content.var_labels()
    rules = apply_rules(runtime.to_state(), content.rule_sets(), last_user, now, var_labels)
    state = rules.state

    # ── Templates ──
    tvars = build_template_vars(
        state.variables,
        user_id=identity.id,
        nickname=identity.nickname,
        handle=identity.handle,
        now=now,
    )
    call_sign = str(tvars.get("call_sign") or call_sign)
    system = interpolate(system, tvars)
    history = [{"role": m["role"], "content": interpolate(m["content"], tvars)} for m in history]
    if request.user_script:
        history = _inject_user_script(history, interpolate(request.user_script, tvars))
    events = [_sanitize_event(e, tvars) for e in rules.events]

    # ── Memory ──
    mem_cfg = config["memory"]
    blocks = memory.MemoryBlocks()
    if mem_cfg.get("enabled") and identity.id and slug:
        blocks = await memory.load_memory_blocks(identity.id, slug)
    history = memory.prune_history(history, mem_cfg["window_turns"], blocks)
    variable_block = compose_variable_block(now, state.variables, state.participants, events, var_labels)
    system_tail = "\n\n".join(p for p in (blocks.text(), variable_block) if p)

    # ── Provider ──
    def _clean(raw: str) -> str:
        text = sanitize_reply(raw, tvars, call_sign)
        return strip_narration(text) if found_challenge else text

    router = ProviderRouter(config, cache=cache, client_factory=client_factory)
    routed = await router.complete(
        provider=provider,
        settings=settings,
        system=system,
        system_tail=system_tail,
        messages=history,
        model=request.model,
        temperature=request.temperature,
        top_p=request.top_p,
        max_tokens=request.max_tokens,
        unsafe=unsafe,
        cache_key=(identity.id, slug) if identity.id and slug else None,
        history_window=mem_cfg["window_turns"] * 2 if blocks else None,
        clean=_clean,
    )

    # ── Challenge ──
    challenge_success: bool | None = None
    if found_challenge:
        challenge_success = await _judge_challenge(
            found_challenge, routed.text, history, user_turns,
            config=config, reply_provider=routed.provider, client_factory=client_factory,
        )

    # ── Long-term memory, after the reply is final ──
    if mem_cfg.get("enabled") and identity.id and slug:
        mem_provider = mem_cfg.get("provider") or provider
        mem_client = _try_client(client_factory, mem_provider)
        if mem_client is not None:
            transcript = [
                {"role": m.role, "content": m.content} for m in request.messages if m.role != "system"
            ] + [{"role": "assistant", "content": routed.text}]
            memory.dispatch_memory_update(
                identity.id, slug, transcript,
                background=background,
                client=mem_client,
                model=get_provider_settings(mem_provider, config).model,
                summary_every=mem_cfg["summary_every_user_turns"],
            )

    logger.debug(
        "turn done slug=%s provider=%s model=%s retried=%s fell_back=%s events=%d",
        slug, routed.provider, routed.model, routed.retried, routed.fell_back, len(events),
    )
    return TurnResult(
        text=routed.text,
        provider=routed.provider,
        model=routed.model,
        runtime=_runtime_payload(request, state, var_labels),
        events=surface_events(events, user_turns),
        challenge_success=challenge_success,
    )
