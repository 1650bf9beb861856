"""Challenge mode success detection.

A keyword hit alone never counts. Success needs all of:
  1. at least `min_turns_for_success` user turns so far
  2. an authored success keyword in the (narration-free) reply
  3. the judge model answering "accept" for that usage

Judge failures of any kind count as "not successful".
"""

from __future__ import annotations

import logging
import re
from typing import Any

from lorechat.models import Challenge
from lorechat.pipeline.extractors import parse_verdict
from lorechat.prompts import PromptError, render_prompt
from lorechat.providers.base import CompletionRequest, ProviderClient, ProviderError

logger = logging.getLogger(__name__)


def keyword_hits(reply: str, keywords: list[str], partial: bool) -> list[str]:
    """Keywords found in reply, case-insensitive.

    partial=True matches anywhere; otherwise the keyword must stand as its
    own token (not glued to other letters or digits).
    """
    text = (reply or "").casefold()
    hits: list[str] = []
    for kw in keywords:
        needle = kw.strip().casefold()
        if not needle:
            continue
        if partial:
            found = needle in text
        else:
            found = re.search(rf"(?<!\w){re.escape(needle)}(?!\w)", text) is not None
        if found:
            hits.append(kw.strip())
    return hits


def required_turns(challenge: Challenge, default: int) -> int:
    if challenge.min_turns_for_success is not None:
        return max(0, challenge.min_turns_for_success)
    return max(0, default)


def build_judge_prompt(
    template: str,
    challenge: Challenge,
    hits: list[str],
    messages: list[dict[str, str]],
    reply: str,
) -> str:
    ctx: dict[str, Any] = {
        "title": challenge.title,
        "goal": challenge.goal,
        "situation": challenge.situation,
        "keywords": hits,
        "msgs": [
            {"speaker": "유저" if m["role"] == "user" else "캐릭터", "content": m["content"]}
            for m in messages
            if m.get("role") in ("user", "assistant")
        ],
        "reply": reply,
    }
    return render_prompt(template, ctx)


async def judge(client: ProviderClient, model: str, prompt: str) -> str:
    out = await client.complete(CompletionRequest(
        model=model,
        system="",
        messages=[{"role": "user", "content": prompt}],
        temperature=0.0,
        max_tokens=256,
        json_output=True,
    ))
    return parse_verdict(out.text)


async def evaluate_challenge(
    challenge: Challenge,
    reply: str,
    messages: list[dict[str, str]],
    user_turns: int,
    *,
    client: ProviderClient,
    model: str,
    judge_prompt: str,
    default_min_turns: int = 3,
) -> bool:
    """Decide challengeSuccess for one reply. Never raises."""
    if user_turns < required_turns(challenge, default_min_turns):
        return False
    hits = keyword_hits(reply, challenge.success_keywords, challenge.partial_match)
    if not hits:
        return False
    try:
        prompt = build_judge_prompt(judge_prompt, challenge, hits, messages, reply)
        verdict = await judge(client, model, prompt)
    except (PromptError, ProviderError) as e:
        logger.warning("challenge %s: judge failed, treating as not successful: %s", challenge.id, e)
        return False
    logger.info("challenge %s: keywords=%s verdict=%s", challenge.id, hits, verdict)
    return verdict == "accept"
