"""Hybrid long-term memory: user profile facts + rolling narrative summaries.

Read side (during a turn):
  load_memory_blocks()  stored record → "# [유저 프로필]" / "# [우리의 지난 서사]" text
  prune_history()       when either block exists, only the last N turns go out

Write side (after the reply, never awaited by the turn):
  update_memory()           profile extraction every turn, a new summary chapter
                            every `summary_every_user_turns` user turns
  dispatch_memory_update()  schedules update_memory and swallows its failures
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from lorechat import storage
from lorechat.models import MemoryRecord
from lorechat.pipeline.extractors import extract_profile_facts, merge_profile
from lorechat.providers.base import CompletionRequest, ProviderClient

logger = logging.getLogger(__name__)

MAX_SUMMARIES = 50
PROFILE_SOURCE_MESSAGES = 60

SUMMARY_SYSTEM = (
    "당신은 대화 요약자입니다. 주어진 대화를 3인칭 시점, 감정 위주로 2~4문장으로 요약하세요. "
    "예: '유저는 오늘 상사에게 깨져서 우울해하며 매운 떡볶이를 먹었다. 캐릭터는 그를 위로해주었다.' "
    "요약만 출력하고 설명은 하지 마세요."
)

PROFILE_SYSTEM = (
    "대화에서 유저(사용자)에 대한 정보만 추출하세요. 다음 키만 사용하고, 없으면 넣지 마세요. "
    "키: user_name, job, pet, like, dislike, current_worry, relationship, habit, nickname 등. "
    '한국어 값으로만 출력. 반드시 JSON 객체 한 개만 출력하고 다른 글은 금지. 예: {"user_name":"민수","pet":"고양이(나비)"}'
)

# Strong references to in-flight updates so they are not garbage collected.
_pending: set[asyncio.Task] = set()


@dataclass
class MemoryBlocks:
    profile_block: str = ""
    summary_block: str = ""

    def __bool__(self) -> bool:
        return bool(self.profile_block or self.summary_block)

    def text(self) -> str:
        return "\n\n".join(b for b in (self.profile_block, self.summary_block) if b)


def format_memory_blocks(record: MemoryRecord) -> MemoryBlocks:
    facts = [f"- {k}: {v.strip()}" for k, v in record.profile.items() if v and v.strip()]
    chapters = [
        f"- 챕터{i}: {s.strip()}"
        for i, s in enumerate(record.summaries[-MAX_SUMMARIES:], start=1)
        if s.strip()
    ]
    return MemoryBlocks(
        profile_block="# [유저 프로필]\n" + "\n".join(facts) if facts else "",
        summary_block="# [우리의 지난 서사]\n" + "\n".join(chapters) if chapters else "",
    )


async def load_memory_blocks(user_id: str, character_slug: str) -> MemoryBlocks:
    """Stored memory as prompt blocks; empty blocks when nothing is stored or on error."""
    if not user_id or not character_slug:
        return MemoryBlocks()
    try:
        raw = await asyncio.to_thread(storage.get_memory, user_id, character_slug)
        record = MemoryRecord.model_validate(raw or {})
    except Exception as e:
        logger.warning("memory load failed for %s/%s: %s", user_id, character_slug, e)
        return MemoryBlocks()
    return format_memory_blocks(record)


def take_last_n_turns(messages: list[dict[str, str]], n: int) -> list[dict[str, str]]:
    """The last n user/assistant pairs (2n messages); other roles are dropped."""
    convo = [m for m in messages if m.get("role") in ("user", "assistant")]
    return convo[-n * 2:] if n > 0 else []


def count_user_turns(messages: list[dict[str, str]]) -> int:
    return sum(1 for m in messages if m.get("role") == "user")


def prune_history(
    messages: list[dict[str, str]], window_turns: int, blocks: MemoryBlocks
) -> list[dict[str, str]]:
    """Keep full history unless long-term memory stands in for the older part."""
    if not blocks:
        return list(messages)
    return take_last_n_turns(messages, window_turns)


# ---------------------------------------------------------------------------
# Write side
# ---------------------------------------------------------------------------

def _dialog(messages: list[dict[str, str]]) -> str:
    return "\n".join(
        f"{'유저' if m['role'] == 'user' else '캐릭터'}: {m['content'].strip()}"
        for m in messages
        if m.get("role") in ("user", "assistant")
    )


async def summarize(client: ProviderClient, model: str, messages: list[dict[str, str]]) -> str:
    out = await client.complete(CompletionRequest(
        model=model,
        system=SUMMARY_SYSTEM,
        messages=[{"role": "user", "content": f"대화:\n{_dialog(messages)}"}],
        temperature=0.3,
        max_tokens=512,
    ))
    return out.text.strip()


async def extract_profile(client: ProviderClient, model: str, messages: list[dict[str, str]]) -> dict[str, str]:
    out = await client.complete(CompletionRequest(
        model=model,
        system=PROFILE_SYSTEM,
        messages=[{"role": "user", "content": f"대화:\n{_dialog(messages[-PROFILE_SOURCE_MESSAGES:])}"}],
        temperature=0.2,
        max_tokens=512,
        json_output=True,
    ))
    return extract_profile_facts(out.text)


async def update_memory(
    user_id: str,
    character_slug: str,
    messages: list[dict[str, str]],
    *,
    client: ProviderClient,
    model: str,
    summary_every: int = 20,
    total_user_turns: int | None = None,
) -> MemoryRecord:
    """Refresh the stored record from the full turn history (reply included)."""
    slug = character_slug.strip().lower()
    record = MemoryRecord.model_validate(await asyncio.to_thread(storage.get_memory, user_id, slug) or {})

    user_turns = max(
        record.summarized_user_turns,
        total_user_turns if total_user_turns is not None else count_user_turns(messages),
    )
    if user_turns - record.summarized_user_turns >= summary_every:
        text = await summarize(client, model, take_last_n_turns(messages, summary_every))
        if text:
            record.summaries = (record.summaries + [text])[-MAX_SUMMARIES:]
            record.summarized_user_turns = user_turns
            logger.info("memory %s/%s: summary chapter %d written", user_id, slug, len(record.summaries))

    facts = await extract_profile(client, model, messages)
    if facts:
        record.profile = merge_profile(record.profile, facts)

    await asyncio.to_thread(storage.save_memory, user_id, slug, record.model_dump(by_alias=True))
    return record


async def _run_safely(user_id: str, character_slug: str, kwargs: dict[str, Any]) -> None:
    try:
        await update_memory(user_id, character_slug, **kwargs)
    except Exception as e:
        logger.warning("memory update failed for %s/%s: %s", user_id, character_slug, e)


def dispatch_memory_update(
    user_id: str,
    character_slug: str,
    messages: list[dict[str, str]],
    *,
    background=None,
    **kwargs: Any,
) -> None:
    """Schedule update_memory without waiting for it.

    `background` is a FastAPI BackgroundTasks; it runs after the response is
    sent. Without one the update becomes a tracked asyncio task.
    """
    kwargs["messages"] = list(messages)
    if background is not None:
        background.add_task(_run_safely, user_id, character_slug, kwargs)
        return
    task = asyncio.get_running_loop().create_task(_run_safely(user_id, character_slug, kwargs))
    _pending.add(task)
    task.add_done_callback(_pending.discard)
