"""Tests for challenge-mode success detection."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from lorechat.challenge import build_judge_prompt, evaluate_challenge, keyword_hits, required_turns
from lorechat.models import Challenge
from lorechat.providers import Completion, ProviderError
from lorechat.storage import DEFAULT_CHALLENGE_JUDGE_PROMPT

CHALLENGE = Challenge(
    id="date",
    character_slug="seoyeon",
    title="야시장 데이트",
    goal="산책 약속을 받아낸다",
    success_keywords=["좋아", "OK"],
    partial_match=False,
    min_turns_for_success=3,
)


def _judge(text: str = '{"verdict": "accept"}') -> MagicMock:
    client = MagicMock()
    client.complete = AsyncMock(return_value=Completion(text=text))
    return client


class TestKeywordHits:
    def test_whole_token(self):
        assert keyword_hits("그래, 좋아 가자", ["좋아"], partial=False) == ["좋아"]
        assert keyword_hits("좋아해", ["좋아"], partial=False) == []

    def test_partial(self):
        assert keyword_hits("좋아해", ["좋아"], partial=True) == ["좋아"]

    def test_case_insensitive(self):
        assert keyword_hits("ok, let's go", ["OK"], partial=False) == ["OK"]

    def test_blank_keywords_ignored(self):
        assert keyword_hits("anything", ["", "  "], partial=True) == []


def test_required_turns_default():
    assert required_turns(CHALLENGE, 5) == 3
    assert required_turns(CHALLENGE.model_copy(update={"min_turns_for_success": None}), 5) == 5


def test_judge_prompt_renders_context():
    msgs = [{"role": "user", "content": "같이 걸을래?"}, {"role": "assistant", "content": "음..."}]
    prompt = build_judge_prompt(DEFAULT_CHALLENGE_JUDGE_PROMPT, CHALLENGE, ["좋아"], msgs, "좋아 가자")
    assert "산책 약속을 받아낸다" in prompt
    assert "- 좋아" in prompt
    assert "유저: 같이 걸을래?" in prompt
    assert "캐릭터: 음..." in prompt
    assert "좋아 가자" in prompt


async def test_keyword_before_min_turns_never_succeeds():
    client = _judge()
    ok = await evaluate_challenge(CHALLENGE, "좋아 가자", [], 2, client=client, model="m",
                                  judge_prompt=DEFAULT_CHALLENGE_JUDGE_PROMPT)
    assert ok is False
    client.complete.assert_not_awaited()


async def test_no_keyword_skips_judge():
    client = _judge()
    ok = await evaluate_challenge(CHALLENGE, "싫어", [], 5, client=client, model="m",
                                  judge_prompt=DEFAULT_CHALLENGE_JUDGE_PROMPT)
    assert ok is False
    client.complete.assert_not_awaited()


@pytest.mark.parametrize("output,expected", [
    ('{"verdict": "accept", "reason": "진심"}', True),
    ('{"verdict": "reject"}', False),
    ('{"verdict": "unclear"}', False),
    ("뭐라는지 모르겠다", False),
])
async def test_judge_verdicts(output, expected):
    client = _judge(output)
    ok = await evaluate_challenge(CHALLENGE, "좋아 가자", [], 3, client=client, model="judge-m",
                                  judge_prompt=DEFAULT_CHALLENGE_JUDGE_PROMPT)
    assert ok is expected
    request = client.complete.await_args.args[0]
    assert request.model == "judge-m"
    assert request.temperature == 0.0


async def test_judge_failure_is_not_success():
    client = MagicMock()
    client.complete = AsyncMock(side_effect=ProviderError("timeout"))
    ok = await evaluate_challenge(CHALLENGE, "좋아 가자", [], 3, client=client, model="m",
                                  judge_prompt=DEFAULT_CHALLENGE_JUDGE_PROMPT)
    assert ok is False


async def test_broken_judge_template_is_not_success():
    ok = await evaluate_challenge(CHALLENGE, "좋아 가자", [], 3, client=_judge(), model="m",
                                  judge_prompt="{{> nope}}")
    assert ok is False
