"""Global service configuration (provider defaults, routing, memory, challenge)."""

import copy
import json
from pathlib import Path
from typing import Any

from lorechat.models import PROVIDERS, ProviderSettings

from .core import data_dir

DEFAULT_CHALLENGE_JUDGE_PROMPT = """\
너는 채팅 챌린지의 판정관이다.

## 챌린지 목표
{{{goal}}}

## 감지된 성공 키워드
{{#each keywords}}- {{{this}}}
{{/each}}

## 최근 대화
{{#last msgs 6}}{{{speaker}}}: {{{content}}}
{{/last}}
## 캐릭터의 마지막 답변
{{{reply}}}

캐릭터가 위 키워드를 진심으로 수락/동의하는 맥락에서 사용했으면 "accept",
거절, 반어, 농담, 조건부 유보, 부정문 속에서 사용했으면 "reject",
판단할 수 없으면 "unclear"로 판정한다.
다른 글 없이 JSON 한 개만 출력한다: {"verdict": "accept" | "reject" | "unclear", "reason": "<짧은 근거>"}\
"""

_CONFIG_DEFAULTS: dict[str, Any] = {
    "providers": {
        "anthropic": {
            "provider": "anthropic",
            "model": "claude-haiku-4-5",
            "modelHeavy": "claude-sonnet-4-5",
            "temperature": 0.7,
            "topP": 1.0,
            "maxTokens": 1024,
            "nsfwFilter": False,
            "forceParenthesis": False,
        },
        "gemini": {
            "provider": "gemini",
            "model": "gemini-2.5-flash",
            "modelHeavy": "gemini-2.5-pro",
            "temperature": 0.7,
            "topP": 1.0,
            "maxTokens": 1024,
            "nsfwFilter": False,
            "forceParenthesis": False,
        },
        "deepseek": {
            "provider": "deepseek",
            "model": "deepseek-chat",
            "modelHeavy": "",
            "temperature": 0.7,
            "topP": 1.0,
            "maxTokens": 1024,
            "nsfwFilter": False,
            "forceParenthesis": False,
        },
    },
    "routing": {
        "heavy_char_threshold": 6000,
        "heavy_message_threshold": 24,
        "heavy_last_reply_threshold": 800,
        "history_window": 16,
        "retry_history_window": 24,
        "retry_system_chars": 6000,
        "context_cache_ttl_seconds": 55 * 60,
    },
    "fallback_provider": "deepseek",
    "memory": {
        "enabled": True,
        "provider": "gemini",
        "window_turns": 6,
        "summary_every_user_turns": 20,
    },
    "challenge": {
        "judge_provider": "",
        "min_turns_for_success": 3,
        "challenge_judge_prompt": DEFAULT_CHALLENGE_JUDGE_PROMPT,
    },
}

_SECTIONS = ("routing", "memory", "challenge")


def _config_path() -> Path:
    return data_dir() / "config.json"


def get_config() -> dict[str, Any]:
    """Read config, returning defaults merged with stored values."""
    config = copy.deepcopy(_CONFIG_DEFAULTS)
    path = _config_path()
    if path.is_file():
        stored = json.loads(path.read_text(encoding="utf-8"))
        for provider, vals in stored.get("providers", {}).items():
            if provider in config["providers"] and isinstance(vals, dict):
                config["providers"][provider].update(vals)
        for section in _SECTIONS:
            if isinstance(stored.get(section), dict):
                config[section].update(stored[section])
        if stored.get("fallback_provider") in PROVIDERS:
            config["fallback_provider"] = stored["fallback_provider"]
    return config


def update_config(fields: dict[str, Any]) -> dict[str, Any]:
    """Merge fields into config and persist. Returns full config.

    Provider settings and sections merge key-by-key; scalars are overwritten.
    """
    config = get_config()
    for provider, vals in fields.get("providers", {}).items():
        if provider in config["providers"] and isinstance(vals, dict):
            config["providers"][provider].update(vals)
    for section in _SECTIONS:
        if isinstance(fields.get(section), dict):
            config[section].update(fields[section])
    if "fallback_provider" in fields:
        if fields["fallback_provider"] not in PROVIDERS:
            raise ValueError(f"Unknown fallback provider: {fields['fallback_provider']!r}")
        config["fallback_provider"] = fields["fallback_provider"]
    _config_path().write_text(json.dumps(config, indent=2, ensure_ascii=False), encoding="utf-8")
    return config


def get_provider_settings(provider: str, config: dict[str, Any] | None = None) -> ProviderSettings:
    """Validated settings for one provider."""
    config = config or get_config()
    return ProviderSettings.model_validate(config["providers"][provider])
