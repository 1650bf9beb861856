"""Challenge definitions (goal, situation, success keywords)."""

from pathlib import Path
from typing import Any

from .core import challenges_dir, read_json, safe_name, write_json


def _challenge_path(challenge_id: str) -> Path:
    return challenges_dir() / f"{safe_name(challenge_id)}.json"


def get_challenge(challenge_id: str) -> dict[str, Any] | None:
    return read_json(_challenge_path(challenge_id))


def save_challenge(challenge: dict[str, Any]) -> None:
    write_json(_challenge_path(challenge["id"]), challenge)
