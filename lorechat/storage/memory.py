"""Long-term memory records per (user, character)."""

from pathlib import Path
from typing import Any

from .core import memory_dir, read_json, safe_name, write_json


def _memory_path(user_id: str, character_slug: str) -> Path:
    return memory_dir() / safe_name(user_id) / f"{safe_name(character_slug.lower())}.json"


def get_memory(user_id: str, character_slug: str) -> dict[str, Any] | None:
    """Load the memory record. Returns None if nothing was stored yet."""
    return read_json(_memory_path(user_id, character_slug))


def save_memory(user_id: str, character_slug: str, record: dict[str, Any]) -> None:
    write_json(_memory_path(user_id, character_slug), record)
