"""Authored content storage: characters, projects, and scenes.

Rows are stored as raw dicts; validation into domain models happens in
lorechat.content so that a malformed layer fails in isolation.
"""

from pathlib import Path
from typing import Any

from .core import characters_dir, projects_dir, read_json, safe_name, write_json


def _character_path(slug: str) -> Path:
    return characters_dir() / f"{safe_name(slug.lower())}.json"


def _project_path(project_id: str) -> Path:
    return projects_dir() / f"{safe_name(project_id)}.json"


def _scene_path(project_id: str, scene_id: str) -> Path:
    return projects_dir() / safe_name(project_id) / "scenes" / f"{safe_name(scene_id)}.json"


def get_character(slug: str) -> dict[str, Any] | None:
    """Load a character document (profile, prompt, lorebook, rules). None if missing."""
    return read_json(_character_path(slug))


def save_character(slug: str, data: dict[str, Any]) -> None:
    write_json(_character_path(slug), data)


def get_project(project_id: str) -> dict[str, Any] | None:
    """Load project-wide lorebook and rules. None if missing."""
    return read_json(_project_path(project_id))


def save_project(project_id: str, data: dict[str, Any]) -> None:
    write_json(_project_path(project_id), data)


def get_scene(project_id: str, scene_id: str) -> dict[str, Any] | None:
    """Load scene lorebook and rules. None if missing."""
    return read_json(_scene_path(project_id, scene_id))


def save_scene(project_id: str, scene_id: str, data: dict[str, Any]) -> None:
    write_json(_scene_path(project_id, scene_id), data)
