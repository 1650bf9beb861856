"""Storage initialization, path helpers, and JSON file helpers."""

import json
import re
from pathlib import Path
from typing import Any

_data_dir: Path | None = None

_SAFE_NAME = re.compile(r"^[^/\\\x00]+$")


def init_storage(data_dir: Path) -> None:
    global _data_dir
    _data_dir = data_dir
    _data_dir.mkdir(parents=True, exist_ok=True)
    characters_dir().mkdir(exist_ok=True)
    projects_dir().mkdir(exist_ok=True)
    challenges_dir().mkdir(exist_ok=True)
    memory_dir().mkdir(exist_ok=True)


def data_dir() -> Path:
    assert _data_dir is not None, "Call init_storage() before using storage"
    return _data_dir


def characters_dir() -> Path:
    return data_dir() / "characters"


def projects_dir() -> Path:
    return data_dir() / "projects"


def challenges_dir() -> Path:
    return data_dir() / "challenges"


def memory_dir() -> Path:
    return data_dir() / "memory"


def safe_name(name: str) -> str:
    """Validate an id used as a file name. Rejects path separators and dot names."""
    name = str(name or "").strip()
    if not name or name in (".", "..") or not _SAFE_NAME.match(name):
        raise ValueError(f"Invalid storage key: {name!r}")
    return name


def read_json(path: Path, default: Any = None) -> Any:
    """Load a JSON file, or return default when it does not exist."""
    if not path.is_file():
        return default
    return json.loads(path.read_text(encoding="utf-8"))


def write_json(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
