"""Caller identity and ownership records (verified-adult flag, SKUs, endings)."""

from pathlib import Path
from typing import Any

from .core import data_dir, read_json, write_json


def _identities_path() -> Path:
    return data_dir() / "identities.json"


def get_identity(user_id: str) -> dict[str, Any] | None:
    """Find a single identity by user id. Returns None if not found."""
    for ident in read_json(_identities_path(), []):
        if ident.get("id") == user_id:
            return ident
    return None


def save_identity(identity: dict[str, Any]) -> None:
    """Upsert an identity by id."""
    identities = read_json(_identities_path(), [])
    for i, existing in enumerate(identities):
        if existing.get("id") == identity["id"]:
            identities[i] = identity
            break
    else:
        identities.append(identity)
    write_json(_identities_path(), identities)
