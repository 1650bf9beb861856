"""Runtime variable interpolation and display-label resolution.

`{{identifier}}` tokens in authored text are replaced with runtime values.
Unknown tokens are left untouched here so authors can spot them; the
response sanitizer strips whatever is left before text reaches the user.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Mapping
from zoneinfo import ZoneInfo

CANONICAL_TZ = ZoneInfo("Asia/Seoul")

TOKEN_RE = re.compile(r"\{\{\s*([A-Za-z0-9_]+)\s*\}\}")

# Fallback labels for variables commonly used by authored content.
DEFAULT_VAR_LABELS: dict[str, str] = {
    "affection": "호감도",
    "affection_score": "호감도",
    "trust": "신뢰도",
    "risk": "위험도",
    "stress": "스트레스",
    "suspicion": "의심",
    "dependency": "의존도",
    "submission": "복종도",
    "jealousy": "질투",
    "sales": "매출",
    "debt": "빚",
}


def _to_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def interpolate(text: str, variables: Mapping[str, Any]) -> str:
    """Replace {{var}} tokens with values; unresolved tokens stay verbatim."""
    if not text or "{{" not in text:
        return text or ""

    def _sub(m: re.Match) -> str:
        key = m.group(1)
        if key not in variables:
            return m.group(0)
        out = _to_text(variables[key])
        return out if out else m.group(0)

    return TOKEN_RE.sub(_sub, text)


def strip_tokens(text: str) -> str:
    """Remove any {{token}} still present."""
    return TOKEN_RE.sub("", text or "")


def time_of_day(now: datetime) -> str:
    hour = now.astimezone(CANONICAL_TZ).hour
    if 5 <= hour < 11:
        return "morning"
    if 11 <= hour < 17:
        return "afternoon"
    if 17 <= hour < 22:
        return "evening"
    return "night"


def build_template_vars(
    variables: Mapping[str, Any],
    *,
    user_id: str = "",
    nickname: str = "",
    handle: str = "",
    now: datetime | None = None,
) -> dict[str, Any]:
    """Runtime variables plus caller identity and derived values.

    Caller nickname fills user_name and call_sign unless content already set
    them; affection and affection_score are aliases of each other.
    """
    tvars: dict[str, Any] = dict(variables)

    if now is not None and not _to_text(tvars.get("time_of_day")).strip():
        tvars["time_of_day"] = time_of_day(now)

    affection = variables.get("affection", variables.get("affection_score"))
    if affection is not None:
        tvars.setdefault("affection", affection)
        tvars.setdefault("affection_score", affection)

    nickname = (nickname or "").strip()
    if nickname:
        if not _to_text(tvars.get("user_name")).strip():
            tvars["user_name"] = nickname
        if not _to_text(tvars.get("call_sign")).strip():
            tvars["call_sign"] = nickname
    elif _to_text(tvars.get("user_name")).strip() and not _to_text(tvars.get("call_sign")).strip():
        tvars["call_sign"] = tvars["user_name"]

    if handle:
        tvars.setdefault("user_handle", handle if handle.startswith("@") else f"@{handle}")
    if user_id:
        tvars.setdefault("user_id", user_id)
    return tvars


def resolve_label(var: str, var_labels: Mapping[str, str]) -> str:
    """Display label for a variable: authored label, built-in label, or the key."""
    label = (var_labels.get(var) or "").strip()
    if label:
        return label
    return DEFAULT_VAR_LABELS.get(var, var)


def format_value(value: Any) -> str:
    return _to_text(value)
