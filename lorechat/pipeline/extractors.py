"""JSON output parsing for the auxiliary LLM calls (profile extraction, judge)."""

import json
import logging
from typing import Any

logger = logging.getLogger(__name__)

VERDICTS = ("accept", "reject", "unclear")

PROFILE_MAX_VALUE_CHARS = 200


def parse_json_output(text: str) -> dict | None:
    """Parse JSON from LLM output, stripping markdown fences and surrounding chatter."""
    cleaned = (text or "").strip()
    if cleaned.startswith("```"):
        lines = cleaned.split("\n")
        lines = [l for l in lines[1:] if not l.strip().startswith("```")]
        cleaned = "\n".join(lines)
    start, end = cleaned.find("{"), cleaned.rfind("}")
    if start >= 0 and end > start:
        cleaned = cleaned[start:end + 1]
    try:
        data = json.loads(cleaned)
        return data if isinstance(data, dict) else None
    except json.JSONDecodeError as e:
        logger.warning(f"Extractor output is not valid JSON: {e}")
        return None


def extract_profile_facts(text: str) -> dict[str, str]:
    """Keep only non-empty string facts from profile extractor output."""
    data = parse_json_output(text)
    if not data:
        return {}
    facts: dict[str, str] = {}
    for key, value in data.items():
        if not isinstance(value, str) or not str(key).strip():
            continue
        value = value.strip()
        if value:
            facts[str(key).strip()] = value[:PROFILE_MAX_VALUE_CHARS]
    return facts


def merge_profile(current: dict[str, Any], facts: dict[str, str]) -> dict[str, str]:
    """Newly extracted facts overwrite stored ones key-by-key."""
    merged = {str(k): str(v) for k, v in current.items() if v is not None and str(v).strip()}
    merged.update(facts)
    return merged


def parse_verdict(text: str) -> str:
    """Judge output → "accept" | "reject" | "unclear"."""
    data = parse_json_output(text)
    if data:
        verdict = str(data.get("verdict", "")).strip().lower()
        if verdict in VERDICTS:
            return verdict
    bare = (text or "").strip().strip('"').lower()
    return bare if bare in VERDICTS else "unclear"
