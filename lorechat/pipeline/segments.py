"""Reply sanitizing and bracket-narration handling.

Replies mix dialogue with stage directions written in brackets:
(smiles), [looks away], *sighs*. Narration segments are where models most
often fall back to calling the user "유저" or "user", so the call-sign
rewrite is confined to them.
"""

import re
from typing import Any, Mapping

from lorechat.templates import interpolate, strip_tokens

Segment = dict[str, str]  # {"type": "narration"|"dialog", "text": ...}

_NARRATION_RE = re.compile(r"\([^()\n]*\)|\[[^\[\]\n]*\]|\*[^*\n]+\*|（[^（）\n]*）")
_GENERIC_USER_RE = re.compile(r"유저|사용자|(?<![A-Za-z])user(?![A-Za-z])", re.IGNORECASE)


def parse_narration(text: str) -> list[Segment]:
    """Split text into alternating dialog and bracketed narration segments."""
    segments: list[Segment] = []
    pos = 0
    for m in _NARRATION_RE.finditer(text or ""):
        if m.start() > pos:
            segments.append({"type": "dialog", "text": text[pos:m.start()]})
        segments.append({"type": "narration", "text": m.group(0)})
        pos = m.end()
    if pos < len(text or ""):
        segments.append({"type": "dialog", "text": text[pos:]})
    return segments


def segments_to_text(segments: list[Segment]) -> str:
    return "".join(s["text"] for s in segments)


def rewrite_call_sign(text: str, call_sign: str) -> str:
    """Replace generic user references inside narration with the caller's name."""
    call_sign = (call_sign or "").strip()
    if not call_sign:
        return text
    segments = parse_narration(text)
    for seg in segments:
        if seg["type"] == "narration":
            seg["text"] = _GENERIC_USER_RE.sub(call_sign, seg["text"])
    return segments_to_text(segments)


def strip_narration(text: str) -> str:
    """Drop every bracketed narration segment, keeping dialogue only."""
    segments = [s for s in parse_narration(text) if s["type"] == "dialog"]
    return collapse_whitespace(segments_to_text(segments))


def collapse_whitespace(text: str) -> str:
    text = re.sub(r"[ \t]+\n", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    text = re.sub(r"[ \t]{2,}", " ", text)
    return text.strip()


def sanitize_reply(text: str, template_vars: Mapping[str, Any], call_sign: str = "") -> str:
    """Make provider output safe to show.

    Re-interpolates tokens the model echoed back, removes whatever is still
    unresolved, normalizes whitespace and applies the call-sign rewrite.
    The result never contains a {{token}}.
    """
    out = strip_tokens(interpolate(text or "", template_vars))
    out = collapse_whitespace(out)
    return rewrite_call_sign(out, call_sign)
