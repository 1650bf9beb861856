"""Turn-processing pipeline.

run_turn() executes one chat turn:
  1. Validate: userScript/challengeId exclusivity, a user message, known challenge.
  2. Resolve authored content (project, scene, character) concurrently.
  3. Unlock-filter each lorebook scope against the caller's snapshot, then merge.
  4. Compose the cacheable system prompt (+ challenge block, concise rule).
  5. Rule pass over the last user message → next runtime state + events.
  6. Interpolate {{var}} tokens in the prompt, history and event text.
  7. Load long-term memory; when present, prune history to the recent window.
  8. Build the per-turn block (memory, time, variables, roster, events).
  9. Route to the provider (cache, retry on empty, policy fallback).
  10. Sanitize the reply; in challenge mode strip narration and ask the judge.
  11. Schedule the memory update without awaiting it.

Events on the first user turn are filtered to var_delta only before they are
returned; the state computation itself does not look at the turn index.
"""

from .core import TurnResult, TurnValidationError, run_turn, validate_turn  # noqa: F401
from .extractors import (  # noqa: F401
    extract_profile_facts,
    merge_profile,
    parse_json_output,
    parse_verdict,
)
from .segments import (  # noqa: F401
    Segment,
    collapse_whitespace,
    parse_narration,
    rewrite_call_sign,
    sanitize_reply,
    segments_to_text,
    strip_narration,
)
