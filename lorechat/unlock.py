"""Lorebook unlock filtering.

Every entry carries an unlock rule; entries whose rule fails against the
caller's snapshot are dropped before prompt composition:

  public        always visible
  affection     variables.affection >= min (inclusive)
  condition     "var OP number", OP in < <= = == >= >; unparsable → hidden
  paid_item     sku in owned SKUs
  ending_route  episode epMin cleared (when set) and the ending key unlocked
                (no key authored → any unlocked ending)
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterable

from lorechat.models import (
    AffectionUnlock,
    ConditionUnlock,
    EndingRouteUnlock,
    LorebookEntry,
    PaidItemUnlock,
    PublicUnlock,
)

logger = logging.getLogger(__name__)

_CONDITION_RE = re.compile(r"^([A-Za-z_][A-Za-z0-9_]*)\s*(>=|<=|==|=|<|>)\s*(-?[0-9]+(?:\.[0-9]+)?)$")
_EP_RE = re.compile(r"ep\s*([0-9]{1,3})", re.IGNORECASE)


@dataclass(frozen=True)
class UnlockSnapshot:
    """Everything an unlock rule may look at for one turn."""

    variables: dict[str, Any] = field(default_factory=dict)
    owned_skus: frozenset[str] = frozenset()
    unlocked_ending_keys: frozenset[str] = frozenset()
    ep_cleared: frozenset[int] = frozenset()


def to_number(value: Any) -> float:
    """Coerce a variable value to a number; anything unparsable is 0."""
    if isinstance(value, bool):
        return float(value)
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if number == number else 0.0  # NaN → 0


def normalize_ep(value: int | str) -> int:
    """Episode markers like EP7, ep 7, "7" and 7 all mean 7. Unknown is 0."""
    if isinstance(value, int):
        return value
    text = str(value or "").strip()
    m = _EP_RE.search(text)
    if m:
        return int(m.group(1))
    return int(text) if text.isdigit() else 0


def parse_condition(expr: str) -> tuple[str, str, float] | None:
    """Parse "risk>=80" into ("risk", ">=", 80.0). None when malformed."""
    m = _CONDITION_RE.match(str(expr or "").strip())
    if not m:
        return None
    op = "=" if m.group(2) == "==" else m.group(2)
    return m.group(1), op, float(m.group(3))


def compare(lhs: float, op: str, rhs: float) -> bool:
    if op == "<":
        return lhs < rhs
    if op == "<=":
        return lhs <= rhs
    if op == ">=":
        return lhs >= rhs
    if op == ">":
        return lhs > rhs
    return lhs == rhs


def _lookup(variables: dict[str, Any], name: str) -> Any:
    if name in variables:
        return variables[name]
    return variables.get(name.lower(), 0)


def is_unlocked(entry: LorebookEntry, snapshot: UnlockSnapshot) -> bool:
    """Evaluate one entry's unlock rule against the snapshot."""
    unlock = entry.unlock
    if isinstance(unlock, PublicUnlock):
        return True
    if isinstance(unlock, AffectionUnlock):
        return to_number(snapshot.variables.get("affection", 0)) >= unlock.min
    if isinstance(unlock, ConditionUnlock):
        parsed = parse_condition(unlock.expr)
        if parsed is None:
            logger.debug("lorebook %r: unparsable unlock expr %r, kept locked", entry.key, unlock.expr)
            return False
        name, op, rhs = parsed
        return compare(to_number(_lookup(snapshot.variables, name)), op, rhs)
    if isinstance(unlock, PaidItemUnlock):
        return bool(unlock.sku) and unlock.sku in snapshot.owned_skus
    if isinstance(unlock, EndingRouteUnlock):
        if unlock.ep_min and unlock.ep_min not in snapshot.ep_cleared:
            return False
        if unlock.ending_key:
            return unlock.ending_key in snapshot.unlocked_ending_keys
        return bool(snapshot.unlocked_ending_keys)
    raise TypeError(f"Unknown unlock rule: {unlock!r}")


def filter_entries(
    entries: Iterable[LorebookEntry], snapshot: UnlockSnapshot
) -> list[LorebookEntry]:
    """Return the entries visible under the snapshot, in their original order."""
    return [e for e in entries if e.active and is_unlocked(e, snapshot)]


def build_snapshot(
    variables: dict[str, Any],
    owned_skus: Iterable[str] = (),
    unlocked_ending_keys: Iterable[str] = (),
    ep_cleared: Iterable[int | str] = (),
) -> UnlockSnapshot:
    return UnlockSnapshot(
        variables=dict(variables),
        owned_skus=frozenset(s.strip() for s in owned_skus if s and s.strip()),
        unlocked_ending_keys=frozenset(k.strip() for k in unlocked_ending_keys if k and k.strip()),
        ep_cleared=frozenset(n for n in (normalize_ep(e) for e in ep_cleared) if n > 0),
    )
