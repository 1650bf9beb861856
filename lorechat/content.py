"""Authored content resolution and scope merging.

A turn needs three layers of authored content: project (world-wide), scene,
and character. Each layer contributes lorebook rows and a rule set; the
character layer also carries the profile and prompt payload.

Layers are loaded concurrently and validated one at a time. A layer that
fails to load or validate is logged and treated as empty; it never aborts
the turn.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from pydantic import TypeAdapter

from lorechat import storage
from lorechat.models import (
    CharacterProfile,
    LorebookEntry,
    PromptPayload,
    TriggerRuleSet,
)
from lorechat.unlock import UnlockSnapshot, filter_entries

logger = logging.getLogger(__name__)

_LOREBOOK = TypeAdapter(list[LorebookEntry])


@dataclass
class ContentLayer:
    lorebook: list[LorebookEntry] = field(default_factory=list)
    rules: TriggerRuleSet = field(default_factory=TriggerRuleSet)


@dataclass
class ResolvedContent:
    profile: CharacterProfile
    prompt: PromptPayload = field(default_factory=PromptPayload)
    project: ContentLayer = field(default_factory=ContentLayer)
    scene: ContentLayer = field(default_factory=ContentLayer)
    character: ContentLayer = field(default_factory=ContentLayer)
    found: bool = True

    def layers(self) -> tuple[ContentLayer, ContentLayer, ContentLayer]:
        """Layers in merge order: project, scene, character."""
        return self.project, self.scene, self.character

    def rule_sets(self) -> list[TriggerRuleSet]:
        return [layer.rules for layer in self.layers()]

    def var_labels(self) -> dict[str, str]:
        return merge_var_labels(*(layer.rules for layer in self.layers()))

    def visible_lorebook(self, snapshot: UnlockSnapshot) -> list[LorebookEntry]:
        """Unlock-filter each scope on its own, then merge."""
        return merge_lorebook(*(filter_entries(layer.lorebook, snapshot) for layer in self.layers()))


# ---------------------------------------------------------------------------
# Merging
# ---------------------------------------------------------------------------

def merge_lorebook(*scopes: Iterable[LorebookEntry]) -> list[LorebookEntry]:
    """Ordered merge of lorebook scopes (pass them as project, scene, character).

    Within a scope rows are ordered by sortOrder (stable for ties); inactive
    rows are skipped. A row whose key was already seen either replaces the
    earlier value in place (override) or is appended to it on a new line
    (append). Keys compare case-insensitively after trimming.
    """
    merged: list[LorebookEntry] = []
    index: dict[str, int] = {}
    for scope in scopes:
        for entry in sorted(scope, key=lambda e: e.sort_order):
            if not entry.active or not entry.key.strip():
                continue
            norm = entry.key.strip().casefold()
            if norm not in index:
                index[norm] = len(merged)
                merged.append(entry)
                continue
            prior = merged[index[norm]]
            if entry.merge_mode == "append":
                value = "\n".join(v for v in (prior.value, entry.value) if v.strip())
                merged[index[norm]] = prior.model_copy(update={"value": value})
            else:
                merged[index[norm]] = entry
    return merged


def merge_var_labels(*rule_sets: TriggerRuleSet | None) -> dict[str, str]:
    """Later scopes win: project < scene < character."""
    labels: dict[str, str] = {}
    for rs in rule_sets:
        if rs is None:
            continue
        for key, label in rs.var_labels.items():
            if key.strip() and label.strip():
                labels[key.strip()] = label.strip()
    return labels


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

def _parse_layer(scope: str, doc: dict[str, Any] | None) -> ContentLayer:
    if not doc:
        return ContentLayer()
    layer = ContentLayer()
    try:
        layer.lorebook = _LOREBOOK.validate_python(doc.get("lorebook") or [])
    except ValueError as e:
        logger.warning("%s lorebook failed validation, ignoring: %s", scope, e)
    try:
        layer.rules = TriggerRuleSet.model_validate(doc.get("rules") or {})
    except ValueError as e:
        logger.warning("%s rules failed validation, ignoring: %s", scope, e)
    return layer


def _parse_character(slug: str, doc: dict[str, Any] | None) -> ResolvedContent:
    if not doc:
        logger.info("character %r not found, using neutral content", slug)
        return ResolvedContent(profile=CharacterProfile(slug=slug), found=False)
    try:
        profile = CharacterProfile.model_validate({**doc, "slug": slug})
    except ValueError as e:
        logger.warning("character %r profile failed validation, using neutral profile: %s", slug, e)
        profile = CharacterProfile(slug=slug)
    try:
        prompt = PromptPayload.model_validate(doc.get("prompt") or {})
    except ValueError as e:
        logger.warning("character %r prompt payload failed validation, ignoring: %s", slug, e)
        prompt = PromptPayload()
    return ResolvedContent(profile=profile, prompt=prompt, character=_parse_layer("character", doc))


def _settle(scope: str, result: Any) -> dict[str, Any] | None:
    if isinstance(result, BaseException):
        logger.warning("%s content failed to load, continuing without it: %s", scope, result)
        return None
    return result


async def resolve_content(character_slug: str, scene_id: str | None = None) -> ResolvedContent:
    """Load and validate everything authored for one character (and scene).

    The character document is read first because it names the project.
    Project and scene documents are then read concurrently. Read-only.
    """
    slug = character_slug.strip().lower()
    (char_doc,) = await asyncio.gather(
        asyncio.to_thread(storage.get_character, slug), return_exceptions=True
    )
    content = _parse_character(slug, _settle("character", char_doc))

    project_id = content.profile.project_id
    if not project_id:
        return content

    loads = [asyncio.to_thread(storage.get_project, project_id)]
    if scene_id:
        loads.append(asyncio.to_thread(storage.get_scene, project_id, scene_id))
    results = await asyncio.gather(*loads, return_exceptions=True)

    content.project = _parse_layer("project", _settle("project", results[0]))
    if scene_id:
        content.scene = _parse_layer("scene", _settle("scene", results[1]))
    logger.debug(
        "resolved %s: lorebook project=%d scene=%d character=%d",
        slug, len(content.project.lorebook), len(content.scene.lorebook), len(content.character.lorebook),
    )
    return content
