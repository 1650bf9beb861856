"""Provider/model selection and request orchestration.

One turn makes at most these calls, in order:

  1. primary        chosen model, trimmed history, cached context if any
  2. retry          only when (1) came back empty: shortened system prompt
                    plus a plain-text rule, wider history window, doubled
                    max tokens, no cached context
  3. fallback       only when (1) or (2) hit a content-policy rejection while
                    relaxed safety was in effect: the configured fallback
                    provider, relaxed safety, one attempt

Anything else propagates to the caller.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from lorechat.models import ProviderSettings
from lorechat.prompts import PLAIN_TEXT_RULE
from lorechat.storage.config import get_provider_settings

from .anthropic import AnthropicProvider
from .base import (
    CompletionRequest,
    ContentPolicyError,
    EmptyCompletionError,
    MissingCredentialsError,
    ProviderClient,
    api_key_for,
)
from .cache import ContextCache, content_hash
from .deepseek import DeepSeekProvider
from .gemini import GeminiProvider

logger = logging.getLogger(__name__)

PROVIDER_CLASSES: dict[str, type] = {
    "anthropic": AnthropicProvider,
    "gemini": GeminiProvider,
    "deepseek": DeepSeekProvider,
}


# Provider-side cache outlives the local entry so a local hit never points at
# an expired handle.
_PROVIDER_TTL_MARGIN_SECONDS = 300


def make_client(provider: str) -> ProviderClient:
    """Construct a client from environment credentials."""
    api_key = api_key_for(provider)
    if not api_key:
        raise MissingCredentialsError(f"Missing API key for provider: {provider}")
    return PROVIDER_CLASSES[provider](api_key)


# ---------------------------------------------------------------------------
# Policy helpers
# ---------------------------------------------------------------------------

def select_model(
    settings: ProviderSettings,
    messages: list[dict[str, str]],
    routing: dict[str, Any],
    pinned: str | None = None,
) -> str:
    """Pick the model for this turn.

    A pinned model always wins. Otherwise a long conversation (total chars or
    message count) or a long previous assistant reply selects the heavy model.
    """
    if pinned:
        return pinned
    heavy = settings.model_heavy or settings.model
    total_chars = sum(len(m["content"]) for m in messages)
    last_reply = next((m["content"] for m in reversed(messages) if m["role"] == "assistant"), "")
    if (
        total_chars >= routing["heavy_char_threshold"]
        or len(messages) >= routing["heavy_message_threshold"]
        or len(last_reply) >= routing["heavy_last_reply_threshold"]
    ):
        return heavy
    return settings.model


def effective_unsafe(
    requested: bool,
    character_supported: bool,
    adult_verified: bool,
    settings: ProviderSettings | None = None,
) -> bool:
    """Relaxed safety needs all three: caller request, character flag, verified adult."""
    if settings is not None and settings.nsfw_filter:
        return False
    return bool(requested and character_supported and adult_verified)


def trim_history(messages: list[dict[str, str]], window: int) -> list[dict[str, str]]:
    return list(messages[-window:]) if window > 0 else list(messages)


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------

@dataclass
class RoutedCompletion:
    text: str
    provider: str
    model: str
    retried: bool = False
    fell_back: bool = False
    cached: bool = False


class ProviderRouter:
    """Routes one turn to a provider with caching, retry and fallback.

    Args:
        config:         Full service config (routing + fallback_provider).
        cache:          Context handle cache; each app/test owns its instance.
        client_factory: Builds a provider client by name. Defaults to env keys.
    """

    def __init__(
        self,
        config: dict[str, Any],
        cache: ContextCache | None = None,
        client_factory: Callable[[str], ProviderClient] = make_client,
    ) -> None:
        self._config = config
        self._routing = config["routing"]
        self._cache = cache if cache is not None else ContextCache(self._routing["context_cache_ttl_seconds"])
        self._client_factory = client_factory

    async def _cached_context(
        self,
        client: ProviderClient,
        cache_key: tuple[str, str] | None,
        model: str,
        system: str,
        unsafe: bool,
    ) -> str | None:
        if cache_key is None or not system:
            return None
        digest = content_hash(client.name, model, system, "unsafe" if unsafe else "safe")
        handle = self._cache.get(cache_key, digest)
        if handle:
            return handle
        ttl = int(self._cache.ttl_seconds) + _PROVIDER_TTL_MARGIN_SECONDS
        handle = await client.create_cached_context(model, system, ttl)
        if handle:
            self._cache.put(cache_key, digest, handle)
        return handle

    async def complete(
        self,
        *,
        provider: str,
        settings: ProviderSettings,
        system: str,
        system_tail: str,
        messages: list[dict[str, str]],
        model: str | None = None,
        temperature: float | None = None,
        top_p: float | None = None,
        max_tokens: int | None = None,
        unsafe: bool = False,
        cache_key: tuple[str, str] | None = None,
        history_window: int | None = None,
        clean: Callable[[str], str] = str.strip,
    ) -> RoutedCompletion:
        """Run primary → retry → fallback and return the cleaned reply."""
        client = self._client_factory(provider)
        chosen = select_model(settings, messages, self._routing, pinned=model)
        window = history_window or self._routing["history_window"]
        temperature = settings.temperature if temperature is None else temperature
        top_p = settings.top_p if top_p is None else top_p
        max_tokens = settings.max_tokens if max_tokens is None else max_tokens
        logger.debug(
            "route provider=%s model=%s messages=%d window=%d unsafe=%s",
            provider, chosen, len(messages), window, unsafe,
        )

        try:
            handle = await self._cached_context(client, cache_key, chosen, system, unsafe)
            primary = await client.complete(CompletionRequest(
                model=chosen,
                system=system,
                system_tail=system_tail,
                messages=trim_history(messages, window),
                temperature=temperature,
                top_p=top_p,
                max_tokens=max_tokens,
                unsafe=unsafe,
                cached_context=handle,
            ))
            text = clean(primary.text)
            if text:
                return RoutedCompletion(text=text, provider=provider, model=chosen, cached=bool(handle))

            logger.info("empty completion from %s/%s, retrying once", provider, chosen)
            retry_system = system[: self._routing["retry_system_chars"]]
            retry = await client.complete(CompletionRequest(
                model=chosen,
                system=f"{retry_system}\n\n{PLAIN_TEXT_RULE}",
                system_tail=system_tail,
                messages=trim_history(messages, self._routing["retry_history_window"]),
                temperature=temperature,
                top_p=top_p,
                max_tokens=min(8192, max(2048, max_tokens * 2)),
                unsafe=unsafe,
            ))
            text = clean(retry.text)
            if text:
                return RoutedCompletion(text=text, provider=provider, model=chosen, retried=True)
        except ContentPolicyError as e:
            if not unsafe:
                raise
            return await self._fallback(provider, system, system_tail, messages, window, clean, e)

        raise EmptyCompletionError(_empty_diagnostics(provider, chosen, primary, retry))

    async def _fallback(
        self,
        provider: str,
        system: str,
        system_tail: str,
        messages: list[dict[str, str]],
        window: int,
        clean: Callable[[str], str],
        cause: ContentPolicyError,
    ) -> RoutedCompletion:
        target = self._config.get("fallback_provider") or ""
        if not target or target == provider:
            raise cause
        try:
            client = self._client_factory(target)
        except MissingCredentialsError:
            logger.warning("fallback provider %s has no credentials", target)
            raise cause

        settings = get_provider_settings(target, self._config)
        chosen = select_model(settings, messages, self._routing)
        logger.info("content policy rejection from %s, falling back to %s/%s", provider, target, chosen)
        out = await client.complete(CompletionRequest(
            model=chosen,
            system=system,
            system_tail=system_tail,
            messages=trim_history(messages, window),
            temperature=settings.temperature,
            top_p=settings.top_p,
            max_tokens=settings.max_tokens,
            unsafe=True,
        ))
        text = clean(out.text)
        if not text:
            raise EmptyCompletionError(_empty_diagnostics(target, chosen, out, None))
        return RoutedCompletion(text=text, provider=target, model=chosen, fell_back=True)


def _empty_diagnostics(provider: str, model: str, primary, retry) -> str:
    lines = [f"LLM returned an empty reply (provider={provider}, model={model})"]
    for label, completion in (("primary", primary), ("retry", retry)):
        if completion is None:
            continue
        lines.append(
            f"{label}: finish_reason={completion.finish_reason or '-'} "
            f"block_reason={completion.block_reason or '-'} "
            f"meta={json.dumps(completion.meta, ensure_ascii=False, default=str)}"
        )
    return "\n".join(lines)
