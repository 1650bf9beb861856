"""Provider client protocol, request/response types, and errors.

Every backend client implements:

    async def complete(self, request: CompletionRequest) -> Completion: ...
    async def create_cached_context(self, model, system, ttl_seconds) -> str | None: ...

`HttpProvider` holds the shared httpx plumbing (headers, POST, error
mapping); subclasses only describe their wire format.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

logger = logging.getLogger(__name__)

# env var names checked in order, first non-empty wins
API_KEY_ENV: dict[str, tuple[str, ...]] = {
    "anthropic": ("ANTHROPIC_API_KEY",),
    "gemini": ("GEMINI_API_KEY", "GOOGLE_GEMINI_API_KEY"),
    "deepseek": ("DEEPSEEK_API_KEY",),
}


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class ProviderError(RuntimeError):
    """Raised when a provider cannot be reached or returns an error."""


class ContentPolicyError(ProviderError):
    """The provider refused the request or reply on content-safety grounds."""


class MissingCredentialsError(ProviderError):
    """No API key is configured for the requested provider."""


class EmptyCompletionError(ProviderError):
    """The provider kept returning an empty reply; message carries diagnostics."""


# ---------------------------------------------------------------------------
# Request / response
# ---------------------------------------------------------------------------

@dataclass
class CompletionRequest:
    """One chat completion call.

    `system` is the stable, cacheable prompt; `system_tail` is the per-turn
    variable block. `cached_context` is a provider-side handle standing in
    for `system` when the provider supports one.
    """

    model: str
    system: str
    messages: list[dict[str, str]]
    temperature: float = 0.7
    top_p: float = 1.0
    max_tokens: int = 1024
    system_tail: str = ""
    unsafe: bool = False
    cached_context: str | None = None
    json_output: bool = False

    def full_system(self) -> str:
        return "\n\n".join(p for p in (self.system, self.system_tail) if p)


@dataclass
class Completion:
    text: str
    finish_reason: str = ""
    block_reason: str = ""
    meta: dict[str, Any] = field(default_factory=dict)


class ProviderClient(Protocol):
    name: str

    async def complete(self, request: CompletionRequest) -> Completion: ...

    async def create_cached_context(
        self, model: str, system: str, ttl_seconds: int
    ) -> str | None: ...


def api_key_for(provider: str) -> str:
    for var in API_KEY_ENV.get(provider, ()):
        value = os.getenv(var, "").strip()
        if value:
            return value
    return ""


# ---------------------------------------------------------------------------
# HttpProvider: shared HTTP plumbing
# ---------------------------------------------------------------------------

class HttpProvider:
    """Async HTTP base for provider clients.

    Args:
        api_key:  Provider API key.
        base_url: API root, overridable for proxies and tests.
        timeout:  HTTP timeout in seconds. Defaults to 60.
    """

    name = "http"
    default_base_url = ""

    def __init__(self, api_key: str, base_url: str = "", timeout: float = 60.0) -> None:
        self._api_key = api_key
        self._base_url = (base_url or self.default_base_url).rstrip("/")
        self._timeout = timeout

    def _headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json"}

    def _is_policy_rejection(self, status: int, body: str) -> bool:
        return False

    async def _post(self, url: str, body: dict) -> dict:
        logger.debug("provider=%s POST %s", self.name, url)
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, json=body, headers=self._headers())
                resp.raise_for_status()
        except httpx.ConnectError as e:
            raise ProviderError(f"Cannot connect to {self.name} at {self._base_url}") from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            detail = e.response.text[:500]
            if self._is_policy_rejection(status, detail):
                raise ContentPolicyError(f"{self.name} rejected the request: {detail}") from e
            raise ProviderError(f"{self.name} returned HTTP {status}: {detail}") from e
        except httpx.TimeoutException as e:
            raise ProviderError(f"{self.name} timed out after {self._timeout}s") from e
        except httpx.HTTPError as e:
            raise ProviderError(f"{self.name} request failed: {e}") from e

        try:
            return resp.json()
        except ValueError as e:
            raise ProviderError(f"{self.name} returned a non-JSON body") from e

    async def create_cached_context(
        self, model: str, system: str, ttl_seconds: int
    ) -> str | None:
        """Providers without handle-based caching return None."""
        return None
