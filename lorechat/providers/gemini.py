"""Google Gemini generateContent client with cachedContents support."""

from __future__ import annotations

import logging
import re
from urllib.parse import quote

from .base import (
    Completion,
    CompletionRequest,
    ContentPolicyError,
    HttpProvider,
    ProviderError,
)

logger = logging.getLogger(__name__)

_RELAXED_SAFETY = [
    {"category": "HARM_CATEGORY_HARASSMENT", "threshold": "BLOCK_NONE"},
    {"category": "HARM_CATEGORY_HATE_SPEECH", "threshold": "BLOCK_NONE"},
    {"category": "HARM_CATEGORY_SEXUALLY_EXPLICIT", "threshold": "BLOCK_NONE"},
    {"category": "HARM_CATEGORY_DANGEROUS_CONTENT", "threshold": "BLOCK_NONE"},
]

_POLICY_FINISH = {"SAFETY", "PROHIBITED_CONTENT", "BLOCKLIST", "SPII"}

MAX_SYSTEM_CHARS = 16000


class GeminiProvider(HttpProvider):
    """POST /v1beta/models/{model}:generateContent

    Roles map user → "user", assistant → "model". When a cached context
    handle is given the system instruction lives in the cache, so the per-turn
    block rides along as an extra part of the last user message.
    """

    name = "gemini"
    default_base_url = "https://generativelanguage.googleapis.com"

    def _headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json", "x-goog-api-key": self._api_key}

    def _contents(self, request: CompletionRequest) -> list[dict]:
        contents = [
            {
                "role": "model" if m["role"] == "assistant" else "user",
                "parts": [{"text": m["content"]}],
            }
            for m in request.messages
            if m["content"].strip()
        ]
        if request.cached_context and request.system_tail:
            for item in reversed(contents):
                if item["role"] == "user":
                    item["parts"].insert(0, {"text": request.system_tail})
                    break
            else:
                contents.append({"role": "user", "parts": [{"text": request.system_tail}]})
        return contents

    def _build_request(self, request: CompletionRequest) -> tuple[str, dict]:
        url = f"{self._base_url}/v1beta/models/{quote(request.model, safe='')}:generateContent"
        max_out = max(16, int(request.max_tokens))
        if re.search(r"gemini-2\.5-pro", request.model, re.IGNORECASE):
            max_out = max(max_out, 2048)
        body: dict = {
            "contents": self._contents(request),
            "generationConfig": {
                "temperature": request.temperature,
                "topP": request.top_p,
                "maxOutputTokens": max_out,
                "responseMimeType": "application/json" if request.json_output else "text/plain",
            },
        }
        if request.cached_context:
            body["cachedContent"] = request.cached_context
        else:
            system = request.full_system()
            if len(system) > MAX_SYSTEM_CHARS:
                system = system[-MAX_SYSTEM_CHARS:]
            if system:
                body["systemInstruction"] = {"parts": [{"text": system}]}
        if request.unsafe:
            body["safetySettings"] = _RELAXED_SAFETY
        return url, body

    def _parse_response(self, data: dict, meta: dict) -> Completion:
        feedback = data.get("promptFeedback") or {}
        block_reason = feedback.get("blockReason") or feedback.get("blockReasonMessage") or ""
        candidates = data.get("candidates") or []
        candidate = candidates[0] if candidates else {}
        finish_reason = candidate.get("finishReason") or ""
        parts = (candidate.get("content") or {}).get("parts") or []
        text = "\n".join(p["text"] for p in parts if isinstance(p, dict) and p.get("text"))

        if block_reason:
            raise ContentPolicyError(f"gemini blocked the prompt: {block_reason}")
        if not text.strip() and finish_reason in _POLICY_FINISH:
            raise ContentPolicyError(f"gemini stopped the reply: finishReason={finish_reason}")

        meta = dict(meta)
        meta["partsCount"] = len(parts)
        meta["usage"] = data.get("usageMetadata")
        meta["modelVersion"] = data.get("modelVersion", "")
        return Completion(text=text, finish_reason=finish_reason, block_reason=block_reason, meta=meta)

    async def complete(self, request: CompletionRequest) -> Completion:
        url, body = self._build_request(request)
        meta = {
            "usedMaxOutputTokens": body["generationConfig"]["maxOutputTokens"],
            "systemChars": len(request.full_system()),
            "messagesCount": len(body["contents"]),
            "cached": bool(request.cached_context),
        }
        data = await self._post(url, body)
        return self._parse_response(data, meta)

    async def create_cached_context(
        self, model: str, system: str, ttl_seconds: int
    ) -> str | None:
        """Create a cachedContents entry for the system prompt; None on failure."""
        url = f"{self._base_url}/v1beta/cachedContents"
        body = {
            "model": f"models/{model}",
            "systemInstruction": {"parts": [{"text": system}]},
            "ttl": f"{int(ttl_seconds)}s",
        }
        try:
            data = await self._post(url, body)
        except ProviderError as e:
            # prompts below the provider's minimum cache size end up here
            logger.info("gemini context cache unavailable for model=%s: %s", model, e)
            return None
        return data.get("name") or None
