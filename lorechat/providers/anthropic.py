"""Anthropic Messages API client."""

from __future__ import annotations

from .base import Completion, CompletionRequest, ContentPolicyError, HttpProvider

ANTHROPIC_VERSION = "2023-06-01"


class AnthropicProvider(HttpProvider):
    """POST /v1/messages

    Prompt caching is request-scoped: the stable system prompt is sent as its
    own block marked with cache_control, the per-turn block follows uncached.
    Only temperature is sent; some models reject temperature and top_p together.
    """

    name = "anthropic"
    default_base_url = "https://api.anthropic.com"

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-api-key": self._api_key,
            "anthropic-version": ANTHROPIC_VERSION,
        }

    def _build_request(self, request: CompletionRequest) -> tuple[str, dict]:
        system: list[dict] = []
        if request.system:
            system.append({
                "type": "text",
                "text": request.system,
                "cache_control": {"type": "ephemeral"},
            })
        if request.system_tail:
            system.append({"type": "text", "text": request.system_tail})

        messages = [
            {"role": m["role"], "content": m["content"]}
            for m in request.messages
            if m["content"].strip()
        ]
        # the conversation has to open with a user turn
        while messages and messages[0]["role"] != "user":
            messages.pop(0)

        body: dict = {
            "model": request.model,
            "max_tokens": int(request.max_tokens),
            "temperature": request.temperature,
            "messages": messages,
        }
        if system:
            body["system"] = system
        return f"{self._base_url}/v1/messages", body

    def _parse_response(self, data: dict) -> Completion:
        stop_reason = data.get("stop_reason") or ""
        content = data.get("content") or []
        text = "\n".join(
            c["text"] for c in content if isinstance(c, dict) and c.get("type") == "text" and c.get("text")
        )
        if stop_reason == "refusal":
            raise ContentPolicyError("anthropic refused the request (stop_reason=refusal)")
        return Completion(text=text, finish_reason=stop_reason, meta={"usage": data.get("usage")})

    async def complete(self, request: CompletionRequest) -> Completion:
        url, body = self._build_request(request)
        data = await self._post(url, body)
        return self._parse_response(data)
