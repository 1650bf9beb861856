"""DeepSeek chat completions client (OpenAI-compatible wire format)."""

from __future__ import annotations

from .base import Completion, CompletionRequest, ContentPolicyError, HttpProvider


class DeepSeekProvider(HttpProvider):
    """POST /chat/completions  {"model", "messages": [{role, content}], ...}

    Response: {"choices": [{"message": {"content": "..."}, "finish_reason": ...}]}
    The provider caches repeated prompt prefixes on its own, so there is no
    handle to manage.
    """

    name = "deepseek"
    default_base_url = "https://api.deepseek.com"

    def _headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json", "Authorization": f"Bearer {self._api_key}"}

    def _is_policy_rejection(self, status: int, body: str) -> bool:
        return status == 400 and "Content Exists Risk" in body

    def _build_request(self, request: CompletionRequest) -> tuple[str, dict]:
        system = request.full_system()
        messages = [{"role": "system", "content": system}] if system else []
        messages.extend(
            {"role": m["role"], "content": m["content"]}
            for m in request.messages
            if m["content"].strip()
        )
        body: dict = {
            "model": request.model,
            "temperature": request.temperature,
            "top_p": request.top_p,
            "max_tokens": int(request.max_tokens),
            "messages": messages,
        }
        if request.json_output:
            body["response_format"] = {"type": "json_object"}
        return f"{self._base_url}/chat/completions", body

    def _parse_response(self, data: dict) -> Completion:
        choices = data.get("choices") or []
        if not choices:
            return Completion(text="", meta={"usage": data.get("usage")})
        choice = choices[0]
        finish_reason = choice.get("finish_reason") or ""
        text = (choice.get("message") or {}).get("content") or ""
        if finish_reason == "content_filter" and not text.strip():
            raise ContentPolicyError("deepseek filtered the reply (finish_reason=content_filter)")
        return Completion(text=text, finish_reason=finish_reason, meta={"usage": data.get("usage")})

    async def complete(self, request: CompletionRequest) -> Completion:
        url, body = self._build_request(request)
        data = await self._post(url, body)
        return self._parse_response(data)
