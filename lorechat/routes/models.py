"""Pydantic request/response models for API endpoints."""

from typing import Any

from pydantic import BaseModel

from lorechat.models import TurnRequest


class ChatBody(TurnRequest):
    """POST /api/llm/chat body. camelCase on the wire; max_tokens/top_p also snake_case."""


class ErrorReply(BaseModel):
    ok: bool = False
    error: str


class SettingsPatch(BaseModel):
    providers: dict[str, dict[str, Any]] | None = None
    routing: dict[str, Any] | None = None
    fallback_provider: str | None = None
    memory: dict[str, Any] | None = None
    challenge: dict[str, Any] | None = None
