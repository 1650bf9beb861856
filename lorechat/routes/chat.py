"""Turn-processing endpoint."""

import logging

from fastapi import APIRouter, BackgroundTasks, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from lorechat import storage
from lorechat.pipeline import TurnValidationError, run_turn
from lorechat.providers import (
    ContentPolicyError,
    EmptyCompletionError,
    MissingCredentialsError,
    ProviderError,
)

from .models import ChatBody, ErrorReply

logger = logging.getLogger(__name__)

router = APIRouter()


def _error(status: int, message: str) -> JSONResponse:
    return JSONResponse(ErrorReply(error=message).model_dump(), status_code=status)


def _validation_message(e: ValidationError) -> str:
    first = e.errors()[0]
    where = ".".join(str(p) for p in first.get("loc", ()))
    return f"Invalid request: {where}: {first.get('msg', 'invalid value')}" if where else f"Invalid request: {first.get('msg')}"


@router.post("/llm/chat")
async def chat(request: Request, background_tasks: BackgroundTasks):
    """Process one chat turn: {ok, provider, model, text, challengeSuccess?, runtime, events}."""
    try:
        payload = await request.json()
    except ValueError:
        return _error(400, "Invalid request: body is not valid JSON")
    try:
        body = ChatBody.model_validate(payload)
    except ValidationError as e:
        return _error(400, _validation_message(e))

    state = request.app.state
    try:
        result = await run_turn(
            body,
            config=storage.get_config(),
            cache=state.context_cache,
            client_factory=state.client_factory,
            background=background_tasks,
        )
    except TurnValidationError as e:
        return _error(400, str(e))
    except MissingCredentialsError as e:
        logger.error("chat turn failed: %s", e)
        return _error(500, str(e))
    except (EmptyCompletionError, ContentPolicyError) as e:
        logger.warning("chat turn failed: %s", e)
        return _error(400, str(e))
    except ProviderError as e:
        logger.error("provider error: %s", e)
        return _error(500, str(e))
    except Exception as e:
        logger.exception("chat turn crashed")
        return _error(500, f"Internal error: {e}")
    return result.to_response()
