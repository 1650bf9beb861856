"""FastAPI API endpoints under /api.

  POST  /api/llm/chat    one chat turn
  GET   /api/health      liveness
  GET   /api/settings    merged service config
  PATCH /api/settings    partial config update
"""

from fastapi import APIRouter

from .chat import router as chat_router
from .settings import router as settings_router

router = APIRouter()
router.include_router(settings_router)
router.include_router(chat_router)
