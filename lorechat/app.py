import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI

from lorechat import storage
from lorechat.providers import ContextCache, make_client
from lorechat.routes import router

load_dotenv(Path(__file__).parent.parent / ".env")

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = Path(__file__).parent.parent / "data"


def create_app(data_dir: Path | None = None, client_factory=make_client) -> FastAPI:
    resolved = data_dir or Path(os.getenv("DATA_DIR", str(DEFAULT_DATA_DIR)))
    storage.init_storage(resolved)

    app = FastAPI(title="lorechat")
    # One context cache per app instance; tests build their own app.
    ttl = storage.get_config()["routing"]["context_cache_ttl_seconds"]
    app.state.context_cache = ContextCache(ttl_seconds=ttl)
    app.state.client_factory = client_factory
    app.include_router(router, prefix="/api")
    logger.info("lorechat ready, data dir %s", resolved)
    return app


# Default app instance for uvicorn (uses DATA_DIR env var or default)
app = create_app()
