"""
FinChat - Application Entry Point
==================================
FastAPI application factory.  Registers the chat routes and builds the
``RAGManager`` in the lifespan hook (unless one is injected, as the tests
do), so no network or database client is created at import time.

Usage:
    uvicorn finchat.src.main:app --reload --port 8000
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from finchat.config.settings import settings
from finchat.src.api.routes import router
from finchat.src.core.rag_engine import RAGManager
from finchat.src.utils.logger import get_logger, quiet_third_party_loggers

logger = get_logger(__name__)


def create_app(rag_manager: RAGManager | None = None) -> FastAPI:
    """
    Build the FastAPI application.

    Parameters
    ----------
    rag_manager
        Pre-built pipeline.  When ``None`` one is wired from ``settings``
        on startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        quiet_third_party_loggers()
        app.state.rag = rag_manager if rag_manager is not None else RAGManager.from_settings(settings)
        logger.info("FinChat API started (env=%s, namespaces=%s).", settings.ENV, settings.NAMESPACES)
        yield
        logger.info("FinChat API shutting down.")

    app = FastAPI(title="FinChat API", description="Retrieval-augmented financial chat backend", version="0.1.0", lifespan=lifespan)
    app.include_router(router)

    @app.get("/api/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("finchat.src.main:app", host="0.0.0.0", port=8000, reload=settings.ENV == "dev", log_level="info")
