"""
main.py
=======
FastAPI application entry point for the Ummati halal restaurant finder.

Run locally:
  uvicorn backend.main:app --reload --port 8000

The lifespan handler connects the vector index once at startup so the first
search does not pay the connection cost.
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv  # type: ignore
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Load .env from project root (one level above this file's package)
load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))

from backend.api.chat import router as chat_router
from backend.api.health import router as health_router
from backend.schemas.chat import ErrorResponse
from rag_pipeline.settings import get_settings

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan: startup / shutdown
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Warm shared clients before first request."""
    logger.info("Halal finder backend starting up…")

    try:
        from rag_pipeline.vector_index import get_index
        get_index()
    except Exception as exc:
        logger.warning("Vector index initialisation skipped: %s", exc)

    logger.info("All components initialised. Ready.")
    yield

    logger.info("Halal finder backend shutting down.")


# ---------------------------------------------------------------------------
# Error handlers
# ---------------------------------------------------------------------------

async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed request bodies use the same ErrorResponse shape as rejected queries."""
    problems = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg', 'invalid')}"
        for err in exc.errors()
    )
    return JSONResponse(
        status_code = status.HTTP_422_UNPROCESSABLE_ENTITY,
        content     = ErrorResponse(error="invalid_query", detail=problems or None).model_dump(),
    )


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------

def create_app() -> FastAPI:
    app = FastAPI(
        title       = "Ummati Halal Finder API",
        description = (
            "Semantic halal restaurant search — query embedding, vector "
            "retrieval and streamed retrieval-augmented recommendations."
        ),
        version     = "1.0.0",
        docs_url    = "/docs",
        redoc_url   = "/redoc",
        lifespan    = lifespan,
    )

    # ── CORS ──────────────────────────────────────────────────────────────
    origins = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        get_settings().frontend_url,
    ]
    app.add_middleware(
        CORSMiddleware,
        allow_origins     = origins,
        allow_credentials = True,
        allow_methods     = ["*"],
        allow_headers     = ["*"],
        expose_headers    = ["X-Request-ID"],
    )

    app.add_exception_handler(RequestValidationError, validation_error_handler)

    # ── Routers ───────────────────────────────────────────────────────────
    app.include_router(health_router)
    app.include_router(chat_router)

    return app


app = create_app()
