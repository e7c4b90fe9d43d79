"""
api/chat.py
===========
POST /api/chat
--------------
Accepts the conversation as a raw JSON array of ``{"role", "content"}``
objects and streams the model's answer back as UTF-8 text.

Pipeline (rag_pipeline.pipeline.SearchPipeline):

  1. Validate the active query (last message)        → 422 on failure
  2. Embed the query (OpenAI embeddings)             ┐
  3. Retrieve the 5 nearest halal restaurants        ├ 502 on any failure
  4. Open the augmented chat-completion stream       ┘
  5. Relay fragments to the client as they arrive

A failure during step 5 aborts the response body instead of ending it, so the
client can tell a cut-off answer from a complete one.
"""

from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse, StreamingResponse

from backend.schemas.chat import ChatMessage, ErrorResponse
from rag_pipeline.pipeline import PipelineError, SearchPipeline
from rag_pipeline.retriever import QueryValidationError
from rag_pipeline.settings import get_settings

logger = logging.getLogger(__name__)

router = APIRouter()

_UPSTREAM_FAILURE = "Halal restaurant search is unavailable right now. Please try again."


def get_pipeline() -> SearchPipeline:
    """
    Build a fresh single-request pipeline. The shared OpenAI client and
    vector index are resolved inside its stages, so an unreachable index
    surfaces as a 502 rather than a dependency crash.
    """
    return SearchPipeline(settings=get_settings())


# ---------------------------------------------------------------------------
# Endpoint
# ---------------------------------------------------------------------------

@router.post(
    "/api/chat",
    response_class = StreamingResponse,
    responses      = {
        422: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
    },
)
async def chat(
    messages: List[ChatMessage],
    pipeline: SearchPipeline = Depends(get_pipeline),
):
    """Stream a retrieval-augmented halal food recommendation."""
    history = [m.model_dump() for m in messages]

    try:
        relay = await pipeline.open(history)
    except QueryValidationError as exc:
        return JSONResponse(
            status_code = status.HTTP_422_UNPROCESSABLE_ENTITY,
            content     = ErrorResponse(
                error      = "invalid_query",
                detail     = str(exc),
                request_id = pipeline.request_id,
            ).model_dump(),
        )
    except PipelineError as exc:
        logger.error("[%s] Search failed at %s.", pipeline.request_id, exc.stage.value)
        return JSONResponse(
            status_code = status.HTTP_502_BAD_GATEWAY,
            content     = ErrorResponse(
                error      = "upstream_failure",
                detail     = _UPSTREAM_FAILURE,
                request_id = pipeline.request_id,
            ).model_dump(),
        )

    return StreamingResponse(
        relay,
        media_type = "text/plain; charset=utf-8",
        headers    = {"X-Request-ID": pipeline.request_id, "Cache-Control": "no-cache"},
    )
