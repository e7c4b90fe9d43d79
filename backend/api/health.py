"""
api/health.py
=============
GET /api/health — liveness and readiness probe for the halal search backend.
"""

import asyncio
import logging

from fastapi import APIRouter

from rag_pipeline.settings import get_settings

logger = logging.getLogger(__name__)

router = APIRouter()


def _index_count(namespace: str) -> int:
    from rag_pipeline.vector_index import get_index
    return get_index().count(namespace)


@router.get("/api/health")
async def health_check():
    """Return service status and vector index readiness."""
    settings = get_settings()
    try:
        # Index construction and stats are blocking SDK calls
        index_count = await asyncio.wait_for(
            asyncio.to_thread(_index_count, settings.namespace),
            timeout=settings.retrieval_timeout,
        )
        index_ready = index_count > 0
    except Exception as exc:
        logger.warning("Vector index not ready: %s", exc)
        index_ready = False
        index_count = 0

    return {
        "status":          "ok",
        "vector_backend":  settings.vector_backend,
        "index_ready":     index_ready,
        "index_doc_count": index_count,
        "api_version":     "1.0.0",
    }
