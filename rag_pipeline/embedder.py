"""
embedder.py
===========
Convert the active chat query into a dense embedding vector.

Backend: OpenAI embeddings endpoint (``text-embedding-3-small`` by default),
the same model used by ``rag_pipeline.loader`` to index restaurant records.
"""

from __future__ import annotations

import logging
from typing import List

from openai import AsyncOpenAI

logger = logging.getLogger(__name__)

# text-embedding-3-small output size; must match the index dimension
EMBEDDING_DIMENSION = 1536


class EmbeddingError(RuntimeError):
    """Raised when the embedding service rejects the request or returns nothing."""


async def embed_query(text: str, client: AsyncOpenAI, model: str) -> List[float]:
    """Embed a single query string. One request, no retry."""
    try:
        response = await client.embeddings.create(
            model           = model,
            input           = text,
            encoding_format = "float",
        )
    except Exception as exc:
        logger.error("Embedding request failed (%s): %s", model, exc)
        raise EmbeddingError(f"Embedding service error: {exc}") from exc

    data = getattr(response, "data", None) or []
    embedding = list(data[0].embedding) if data else []
    if not embedding:
        raise EmbeddingError("Embedding service returned an empty vector")

    if len(embedding) != EMBEDDING_DIMENSION:
        logger.warning(
            "Embedding dimension mismatch: expected %d, got %d",
            EMBEDDING_DIMENSION,
            len(embedding),
        )

    logger.debug("Generated query embedding with %d dimensions", len(embedding))
    return embedding


def embed_texts(texts: List[str], client, model: str) -> List[List[float]]:
    """Blocking batch embedding used by the index loader."""
    if not texts:
        return []

    try:
        response = client.embeddings.create(
            model           = model,
            input           = texts,
            encoding_format = "float",
        )
    except Exception as exc:
        logger.error("Batch embedding request failed (%s): %s", model, exc)
        raise EmbeddingError(f"Embedding service error: {exc}") from exc

    ordered = sorted(response.data, key=lambda item: item.index)
    vectors = [list(item.embedding) for item in ordered]
    if len(vectors) != len(texts):
        raise EmbeddingError(
            f"Embedding service returned {len(vectors)} vectors for {len(texts)} inputs"
        )
    return vectors
