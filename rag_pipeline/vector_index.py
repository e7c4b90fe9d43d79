"""
vector_index.py
===============
Read/write access to the restaurant vector index.

Backends (selected by ``VECTOR_BACKEND``):
  pinecone — hosted Pinecone index; namespaces are native.
  chroma   — ChromaDB (HTTP server when ``CHROMA_HOST`` is set, otherwise a
             local persistent store); each namespace maps onto its own
             collection named ``<index>-<namespace>``.

Every backend returns matches as plain dicts ``{"id", "score", "metadata"}``
ordered best first, so nothing above this module depends on an SDK type.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

from rag_pipeline.settings import Settings, get_settings

logger = logging.getLogger(__name__)

_index: Optional["VectorIndex"] = None

# Chroma metadata values must be scalars
_LIST_FIELDS = ("typeOfFood",)


class VectorIndexError(RuntimeError):
    """Raised when the vector index cannot be reached or rejects a request."""


class VectorIndex(ABC):
    """Abstract nearest-neighbour index partitioned into namespaces."""

    backend: str = "abstract"

    @abstractmethod
    def query(self, vector: List[float], top_k: int, namespace: str) -> List[Dict[str, Any]]:
        """
        Return up to ``top_k`` matches with metadata, most similar first.

        Raises
        ------
        VectorIndexError if the backend call fails.
        """

    @abstractmethod
    def upsert(self, records: List[Dict[str, Any]], namespace: str) -> int:
        """Insert or replace ``{"id", "values", "metadata"}`` records. Returns the count written."""

    @abstractmethod
    def count(self, namespace: str) -> int:
        """Number of records stored under ``namespace``."""


# ---------------------------------------------------------------------------
# Pinecone
# ---------------------------------------------------------------------------

class PineconeIndex(VectorIndex):
    backend = "pinecone"

    def __init__(self, api_key: str, index_name: str, index: Any = None):
        if index is None:
            if not api_key:
                raise VectorIndexError("PINECONE_API_KEY not configured")
            from pinecone import Pinecone

            index = Pinecone(api_key=api_key).Index(index_name)
        self._index = index
        self.index_name = index_name

    def query(self, vector: List[float], top_k: int, namespace: str) -> List[Dict[str, Any]]:
        try:
            response = self._index.query(
                vector           = vector,
                top_k            = top_k,
                namespace        = namespace,
                include_metadata = True,
            )
        except Exception as exc:
            logger.error("Pinecone query failed (index=%s, ns=%s): %s", self.index_name, namespace, exc)
            raise VectorIndexError(f"Vector index query failed: {exc}") from exc

        matches = getattr(response, "matches", None) or []
        return [
            {
                "id":       match.id,
                "score":    float(match.score or 0.0),
                "metadata": dict(match.metadata or {}),
            }
            for match in matches
        ]

    def upsert(self, records: List[Dict[str, Any]], namespace: str) -> int:
        if not records:
            return 0
        try:
            self._index.upsert(vectors=records, namespace=namespace)
        except Exception as exc:
            logger.error("Pinecone upsert failed (index=%s, ns=%s): %s", self.index_name, namespace, exc)
            raise VectorIndexError(f"Vector index upsert failed: {exc}") from exc
        return len(records)

    def count(self, namespace: str) -> int:
        try:
            stats = self._index.describe_index_stats()
        except Exception as exc:
            raise VectorIndexError(f"Vector index stats failed: {exc}") from exc
        namespaces = getattr(stats, "namespaces", None) or {}
        summary = namespaces.get(namespace)
        return int(getattr(summary, "vector_count", 0) or 0) if summary is not None else 0


# ---------------------------------------------------------------------------
# Chroma
# ---------------------------------------------------------------------------

def _to_chroma_metadata(metadata: Dict[str, Any]) -> Dict[str, Any]:
    flat = dict(metadata)
    for key in _LIST_FIELDS:
        value = flat.get(key)
        if isinstance(value, (list, tuple)):
            flat[key] = ", ".join(str(v) for v in value)
    return flat


def _from_chroma_metadata(metadata: Dict[str, Any]) -> Dict[str, Any]:
    restored = dict(metadata or {})
    for key in _LIST_FIELDS:
        value = restored.get(key)
        if isinstance(value, str):
            restored[key] = [part.strip() for part in value.split(",") if part.strip()]
    return restored


class ChromaIndex(VectorIndex):
    backend = "chroma"

    def __init__(self, index_name: str, client: Any = None, host: str = "",
                 port: int = 8000, persist_dir: str = "./chroma_db"):
        if client is None:
            import chromadb

            if host:
                client = chromadb.HttpClient(host=host, port=port)
                logger.info("Vector store backend: chroma http (%s:%d)", host, port)
            else:
                Path(persist_dir).mkdir(parents=True, exist_ok=True)
                client = chromadb.PersistentClient(path=persist_dir)
                logger.info("Vector store backend: chroma persistent (%s)", persist_dir)
        self._client = client
        self.index_name = index_name

    def _collection(self, namespace: str, create: bool = False):
        # Reads never create; a missing collection is an unloaded index
        name = f"{self.index_name}-{namespace}"
        if create:
            return self._client.get_or_create_collection(name=name, metadata={"hnsw:space": "cosine"})
        return self._client.get_collection(name=name)

    def query(self, vector: List[float], top_k: int, namespace: str) -> List[Dict[str, Any]]:
        try:
            results = self._collection(namespace).query(
                query_embeddings = [vector],
                n_results        = top_k,
                include          = ["metadatas", "distances"],
            )
        except Exception as exc:
            logger.error("Chroma query failed (collection=%s-%s): %s", self.index_name, namespace, exc)
            raise VectorIndexError(f"Vector index query failed: {exc}") from exc

        ids:       List[str]            = (results.get("ids") or [[]])[0]
        distances: List[float]          = (results.get("distances") or [[]])[0]
        metadatas: List[Dict[str, Any]] = (results.get("metadatas") or [[]])[0]

        matches = []
        for idx, match_id in enumerate(ids):
            distance = distances[idx] if idx < len(distances) else 1.0
            metadata = metadatas[idx] if idx < len(metadatas) else {}
            matches.append({
                "id":       match_id,
                "score":    1.0 - float(distance),
                "metadata": _from_chroma_metadata(metadata),
            })
        return matches

    def upsert(self, records: List[Dict[str, Any]], namespace: str) -> int:
        if not records:
            return 0
        try:
            self._collection(namespace, create=True).upsert(
                ids        = [r["id"] for r in records],
                embeddings = [r["values"] for r in records],
                metadatas  = [_to_chroma_metadata(r.get("metadata", {})) for r in records],
            )
        except Exception as exc:
            logger.error("Chroma upsert failed (collection=%s-%s): %s", self.index_name, namespace, exc)
            raise VectorIndexError(f"Vector index upsert failed: {exc}") from exc
        return len(records)

    def count(self, namespace: str) -> int:
        try:
            return self._collection(namespace).count()
        except Exception as exc:
            raise VectorIndexError(f"Vector index count failed: {exc}") from exc


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

def create_index(settings: Settings) -> VectorIndex:
    backend = settings.vector_backend
    if backend == "pinecone":
        return PineconeIndex(api_key=settings.pinecone_api_key, index_name=settings.index_name)
    if backend == "chroma":
        return ChromaIndex(
            index_name  = settings.index_name,
            host        = settings.chroma_host,
            port        = settings.chroma_port,
            persist_dir = settings.chroma_persist_dir,
        )
    raise ValueError(f"Unknown VECTOR_BACKEND: {backend!r} (expected 'pinecone' or 'chroma')")


def get_index() -> VectorIndex:
    """Return (or lazily create) the singleton index for the configured backend."""
    global _index
    if _index is None:
        _index = create_index(get_settings())
        logger.info("Vector index '%s' ready [backend=%s].", _index.index_name, _index.backend)
    return _index


def reset_index() -> None:
    global _index
    _index = None
