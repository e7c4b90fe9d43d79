"""
settings.py
===========
Process-wide configuration for the halal search pipeline.

Values come from the environment (populated from ``.env`` by the FastAPI
entry point) and are frozen into a single ``Settings`` instance on first use.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

_settings: Optional["Settings"] = None


def _clean_env(name: str, default: str = "") -> str:
    value = os.getenv(name, default)
    return value.strip().strip('"').strip("'")


def _float_env(name: str, default: float) -> float:
    raw = _clean_env(name, "")
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Invalid %s=%r — using default %s.", name, raw, default)
        return default
    if value <= 0:
        logger.warning("Non-positive %s=%r — using default %s.", name, raw, default)
        return default
    return value


def _int_env(name: str, default: int) -> int:
    raw = _clean_env(name, "")
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Invalid %s=%r — using default %s.", name, raw, default)
        return default


@dataclass(frozen=True)
class Settings:
    openai_api_key: str = ""
    openai_base_url: Optional[str] = None
    embed_model: str = "text-embedding-3-small"
    chat_model: str = "gpt-4"

    vector_backend: str = "pinecone"     # pinecone | chroma
    pinecone_api_key: str = ""
    index_name: str = "rag"
    namespace: str = "ns1"
    chroma_host: str = ""
    chroma_port: int = 8000
    chroma_persist_dir: str = "./chroma_db"

    # Upper bounds (seconds) on each external stage
    embed_timeout: float = 30.0
    retrieval_timeout: float = 30.0
    completion_timeout: float = 60.0
    chunk_timeout: float = 60.0

    frontend_url: str = "http://localhost:3000"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            openai_api_key     = _clean_env("OPENAI_API_KEY"),
            openai_base_url    = _clean_env("OPENAI_BASE_URL") or None,
            embed_model        = _clean_env("OPENAI_EMBED_MODEL", cls.embed_model),
            chat_model         = _clean_env("OPENAI_CHAT_MODEL", cls.chat_model),
            vector_backend     = _clean_env("VECTOR_BACKEND", cls.vector_backend).lower(),
            pinecone_api_key   = _clean_env("PINECONE_API_KEY"),
            index_name         = _clean_env("VECTOR_INDEX_NAME", cls.index_name),
            namespace          = _clean_env("VECTOR_NAMESPACE", cls.namespace),
            chroma_host        = _clean_env("CHROMA_HOST"),
            chroma_port        = _int_env("CHROMA_PORT", cls.chroma_port),
            chroma_persist_dir = _clean_env("CHROMA_PERSIST_DIR", cls.chroma_persist_dir),
            embed_timeout      = _float_env("EMBED_TIMEOUT_SECONDS", cls.embed_timeout),
            retrieval_timeout  = _float_env("RETRIEVAL_TIMEOUT_SECONDS", cls.retrieval_timeout),
            completion_timeout = _float_env("COMPLETION_TIMEOUT_SECONDS", cls.completion_timeout),
            chunk_timeout      = _float_env("CHUNK_TIMEOUT_SECONDS", cls.chunk_timeout),
            frontend_url       = _clean_env("FRONTEND_URL", cls.frontend_url),
        )


def get_settings() -> Settings:
    """Return (or lazily build) the process-wide settings."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
        logger.info(
            "Settings loaded: backend=%s index=%s namespace=%s chat_model=%s",
            _settings.vector_backend,
            _settings.index_name,
            _settings.namespace,
            _settings.chat_model,
        )
    return _settings


def reset_settings() -> None:
    """Drop the cached settings so the next call re-reads the environment."""
    global _settings
    _settings = None
