"""
openai_client.py
================
Shared OpenAI client instances for embeddings and chat completions.

The SDK's built-in retries are disabled: every upstream call is attempted
exactly once and failures surface to the caller.
"""

from __future__ import annotations

import logging
from typing import Optional

from openai import AsyncOpenAI, OpenAI

from rag_pipeline.settings import Settings, get_settings

logger = logging.getLogger(__name__)

_async_client: Optional[AsyncOpenAI] = None


def _client_kwargs(settings: Settings) -> dict:
    kwargs = {
        "api_key":     settings.openai_api_key or None,
        "max_retries": 0,
        "timeout":     max(settings.completion_timeout, settings.chunk_timeout),
    }
    if settings.openai_base_url:
        kwargs["base_url"] = settings.openai_base_url
    return kwargs


def get_async_client() -> AsyncOpenAI:
    """Return (or lazily create) the singleton async client used per request."""
    global _async_client
    if _async_client is None:
        settings = get_settings()
        _async_client = AsyncOpenAI(**_client_kwargs(settings))
        logger.info("OpenAI async client ready (base_url=%s).", settings.openai_base_url or "default")
    return _async_client


def create_sync_client(settings: Optional[Settings] = None) -> OpenAI:
    """Build a blocking client for offline tooling (index loading)."""
    return OpenAI(**_client_kwargs(settings or get_settings()))


def reset_clients() -> None:
    global _async_client
    _async_client = None
