"""
pipeline.py
===========
Per-request orchestration of the halal restaurant search.

State machine::

    idle → awaiting-embedding → awaiting-retrieval
         → awaiting-completion-stream → streaming → closed | errored

``SearchPipeline.open`` runs the three dependent upstream calls in order and
returns a ``CompletionRelay`` once the model stream is open. Any failure
before that point raises ``PipelineError`` (no chunk has been produced yet).
Failures after that point surface from the relay as ``StreamAbortedError``.

A pipeline instance serves exactly one request.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, List, Mapping, Optional, Sequence

from openai import AsyncOpenAI

from rag_pipeline.embedder import embed_query
from rag_pipeline.llm_engine import build_augmented_messages, iter_fragments, open_completion_stream
from rag_pipeline.openai_client import get_async_client
from rag_pipeline.retriever import RetrievalMatch, format_context, retrieve_matches, validate_history
from rag_pipeline.settings import Settings
from rag_pipeline.vector_index import VectorIndex, get_index

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    IDLE                       = "idle"
    AWAITING_EMBEDDING         = "awaiting-embedding"
    AWAITING_RETRIEVAL         = "awaiting-retrieval"
    AWAITING_COMPLETION_STREAM = "awaiting-completion-stream"
    STREAMING                  = "streaming"
    CLOSED                     = "closed"
    ERRORED                    = "errored"


_NEXT_STATE = {
    PipelineState.IDLE:                       PipelineState.AWAITING_EMBEDDING,
    PipelineState.AWAITING_EMBEDDING:         PipelineState.AWAITING_RETRIEVAL,
    PipelineState.AWAITING_RETRIEVAL:         PipelineState.AWAITING_COMPLETION_STREAM,
    PipelineState.AWAITING_COMPLETION_STREAM: PipelineState.STREAMING,
    PipelineState.STREAMING:                  PipelineState.CLOSED,
}

_TERMINAL = (PipelineState.CLOSED, PipelineState.ERRORED)


class PipelineError(RuntimeError):
    """A pre-stream stage failed or timed out. ``stage`` names the failed state."""

    def __init__(self, stage: PipelineState, message: str):
        super().__init__(message)
        self.stage = stage


class StreamAbortedError(RuntimeError):
    """The model stream failed after output had started."""


class SearchPipeline:
    """
    ``client`` and ``index`` default to the shared singletons, resolved
    inside the stage that first needs them so a construction failure is
    reported as that stage's ``PipelineError``.
    """

    def __init__(
        self,
        settings: Settings,
        client: Optional[AsyncOpenAI] = None,
        index: Optional[VectorIndex] = None,
    ):
        self.settings = settings
        self._client = client
        self._index = index
        self.state = PipelineState.IDLE
        self.request_id = uuid.uuid4().hex[:8]

    # ── State handling ────────────────────────────────────────────────────

    def _advance(self, target: PipelineState) -> None:
        expected = _NEXT_STATE.get(self.state)
        if target is not expected:
            raise RuntimeError(f"Illegal transition {self.state.value} → {target.value}")
        logger.debug("[%s] %s → %s", self.request_id, self.state.value, target.value)
        self.state = target

    def _fail(self) -> None:
        if self.state not in _TERMINAL:
            logger.debug("[%s] %s → errored", self.request_id, self.state.value)
            self.state = PipelineState.ERRORED

    async def _run_stage(self, awaitable: Awaitable[Any], timeout: float) -> Any:
        stage = self.state
        try:
            return await asyncio.wait_for(awaitable, timeout=timeout)
        except asyncio.TimeoutError as exc:
            logger.error("[%s] %s timed out after %.1fs", self.request_id, stage.value, timeout)
            self._fail()
            raise PipelineError(stage, f"{stage.value} timed out") from exc
        except Exception as exc:
            logger.error("[%s] %s failed: %s", self.request_id, stage.value, exc)
            self._fail()
            raise PipelineError(stage, f"{stage.value} failed") from exc

    async def _embed(self, query: str) -> List[float]:
        if self._client is None:
            self._client = get_async_client()
        return await embed_query(query, self._client, self.settings.embed_model)

    def _retrieve(self, vector: List[float]) -> List[RetrievalMatch]:
        if self._index is None:
            self._index = get_index()
        return retrieve_matches(vector, self._index, self.settings.namespace)

    # ── Public API ────────────────────────────────────────────────────────

    async def open(self, history: Sequence[Mapping[str, str]]) -> "CompletionRelay":
        """
        Embed, retrieve and open the model stream for ``history``.

        Raises ``QueryValidationError`` (state stays idle, no upstream call)
        or ``PipelineError``.
        """
        if self.state is not PipelineState.IDLE:
            raise RuntimeError("SearchPipeline instances are single-use")

        query = validate_history(history)
        settings = self.settings
        logger.info("[%s] Search request: %d message(s), query=%r", self.request_id, len(history), query[:80])

        self._advance(PipelineState.AWAITING_EMBEDDING)
        vector = await self._run_stage(self._embed(query), settings.embed_timeout)

        # Blocking index SDK (and, when cold, its construction) runs off the loop
        self._advance(PipelineState.AWAITING_RETRIEVAL)
        matches = await self._run_stage(
            asyncio.to_thread(self._retrieve, vector),
            settings.retrieval_timeout,
        )
        context = format_context(matches)

        self._advance(PipelineState.AWAITING_COMPLETION_STREAM)
        messages = build_augmented_messages(history, context)
        upstream = await self._run_stage(
            open_completion_stream(messages, self._client, settings.chat_model),
            settings.completion_timeout,
        )

        self._advance(PipelineState.STREAMING)
        return CompletionRelay(self, upstream, matches_count=len(matches))


class CompletionRelay:
    """
    Async iterator of UTF-8 encoded fragments from an open model stream.

    Ends cleanly (pipeline ``closed``) when the model finishes. Raises
    ``StreamAbortedError`` (pipeline ``errored``) on upstream failure or idle
    timeout. If the consumer stops iterating early the upstream stream is
    closed and the pipeline is marked ``errored``.
    """

    def __init__(self, pipeline: SearchPipeline, upstream: Any, matches_count: int = 0):
        self._pipeline = pipeline
        self._upstream = upstream
        self.matches_count = matches_count
        self.chunks_sent = 0
        self._started = False

    @property
    def state(self) -> PipelineState:
        return self._pipeline.state

    def __aiter__(self) -> AsyncIterator[bytes]:
        if self._started:
            raise RuntimeError("CompletionRelay can only be iterated once")
        self._started = True
        return self._relay()

    async def _relay(self) -> AsyncIterator[bytes]:
        pipeline = self._pipeline
        request_id = pipeline.request_id
        try:
            try:
                async for fragment in iter_fragments(self._upstream, pipeline.settings.chunk_timeout):
                    self.chunks_sent += 1
                    yield fragment.encode("utf-8")
            except asyncio.TimeoutError as exc:
                logger.error("[%s] Model stream idle for %.1fs, aborting.", request_id, pipeline.settings.chunk_timeout)
                pipeline._fail()
                raise StreamAbortedError("Completion stream timed out") from exc
            except Exception as exc:
                logger.error("[%s] Model stream failed after %d chunk(s): %s", request_id, self.chunks_sent, exc)
                pipeline._fail()
                raise StreamAbortedError("Completion stream aborted") from exc

            pipeline._advance(PipelineState.CLOSED)
            logger.info("[%s] Stream closed cleanly after %d chunk(s).", request_id, self.chunks_sent)
        finally:
            if pipeline.state is PipelineState.STREAMING:
                logger.warning("[%s] Consumer went away after %d chunk(s); releasing model stream.", request_id, self.chunks_sent)
                pipeline._fail()
            await self._close_upstream()

    async def _close_upstream(self) -> None:
        close = getattr(self._upstream, "close", None)
        if close is None:
            return
        try:
            result = close()
            if asyncio.iscoroutine(result):
                await result
        except Exception as exc:
            logger.warning("[%s] Closing model stream failed: %s", self._pipeline.request_id, exc)
