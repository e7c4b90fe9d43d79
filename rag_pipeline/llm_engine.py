"""
llm_engine.py
=============
Retrieval-augmented chat completion with streaming output.

The model receives the fixed halal-food system prompt, every earlier turn of
the conversation untouched, and the caller's last message with the retrieved
restaurant context appended. Output is consumed incrementally: fragments are
handed on in the order the model emits them.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Sequence

from openai import AsyncOpenAI

logger = logging.getLogger(__name__)


class LLMUnavailableError(RuntimeError):
    """Raised when the chat-completion stream cannot be opened."""


SYSTEM_PROMPT = """You are an Ummati Halal Food agent designed to help users find the best halal food options.
You have access to a database of halal restaurants, including their names, addresses, towns, states, regions, types of food, and ratings.
When a user asks for halal food recommendations, analyze their query and return the top 5 restaurants that best match their needs.
Provide the information in an organized manner, with each restaurant's details separated by new lines (\\n) for clarity."""


# ---------------------------------------------------------------------------
# Prompt assembly
# ---------------------------------------------------------------------------

def build_augmented_messages(
    history: Sequence[Mapping[str, str]],
    context: str,
) -> List[Dict[str, str]]:
    """
    System prompt, then history[:-1] verbatim, then the last message's
    content with ``context`` appended as the final user turn.
    """
    if not history:
        raise ValueError("history must contain at least one message")

    *earlier, last = history
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        *({"role": m["role"], "content": m["content"]} for m in earlier),
        {"role": "user", "content": last["content"] + context},
    ]


# ---------------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------------

async def open_completion_stream(
    messages: List[Dict[str, str]],
    client: AsyncOpenAI,
    model: str,
):
    """Open a streamed chat completion. One attempt; failures raise LLMUnavailableError."""
    logger.info("Opening chat completion stream: model=%s, messages=%d", model, len(messages))
    try:
        return await client.chat.completions.create(
            model    = model,
            messages = messages,
            stream   = True,
        )
    except Exception as exc:
        logger.error("Chat completion request failed (%s): %s", model, exc)
        raise LLMUnavailableError(f"Chat completion service error: {exc}") from exc


def extract_fragment(chunk: Any) -> Optional[str]:
    """Return the text content carried by one streamed chunk, if any."""
    choices = getattr(chunk, "choices", None)
    if not choices:
        return None
    delta = getattr(choices[0], "delta", None)
    if delta is None:
        return None
    content = getattr(delta, "content", None)
    return content or None


async def iter_fragments(stream: Any, chunk_timeout: float) -> AsyncIterator[str]:
    """
    Yield non-empty text fragments from a completion stream in arrival order.

    ``asyncio.TimeoutError`` is raised when no chunk arrives within
    ``chunk_timeout`` seconds; upstream errors propagate unchanged.
    """
    iterator = stream.__aiter__()
    while True:
        try:
            chunk = await asyncio.wait_for(iterator.__anext__(), timeout=chunk_timeout)
        except StopAsyncIteration:
            return
        fragment = extract_fragment(chunk)
        if fragment:
            yield fragment
