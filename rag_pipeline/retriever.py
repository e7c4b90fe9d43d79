"""
retriever.py
============
Nearest-restaurant retrieval and context formatting.

Flow:
  1. ``validate_history`` picks the active query (last message) and rejects
     an empty conversation or a blank query before any external call is made.
  2. ``retrieve_matches`` asks the vector index for exactly ``TOP_K`` matches
     with metadata, keeping the index's order.
  3. ``format_context`` renders one plain-text block per match under a fixed
     header, ready to be appended to the user's message.

No re-ranking or score filtering is applied; the index order is the rank.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Sequence

from rag_pipeline.vector_index import VectorIndex

logger = logging.getLogger(__name__)

TOP_K = 5

CONTEXT_HEADER = "Returned results from vector db (done automatically):"


class QueryValidationError(ValueError):
    """Raised when the conversation has no usable active query."""


@dataclass
class RetrievalMatch:
    name: str
    address: str
    town: str
    state: str
    region: str
    type_of_food: List[str] = field(default_factory=list)
    rating: str = "Unknown"
    score: float = 0.0

    @classmethod
    def from_index(cls, match: Mapping[str, Any]) -> "RetrievalMatch":
        metadata: Dict[str, Any] = dict(match.get("metadata") or {})
        foods = metadata.get("typeOfFood") or []
        if isinstance(foods, str):
            foods = [foods]
        rating = metadata.get("rating")
        return cls(
            name         = str(metadata.get("name", "Unknown")),
            address      = str(metadata.get("address", "Unknown")),
            town         = str(metadata.get("town", "Unknown")),
            state        = str(metadata.get("state", "Unknown")),
            region       = str(metadata.get("region", "Unknown")),
            type_of_food = [str(f) for f in foods],
            rating       = _format_rating(rating),
            score        = float(match.get("score") or 0.0),
        )

    def to_block(self) -> str:
        return "\n".join([
            f"Restaurant: {self.name}",
            f"Address: {self.address}",
            f"Town: {self.town}",
            f"State: {self.state}",
            f"Region: {self.region}",
            f"Type of Food: {', '.join(self.type_of_food)}",
            f"Rating: {self.rating}",
        ])


def _format_rating(rating: Any) -> str:
    if rating is None:
        return "Unknown"
    # Index backends hand whole-number ratings back as floats (4 -> 4.0)
    if isinstance(rating, float) and rating.is_integer():
        return str(int(rating))
    return str(rating)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def validate_history(messages: Sequence[Mapping[str, str]]) -> str:
    """
    Return the active query text: the last message's content, unmodified.

    Whitespace only matters for the blank check; the query is embedded and
    sent to the model exactly as the caller wrote it.
    """
    if not messages:
        raise QueryValidationError("Conversation must contain at least one message")

    query = messages[-1].get("content") or ""
    if not query.strip():
        raise QueryValidationError("Query cannot be empty")
    return query


def retrieve_matches(
    vector: List[float],
    index: VectorIndex,
    namespace: str,
) -> List[RetrievalMatch]:
    """
    Query the index for the ``TOP_K`` nearest restaurants.

    Blocking; callers on the event loop run it through ``asyncio.to_thread``.
    ``VectorIndexError`` propagates unchanged.
    """
    raw = index.query(vector, top_k=TOP_K, namespace=namespace)
    matches = [RetrievalMatch.from_index(m) for m in raw]
    logger.debug(
        "Retrieved %d matches from namespace '%s': %s",
        len(matches),
        namespace,
        ", ".join(m.name for m in matches),
    )
    return matches


def format_context(matches: Sequence[RetrievalMatch]) -> str:
    """Render matches as the text block appended to the user's message."""
    parts = [f"\n\n{CONTEXT_HEADER}"]
    parts.extend(f"\n\n{match.to_block()}" for match in matches)
    return "".join(parts)
