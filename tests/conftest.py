"""
Shared fakes for the halal search test suite.

The OpenAI client and the vector index are replaced by in-process doubles
that record every call, so tests can assert how many upstream requests a
search made and what they carried.
"""
import asyncio
import time
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest

from rag_pipeline.settings import Settings
from rag_pipeline.vector_index import VectorIndex, VectorIndexError


RESTAURANTS = [
    {
        "name": "Spice Route Grill",
        "address": "120 W Devon Ave",
        "town": "Chicago",
        "state": "IL",
        "region": "Midwest",
        "typeOfFood": ["Pakistani", "Grill"],
        "rating": 4.7,
    },
    {
        "name": "Nashville Halal Hot Chicken",
        "address": "88 N Clark St",
        "town": "Chicago",
        "state": "IL",
        "region": "Midwest",
        "typeOfFood": ["Fried Chicken", "Southern"],
        "rating": 4.5,
    },
    {
        "name": "Sahara Kabob",
        "address": "2540 W Lawrence Ave",
        "town": "Chicago",
        "state": "IL",
        "region": "Midwest",
        "typeOfFood": ["Middle Eastern"],
        "rating": 4.3,
    },
    {
        "name": "Peri Peri Palace",
        "address": "15 E Ohio St",
        "town": "Chicago",
        "state": "IL",
        "region": "Midwest",
        "typeOfFood": ["Portuguese", "Chicken"],
        "rating": 4.1,
    },
    {
        "name": "Sultan's Table",
        "address": "4401 N Kedzie Ave",
        "town": "Chicago",
        "state": "IL",
        "region": "Midwest",
        "typeOfFood": ["Turkish"],
        "rating": 4.6,
    },
]


def make_chunk(content: Optional[str]) -> SimpleNamespace:
    """Build an object shaped like an OpenAI ChatCompletionChunk."""
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=content))])


class FakeStream:
    """Async-iterable stand-in for openai.AsyncStream."""

    def __init__(self, fragments: List[Any], error: Optional[BaseException] = None, delay: float = 0.0):
        self.fragments = fragments
        self.error = error
        self.delay = delay
        self.closed = False
        self.yielded = 0

    def __aiter__(self):
        return self._gen()

    async def _gen(self):
        for fragment in self.fragments:
            if self.delay:
                await asyncio.sleep(self.delay)
            self.yielded += 1
            if fragment is None or isinstance(fragment, str):
                yield make_chunk(fragment)
            else:
                yield fragment
        if self.error is not None:
            raise self.error

    async def close(self):
        self.closed = True


class FakeEmbeddings:
    def __init__(self, vector: Optional[List[float]] = None, error: Optional[Exception] = None, delay: float = 0.0):
        self.vector = vector if vector is not None else [0.01] * 1536
        self.error = error
        self.delay = delay
        self.calls: List[Dict[str, Any]] = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(data=[SimpleNamespace(index=0, embedding=self.vector)])


class FakeCompletions:
    def __init__(self, stream: Optional[FakeStream] = None, error: Optional[Exception] = None, delay: float = 0.0):
        self.stream = stream if stream is not None else FakeStream(["Salaam! ", "Try ", "Spice Route Grill."])
        self.error = error
        self.delay = delay
        self.calls: List[Dict[str, Any]] = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.stream


class FakeOpenAI:
    def __init__(self, embeddings: Optional[FakeEmbeddings] = None, completions: Optional[FakeCompletions] = None):
        self.embeddings = embeddings or FakeEmbeddings()
        self.chat = SimpleNamespace(completions=completions or FakeCompletions())


class FakeIndex(VectorIndex):
    backend = "fake"

    def __init__(self, records: Optional[List[Dict[str, Any]]] = None, error: Optional[Exception] = None, delay: float = 0.0):
        self.index_name = "rag"
        self.records = list(RESTAURANTS if records is None else records)
        self.error = error
        self.delay = delay
        self.calls: List[Dict[str, Any]] = []
        self.upserts: List[Dict[str, Any]] = []

    def query(self, vector, top_k, namespace):
        self.calls.append({"vector": vector, "top_k": top_k, "namespace": namespace})
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return [
            {"id": f"r{i}", "score": 0.9 - i * 0.05, "metadata": dict(record)}
            for i, record in enumerate(self.records[:top_k])
        ]

    def upsert(self, records, namespace):
        self.upserts.append({"records": records, "namespace": namespace})
        return len(records)

    def count(self, namespace):
        return len(self.records)


@pytest.fixture
def settings():
    return Settings(
        openai_api_key     = "test-key",
        namespace          = "ns1",
        embed_timeout      = 1.0,
        retrieval_timeout  = 1.0,
        completion_timeout = 1.0,
        chunk_timeout      = 1.0,
    )


@pytest.fixture
def fake_client():
    return FakeOpenAI()


@pytest.fixture
def fake_index():
    return FakeIndex()


@pytest.fixture
def failing_index():
    return FakeIndex(error=VectorIndexError("index unreachable"))
