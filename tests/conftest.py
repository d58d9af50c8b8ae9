"""
Shared fixtures: deterministic embedder, Chroma-backed store in a temp dir,
fake LLM upstream built on httpx.MockTransport, and an app test client.
"""

import hashlib
import json
from typing import Callable, List

import httpx
import pytest
from fastapi.testclient import TestClient
from openai import AsyncOpenAI

from rag_pipeline.embedder import Embedder
from rag_pipeline.llm_proxy import CompletionProxy
from rag_pipeline.vector_client import ChromaBackend, QueryResult, VectorStoreClient

LLM_BASE_URL = "https://llm.test/v1"


class HashEmbedder(Embedder):
    """Deterministic token-hash vectors; identical text gives identical vectors."""

    backend = "hash"

    def __init__(self, dim: int = 64):
        self.dim = dim
        self.calls: List[str] = []

    def _embed(self, text: str) -> List[float]:
        self.calls.append(text)
        values = [0.0] * self.dim
        for token in text.lower().split():
            digest = hashlib.sha256(token.encode("utf-8")).digest()
            idx = int.from_bytes(digest[:2], "big") % self.dim
            values[idx] += 1.0 if digest[2] % 2 == 0 else -1.0
        norm = sum(v * v for v in values) ** 0.5
        return [v / norm for v in values] if norm else values


class FakeStore:
    """Stands in for VectorStoreClient in context-assembly tests."""

    def __init__(self, results: List[QueryResult] = None, error: Exception = None):
        self.results = results or []
        self.error = error
        self.queries = []

    def query(self, text, limit=5):
        self.queries.append((text, limit))
        if self.error is not None:
            raise self.error
        return list(self.results)


@pytest.fixture
def embedder():
    return HashEmbedder()


@pytest.fixture
def chroma_store(tmp_path, embedder):
    import chromadb

    client = chromadb.PersistentClient(path=str(tmp_path / "chroma"))
    backend = ChromaBackend(client, "test_records")
    return VectorStoreClient(backend, embedder)


class UpstreamRecorder:
    """Records requests sent to the fake LLM and replies with a canned response."""

    def __init__(self, respond: Callable[[httpx.Request], httpx.Response]):
        self.respond = respond
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.respond(request)

    @property
    def last_json(self):
        return json.loads(self.requests[-1].content)


def make_proxy(recorder: UpstreamRecorder, api_key: str = "sk-test") -> CompletionProxy:
    client = AsyncOpenAI(
        api_key     = api_key,
        base_url    = LLM_BASE_URL,
        max_retries = 0,
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(recorder)),
    )
    return CompletionProxy(client, default_model="gpt-4o-mini")


@pytest.fixture
def client():
    """Create test client for API testing."""
    from backend import main
    with TestClient(main.app) as test_client:
        yield test_client
