"""
vector_client.py
================
Store, search and delete text records in an external vector database.

Primary backend: Pinecone serverless index (``PINECONE_INDEX_NAME``).
Local backend:   ChromaDB PersistentClient collection (``VECTOR_BACKEND=chroma``),
                 handy for development without a Pinecone account.

Each record is kept as ``{id, vector, metadata: {text, timestamp}}``.  The
client is a single long-lived handle created on first use; ``close_vector_store``
releases it at shutdown.  Nothing is cached locally.
"""

from __future__ import annotations

import logging
import time
import uuid
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from threading import Lock
from typing import Any, Dict, Iterator, List, Optional

from backend.config import Settings, get_settings
from backend.errors import ProxyError, UpstreamError
from rag_pipeline.embedder import Embedder, get_embedder

logger = logging.getLogger(__name__)

DEFAULT_QUERY_LIMIT = 5

_store: Optional["VectorStoreClient"] = None
_store_lock = Lock()


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------

@dataclass
class Record:
    """A text record as written to the store."""

    id: str
    text: str
    timestamp: int                  # ms since epoch
    embedding: List[float]

    @property
    def metadata(self) -> Dict[str, Any]:
        return {"text": self.text, "timestamp": self.timestamp}


@dataclass
class QueryResult:
    """One nearest-neighbour match; never persisted."""

    id: str
    text: str
    timestamp: int
    similarity: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def now_ms() -> int:
    return int(time.time() * 1000)


def _coerce_timestamp(value: Any) -> int:
    # Pinecone hands numbers back as floats; older records stored them as strings.
    if value is None or value == "":
        return 0
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return 0


@contextmanager
def _upstream_call(operation: str) -> Iterator[None]:
    """Wrap SDK failures into UpstreamError, keeping the SDK's HTTP status when it has one."""
    try:
        yield
    except ProxyError:
        raise
    except Exception as exc:
        status = getattr(exc, "status", None) or getattr(exc, "status_code", None)
        logger.error("Vector store %s failed: %s", operation, exc)
        raise UpstreamError(
            f"Vector store {operation} failed: {exc}",
            status_code = status if isinstance(status, int) and status >= 400 else None,
        ) from exc


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------

class VectorBackend:
    name = "unresolved"

    def upsert(self, record: Record) -> None:
        raise NotImplementedError

    def search(self, vector: List[float], limit: int) -> List[QueryResult]:
        raise NotImplementedError

    def delete(self, record_id: str) -> None:
        raise NotImplementedError

    def clear(self) -> None:
        raise NotImplementedError

    def close(self) -> None:
        pass


class PineconeBackend(VectorBackend):
    name = "pinecone"

    def __init__(self, index: Any, namespace: str = ""):
        self._index = index
        self._namespace = namespace or None

    @classmethod
    def from_settings(cls, settings: Settings) -> "PineconeBackend":
        api_key    = settings.require("PINECONE_API_KEY")
        index_name = settings.require("PINECONE_INDEX_NAME")

        from pinecone import Pinecone  # type: ignore

        if settings.pinecone_environment:
            logger.debug("PINECONE_ENVIRONMENT=%s ignored by serverless client.", settings.pinecone_environment)

        index = Pinecone(api_key=api_key).Index(index_name)
        logger.info("Vector store backend: pinecone (index=%s)", index_name)
        return cls(index, settings.pinecone_namespace)

    def upsert(self, record: Record) -> None:
        self._index.upsert(
            vectors   = [{"id": record.id, "values": record.embedding, "metadata": record.metadata}],
            namespace = self._namespace,
        )

    def search(self, vector: List[float], limit: int) -> List[QueryResult]:
        response = self._index.query(
            vector           = vector,
            top_k            = limit,
            include_metadata = True,
            namespace        = self._namespace,
        )
        results: List[QueryResult] = []
        for match in response.matches or []:
            metadata = match.metadata or {}
            results.append(QueryResult(
                id         = match.id,
                text       = str(metadata.get("text", "")),
                timestamp  = _coerce_timestamp(metadata.get("timestamp")),
                similarity = float(match.score or 0.0),
            ))
        return results

    def delete(self, record_id: str) -> None:
        self._index.delete(ids=[record_id], namespace=self._namespace)

    def clear(self) -> None:
        self._index.delete(delete_all=True, namespace=self._namespace)


class ChromaBackend(VectorBackend):
    name = "chroma"

    def __init__(self, client: Any, collection_name: str):
        self._client = client
        self._collection_name = collection_name
        self._collection = self._open_collection()

    @classmethod
    def from_settings(cls, settings: Settings) -> "ChromaBackend":
        import chromadb  # type: ignore

        client = chromadb.PersistentClient(path=settings.chroma_persist_dir)
        logger.info("Vector store backend: chroma (%s)", settings.chroma_persist_dir)
        return cls(client, settings.chroma_collection)

    def _open_collection(self) -> Any:
        collection = self._client.get_or_create_collection(
            name     = self._collection_name,
            metadata = {"hnsw:space": "cosine"},
        )
        logger.info(
            "Vector collection '%s' ready (%d records).",
            self._collection_name,
            collection.count(),
        )
        return collection

    def upsert(self, record: Record) -> None:
        self._collection.upsert(
            ids        = [record.id],
            embeddings = [record.embedding],
            documents  = [record.text],
            metadatas  = [record.metadata],
        )

    def search(self, vector: List[float], limit: int) -> List[QueryResult]:
        count = self._collection.count()
        if count == 0:
            return []

        raw = self._collection.query(
            query_embeddings = [vector],
            n_results        = min(limit, count),
            include          = ["documents", "distances", "metadatas"],
        )
        ids       = raw.get("ids", [[]])[0]
        docs      = (raw.get("documents") or [[]])[0]
        distances = (raw.get("distances") or [[]])[0]
        metadatas = (raw.get("metadatas") or [[]])[0]

        results: List[QueryResult] = []
        for idx, record_id in enumerate(ids):
            metadata = metadatas[idx] or {}
            results.append(QueryResult(
                id         = record_id,
                text       = str(metadata.get("text", docs[idx])),
                timestamp  = _coerce_timestamp(metadata.get("timestamp")),
                similarity = 1.0 - float(distances[idx]),
            ))
        return results

    def delete(self, record_id: str) -> None:
        self._collection.delete(ids=[record_id])

    def clear(self) -> None:
        self._client.delete_collection(self._collection_name)
        self._collection = self._open_collection()


def build_backend(settings: Settings) -> VectorBackend:
    if settings.vector_backend == "chroma":
        return ChromaBackend.from_settings(settings)
    return PineconeBackend.from_settings(settings)


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class VectorStoreClient:
    """Record-level operations over one vector backend and one embedder."""

    def __init__(self, backend: VectorBackend, embedder: Embedder):
        self.backend = backend
        self.embedder = embedder

    def embed(self, text: str) -> List[float]:
        return self.embedder.embed(text)

    def store(self, text: str, record_id: Optional[str] = None, timestamp: Optional[int] = None) -> str:
        """Embed ``text`` and upsert it; returns the (possibly generated) record ID."""
        embedding = self.embed(text)
        record = Record(
            id        = record_id or str(uuid.uuid4()),
            text      = text,
            timestamp = timestamp if timestamp is not None else now_ms(),
            embedding = embedding,
        )
        with _upstream_call("upsert"):
            self.backend.upsert(record)
        logger.info("Record stored with ID: %s", record.id)
        return record.id

    def query(self, text: str, limit: int = DEFAULT_QUERY_LIMIT) -> List[QueryResult]:
        vector = self.embed(text)
        with _upstream_call("query"):
            results = self.backend.search(vector, limit)
        logger.debug("Query returned %d matches (limit=%d).", len(results), limit)
        return results

    def delete(self, record_id: str) -> None:
        with _upstream_call("delete"):
            self.backend.delete(record_id)
        logger.info("Record deleted with ID: %s", record_id)

    def clear_all(self) -> None:
        """Remove every record in the store.  Irreversible."""
        with _upstream_call("clear"):
            self.backend.clear()
        logger.warning("All records cleared from %s store.", self.backend.name)

    def close(self) -> None:
        self.backend.close()


# ---------------------------------------------------------------------------
# Process-wide handle
# ---------------------------------------------------------------------------

def get_vector_store() -> VectorStoreClient:
    """Return (or lazily create) the singleton vector-store client."""
    global _store
    if _store is None:
        with _store_lock:
            if _store is None:
                settings = get_settings()
                with _upstream_call("connect"):
                    backend = build_backend(settings)
                _store = VectorStoreClient(backend, get_embedder())
    return _store


def close_vector_store() -> None:
    global _store
    with _store_lock:
        if _store is not None:
            _store.close()
            _store = None
            logger.info("Vector store client closed.")
