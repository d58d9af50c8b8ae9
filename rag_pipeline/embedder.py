"""
embedder.py
===========
Convert text into a dense embedding vector.

Primary:  OpenAI embeddings API (fixed model, ``EMBEDDING_MODEL``).
Offline:  sentence-transformers model (``EMBEDDING_BACKEND=local``), loaded
          once and kept in memory.

Both backends raise UpstreamError on failure; nothing is retried.
"""

from __future__ import annotations

import logging
from threading import Lock
from typing import Any, List, Optional

import openai
from openai import OpenAI

from backend.config import Settings, get_settings
from backend.errors import ConfigurationError, UpstreamError, ValidationError

logger = logging.getLogger(__name__)

_embedder: Optional["Embedder"] = None
_embedder_lock = Lock()


def upstream_error_from_openai(exc: openai.APIError, service: str) -> UpstreamError:
    """Translate an openai SDK error into an UpstreamError, keeping status and payload."""
    if isinstance(exc, openai.APIStatusError):
        body = exc.body
        payload = body.get("error", body) if isinstance(body, dict) else body
        return UpstreamError(
            f"Error from {service}: {exc.message}",
            status_code = exc.status_code,
            payload     = payload,
        )
    if isinstance(exc, openai.APIConnectionError):
        return UpstreamError(f"No response received from {service}")
    return UpstreamError(f"Error from {service}: {exc}")


class Embedder:
    """Base embedder: ``embed`` validates input and delegates to ``_embed``."""

    backend = "unresolved"

    def embed(self, text: str) -> List[float]:
        if not text or not text.strip():
            raise ValidationError("Text is required")
        return self._embed(text)

    def _embed(self, text: str) -> List[float]:
        raise NotImplementedError

    def close(self) -> None:
        pass


class OpenAIEmbedder(Embedder):
    backend = "openai"

    def __init__(self, api_key: str, model: str, base_url: Optional[str] = None, client: Optional[OpenAI] = None):
        self.model = model
        self._client = client or OpenAI(api_key=api_key, base_url=base_url, max_retries=0)

    def _embed(self, text: str) -> List[float]:
        try:
            response = self._client.embeddings.create(input=text, model=self.model)
        except openai.APIError as exc:
            logger.error("Error generating embedding: %s", exc)
            raise upstream_error_from_openai(exc, "embedding API") from exc

        if not response.data:
            raise UpstreamError("Embedding API returned no vectors")
        return list(response.data[0].embedding)

    def close(self) -> None:
        self._client.close()


class SentenceTransformerEmbedder(Embedder):
    backend = "local"

    def __init__(self, model_name: str):
        self.model_name = model_name
        self._model: Any = None
        self._model_lock = Lock()

    def _load(self) -> Any:
        if self._model is None:
            with self._model_lock:
                if self._model is None:
                    try:
                        from sentence_transformers import SentenceTransformer  # type: ignore
                    except ImportError as exc:
                        raise ConfigurationError(
                            "EMBEDDING_BACKEND=local needs the 'local' extra (sentence-transformers)"
                        ) from exc
                    self._model = SentenceTransformer(self.model_name)
                    logger.info("Embedder backend: sentence_transformers (%s)", self.model_name)
        return self._model

    def _embed(self, text: str) -> List[float]:
        try:
            vec = self._load().encode(
                [text],
                show_progress_bar=False,
                convert_to_numpy=True,
                normalize_embeddings=True,
            )[0]
        except (OSError, RuntimeError, ValueError) as exc:
            logger.error("Local embedding failed: %s", exc)
            raise UpstreamError(f"Local embedding model failed: {exc}") from exc
        return vec.tolist()


def build_embedder(settings: Settings) -> Embedder:
    if settings.embedding_backend == "local":
        return SentenceTransformerEmbedder(settings.local_embed_model)
    return OpenAIEmbedder(
        api_key  = settings.require("LLM_API_KEY"),
        model    = settings.embedding_model,
        base_url = settings.llm_base_url,
    )


# ---------------------------------------------------------------------------
# Process-wide handle
# ---------------------------------------------------------------------------

def get_embedder() -> Embedder:
    """Return (or lazily create) the singleton embedder."""
    global _embedder
    if _embedder is None:
        with _embedder_lock:
            if _embedder is None:
                _embedder = build_embedder(get_settings())
                logger.info("Embedder ready [backend=%s].", _embedder.backend)
    return _embedder


def close_embedder() -> None:
    global _embedder
    with _embedder_lock:
        if _embedder is not None:
            _embedder.close()
            _embedder = None
