"""
config.py
=========
Environment-driven settings for the RAG proxy.

Values are read from the process environment (``.env`` is loaded by
``backend.main`` before anything else runs).  Credentials have no default:
the component that needs one calls ``Settings.require`` and fails with a
ConfigurationError naming the missing variable.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import List

from backend.errors import ConfigurationError

VECTOR_BACKENDS    = ("pinecone", "chroma")
EMBEDDING_BACKENDS = ("openai", "local")


def _clean_env(name: str, default: str = "") -> str:
    value = os.getenv(name, default)
    return value.strip().strip('"').strip("'")


@dataclass(frozen=True)
class Settings:
    llm_api_key: str
    llm_base_url: str
    default_model: str

    embedding_backend: str
    embedding_model: str
    local_embed_model: str

    vector_backend: str
    pinecone_api_key: str
    pinecone_index_name: str
    pinecone_environment: str
    pinecone_namespace: str
    chroma_persist_dir: str
    chroma_collection: str

    port: int
    frontend_url: str
    log_level: str

    @classmethod
    def from_env(cls) -> "Settings":
        vector_backend = _clean_env("VECTOR_BACKEND", "pinecone").lower()
        if vector_backend not in VECTOR_BACKENDS:
            raise ConfigurationError(
                f"VECTOR_BACKEND must be one of {', '.join(VECTOR_BACKENDS)} (got {vector_backend!r})"
            )

        embedding_backend = _clean_env("EMBEDDING_BACKEND", "openai").lower()
        if embedding_backend not in EMBEDDING_BACKENDS:
            raise ConfigurationError(
                f"EMBEDDING_BACKEND must be one of {', '.join(EMBEDDING_BACKENDS)} (got {embedding_backend!r})"
            )

        port = _clean_env("PORT", "3000")
        if not port.isdigit():
            raise ConfigurationError(f"PORT must be an integer (got {port!r})")

        return cls(
            llm_api_key          = _clean_env("LLM_API_KEY"),
            llm_base_url         = _clean_env("LLM_BASE_URL", "https://api.openai.com/v1"),
            default_model        = _clean_env("DEFAULT_MODEL", "gpt-4o-mini"),
            embedding_backend    = embedding_backend,
            embedding_model      = _clean_env("EMBEDDING_MODEL", "text-embedding-3-small"),
            local_embed_model    = _clean_env("LOCAL_EMBED_MODEL", "all-MiniLM-L6-v2"),
            vector_backend       = vector_backend,
            pinecone_api_key     = _clean_env("PINECONE_API_KEY"),
            pinecone_index_name  = _clean_env("PINECONE_INDEX_NAME"),
            pinecone_environment = _clean_env("PINECONE_ENVIRONMENT"),
            pinecone_namespace   = _clean_env("PINECONE_NAMESPACE"),
            chroma_persist_dir   = _clean_env("CHROMA_PERSIST_DIR", "./chroma_db"),
            chroma_collection    = _clean_env("CHROMA_COLLECTION", "rag_records"),
            port                 = int(port),
            frontend_url         = _clean_env("FRONTEND_URL"),
            log_level            = _clean_env("LOG_LEVEL", "INFO").upper(),
        )

    def require(self, name: str) -> str:
        """Return the value of a required setting or raise ConfigurationError."""
        value = getattr(self, name.lower())
        if not value:
            raise ConfigurationError(f"{name.upper()} environment variable is required")
        return value

    def required_names(self) -> List[str]:
        """Environment variables the selected backends cannot run without."""
        names = ["LLM_API_KEY"]
        if self.vector_backend == "pinecone":
            names += ["PINECONE_API_KEY", "PINECONE_INDEX_NAME"]
        return names

    def missing(self) -> List[str]:
        return [name for name in self.required_names() if not getattr(self, name.lower())]


def get_settings() -> Settings:
    """Read settings from the current environment (cheap; never cached)."""
    return Settings.from_env()
