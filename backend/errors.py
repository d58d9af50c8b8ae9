"""
errors.py
=========
Error taxonomy shared by the RAG pipeline and the HTTP layer.

Components raise these; ``backend.main`` installs one exception handler that
logs them and turns them into ErrorResponse bodies.
"""

from __future__ import annotations

from typing import Any, Optional


class ProxyError(Exception):
    """Base class: carries the HTTP status and optional upstream payload."""

    status_code: int = 500

    def __init__(self, message: str, status_code: Optional[int] = None, payload: Any = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.payload = payload


class ConfigurationError(ProxyError):
    """A required credential or setting is missing or malformed."""

    status_code = 500


class ValidationError(ProxyError):
    """A request field is missing or malformed."""

    status_code = 400


class UpstreamError(ProxyError):
    """Non-2xx answer or network failure from the embedding, vector-store or LLM service."""

    status_code = 500
