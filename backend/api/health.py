"""
api/health.py
=============
GET /api/health: liveness check plus a configuration readiness report.
Does not contact the vector store or the LLM API.
"""

from fastapi import APIRouter

from backend.config import get_settings
from backend.schemas.response import HealthResponse

API_VERSION = "1.0.0"

router = APIRouter()


@router.get("/api/health", response_model=HealthResponse)
async def health_check():
    """Return service status and which required settings are missing."""
    settings = get_settings()
    missing = settings.missing()

    return HealthResponse(
        status            = "ok" if not missing else "degraded",
        vector_backend    = settings.vector_backend,
        embedding_backend = settings.embedding_backend,
        llm_configured    = bool(settings.llm_api_key),
        missing_config    = missing,
        api_version       = API_VERSION,
    )
