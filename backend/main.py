"""
main.py
=======
FastAPI application entry point for the RAG chat proxy.

Run locally:
  uvicorn backend.main:app --reload --port 3000
  # or
  python -m backend.main        (port from $PORT, default 3000)

The lifespan handler reports missing configuration at startup and closes the
long-lived vector-store, embedder and LLM client handles on shutdown.  The
handles themselves are created lazily on first use.
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv  # type: ignore
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse

# Load .env from project root (one level above this file's package)
load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))

from backend.api.chat import router as chat_router
from backend.api.health import API_VERSION, router as health_router
from backend.api.vectors import router as vectors_router
from backend.config import get_settings
from backend.errors import ProxyError, ValidationError
from backend.schemas.response import ErrorResponse
from rag_pipeline.embedder import close_embedder
from rag_pipeline.llm_proxy import close_completion_proxy
from rag_pipeline.vector_client import close_vector_store


INDEX_HTML = os.path.join(os.path.dirname(__file__), "public", "index.html")

logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").strip().upper(), logging.INFO),
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan: startup / shutdown
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logger.info(
        "RAG proxy starting up (vector=%s, embeddings=%s)…",
        settings.vector_backend,
        settings.embedding_backend,
    )
    missing = settings.missing()
    if missing:
        logger.warning("Missing configuration: %s (affected routes fail until set).", ", ".join(missing))

    yield

    close_vector_store()
    close_embedder()
    await close_completion_proxy()
    logger.info("RAG proxy shutting down.")


# ---------------------------------------------------------------------------
# Error boundary
# ---------------------------------------------------------------------------

async def handle_proxy_error(request: Request, exc: ProxyError) -> JSONResponse:
    level = logging.WARNING if exc.status_code < 500 else logging.ERROR
    logger.log(level, "%s %s → %d %s: %s", request.method, request.url.path,
               exc.status_code, type(exc).__name__, exc.message)

    body = ErrorResponse(
        error  = exc.payload if exc.payload is not None else exc.message,
        detail = type(exc).__name__,
    )
    return JSONResponse(status_code=exc.status_code, content=body.model_dump())


async def handle_request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed or mistyped request fields answer 400 like every other ValidationError."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    loc = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    msg = first.get("msg", "Malformed request body")
    message = f"{loc}: {msg}" if loc else msg
    logger.warning("%s %s → 400 ValidationError: %s", request.method, request.url.path, message)

    body = ErrorResponse(error=message, detail=ValidationError.__name__)
    return JSONResponse(status_code=400, content=body.model_dump())


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ProxyError, handle_proxy_error)
    app.add_exception_handler(RequestValidationError, handle_request_validation_error)


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------

def create_app() -> FastAPI:
    app = FastAPI(
        title       = "RAG Chat Proxy",
        description = (
            "Chat-completion proxy with optional retrieval-augmented context "
            "from a vector database."
        ),
        version     = API_VERSION,
        docs_url    = "/docs",
        redoc_url   = "/redoc",
        lifespan    = lifespan,
    )

    # ── CORS ──────────────────────────────────────────────────────────────
    origins = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]
    frontend_url = os.getenv("FRONTEND_URL", "").strip()
    if frontend_url:
        origins.append(frontend_url)
    app.add_middleware(
        CORSMiddleware,
        allow_origins     = origins,
        allow_credentials = True,
        allow_methods     = ["*"],
        allow_headers     = ["*"],
    )

    register_exception_handlers(app)

    # ── Routes ────────────────────────────────────────────────────────────
    @app.get("/", include_in_schema=False)
    async def index():
        return FileResponse(INDEX_HTML, media_type="text/html")

    app.include_router(health_router)
    app.include_router(chat_router)
    app.include_router(vectors_router)

    return app


app = create_app()


def run() -> None:
    """Start uvicorn on $PORT."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(app, host="0.0.0.0", port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    run()
