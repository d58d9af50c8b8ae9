"""
backend — FastAPI application package.

Routers: api/chat.py, api/vectors.py, api/health.py
Schemas: schemas/request.py, schemas/response.py
Entry point: main.py → run with `uvicorn backend.main:app --reload`
"""
