"""
backend — FastAPI application package.

Routers: api/chat.py, api/health.py
Schemas: schemas/chat.py
Entry point: main.py → run with `uvicorn backend.main:app --reload`
"""
