# backend/schemas/__init__.py
from backend.schemas.chat import ChatMessage, ErrorResponse

__all__ = ["ChatMessage", "ErrorResponse"]
