"""Data models for the News RAG Chat backend."""

from .session_model import Session, HistoryEntry
from .document_models import Document, RetrievalResult
from .chat_models import (
    ChatRequest, ChatResponse,
    SessionCreatedResponse, HistoryResponse,
    MessageResponse
)

__all__ = [
    "Session", "HistoryEntry",
    "Document", "RetrievalResult",
    "ChatRequest", "ChatResponse",
    "SessionCreatedResponse", "HistoryResponse",
    "MessageResponse"
]
