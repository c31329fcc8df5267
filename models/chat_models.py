"""
Request and response models for the HTTP and real-time gateways.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from .session_model import CamelModel, HistoryEntry


class ChatRequest(CamelModel):
    """Body of POST /api/chat. Presence and type are checked by the endpoint to answer 400."""
    message: Optional[Any] = None
    session_id: Optional[Any] = None


class ChatResponse(BaseModel):
    """Body returned by POST /api/chat."""
    response: str


class SessionCreatedResponse(CamelModel):
    session_id: str


class HistoryResponse(BaseModel):
    history: List[Dict[str, Any]] = Field(default_factory=list)

    @classmethod
    def from_entries(cls, entries: List[HistoryEntry]) -> "HistoryResponse":
        return cls(history=[entry.to_payload() for entry in entries])


class MessageResponse(BaseModel):
    """Payload of the real-time 'message-response' event."""
    user: str
    bot: str
    timestamp: datetime

    @classmethod
    def from_entry(cls, entry: HistoryEntry) -> "MessageResponse":
        return cls(user=entry.user, bot=entry.bot, timestamp=entry.timestamp)
