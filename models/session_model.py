"""
Data models for Session and HistoryEntry entities.

Records are persisted as JSON with camelCase keys (createdAt, lastActivity,
messageCount) while Python code uses snake_case attributes.
"""

from datetime import datetime, timezone
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """Base model that reads and writes camelCase JSON."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    def to_payload(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class Session(CamelModel):
    """Represents a conversation identified by an opaque token."""
    id: str
    created_at: datetime = Field(default_factory=utcnow)
    last_activity: datetime = Field(default_factory=utcnow)
    message_count: int = Field(default=0, ge=0)

    def age_seconds(self, now: datetime) -> float:
        """Seconds elapsed since the last recorded activity."""
        return (now - self.last_activity).total_seconds()


class HistoryEntry(CamelModel):
    """A single user/bot exchange. Immutable once stored."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    user: str
    bot: str
    timestamp: datetime = Field(default_factory=utcnow)
