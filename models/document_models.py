"""
Data models for retrieved news documents.

Documents are produced by the ingestion job and read back from the vector
index; the pipeline never mutates them.
"""

from typing import List, Optional
from pydantic import Field

from .session_model import CamelModel


class Document(CamelModel):
    """A news article retrieved from the vector index."""
    id: str
    title: Optional[str] = None
    content: str = ""
    url: Optional[str] = None
    published_date: Optional[str] = None
    source: Optional[str] = None
    category: Optional[str] = None
    score: float = 0.0


class RetrievalResult(CamelModel):
    """Documents ordered by similarity, index 0 most relevant."""
    documents: List[Document] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.documents

    def __len__(self) -> int:
        return len(self.documents)
