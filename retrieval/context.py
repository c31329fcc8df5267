"""Formats retrieved documents into the citation-numbered prompt context."""

from models import RetrievalResult

MAX_CONTEXT_DOCUMENTS = 3


def format_document_block(index: int, document) -> str:
    return (
        f"Article {index}: {document.title or 'News Article'}\n"
        f"Content: {document.content}\n"
        f"Source: {document.url or 'Unknown'}\n"
        f"Published: {document.published_date or 'Unknown'}"
    )


def assemble_context(result: RetrievalResult, limit: int = MAX_CONTEXT_DOCUMENTS) -> str:
    """Join the top `limit` documents as numbered blocks separated by a blank line."""
    return "\n\n".join(
        format_document_block(index, document)
        for index, document in enumerate(result.documents[:limit], 1)
    )
