"""
Answer generation with Gemini.

Builds one prompt from the assembled news context and the user's question
and invokes the model once. When retrieval found nothing the model is not
called and a fixed fallback sentence is returned instead.
"""

import time
from typing import Any, Optional

import google.generativeai as genai

from logger import get_logger
from models import RetrievalResult
from retrieval.context import assemble_context

logger = get_logger(__name__)

FALLBACK_RESPONSE = (
    "I don't have enough information in my knowledge base to answer that question. "
    "Could you try asking about recent news topics?"
)

SYSTEM_INSTRUCTIONS = (
    "You are a helpful news chatbot. Based on the following news articles, "
    "answer the user's question accurately and concisely."
)

ANSWER_INSTRUCTIONS = """Instructions:
- Provide a clear, concise answer based on the provided context
- If the context doesn't fully answer the question, say so
- Include relevant details from the articles
- Keep the response conversational and helpful
- When you mention specific facts, cite the article they came from (e.g. "Article 2")"""


class GenerationError(Exception):
    """The generative model failed or returned no text."""
    pass


def build_prompt(query: str, context: str) -> str:
    """Assemble the single prompt sent to the model."""
    return f"""{SYSTEM_INSTRUCTIONS}

Context from news articles:
{context}

User Question: {query}

{ANSWER_INSTRUCTIONS}

Answer:"""


class ResponseGenerator:
    """Produces answer text from retrieved documents."""

    def __init__(self, model: Optional[Any], model_name: str = "gemini-2.5-flash"):
        """
        Args:
            model: Object exposing generate_content_async(prompt), normally
                a genai.GenerativeModel; None when no API key is configured
            model_name: Name used in logs
        """
        self.model = model
        self.model_name = model_name

    @property
    def is_configured(self) -> bool:
        return self.model is not None

    @classmethod
    def from_api_key(cls, api_key: str, model_name: str) -> "ResponseGenerator":
        """Configure the Gemini SDK and build a generator for model_name."""
        genai.configure(api_key=api_key)
        return cls(genai.GenerativeModel(model_name=model_name), model_name)

    async def generate(self, query: str, result: RetrievalResult) -> str:
        """
        Answer the query from the retrieved documents.

        Raises:
            GenerationError: When the model call fails or yields no text
        """
        if result.is_empty:
            logger.info("No documents retrieved, returning fallback answer")
            return FALLBACK_RESPONSE
        if self.model is None:
            raise GenerationError("Gemini API key not configured")

        prompt = build_prompt(query, assemble_context(result))

        start_time = time.time()
        try:
            response = await self.model.generate_content_async(prompt)
        except Exception as e:
            logger.error(f"Response generation failed: {type(e).__name__}: {e}")
            raise GenerationError(f"Gemini call failed: {type(e).__name__}") from e

        logger.llm_call(
            model=self.model_name,
            documents=len(result),
            duration_ms=round((time.time() - start_time) * 1000, 2)
        )

        text = _response_text(response)
        if not text:
            raise GenerationError("Empty response from model")
        return text


def _response_text(response: Any) -> Optional[str]:
    # .text raises ValueError when the candidate was blocked or has no parts
    try:
        return getattr(response, "text", None)
    except ValueError:
        return None
