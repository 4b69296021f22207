"""Query embeddings via OpenAI, sized to match the corpus index."""

import asyncio

from openai import OpenAI

from assistant_engine.core.config import get_settings
from assistant_engine.core.logging import get_logger

logger = get_logger(__name__)


def _get_client() -> OpenAI:
    """Get OpenAI client instance."""
    settings = get_settings()
    return OpenAI(
        api_key=settings.OPENAI_API_KEY,
        timeout=settings.EMBEDDING_TIMEOUT_SECONDS,
        max_retries=settings.EMBEDDING_MAX_RETRIES,
    )


def embed_query(text: str) -> list[float]:
    """
    Embed one retrieval query.

    The corpus is indexed at EMBEDDING_DIM dimensions, so the request asks the
    model for exactly that size and the result is checked before use.

    Args:
        text: Query text

    Returns:
        Embedding vector

    Raises:
        ValueError: If the returned dimension doesn't match EMBEDDING_DIM
        Exception: If the OpenAI API call fails
    """
    settings = get_settings()
    client = _get_client()

    response = client.embeddings.create(
        model=settings.EMBEDDING_MODEL,
        input=[text],
        dimensions=settings.EMBEDDING_DIM,
    )
    embedding = response.data[0].embedding

    if len(embedding) != settings.EMBEDDING_DIM:
        raise ValueError(
            f"Embedding dimension mismatch: expected {settings.EMBEDDING_DIM}, got {len(embedding)}"
        )

    logger.debug(
        f"Embedded query ({len(text)} chars) with {settings.EMBEDDING_MODEL}",
    )
    return embedding


async def embed_query_async(text: str) -> list[float]:
    """Async wrapper around embed_query using thread pool."""
    return await asyncio.to_thread(embed_query, text)
