"""
Embedding client for an OpenAI-compatible /embeddings endpoint
"""
import asyncio
from typing import List, Optional
import httpx
import numpy as np
import structlog

from pagerag.services.chunking import preprocess_text
from pagerag.services.config import Settings
from pagerag.services.errors import (
    ConfigurationError,
    EmbeddingProviderError,
    MalformedResponseError,
    ProviderRequestError,
)
from pagerag.utils.metrics import embedding_requests, embedding_retries

logger = structlog.get_logger()


class EmbeddingClient:
    """Embeds text with retry and batch pacing"""

    def __init__(self, settings: Settings, http_client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=settings.REQUEST_TIMEOUT)

    async def close(self):
        if self._owns_client:
            await self.http_client.aclose()

    async def embed(self, text: str, model: Optional[str] = None) -> List[float]:
        """
        Embed one text.

        Transport errors, timeouts, non-2xx statuses and malformed payloads are
        retried up to EMBEDDING_MAX_RETRIES times with a linearly growing delay.

        Raises:
            ConfigurationError: no API key configured; nothing is sent
            EmbeddingProviderError: every attempt failed
        """
        api_key = self._api_key()
        model = model or self.settings.EMBEDDING_MODEL
        clean_text = preprocess_text(text, self.settings.EMBEDDING_MAX_INPUT_CHARS)
        max_retries = self.settings.EMBEDDING_MAX_RETRIES

        last_error: Optional[Exception] = None
        for attempt in range(1, max_retries + 1):
            try:
                vector = await self._request(clean_text, model, api_key)
                embedding_requests.labels(outcome="success").inc()
                return vector
            except (ProviderRequestError, MalformedResponseError) as e:
                last_error = e
                embedding_requests.labels(outcome="error").inc()
                logger.warning(
                    "Embedding attempt failed",
                    attempt=attempt,
                    max_retries=max_retries,
                    error=str(e)
                )
                if attempt < max_retries:
                    embedding_retries.inc()
                    await asyncio.sleep(self.settings.EMBEDDING_RETRY_DELAY * attempt)

        logger.error("Embedding failed after all retries", error=str(last_error))
        raise EmbeddingProviderError(
            f"Embedding failed after {max_retries} attempts: {last_error}",
            cause=last_error
        ) from last_error

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """
        Embed texts in groups of EMBEDDING_BATCH_SIZE.

        Texts within a group are embedded concurrently; groups run one after
        another with EMBEDDING_BATCH_DELAY between them. The first failure
        cancels the rest of its group and aborts the call.
        """
        batch_size = self.settings.EMBEDDING_BATCH_SIZE
        total_batches = (len(texts) + batch_size - 1) // batch_size
        embeddings: List[List[float]] = []

        for start in range(0, len(texts), batch_size):
            group = texts[start:start + batch_size]
            tasks = [asyncio.ensure_future(self.embed(text)) for text in group]
            try:
                vectors = await asyncio.gather(*tasks)
            except Exception:
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                logger.error("Embedding batch failed", batch_start=start)
                raise
            embeddings.extend(vectors)

            logger.debug(
                "Processed embedding batch",
                batch=start // batch_size + 1,
                total_batches=total_batches
            )

            if start + batch_size < len(texts):
                await asyncio.sleep(self.settings.EMBEDDING_BATCH_DELAY)

        return embeddings

    async def embed_query(self, text: str) -> List[float]:
        """Embed a user query with the query model"""
        return await self.embed(text, model=self.settings.query_embedding_model)

    def validate_embedding(self, embedding) -> bool:
        """True when the vector is non-empty and every component is a finite number"""
        if not isinstance(embedding, (list, tuple)) or len(embedding) == 0:
            return False

        if any(isinstance(value, bool) or not isinstance(value, (int, float)) for value in embedding):
            return False

        if len(embedding) != self.settings.EMBEDDING_DIMENSION:
            logger.warning(
                "Unexpected embedding dimension",
                dimension=len(embedding),
                expected=self.settings.EMBEDDING_DIMENSION
            )

        return bool(np.all(np.isfinite(np.asarray(embedding, dtype=np.float64))))

    def _api_key(self) -> str:
        if not self.settings.EMBEDDING_API_KEY:
            raise ConfigurationError("EMBEDDING_API_KEY is not set")
        return self.settings.EMBEDDING_API_KEY

    async def _request(self, text: str, model: str, api_key: str) -> List[float]:
        try:
            response = await self.http_client.post(
                self.settings.EMBEDDING_API_URL,
                json={"input": text, "model": model},
                headers={"Authorization": f"Bearer {api_key}"},
                timeout=self.settings.REQUEST_TIMEOUT
            )
        except httpx.HTTPError as e:
            raise ProviderRequestError(f"Embedding request failed: {e}", cause=e) from e

        if not response.is_success:
            raise ProviderRequestError(
                f"Embedding provider error ({response.status_code}): {response.text[:200]}",
                status_code=response.status_code
            )

        try:
            embedding = response.json()["data"][0]["embedding"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise MalformedResponseError("Invalid response format from embedding provider", cause=e) from e

        if not self.validate_embedding(embedding):
            raise MalformedResponseError("Embedding provider returned an invalid vector")

        return [float(value) for value in embedding]
