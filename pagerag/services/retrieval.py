"""
Page-scoped chunk retrieval with a lexical fallback
"""
import time
from typing import List, Optional
import structlog

from pagerag.models.rag import RetrievedChunk
from pagerag.services.chunk_store import ChunkStore
from pagerag.services.config import Settings
from pagerag.services.errors import PersistenceError
from pagerag.utils.metrics import chunk_retrieval_count, retrieval_duration
from pagerag.utils.text import term_overlap_score

logger = structlog.get_logger()


class Retriever:
    """Service for retrieving the chunks of a page most relevant to a query"""

    def __init__(self, store: ChunkStore, settings: Settings):
        self.store = store
        self.settings = settings

    async def retrieve(
        self,
        page_id: str,
        query_embedding: List[float],
        top_k: Optional[int] = None,
        query_text: str = "",
        similarity_threshold: Optional[float] = None
    ) -> List[RetrievedChunk]:
        """
        Retrieve chunks scoring strictly above the similarity threshold.

        Vector search runs first. If the store fails, up to 2 x top_k chunks
        of the page are rescored by term overlap with `query_text` and
        returned flagged as lexical. An empty list is a normal outcome.
        """
        top_k = self.settings.TOP_K if top_k is None else top_k
        if top_k < 1:
            raise ValueError(f"top_k must be positive, got {top_k}")
        threshold = (
            self.settings.SIMILARITY_THRESHOLD if similarity_threshold is None else similarity_threshold
        )

        start_time = time.time()
        try:
            hits = await self.store.similarity_search(page_id, query_embedding, top_k)
            mode = "vector"
        except PersistenceError as e:
            logger.warning(
                "Vector search failed, falling back to text search",
                page_id=page_id,
                error=str(e)
            )
            hits = await self._lexical_search(page_id, query_text, top_k)
            mode = "lexical"

        chunks = [chunk for chunk in hits if chunk.similarity > threshold]
        # Stable sort keeps store order (chunk_index) among equal scores
        chunks.sort(key=lambda chunk: chunk.similarity, reverse=True)
        chunks = chunks[:top_k]

        retrieval_duration.labels(mode=mode).observe(time.time() - start_time)
        chunk_retrieval_count.observe(len(chunks))
        logger.info(
            "Retrieved chunks",
            page_id=page_id,
            mode=mode,
            retrieved=len(chunks),
            threshold=threshold
        )
        return chunks

    async def _lexical_search(self, page_id: str, query_text: str, top_k: int) -> List[RetrievedChunk]:
        candidates = await self.store.find_by_page(page_id, limit=top_k * 2, with_vectors=False)
        return [
            RetrievedChunk(
                id=chunk.id,
                content=chunk.chunk_text,
                similarity=term_overlap_score(query_text, chunk.chunk_text),
                metadata=chunk.metadata,
                retrieval_mode="lexical",
            )
            for chunk in candidates
        ]
