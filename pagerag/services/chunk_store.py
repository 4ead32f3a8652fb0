"""
Chunk persistence on a Qdrant collection, scoped by page
"""
import hashlib
import math
from typing import Any, Dict, List, Optional
import structlog
from qdrant_client import AsyncQdrantClient
from qdrant_client.models import (
    Distance,
    FieldCondition,
    Filter,
    FilterSelector,
    MatchValue,
    PayloadSchemaType,
    PointStruct,
    VectorParams,
)

from pagerag.models.content import Chunk, ChunkStats
from pagerag.models.rag import RetrievedChunk
from pagerag.services.config import Settings
from pagerag.services.errors import PersistenceError
from pagerag.utils.metrics import chunks_stored

logger = structlog.get_logger()

# Rough chars-to-tokens factor for Korean text
TOKENS_PER_CHAR = 0.75
SCROLL_PAGE_SIZE = 256


def point_id(chunk_id: str) -> int:
    """Convert string ID to numeric hash for Qdrant"""
    return int(hashlib.sha256(chunk_id.encode()).hexdigest()[:16], 16)


def page_filter(page_id: str) -> Filter:
    return Filter(must=[FieldCondition(key="page_id", match=MatchValue(value=page_id))])


class ChunkStore:
    """
    Stores embedded chunks as Qdrant points.

    Payload keeps the chunk id, page id, text, index and metadata. Cosine
    collections normalize vectors on write, so embeddings read back are unit
    length.
    """

    def __init__(self, client: AsyncQdrantClient, settings: Settings):
        self.client = client
        self.settings = settings
        self.collection_name = settings.QDRANT_COLLECTION
        self.dimension = settings.EMBEDDING_DIMENSION

    async def ensure_collection(self):
        """Ensure the collection exists with proper configuration"""
        try:
            if await self.client.collection_exists(self.collection_name):
                return
            await self.client.create_collection(
                collection_name=self.collection_name,
                vectors_config=VectorParams(size=self.dimension, distance=Distance.COSINE)
            )
            await self.client.create_payload_index(
                collection_name=self.collection_name,
                field_name="page_id",
                field_schema=PayloadSchemaType.KEYWORD
            )
            logger.info("Created Qdrant collection", collection=self.collection_name)
        except Exception as e:
            raise PersistenceError(f"Failed to ensure collection {self.collection_name}: {e}", cause=e) from e

    async def save(self, chunk: Chunk):
        """Persist one chunk. Earlier saves are not rolled back if this fails."""
        if len(chunk.embedding) != self.dimension:
            raise PersistenceError(
                f"Embedding dimension {len(chunk.embedding)} does not match collection "
                f"dimension {self.dimension} for chunk {chunk.id}"
            )

        point = PointStruct(
            id=point_id(chunk.id),
            vector=chunk.embedding,
            payload={
                "chunk_id": chunk.id,
                "page_id": chunk.page_id,
                "chunk_text": chunk.chunk_text,
                "chunk_index": chunk.chunk_index,
                "metadata": chunk.metadata,
            }
        )

        try:
            await self.client.upsert(collection_name=self.collection_name, points=[point], wait=True)
        except Exception as e:
            logger.error("Failed to save chunk", chunk_id=chunk.id, error=str(e))
            raise PersistenceError(f"Failed to save chunk {chunk.id}: {e}", cause=e) from e

        chunks_stored.inc()

    async def delete_by_page(self, page_id: str) -> int:
        """Delete every chunk of a page and return how many there were"""
        try:
            result = await self.client.count(
                collection_name=self.collection_name,
                count_filter=page_filter(page_id),
                exact=True
            )
            if result.count:
                await self.client.delete(
                    collection_name=self.collection_name,
                    points_selector=FilterSelector(filter=page_filter(page_id)),
                    wait=True
                )
        except Exception as e:
            raise PersistenceError(f"Failed to delete chunks for page {page_id}: {e}", cause=e) from e

        logger.info("Deleted page chunks", page_id=page_id, deleted=result.count)
        return result.count

    async def find_by_page(
        self,
        page_id: str,
        limit: Optional[int] = None,
        with_vectors: bool = True
    ) -> List[Chunk]:
        """Chunks of a page ordered by chunk_index"""
        points = []
        offset = None
        try:
            while True:
                batch, offset = await self.client.scroll(
                    collection_name=self.collection_name,
                    scroll_filter=page_filter(page_id),
                    limit=SCROLL_PAGE_SIZE,
                    offset=offset,
                    with_payload=True,
                    with_vectors=with_vectors
                )
                points.extend(batch)
                if offset is None:
                    break
        except Exception as e:
            raise PersistenceError(f"Failed to read chunks for page {page_id}: {e}", cause=e) from e

        chunks = [self._to_chunk(point.payload, point.vector if with_vectors else None) for point in points]
        chunks.sort(key=lambda chunk: chunk.chunk_index)
        if limit is not None:
            chunks = chunks[:limit]
        return chunks

    async def similarity_search(
        self,
        page_id: str,
        vector: List[float],
        limit: int
    ) -> List[RetrievedChunk]:
        """Cosine similarity search within one page, best first"""
        if len(vector) != self.dimension:
            raise PersistenceError(
                f"Query dimension {len(vector)} does not match collection dimension {self.dimension}"
            )

        try:
            response = await self.client.query_points(
                collection_name=self.collection_name,
                query=vector,
                query_filter=page_filter(page_id),
                limit=limit,
                with_payload=True
            )
        except Exception as e:
            raise PersistenceError(f"Similarity search failed for page {page_id}: {e}", cause=e) from e

        hits = sorted(
            response.points,
            key=lambda hit: (-hit.score, hit.payload.get("chunk_index", 0))
        )
        return [
            RetrievedChunk(
                id=hit.payload["chunk_id"],
                content=hit.payload["chunk_text"],
                similarity=float(hit.score),
                metadata=hit.payload.get("metadata") or {},
            )
            for hit in hits
        ]

    async def stats_by_page(self, page_id: str) -> ChunkStats:
        chunks = await self.find_by_page(page_id, with_vectors=False)
        total_chunks = len(chunks)
        total_chars = sum(len(chunk.chunk_text) for chunk in chunks)
        # Half-up rounding
        avg_chunk_length = int(total_chars / total_chunks + 0.5) if total_chunks else 0

        return ChunkStats(
            total_chunks=total_chunks,
            avg_chunk_length=avg_chunk_length,
            total_tokens=math.ceil(total_chars * TOKENS_PER_CHAR)
        )

    @staticmethod
    def _to_chunk(payload: Dict[str, Any], vector) -> Chunk:
        return Chunk(
            id=payload["chunk_id"],
            page_id=payload["page_id"],
            chunk_text=payload["chunk_text"],
            embedding=list(vector) if vector else [],
            chunk_index=payload["chunk_index"],
            metadata=payload.get("metadata") or {},
        )
