"""
RAG pipeline orchestration: page embedding write path and question answering read path
"""
import asyncio
import weakref
from typing import List, Optional
import structlog

from pagerag.models.content import Chunk, ChunkStats, Segment
from pagerag.models.rag import RAGAnswer
from pagerag.services.chunk_store import ChunkStore
from pagerag.services.chunking import normalize_whitespace, split_into_chunks
from pagerag.services.config import Settings
from pagerag.services.embeddings import EmbeddingClient
from pagerag.services.errors import PersistenceError
from pagerag.services.generation import AnswerGenerator
from pagerag.services.retrieval import Retriever
from pagerag.services.segmentation import PageSegmenter
from pagerag.services.sessions import SessionManager
from pagerag.utils.metrics import history_write_failures

logger = structlog.get_logger()


class RAGService:
    """
    Wires the pipeline components together.

    Writes for one page (generate, delete, rebuild) are serialized by a
    per-page lock. Reads are not locked and may observe a page mid-rebuild.
    """

    def __init__(
        self,
        settings: Settings,
        segmenter: PageSegmenter,
        embeddings: EmbeddingClient,
        store: ChunkStore,
        retriever: Retriever,
        generator: AnswerGenerator,
        sessions: SessionManager
    ):
        self.settings = settings
        self.segmenter = segmenter
        self.embeddings = embeddings
        self.store = store
        self.retriever = retriever
        self.generator = generator
        self.sessions = sessions
        # Entries vanish once no task holds or waits on the lock
        self._page_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock(self, page_id: str) -> asyncio.Lock:
        lock = self._page_locks.get(page_id)
        if lock is None:
            lock = self._page_locks[page_id] = asyncio.Lock()
        return lock

    async def generate_page_embeddings(self, page_id: str, segments: List[Segment]) -> List[Chunk]:
        """
        Chunk, embed and persist the segments of a page.

        Any failure aborts the run; chunks saved before it stay in the store
        until the page is deleted or rebuilt.
        """
        async with self._lock(page_id):
            return await self._generate_unlocked(page_id, segments)

    async def delete_page_embeddings(self, page_id: str) -> int:
        async with self._lock(page_id):
            return await self.store.delete_by_page(page_id)

    async def rebuild_page_embeddings(self, page_id: str, segments: List[Segment]) -> List[Chunk]:
        """Replace a page's chunks as one critical section"""
        async with self._lock(page_id):
            deleted = await self.store.delete_by_page(page_id)
            logger.info("Rebuilding page embeddings", page_id=page_id, deleted=deleted)
            return await self._generate_unlocked(page_id, segments)

    async def page_embedding_stats(self, page_id: str) -> ChunkStats:
        return await self.store.stats_by_page(page_id)

    async def answer_question(
        self,
        page_id: str,
        query: str,
        user_id: Optional[str] = None,
        guest_id: Optional[str] = None,
        session_id: Optional[str] = None
    ) -> RAGAnswer:
        """
        Answer a question from the page's own content.

        When a session id is given the turn is appended to its history. A
        failed history write is logged and does not affect the answer.
        """
        logger.info(
            "Processing RAG query",
            page_id=page_id,
            query_length=len(query),
            user_id=user_id,
            guest_id=guest_id
        )

        query_embedding = await self.embeddings.embed_query(query)
        chunks = await self.retriever.retrieve(page_id, query_embedding, query_text=query)

        if not chunks:
            answer = self.generator.no_context_answer(page_id, query)
        else:
            context = self.generator.build_context(page_id, query, chunks)
            if not context.chunks:
                logger.info(
                    "No retrieved chunk fits the context budget",
                    page_id=page_id,
                    retrieved=context.total_retrieved
                )
            answer = await self.generator.answer(query, context)

        if session_id:
            await self._record_turn(session_id, query, answer)

        logger.info(
            "Generated RAG response",
            page_id=page_id,
            confidence=answer.confidence,
            chunks=len(answer.context.chunks)
        )
        return answer

    async def _record_turn(self, session_id: str, query: str, answer: RAGAnswer):
        try:
            await self.sessions.append_turn(session_id, query, answer)
        except PersistenceError as e:
            history_write_failures.inc()
            logger.warning("Failed to save chat turn", session_id=session_id, error=str(e))

    async def _generate_unlocked(self, page_id: str, segments: List[Segment]) -> List[Chunk]:
        if not self.segmenter.validate_segments(segments):
            raise ValueError(f"Invalid segments for page {page_id}")

        logger.info("Generating page embeddings", page_id=page_id, segments=len(segments))
        chunks: List[Chunk] = []

        for segment_number, segment in enumerate(segments):
            texts = split_into_chunks(
                normalize_whitespace(segment.content),
                self.settings.CHUNK_SIZE,
                self.settings.CHUNK_OVERLAP
            )
            if not texts:
                continue

            vectors = await self.embeddings.embed_batch(texts)
            segment_metadata = segment.metadata.model_dump(mode="json", exclude_none=True)

            for position, (text, vector) in enumerate(zip(texts, vectors)):
                chunk = Chunk(
                    id=f"{page_id}-chunk-{segment_number}-{position}",
                    page_id=page_id,
                    chunk_text=text,
                    embedding=vector,
                    chunk_index=len(chunks),
                    metadata={
                        **segment_metadata,
                        "segment_id": segment.id,
                        "chunk_in_segment": position,
                        "total_chunks_in_segment": len(texts),
                    }
                )
                await self.store.save(chunk)
                chunks.append(chunk)

            logger.debug(
                "Embedded segment",
                page_id=page_id,
                segment_id=segment.id,
                chunks=len(texts)
            )

        logger.info("Generated page embeddings", page_id=page_id, chunks=len(chunks))
        return chunks
