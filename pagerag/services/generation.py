"""
Grounded answer generation over a page's retrieved context
"""
from typing import List, Optional
import httpx
import structlog

from pagerag.models.rag import RAGAnswer, RAGContext, RetrievedChunk
from pagerag.services.config import Settings
from pagerag.services.errors import (
    ConfigurationError,
    GenerationError,
    MalformedResponseError,
    ProviderRequestError,
)
from pagerag.utils.metrics import answer_confidence, no_context_counter

logger = structlog.get_logger()

UNCERTAIN_MARKERS = ["모르겠", "확실하지", "정확하지", "찾을 수 없"]


class AnswerGenerator:
    """Builds the prompt context and calls the chat completion provider"""

    def __init__(self, settings: Settings, http_client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=settings.REQUEST_TIMEOUT)

    async def close(self):
        if self._owns_client:
            await self.http_client.aclose()

    def build_context(
        self,
        page_id: str,
        query: str,
        chunks: List[RetrievedChunk],
        max_context_length: Optional[int] = None
    ) -> RAGContext:
        """
        Keep ranked chunks until the next one would overflow the budget.

        Chunks are never truncated. total_retrieved counts every retrieved
        chunk, including those left out.
        """
        budget = self.settings.MAX_CONTEXT_LENGTH if max_context_length is None else max_context_length
        selected = []
        total_length = 0

        for chunk in chunks:
            if total_length + len(chunk.content) > budget:
                break
            selected.append(chunk)
            total_length += len(chunk.content)

        return RAGContext(
            page_id=page_id,
            query=query,
            chunks=selected,
            total_retrieved=len(chunks)
        )

    async def answer(self, query: str, context: RAGContext) -> RAGAnswer:
        """
        Generate an answer from the context

        An empty context yields the no-context answer without calling the
        provider.

        Raises:
            ConfigurationError: CHAT_API_KEY missing; nothing is sent
            GenerationError: provider failure or unusable response
        """
        if not context.chunks:
            return self.no_context_answer(context.page_id, query, context.total_retrieved)

        if not self.settings.CHAT_API_KEY:
            raise ConfigurationError("CHAT_API_KEY is not set")

        payload = {
            "model": self.settings.CHAT_MODEL,
            "messages": [
                {"role": "system", "content": self.settings.SYSTEM_PROMPT},
                {"role": "user", "content": self._build_prompt(query, context)}
            ],
            "max_tokens": self.settings.MAX_TOKENS,
            "temperature": self.settings.TEMPERATURE
        }

        try:
            text = await self._complete(payload)
        except (ProviderRequestError, MalformedResponseError) as e:
            logger.error("LLM generation failed", page_id=context.page_id, error=str(e))
            raise GenerationError(f"Answer generation failed: {e}", cause=e) from e

        confidence = self.assess_answer_confidence(text, context)
        answer_confidence.observe(confidence)

        return RAGAnswer(
            answer=text,
            context=context,
            confidence=confidence,
            sources=extract_sources(context.chunks),
            reasoning=f"{len(context.chunks)}개의 관련 문서 섹션을 참조하여 답변을 생성했습니다."
        )

    def no_context_answer(self, page_id: str, query: str, total_retrieved: int = 0) -> RAGAnswer:
        no_context_counter.inc()
        return RAGAnswer(
            answer=self.settings.NO_CONTEXT_MESSAGE,
            context=RAGContext(page_id=page_id, query=query, chunks=[], total_retrieved=total_retrieved),
            confidence=0.0,
            sources=[]
        )

    def assess_answer_confidence(self, answer: str, context: RAGContext) -> float:
        """
        Heuristic answer reliability in [0, 1].

        Starts at 0.5 and moves with answer length, mean chunk similarity
        relative to 0.7, and chunk count. Uncertain phrasing halves the score.
        """
        confidence = 0.5

        if len(answer) > 100:
            confidence += 0.1
        if len(answer) > 300:
            confidence += 0.1

        chunks = context.chunks
        avg_similarity = sum(chunk.similarity for chunk in chunks) / len(chunks) if chunks else 0.0
        confidence += (avg_similarity - 0.7) * 0.5

        if len(chunks) >= 3:
            confidence += 0.1
        if len(chunks) >= 5:
            confidence += 0.1

        if any(marker in answer for marker in UNCERTAIN_MARKERS):
            confidence *= 0.5

        return max(0.0, min(1.0, confidence))

    def _build_prompt(self, query: str, context: RAGContext) -> str:
        context_text = "\n\n".join(
            f"[{number}] {chunk.content}" for number, chunk in enumerate(context.chunks, start=1)
        )
        return (
            f"다음은 교재의 관련 내용입니다:\n\n{context_text}\n\n"
            f"질문: {query}\n\n"
            "위 교재 내용을 바탕으로 질문에 답변해 주세요."
        )

    async def _complete(self, payload: dict) -> str:
        try:
            response = await self.http_client.post(
                self.settings.CHAT_API_URL,
                json=payload,
                headers={"Authorization": f"Bearer {self.settings.CHAT_API_KEY}"},
                timeout=self.settings.REQUEST_TIMEOUT
            )
        except httpx.HTTPError as e:
            raise ProviderRequestError(f"Chat request failed: {e}", cause=e) from e

        if not response.is_success:
            raise ProviderRequestError(
                f"Chat provider error ({response.status_code}): {response.text[:200]}",
                status_code=response.status_code
            )

        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise MalformedResponseError("Invalid response format from chat provider", cause=e) from e

        if not isinstance(content, str) or not content.strip():
            raise MalformedResponseError("Chat provider returned an empty answer")

        return content.strip()


def extract_sources(chunks: List[RetrievedChunk]) -> List[str]:
    return [chunk.metadata.get("section") or f"chunk {chunk.id}" for chunk in chunks]
