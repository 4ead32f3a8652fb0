"""
Data models for retrieval and answer generation
"""
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, Field


class RetrievedChunk(BaseModel):
    """Chunk returned for one query; never persisted.

    `retrieval_mode` is "lexical" when the scores come from the text-overlap
    fallback. Those scores are not comparable to vector similarities.
    """
    id: str
    content: str
    similarity: float
    metadata: Dict[str, Any] = Field(default_factory=dict)
    retrieval_mode: Literal["vector", "lexical"] = "vector"


class RAGContext(BaseModel):
    page_id: str
    query: str
    chunks: List[RetrievedChunk] = Field(default_factory=list)
    total_retrieved: int = 0


class RAGAnswer(BaseModel):
    answer: str
    context: RAGContext
    confidence: float = Field(..., ge=0.0, le=1.0)
    sources: List[str] = Field(default_factory=list)
    reasoning: Optional[str] = None
