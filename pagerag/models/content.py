"""
Data models for page content: segments, embedded chunks and chunk statistics
"""
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field


class ContentType(str, Enum):
    TEXT = "TEXT"
    FILE = "FILE"
    MIXED = "MIXED"


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class SegmentMetadata(BaseModel):
    """Metadata derived for a segment during segmentation"""
    model_config = ConfigDict(frozen=True)

    page_number: Optional[int] = None
    section: Optional[str] = None
    estimated_read_time: Optional[int] = None  # minutes
    word_count: Optional[int] = None
    difficulty: Optional[Difficulty] = None


class Segment(BaseModel):
    """Contiguous, metadata-tagged slice of a page's source content"""
    model_config = ConfigDict(frozen=True)

    id: str
    content: str
    content_type: ContentType
    start_index: int
    end_index: int
    metadata: SegmentMetadata = Field(default_factory=SegmentMetadata)


class Chunk(BaseModel):
    """Embedded chunk record, the unit persisted in the chunk store"""
    id: str
    page_id: str
    chunk_text: str
    embedding: List[float]
    chunk_index: int = Field(..., ge=0)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ChunkStats(BaseModel):
    """Per-page chunk statistics"""
    total_chunks: int
    avg_chunk_length: int
    total_tokens: int
