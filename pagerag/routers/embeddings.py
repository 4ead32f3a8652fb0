"""
Embedding endpoints for building, inspecting and removing a page's chunks
"""
import time
from typing import Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field
import structlog

from pagerag.models.content import ChunkStats, ContentType
from pagerag.routers.chat import get_rag_service

logger = structlog.get_logger()
router = APIRouter(tags=["embeddings"])


class PageContentRequest(BaseModel):
    """Request model for page content embedding"""
    content_type: ContentType = Field(default=ContentType.TEXT, description="TEXT, FILE or MIXED")
    text: Optional[str] = Field(default=None, description="Page text (TEXT and MIXED pages)")
    file_text: Optional[str] = Field(default=None, description="Text extracted from the attached file")
    file_type: Optional[str] = Field(default=None, description="MIME type of the attached file")
    original_page_count: Optional[int] = Field(default=None, gt=0, description="Page count of the original file")


class PageEmbeddingResponse(BaseModel):
    """Response model for page embedding"""
    page_id: str
    segment_count: int
    chunk_count: int
    processing_time: float


@router.post("/pages/{page_id}/embeddings", response_model=PageEmbeddingResponse)
async def build_page_embeddings(page_id: str, request: PageContentRequest, req: Request):
    """
    Segment the page content and replace the page's chunks with fresh ones
    """
    start_time = time.time()
    rag_service = get_rag_service(req)
    segmenter = rag_service.segmenter

    logger.info("Page embedding request", page_id=page_id, content_type=request.content_type.value)

    if request.content_type == ContentType.TEXT:
        if not request.text:
            raise ValueError("text is required for TEXT pages")
        segments = segmenter.segment_text(request.text)
    elif request.content_type == ContentType.FILE:
        if not request.file_text:
            raise ValueError("file_text is required for FILE pages")
        segments = segmenter.segment_file(
            request.file_text,
            request.file_type or "",
            request.original_page_count
        )
    else:
        if not request.text or not request.file_text:
            raise ValueError("text and file_text are required for MIXED pages")
        segments = segmenter.segment_mixed(
            request.text,
            request.file_text,
            request.file_type or "",
            request.original_page_count
        )

    if not segments:
        raise ValueError(f"No content to embed for page {page_id}")

    chunks = await rag_service.rebuild_page_embeddings(page_id, segments)

    return PageEmbeddingResponse(
        page_id=page_id,
        segment_count=len(segments),
        chunk_count=len(chunks),
        processing_time=time.time() - start_time
    )


@router.delete("/pages/{page_id}/embeddings")
async def delete_page_embeddings(page_id: str, req: Request):
    deleted = await get_rag_service(req).delete_page_embeddings(page_id)
    return {"page_id": page_id, "deleted": deleted}


@router.get("/pages/{page_id}/embeddings/stats", response_model=ChunkStats)
async def page_embedding_stats(page_id: str, req: Request):
    return await get_rag_service(req).page_embedding_stats(page_id)
