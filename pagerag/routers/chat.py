"""
Chat endpoints for page-scoped Q&A and session history
"""
import time
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel, Field
import structlog

from pagerag.models.chat import ChatMessage
from pagerag.models.rag import RAGAnswer
from pagerag.services.rag import RAGService
from pagerag.utils.metrics import track_request_duration

logger = structlog.get_logger()

router = APIRouter(tags=["chat"])


class ChatRequestBody(BaseModel):
    """Chat request model"""
    query: str = Field(..., min_length=1, max_length=1000, description="User's question")
    user_id: Optional[str] = Field(default=None, description="Authenticated user owning the session")
    guest_id: Optional[str] = Field(default=None, description="Guest owning the session")
    session_id: Optional[str] = Field(default=None, description="Existing session to append to")


class ChatResponse(RAGAnswer):
    session_id: Optional[str] = None


class SessionRequestBody(BaseModel):
    user_id: Optional[str] = None
    guest_id: Optional[str] = None


class SessionResponse(BaseModel):
    session_id: str
    page_id: str


class HistoryResponse(BaseModel):
    session_id: str
    messages: List[ChatMessage]


def get_rag_service(req: Request) -> RAGService:
    return req.app.state.rag_service


@router.post("/pages/{page_id}/chat", response_model=ChatResponse)
async def chat_endpoint(page_id: str, request: ChatRequestBody, req: Request):
    """
    Answer a question about one page.

    A given session id must belong to this page (and owner, when one is
    sent). Without it, the owner's active session for the page is used
    (or created) when an owner is given.
    """
    start_time = time.time()
    rag_service = get_rag_service(req)

    session_id = request.session_id
    if session_id:
        session = await rag_service.sessions.get_session(session_id)
        if session is None:
            raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
        if session.page_id != page_id:
            raise HTTPException(status_code=400, detail=f"Session {session_id} belongs to another page")
        if (request.user_id or request.guest_id) and (
            session.user_id != request.user_id or session.guest_id != request.guest_id
        ):
            raise HTTPException(status_code=400, detail=f"Session {session_id} belongs to another owner")
    elif request.user_id or request.guest_id:
        session_id = await rag_service.sessions.get_or_create_session(
            page_id,
            user_id=request.user_id,
            guest_id=request.guest_id
        )

    answer = await rag_service.answer_question(
        page_id,
        request.query,
        user_id=request.user_id,
        guest_id=request.guest_id,
        session_id=session_id
    )

    track_request_duration(time.time() - start_time, "chat")
    return ChatResponse(**answer.model_dump(), session_id=session_id)


@router.post("/pages/{page_id}/sessions", response_model=SessionResponse)
async def create_session(page_id: str, request: SessionRequestBody, req: Request):
    """Get or create the active chat session of an owner on a page"""
    session_id = await get_rag_service(req).sessions.get_or_create_session(
        page_id,
        user_id=request.user_id,
        guest_id=request.guest_id
    )
    return SessionResponse(session_id=session_id, page_id=page_id)


@router.get("/sessions/{session_id}/messages", response_model=HistoryResponse)
async def get_history(
    session_id: str,
    req: Request,
    limit: Optional[int] = Query(default=None, ge=1, le=500)
):
    sessions = get_rag_service(req).sessions
    if await sessions.get_session(session_id) is None:
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")

    messages = await sessions.history(session_id, limit=limit)
    return HistoryResponse(session_id=session_id, messages=messages)


@router.delete("/sessions/{session_id}")
async def close_session(session_id: str, req: Request):
    """Deactivate a session so the next question starts a new one"""
    if not await get_rag_service(req).sessions.close_session(session_id):
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
    return {"session_id": session_id, "status": "closed"}
