"""
Data models for chat functionality
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4
from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MessageRole(str, Enum):
    USER = "USER"
    ASSISTANT = "ASSISTANT"


class ChatSession(BaseModel):
    """Page-scoped conversation thread owned by one user or one guest"""
    id: str = Field(default_factory=lambda: str(uuid4()))
    page_id: str
    user_id: Optional[str] = None
    guest_id: Optional[str] = None
    session_name: str
    is_active: bool = True
    created_at: datetime = Field(default_factory=_utcnow)


class ChatMessage(BaseModel):
    """Append-only chat message"""
    id: str = Field(default_factory=lambda: str(uuid4()))
    session_id: str
    role: MessageRole
    content: str
    retrieved_chunks: Optional[List[str]] = None
    confidence: Optional[float] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)
