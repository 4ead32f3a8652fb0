"""
Chat session and message storage on Redis
"""
from typing import List, Optional
import redis.asyncio as aioredis
from redis.exceptions import RedisError
import structlog

from pagerag.models.chat import ChatMessage, ChatSession, MessageRole
from pagerag.models.rag import RAGAnswer
from pagerag.services.config import Settings
from pagerag.services.errors import PersistenceError

logger = structlog.get_logger()

KEY_PREFIX = "pagerag:session"


def session_key(session_id: str) -> str:
    return f"{KEY_PREFIX}:{session_id}"


def messages_key(session_id: str) -> str:
    return f"{KEY_PREFIX}:{session_id}:messages"


def active_session_key(page_id: str, user_id: Optional[str], guest_id: Optional[str]) -> str:
    if user_id:
        return f"{KEY_PREFIX}:active:{page_id}:user:{user_id}"
    return f"{KEY_PREFIX}:active:{page_id}:guest:{guest_id}"


class SessionManager:
    """
    Page-scoped chat sessions and their append-only message log.

    Keys:
        pagerag:session:{id}                              session record (JSON)
        pagerag:session:{id}:messages                     message list (JSON items)
        pagerag:session:active:{page}:{user|guest}:{id}   active session pointer

    The client must be created with decode_responses=True.
    """

    def __init__(self, redis_client: aioredis.Redis, settings: Settings):
        self.redis_client = redis_client
        self.settings = settings

    async def get_or_create_session(
        self,
        page_id: str,
        user_id: Optional[str] = None,
        guest_id: Optional[str] = None
    ) -> str:
        """
        Return the active session of (page, owner), creating it if needed.

        The active pointer is claimed with SET NX, so callers racing on the
        first request all end up with the same session id.
        """
        if bool(user_id) == bool(guest_id):
            raise ValueError("Exactly one of user_id or guest_id is required")

        pointer = active_session_key(page_id, user_id, guest_id)
        try:
            existing_id = await self.redis_client.get(pointer)
            if existing_id:
                existing = await self._load(existing_id)
                if existing and existing.is_active:
                    return existing.id
                # Stale pointer
                await self.redis_client.delete(pointer)

            session = ChatSession(
                page_id=page_id,
                user_id=user_id,
                guest_id=guest_id,
                session_name=f"페이지 {page_id} 대화"
            )
            await self.redis_client.set(session_key(session.id), session.model_dump_json())

            if await self.redis_client.set(pointer, session.id, nx=True):
                logger.info("Created chat session", session_id=session.id, page_id=page_id)
                return session.id

            # Lost the race; drop our record and use the winner's session
            await self.redis_client.delete(session_key(session.id))
            winner_id = await self.redis_client.get(pointer)
        except RedisError as e:
            raise PersistenceError(f"Failed to get or create session for page {page_id}: {e}", cause=e) from e

        if not winner_id:
            raise PersistenceError(f"Active session for page {page_id} vanished during creation")
        return winner_id

    async def get_session(self, session_id: str) -> Optional[ChatSession]:
        try:
            return await self._load(session_id)
        except RedisError as e:
            raise PersistenceError(f"Failed to read session {session_id}: {e}", cause=e) from e

    async def close_session(self, session_id: str) -> bool:
        """Deactivate a session and release its active pointer"""
        try:
            session = await self._load(session_id)
            if session is None:
                return False

            closed = session.model_copy(update={"is_active": False})
            await self.redis_client.set(session_key(session_id), closed.model_dump_json())

            pointer = active_session_key(session.page_id, session.user_id, session.guest_id)
            if await self.redis_client.get(pointer) == session_id:
                await self.redis_client.delete(pointer)
        except RedisError as e:
            raise PersistenceError(f"Failed to close session {session_id}: {e}", cause=e) from e

        logger.info("Closed chat session", session_id=session_id)
        return True

    async def append_turn(self, session_id: str, user_message: str, answer: RAGAnswer) -> List[ChatMessage]:
        """
        Append the user message and the assistant answer, in that order

        Raises:
            PersistenceError: the session does not exist or the write failed;
                callers decide whether it matters
        """
        try:
            session = await self._load(session_id)
        except RedisError as e:
            raise PersistenceError(f"Failed to read session {session_id}: {e}", cause=e) from e
        if session is None:
            raise PersistenceError(f"Session {session_id} does not exist")

        user = ChatMessage(
            session_id=session_id,
            role=MessageRole.USER,
            content=user_message
        )
        assistant = ChatMessage(
            session_id=session_id,
            role=MessageRole.ASSISTANT,
            content=answer.answer,
            retrieved_chunks=[chunk.id for chunk in answer.context.chunks],
            confidence=answer.confidence,
            metadata={
                "sources": answer.sources,
                "reasoning": answer.reasoning,
                "context_chunks": answer.context.total_retrieved,
            }
        )

        try:
            await self.redis_client.rpush(
                messages_key(session_id),
                user.model_dump_json(),
                assistant.model_dump_json()
            )
        except RedisError as e:
            raise PersistenceError(f"Failed to save chat turn for session {session_id}: {e}", cause=e) from e

        return [user, assistant]

    async def history(self, session_id: str, limit: Optional[int] = None) -> List[ChatMessage]:
        """Oldest messages first, at most `limit` of them"""
        limit = self.settings.HISTORY_LIMIT if limit is None else limit
        if limit < 1:
            raise ValueError(f"limit must be positive, got {limit}")
        try:
            items = await self.redis_client.lrange(messages_key(session_id), 0, limit - 1)
        except RedisError as e:
            raise PersistenceError(f"Failed to read history for session {session_id}: {e}", cause=e) from e

        return [ChatMessage.model_validate_json(item) for item in items]

    async def _load(self, session_id: str) -> Optional[ChatSession]:
        data = await self.redis_client.get(session_key(session_id))
        if not data:
            return None
        return ChatSession.model_validate_json(data)
