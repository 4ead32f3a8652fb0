"""Pytest fixtures for page RAG tests."""

import os

import pytest
from qdrant_client import AsyncQdrantClient

# Set test environment before the app module loads its settings
os.environ["ENVIRONMENT"] = "test"
os.environ["LOG_JSON"] = "false"
os.environ["EMBEDDING_API_KEY"] = "test-embedding-key"
os.environ["CHAT_API_KEY"] = "test-chat-key"
os.environ["EMBEDDING_DIMENSION"] = "4"
os.environ["QDRANT_URL"] = ":memory:"
os.environ["QDRANT_COLLECTION"] = "test-page-embeddings"

from pagerag.services.chunk_store import ChunkStore  # noqa: E402
from pagerag.services.config import Settings  # noqa: E402
from pagerag.services.sessions import SessionManager  # noqa: E402
from tests.helpers import DIMENSION, FakeRedis  # noqa: E402


@pytest.fixture
def settings():
    """Settings with fast retries and a tiny vector dimension."""
    return Settings(
        _env_file=None,
        EMBEDDING_API_KEY="test-embedding-key",
        CHAT_API_KEY="test-chat-key",
        EMBEDDING_DIMENSION=DIMENSION,
        EMBEDDING_RETRY_DELAY=0,
        EMBEDDING_BATCH_DELAY=0,
        QDRANT_COLLECTION="test-page-embeddings",
    )


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def session_manager(fake_redis, settings):
    return SessionManager(fake_redis, settings)


@pytest.fixture
async def qdrant_client():
    client = AsyncQdrantClient(location=":memory:")
    yield client
    await client.close()


@pytest.fixture
async def chunk_store(qdrant_client, settings):
    store = ChunkStore(qdrant_client, settings)
    await store.ensure_collection()
    return store


@pytest.fixture
def sample_korean_text():
    """Sample lesson text."""
    return (
        "1. 인사하기\n"
        "안녕하세요. 저는 학생입니다. 만나서 반갑습니다.\n\n"
        "한국어에서는 상황에 따라 다른 인사말을 사용합니다. 아침에도 저녁에도 "
        "안녕하세요를 쓸 수 있습니다.\n\n\n"
        "2. 자기소개\n"
        "이름과 국적을 말할 때는 '저는 ...입니다'라고 합니다."
    )
