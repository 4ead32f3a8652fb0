"""Tests for page-scoped retrieval and the lexical fallback."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from pagerag.models.content import Chunk
from pagerag.models.rag import RetrievedChunk
from pagerag.services.errors import PersistenceError
from pagerag.services.retrieval import Retriever
from pagerag.utils.text import term_overlap_score


def make_chunk(index, text, vector, page_id="p1", **metadata):
    return Chunk(
        id=f"{page_id}-chunk-0-{index}",
        page_id=page_id,
        chunk_text=text,
        embedding=vector,
        chunk_index=index,
        metadata=metadata,
    )


@pytest.fixture
async def populated_store(chunk_store):
    vectors = [
        [1.0, 0.0, 0.0, 0.0],
        [0.9, 0.3, 0.0, 0.0],
        [0.6, 0.8, 0.0, 0.0],
        [0.0, 1.0, 0.0, 0.0],
        [0.0, 0.0, 1.0, 0.0],
    ]
    for index, vector in enumerate(vectors):
        await chunk_store.save(make_chunk(index, f"chunk {index}", vector))
    await chunk_store.save(make_chunk(0, "other page", [1.0, 0.0, 0.0, 0.0], page_id="p2"))
    return chunk_store


async def test_retrieve_filters_by_threshold(populated_store, settings):
    retriever = Retriever(populated_store, settings)

    chunks = await retriever.retrieve("p1", [1.0, 0.0, 0.0, 0.0])

    # cosines: 1.0, 0.949, 0.6, 0.0, 0.0
    assert [c.content for c in chunks] == ["chunk 0", "chunk 1"]
    assert chunks[0].similarity >= chunks[1].similarity
    assert all(c.retrieval_mode == "vector" for c in chunks)


async def test_retrieve_respects_top_k(populated_store, settings):
    retriever = Retriever(populated_store, settings)

    chunks = await retriever.retrieve("p1", [1.0, 0.0, 0.0, 0.0], top_k=1, similarity_threshold=0.0)

    assert [c.content for c in chunks] == ["chunk 0"]


@pytest.mark.parametrize("top_k", [0, -1])
async def test_non_positive_top_k_is_rejected(settings, top_k):
    store = MagicMock()
    store.similarity_search = AsyncMock(return_value=[])

    with pytest.raises(ValueError):
        await Retriever(store, settings).retrieve("p1", [1.0, 0.0, 0.0, 0.0], top_k=top_k)

    store.similarity_search.assert_not_awaited()


async def test_threshold_is_strict(settings):
    store = MagicMock()
    store.similarity_search = AsyncMock(return_value=[
        RetrievedChunk(id="a", content="a", similarity=0.71),
        RetrievedChunk(id="b", content="b", similarity=0.7),
    ])

    chunks = await Retriever(store, settings).retrieve("p1", [1.0, 0.0, 0.0, 0.0])

    assert [c.id for c in chunks] == ["a"]


async def test_raising_threshold_never_grows_results(populated_store, settings):
    retriever = Retriever(populated_store, settings)
    query = [0.8, 0.6, 0.0, 0.0]

    sizes = [
        len(await retriever.retrieve("p1", query, similarity_threshold=threshold))
        for threshold in (0.0, 0.3, 0.5, 0.7, 0.9, 0.99)
    ]

    assert sizes == sorted(sizes, reverse=True)


async def test_empty_page_returns_nothing(chunk_store, settings):
    retriever = Retriever(chunk_store, settings)

    assert await retriever.retrieve("missing", [1.0, 0.0, 0.0, 0.0]) == []


async def test_falls_back_to_lexical_search(settings):
    store = MagicMock()
    store.similarity_search = AsyncMock(side_effect=PersistenceError("vector index unavailable"))
    store.find_by_page = AsyncMock(return_value=[
        make_chunk(0, "안녕하세요 인사 표현", []),
        make_chunk(1, "자기소개 하는 방법과 인사", []),
        make_chunk(2, "날씨 이야기", []),
    ])
    retriever = Retriever(store, settings)

    chunks = await retriever.retrieve(
        "p1", [1.0, 0.0, 0.0, 0.0], top_k=2, query_text="자기소개 인사", similarity_threshold=0.4
    )

    store.find_by_page.assert_awaited_once_with("p1", limit=4, with_vectors=False)
    assert [c.id for c in chunks] == ["p1-chunk-0-1", "p1-chunk-0-0"]
    assert chunks[0].similarity == 1.0
    assert chunks[1].similarity == 0.5
    assert all(c.retrieval_mode == "lexical" for c in chunks)


async def test_fallback_is_deterministic(settings):
    store = MagicMock()
    store.similarity_search = AsyncMock(side_effect=PersistenceError("down"))
    store.find_by_page = AsyncMock(return_value=[make_chunk(0, "문장 문법 설명", [])])
    retriever = Retriever(store, settings)

    first = await retriever.retrieve("p1", [1.0], query_text="문법", similarity_threshold=0.0)
    second = await retriever.retrieve("p1", [1.0], query_text="문법", similarity_threshold=0.0)

    assert [c.similarity for c in first] == [c.similarity for c in second] == [1.0]


async def test_fallback_failure_propagates(settings):
    store = MagicMock()
    store.similarity_search = AsyncMock(side_effect=PersistenceError("down"))
    store.find_by_page = AsyncMock(side_effect=PersistenceError("still down"))

    with pytest.raises(PersistenceError):
        await Retriever(store, settings).retrieve("p1", [1.0], query_text="질문")


@pytest.mark.parametrize("query,text,expected", [
    ("문법", "문법 설명", 1.0),
    ("문장은 무엇", "이 문장은 예시", 0.5),
    ("문장들을 설명", "문장들 목록과 설명", 1.0),
    ("Python 3", "python version 3", 1.0),
    ("", "anything", 0.0),
    ("!!!", "anything", 0.0),
    ("날씨", "문법 설명", 0.0),
])
def test_term_overlap_score(query, text, expected):
    assert term_overlap_score(query, text) == expected
