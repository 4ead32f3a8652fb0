"""Shared test doubles and provider response builders."""

import json
from typing import Dict, List, Optional

import httpx
from redis.exceptions import ConnectionError as RedisConnectionError

DIMENSION = 4


class FakeRedis:
    """In-memory stand-in for the async Redis client (decode_responses=True)."""

    def __init__(self):
        self.values: Dict[str, str] = {}
        self.lists: Dict[str, List[str]] = {}
        self.fail = False

    def _check(self):
        if self.fail:
            raise RedisConnectionError("redis is down")

    async def ping(self):
        self._check()
        return True

    async def get(self, key: str) -> Optional[str]:
        self._check()
        return self.values.get(key)

    async def set(self, key: str, value: str, nx: bool = False):
        self._check()
        if nx and key in self.values:
            return None
        self.values[key] = value
        return True

    async def delete(self, *keys: str) -> int:
        self._check()
        removed = 0
        for key in keys:
            if self.values.pop(key, None) is not None:
                removed += 1
            if self.lists.pop(key, None) is not None:
                removed += 1
        return removed

    async def rpush(self, key: str, *values: str) -> int:
        self._check()
        self.lists.setdefault(key, []).extend(values)
        return len(self.lists[key])

    async def lrange(self, key: str, start: int, end: int) -> List[str]:
        self._check()
        items = self.lists.get(key, [])
        return items[start:] if end == -1 else items[start:end + 1]

    async def aclose(self):
        pass


def embedding_response(vector: List[float]) -> httpx.Response:
    return httpx.Response(200, json={"data": [{"embedding": vector}], "model": "embedding-query"})


def chat_response(content: str) -> httpx.Response:
    return httpx.Response(200, json={"choices": [{"message": {"role": "assistant", "content": content}}]})


def request_json(request: httpx.Request) -> dict:
    return json.loads(request.content)


def mock_http_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))
