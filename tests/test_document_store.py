"""
Unit tests for the document store adapters
"""

import json
from unittest.mock import AsyncMock

import pytest
import redis.asyncio as redis

from schedule_resolver.document_store import InMemoryDocumentStore, RedisDocumentStore, matches_filter
from schedule_resolver.exceptions import MemoryStorageError


class TestMatchesFilter:
    """Test cases for filter evaluation"""

    def test_equality_and_operators(self):
        document = {"student": "Emma", "date": "2026-10-20", "course": "piano"}

        assert matches_filter(document, None)
        assert matches_filter(document, {"student": "Emma"})
        assert not matches_filter(document, {"student": "Leo"})
        assert matches_filter(document, {"date": {"$gte": "2026-10-19", "$lte": "2026-10-25"}})
        assert not matches_filter(document, {"date": {"$gte": "2026-10-21"}})
        assert matches_filter(document, {"course": {"$in": ["piano", "math"]}})
        assert not matches_filter(document, {"missing": {"$lte": "x"}})


class TestInMemoryDocumentStore:
    """Test cases for InMemoryDocumentStore"""

    @pytest.mark.asyncio
    async def test_crud(self):
        store = InMemoryDocumentStore()

        await store.create("user_memory", "u1", {"user_id": "u1", "students": {}})
        await store.update("user_memory", "u1", {"last_updated": "2026-10-19T00:00:00Z"})

        document = await store.get("user_memory", "u1")
        assert document == {"user_id": "u1", "students": {}, "last_updated": "2026-10-19T00:00:00Z"}
        assert await store.query("user_memory", {"user_id": "u1"}) == [document]
        assert await store.delete("user_memory", "u1") is True
        assert await store.get("user_memory", "u1") is None

    @pytest.mark.asyncio
    async def test_returned_documents_are_copies(self):
        store = InMemoryDocumentStore()
        await store.create("user_memory", "u1", {"students": {}})

        document = await store.get("user_memory", "u1")
        document["students"]["Emma"] = {}

        assert (await store.get("user_memory", "u1"))["students"] == {}


class TestRedisDocumentStore:
    """Test cases for RedisDocumentStore against a mocked pool"""

    @pytest.mark.asyncio
    async def test_get_and_create_use_prefixed_keys(self):
        pool = AsyncMock()
        pool.execute.return_value = json.dumps({"user_id": "u1"})
        store = RedisDocumentStore(pool, key_prefix="test:")

        assert await store.get("user_memory", "u1") == {"user_id": "u1"}
        pool.execute.assert_awaited_with("get", "test:user_memory:u1")

        await store.create("user_memory", "u1", {"user_id": "u1"})
        pool.execute.assert_awaited_with("set", "test:user_memory:u1", json.dumps({"user_id": "u1"}))

    @pytest.mark.asyncio
    async def test_missing_document(self):
        pool = AsyncMock()
        pool.execute.return_value = None

        assert await RedisDocumentStore(pool).get("user_memory", "nobody") is None

    @pytest.mark.asyncio
    async def test_errors_are_wrapped(self):
        pool = AsyncMock()
        pool.execute.side_effect = redis.ConnectionError("connection refused")
        store = RedisDocumentStore(pool)

        with pytest.raises(MemoryStorageError):
            await store.get("user_memory", "u1")
        with pytest.raises(MemoryStorageError):
            await store.create("user_memory", "u1", {})
