"""Document store collaborators: Redis-backed and in-memory"""

import json
from typing import Any, Dict, List, Optional, Protocol

import structlog

from .exceptions import MemoryStorageError
from .utils.redis_pool import RedisPool

logger = structlog.get_logger(__name__)


class DocumentStore(Protocol):
    """Minimal document store contract"""

    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]: ...

    async def query(self, collection: str, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]: ...

    async def create(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None: ...

    async def update(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None: ...

    async def delete(self, collection: str, doc_id: str) -> bool: ...


def matches_filter(document: Dict[str, Any], filters: Optional[Dict[str, Any]]) -> bool:
    """Equality match on top-level fields, plus $gte/$lte/$in operators"""
    for field, expected in (filters or {}).items():
        value = document.get(field)
        if isinstance(expected, dict):
            if "$gte" in expected and (value is None or value < expected["$gte"]):
                return False
            if "$lte" in expected and (value is None or value > expected["$lte"]):
                return False
            if "$in" in expected and value not in expected["$in"]:
                return False
        elif value != expected:
            return False
    return True


class InMemoryDocumentStore:
    """Process-local document store, used for tests and local runs"""

    def __init__(self):
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}

    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        document = self._collections.get(collection, {}).get(doc_id)
        return json.loads(json.dumps(document)) if document is not None else None

    async def query(self, collection: str, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        return [
            json.loads(json.dumps(doc))
            for doc in self._collections.get(collection, {}).values()
            if matches_filter(doc, filters)
        ]

    async def create(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        self._collections.setdefault(collection, {})[doc_id] = json.loads(json.dumps(data))

    async def update(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        existing = self._collections.setdefault(collection, {}).get(doc_id, {})
        existing.update(json.loads(json.dumps(data)))
        self._collections[collection][doc_id] = existing

    async def delete(self, collection: str, doc_id: str) -> bool:
        return self._collections.get(collection, {}).pop(doc_id, None) is not None


class RedisDocumentStore:
    """JSON documents stored under {prefix}{collection}:{id}"""

    def __init__(self, pool: RedisPool, key_prefix: str = "schedule-resolver:"):
        self.pool = pool
        self.key_prefix = key_prefix

    def _key(self, collection: str, doc_id: str) -> str:
        return f"{self.key_prefix}{collection}:{doc_id}"

    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        try:
            raw = await self.pool.execute("get", self._key(collection, doc_id))
        except Exception as e:
            raise MemoryStorageError(f"Failed to read {collection}/{doc_id}: {e}") from e
        return json.loads(raw) if raw else None

    async def query(self, collection: str, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        try:
            client = await self.pool.get_client()
            keys = [key async for key in client.scan_iter(match=self._key(collection, "*"))]
            raw_docs = await self.pool.execute("mget", keys) if keys else []
        except Exception as e:
            raise MemoryStorageError(f"Failed to query {collection}: {e}") from e

        documents = [json.loads(raw) for raw in raw_docs if raw]
        return [doc for doc in documents if matches_filter(doc, filters)]

    async def create(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        try:
            await self.pool.execute("set", self._key(collection, doc_id), json.dumps(data, default=str))
        except Exception as e:
            raise MemoryStorageError(f"Failed to write {collection}/{doc_id}: {e}") from e

    async def update(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        existing = await self.get(collection, doc_id) or {}
        existing.update(data)
        await self.create(collection, doc_id, existing)

    async def delete(self, collection: str, doc_id: str) -> bool:
        try:
            return bool(await self.pool.execute("delete", self._key(collection, doc_id)))
        except Exception as e:
            raise MemoryStorageError(f"Failed to delete {collection}/{doc_id}: {e}") from e
